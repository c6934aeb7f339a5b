"""Dependency graph construction.

The builder expands a selection depth-first, pulling declared dependencies
from the component store. Nodes are keyed by ``ComponentKey`` so two paths to
the same component share one node.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from .models import (
    ComponentDescriptor,
    ComponentKey,
    Diagnostic,
    DiagnosticCode,
    ResolutionContext,
    Severity,
)
from .predicates import evaluate
from .store import ComponentStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


class NodeState(str, Enum):
    PENDING = "pending"
    VISITING = "visiting"
    RESOLVED = "resolved"


@dataclass
class ResolutionNode:
    """A resolved descriptor plus its state during one resolution."""

    descriptor: ComponentDescriptor
    order: int
    depth: int
    required: bool = True
    state: NodeState = NodeState.PENDING
    resolved_dependencies: list[ComponentKey] = field(default_factory=list)

    @property
    def key(self) -> ComponentKey:
        return self.descriptor.key


@dataclass
class ResolutionGraph:
    """Nodes reached from a selection and the keys that could not be added.

    Attributes:
        nodes: Resolved nodes in discovery order.
        missing: Keys the store did not serve.
        skipped: Keys whose condition evaluated false.
        truncated: Keys not expanded because the depth limit was reached.
        cycles: Cycle paths found during expansion, each closed on its start key.
    """

    nodes: dict[ComponentKey, ResolutionNode] = field(default_factory=dict)
    selection: tuple[ComponentKey, ...] = ()
    missing: set[ComponentKey] = field(default_factory=set)
    skipped: set[ComponentKey] = field(default_factory=set)
    truncated: set[ComponentKey] = field(default_factory=set)
    cycles: list[tuple[ComponentKey, ...]] = field(default_factory=list)

    def __contains__(self, key: ComponentKey) -> bool:
        return key in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, key: ComponentKey) -> ResolutionNode:
        return self.nodes[key]

    def ordered(self) -> list[ResolutionNode]:
        return sorted(self.nodes.values(), key=lambda node: node.order)

    def descriptors(self) -> list[ComponentDescriptor]:
        return [node.descriptor for node in self.ordered()]


class GraphBuilder:
    """Expands a selection into a :class:`ResolutionGraph`."""

    def __init__(
        self,
        store: ComponentStore,
        max_depth: int = DEFAULT_MAX_DEPTH,
        enable_conditional_inclusion: bool = True,
    ):
        self._store = store
        self._max_depth = max_depth
        self._enable_conditional_inclusion = enable_conditional_inclusion

    def build(
        self,
        selection: Iterable[ComponentKey],
        optional_selection: Iterable[ComponentKey],
        context: ResolutionContext,
    ) -> tuple[ResolutionGraph, list[Diagnostic]]:
        """Build the dependency graph for a selection.

        Args:
            selection: Keys the caller requires.
            optional_selection: Keys to include when available.
            context: Resolution context used to evaluate conditions.

        Returns:
            The graph and the diagnostics raised while expanding it.
        """
        run = _BuildRun(self._store, self._max_depth, self._enable_conditional_inclusion, context)
        selection = tuple(selection)
        for key in selection:
            run.visit(key, depth=0, required=True, parent=None)
        for key in optional_selection:
            run.visit(key, depth=0, required=False, parent=None)
        run.graph.selection = selection
        return run.graph, run.finish()


class _BuildRun:
    """State for a single build call."""

    def __init__(
        self,
        store: ComponentStore,
        max_depth: int,
        enable_conditional_inclusion: bool,
        context: ResolutionContext,
    ):
        self._store = store
        self._max_depth = max_depth
        self._enable_conditional_inclusion = enable_conditional_inclusion
        self._context = context
        self._stack: list[ComponentKey] = []
        self._missing_required: dict[ComponentKey, bool] = {}
        self._skipped_reported: set[ComponentKey] = set()
        # Keys cut off by the depth limit: first path seen, and every parent waiting on them
        self._truncated_paths: dict[ComponentKey, tuple[ComponentKey, ...]] = {}
        self._truncated_parents: dict[ComponentKey, list[tuple[ResolutionNode | None, bool]]] = {}
        self._diagnostics: list[Diagnostic] = []
        self.graph = ResolutionGraph()

    def visit(
        self,
        key: ComponentKey,
        depth: int,
        required: bool,
        parent: ResolutionNode | None,
    ) -> None:
        if key in self._stack:
            self._report_cycle(key)
            return

        node = self.graph.nodes.get(key)
        if node is not None:
            if parent is not None:
                parent.resolved_dependencies.append(key)
            if required and not node.required:
                self._promote(node)
            return

        if depth > self._max_depth:
            self._truncated_paths.setdefault(key, tuple(self._stack) + (key,))
            self._truncated_parents.setdefault(key, []).append((parent, required))
            return

        descriptor = self._store.get(key)
        if descriptor is None:
            self.graph.missing.add(key)
            self._missing_required[key] = self._missing_required.get(key, False) or required
            return

        if self._enable_conditional_inclusion and not evaluate(descriptor.condition, self._context):
            self.graph.skipped.add(key)
            if key not in self._skipped_reported:
                self._skipped_reported.add(key)
                self._diagnostics.append(
                    Diagnostic(
                        Severity.INFO,
                        DiagnosticCode.COMPONENT_SKIPPED,
                        f"{key} skipped: condition {descriptor.condition} is false",
                        (key,),
                    )
                )
            return

        node = ResolutionNode(
            descriptor=descriptor,
            order=len(self.graph.nodes),
            depth=depth,
            required=required,
            state=NodeState.VISITING,
        )
        self.graph.nodes[key] = node
        if parent is not None:
            parent.resolved_dependencies.append(key)
        waiting = self._truncated_parents.pop(key, [])
        for waiting_parent, _ in waiting:
            if waiting_parent is not None:
                waiting_parent.resolved_dependencies.append(key)

        self._stack.append(key)
        try:
            for dependency in descriptor.requires:
                self.visit(
                    dependency.key,
                    depth=depth + 1,
                    required=required and dependency.required,
                    parent=node,
                )
        finally:
            self._stack.pop()
        node.state = NodeState.RESOLVED
        if not node.required and any(waiting_required for _, waiting_required in waiting):
            self._promote(node)

    def finish(self) -> list[Diagnostic]:
        for key, waiting in self._truncated_parents.items():
            # Reached again by a shorter path that found it missing or skipped
            if key in self.graph.missing:
                if any(required for _, required in waiting):
                    self._missing_required[key] = True
                continue
            if key in self.graph.skipped:
                continue
            self.graph.truncated.add(key)
            path = self._truncated_paths[key]
            self._diagnostics.append(
                Diagnostic(
                    Severity.ERROR,
                    DiagnosticCode.MAX_DEPTH_EXCEEDED,
                    f"Maximum resolution depth {self._max_depth} exceeded at {key} "
                    f"(path: {' -> '.join(str(k) for k in path)})",
                    path,
                )
            )
        for key, required in self._missing_required.items():
            if required:
                self._diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        DiagnosticCode.MISSING_COMPONENT,
                        f"Component {key} not found",
                        (key,),
                    )
                )
            else:
                self._diagnostics.append(
                    Diagnostic(
                        Severity.WARNING,
                        DiagnosticCode.MISSING_COMPONENT,
                        f"Optional component {key} not found, skipping",
                        (key,),
                    )
                )
        logger.debug(
            "Built graph with %d nodes (%d missing, %d skipped)",
            len(self.graph.nodes),
            len(self.graph.missing),
            len(self.graph.skipped),
        )
        return self._diagnostics

    def _promote(self, node: ResolutionNode) -> None:
        # A component first reached optionally becomes required along with
        # everything it requires.
        node.required = True
        for dependency in node.descriptor.requires:
            if not dependency.required:
                continue
            child = self.graph.nodes.get(dependency.key)
            if child is not None and not child.required:
                self._promote(child)
            elif dependency.key in self._missing_required:
                self._missing_required[dependency.key] = True
            elif dependency.key in self._truncated_parents:
                self._truncated_parents[dependency.key].append((None, True))

    def _report_cycle(self, key: ComponentKey) -> None:
        start = self._stack.index(key)
        cycle = tuple(self._stack[start:]) + (key,)
        self.graph.cycles.append(cycle)
        self._diagnostics.append(
            Diagnostic(
                Severity.ERROR,
                DiagnosticCode.CIRCULAR_DEPENDENCY,
                "Circular dependency detected: " + " -> ".join(str(k) for k in cycle),
                tuple(dict.fromkeys(cycle)),
            )
        )
