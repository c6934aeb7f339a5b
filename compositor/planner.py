"""Ordering of a validated graph into a batched execution plan."""

import logging

from .graph import ResolutionGraph, ResolutionNode
from .models import (
    ComponentKey,
    Diagnostic,
    DiagnosticCode,
    ExecutionPlan,
    ExecutionStep,
    Severity,
)

logger = logging.getLogger(__name__)


def step_id(key: ComponentKey) -> str:
    return str(key)


class Planner:
    """Topologically sorts a graph into batches of independent steps."""

    def plan(self, graph: ResolutionGraph) -> tuple[ExecutionPlan, list[Diagnostic]]:
        """Order the graph dependency-first.

        Kahn's algorithm is run in rounds. Every node whose dependencies have
        all been placed forms the next batch; within a batch nodes are ordered
        by descending priority, then by the order they were discovered. A
        batch only starts once the whole previous batch is done.

        Args:
            graph: The validated graph.

        Returns:
            The plan and, if a cycle is still present, a diagnostic naming
            the nodes that could not be placed.
        """
        nodes = graph.nodes
        remaining: dict[ComponentKey, set[ComponentKey]] = {
            key: {dep for dep in node.resolved_dependencies if dep in nodes}
            for key, node in nodes.items()
        }

        batches: list[list[ResolutionNode]] = []
        ready = self._ready(remaining, nodes)
        while ready:
            batches.append(ready)
            for node in ready:
                del remaining[node.key]
            placed = {node.key for node in ready}
            for dependencies in remaining.values():
                dependencies.difference_update(placed)
            ready = self._ready(remaining, nodes)

        diagnostics: list[Diagnostic] = []
        if remaining:
            stuck = tuple(sorted(remaining, key=lambda key: nodes[key].order))
            diagnostics.append(
                Diagnostic(
                    Severity.ERROR,
                    DiagnosticCode.CIRCULAR_DEPENDENCY,
                    "Unresolvable dependency cycle among: "
                    + ", ".join(str(key) for key in stuck),
                    stuck,
                )
            )

        steps: list[ExecutionStep] = []
        for batch_index, batch in enumerate(batches):
            parallelizable = len(batch) > 1
            for node in batch:
                steps.append(
                    ExecutionStep(
                        id=step_id(node.key),
                        component_key=node.key,
                        depends_on=tuple(
                            step_id(dep)
                            for dep in dict.fromkeys(node.resolved_dependencies)
                            if dep in nodes and dep != node.key
                        ),
                        priority=node.descriptor.priority,
                        parallelizable=parallelizable,
                        batch=batch_index,
                        required=node.required,
                        estimated_time=node.descriptor.expected_time,
                    )
                )

        plan = ExecutionPlan(
            steps=tuple(steps),
            batches=tuple(tuple(step_id(node.key) for node in batch) for batch in batches),
            descriptors={node.key: node.descriptor for batch in batches for node in batch},
        )
        logger.debug("Planned %d steps in %d batches", len(steps), len(batches))
        return plan, diagnostics

    @staticmethod
    def _ready(
        remaining: dict[ComponentKey, set[ComponentKey]],
        nodes: dict[ComponentKey, ResolutionNode],
    ) -> list[ResolutionNode]:
        ready = [nodes[key] for key, dependencies in remaining.items() if not dependencies]
        return sorted(ready, key=lambda node: (-node.descriptor.priority, node.order))
