"""Validation of a fully built dependency graph."""

import logging

from packaging.version import InvalidVersion

from .graph import ResolutionGraph, ResolutionNode
from .models import (
    ComponentKey,
    DependencyStrategy,
    Diagnostic,
    DiagnosticCode,
    ResolutionContext,
    Severity,
)
from .versions import is_valid_requirement, parse_version, satisfies

logger = logging.getLogger(__name__)

_COMPATIBILITY_DIMENSIONS = (
    ("frameworks", "framework", DiagnosticCode.FRAMEWORK_INCOMPATIBLE, "framework"),
    ("platforms", "platform", DiagnosticCode.PLATFORM_INCOMPATIBLE, "platform"),
    ("contexts", "context", DiagnosticCode.CONTEXT_INCOMPATIBLE, "runtime context"),
)


class Validator:
    """Checks a graph for compatibility, conflicts and version problems.

    Every check runs even when an earlier one reports errors; the graph is
    never modified.
    """

    def __init__(
        self,
        strategy: DependencyStrategy = DependencyStrategy.STRICT,
        strict_compatibility: bool = False,
        enable_version_checks: bool = True,
        enable_compatibility_checks: bool = True,
    ):
        self.strategy = strategy
        self.strict_compatibility = strict_compatibility
        self.enable_version_checks = enable_version_checks
        self.enable_compatibility_checks = enable_compatibility_checks

    def validate(self, graph: ResolutionGraph, context: ResolutionContext) -> list[Diagnostic]:
        """Run every check against the graph.

        Args:
            graph: Graph produced by the graph builder.
            context: The resolution context.

        Returns:
            Diagnostics from all checks, in check order.
        """
        nodes = graph.ordered()
        diagnostics: list[Diagnostic] = []

        diagnostics.extend(self._check_descriptors(nodes))
        if self.enable_compatibility_checks:
            diagnostics.extend(self._check_compatibility(nodes, context))
        diagnostics.extend(self._check_conflicts(nodes))
        if self.enable_version_checks:
            diagnostics.extend(self._check_versions(graph, nodes))
        diagnostics.extend(self._check_unresolved(graph, nodes))

        logger.debug("Validation produced %d diagnostics", len(diagnostics))
        return diagnostics

    def _check_descriptors(self, nodes: list[ResolutionNode]) -> list[Diagnostic]:
        diagnostics = []
        for node in nodes:
            try:
                parse_version(node.descriptor.version)
            except InvalidVersion:
                diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        DiagnosticCode.MALFORMED_DESCRIPTOR,
                        f"{node.key} has an invalid version {node.descriptor.version!r}",
                        (node.key,),
                    )
                )
            for dependency in node.descriptor.requires:
                if not is_valid_requirement(dependency.version_requirement):
                    diagnostics.append(
                        Diagnostic(
                            Severity.ERROR,
                            DiagnosticCode.MALFORMED_DESCRIPTOR,
                            f"{node.key} declares an invalid version requirement "
                            f"{dependency.version_requirement!r} on {dependency.key}",
                            (node.key, dependency.key),
                        )
                    )
        return diagnostics

    def _check_compatibility(
        self, nodes: list[ResolutionNode], context: ResolutionContext
    ) -> list[Diagnostic]:
        severity = Severity.ERROR if self.strict_compatibility else Severity.WARNING
        diagnostics = []
        for node in nodes:
            compatibility = node.descriptor.compatibility
            for attribute, context_field, code, label in _COMPATIBILITY_DIMENSIONS:
                supported = getattr(compatibility, attribute)
                target = getattr(context, context_field)
                if not supported or target is None or target in supported:
                    continue
                diagnostics.append(
                    Diagnostic(
                        severity,
                        code,
                        f"{node.key} may not be compatible with {label} {target!r} "
                        f"(supports: {', '.join(sorted(supported))})",
                        (node.key,),
                    )
                )
        return diagnostics

    def _check_conflicts(self, nodes: list[ResolutionNode]) -> list[Diagnostic]:
        diagnostics = []
        for index, first in enumerate(nodes):
            for second in nodes[index + 1:]:
                if (
                    second.key in first.descriptor.conflicts
                    or first.key in second.descriptor.conflicts
                ):
                    diagnostics.append(
                        Diagnostic(
                            Severity.ERROR,
                            DiagnosticCode.COMPONENT_CONFLICT,
                            f"{first.key} conflicts with {second.key}",
                            (first.key, second.key),
                        )
                    )
        return diagnostics

    def _check_versions(
        self, graph: ResolutionGraph, nodes: list[ResolutionNode]
    ) -> list[Diagnostic]:
        diagnostics = []
        for node in nodes:
            for dependency in node.descriptor.requires:
                target = graph.nodes.get(dependency.key)
                if target is None or dependency.version_requirement is None:
                    continue
                try:
                    compatible = satisfies(
                        target.descriptor.version, dependency.version_requirement
                    )
                except InvalidVersion:
                    # Reported by the descriptor check
                    continue
                if not compatible:
                    diagnostics.append(
                        Diagnostic(
                            Severity.ERROR,
                            DiagnosticCode.VERSION_INCOMPATIBLE,
                            f"{node.key} requires {dependency.key} "
                            f"{dependency.version_requirement}, available "
                            f"{target.descriptor.version}",
                            (node.key, dependency.key),
                        )
                    )
        return diagnostics

    def _check_unresolved(
        self, graph: ResolutionGraph, nodes: list[ResolutionNode]
    ) -> list[Diagnostic]:
        severity = Severity.ERROR if self.strategy.is_strict else Severity.WARNING
        already_reported: set[ComponentKey] = graph.missing | graph.truncated
        diagnostics = []
        for node in nodes:
            for dependency in node.descriptor.requires:
                if not dependency.required:
                    continue
                if dependency.key in graph.nodes or dependency.key in already_reported:
                    continue
                diagnostics.append(
                    Diagnostic(
                        severity,
                        DiagnosticCode.UNRESOLVED_REQUIRED_DEPENDENCY,
                        f"{node.key} requires {dependency.key}, which was not resolved",
                        (node.key, dependency.key),
                    )
                )
        return diagnostics
