"""Caller-facing composition engine.

Ties the phases together: selection -> graph -> validated graph -> ordered
plan -> executed result. The engine holds no process-wide state; every call
works on its own graph built from the store it was given.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from .config import EngineConfig
from .errors import CompositionError, InvalidSelectionError
from .executor import (
    ArtifactProducer,
    Executor,
    ProgressCallback,
    collect_unique,
    dry_run_outcomes,
)
from .graph import GraphBuilder, ResolutionGraph
from .models import (
    CanResolveReport,
    ComponentKey,
    DependencyStrategy,
    Diagnostic,
    DiagnosticCode,
    ExecutionPlan,
    ResolutionContext,
    ResolutionResult,
    ResolutionStatus,
    compute_status,
)
from .planner import Planner
from .store import ComponentStore
from .validator import Validator

logger = logging.getLogger(__name__)

_INCOMPATIBILITY_CODES = (
    DiagnosticCode.FRAMEWORK_INCOMPATIBLE,
    DiagnosticCode.PLATFORM_INCOMPATIBLE,
    DiagnosticCode.CONTEXT_INCOMPATIBLE,
    DiagnosticCode.COMPONENT_CONFLICT,
    DiagnosticCode.VERSION_INCOMPATIBLE,
    DiagnosticCode.CIRCULAR_DEPENDENCY,
    DiagnosticCode.UNRESOLVED_REQUIRED_DEPENDENCY,
)


@dataclass
class _Analysis:
    graph: ResolutionGraph
    diagnostics: list[Diagnostic]
    required_failed: bool


class CompositionEngine:
    """Resolves component selections against a store.

    Args:
        store: Component store consulted while building the graph.
        producer: Artifact producer used by :meth:`resolve`. Only needed for
            real (non dry-run) execution.
        config: Engine configuration; defaults apply when omitted.
    """

    def __init__(
        self,
        store: ComponentStore,
        producer: ArtifactProducer | None = None,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.producer = producer
        self.config = config or EngineConfig()

    async def resolve(
        self,
        selection: Sequence[ComponentKey],
        optional_selection: Sequence[ComponentKey] = (),
        context: ResolutionContext | None = None,
        strategy: DependencyStrategy | None = None,
        *,
        dry_run: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> ResolutionResult:
        """Run the full build, validate, plan and execute pipeline.

        Under the strict strategy, errors found before execution stop the run:
        the plan is returned but no component is produced.

        Raises:
            InvalidSelectionError: If the selection is empty or malformed.
            CompositionError: If real execution is requested without a producer.
        """
        started = time.perf_counter()
        self._check_selection(selection, optional_selection)
        context = context or ResolutionContext()
        strategy = self._strategy(strategy)
        if not dry_run and self.producer is None:
            raise CompositionError("No artifact producer configured for execution")

        logger.info("Resolving %d component(s) with %s strategy", len(selection), strategy.value)
        analysis = self._analyse(selection, optional_selection, context, strategy)
        plan, plan_diagnostics = Planner().plan(analysis.graph)
        diagnostics = analysis.diagnostics + plan_diagnostics
        configuration = self.resolve_configuration(analysis.graph, context)

        if strategy.is_strict and any(d.is_error for d in diagnostics):
            logger.info("Resolution failed before execution with %d error(s)", sum(d.is_error for d in diagnostics))
            resolved = analysis.graph.descriptors()
            return ResolutionResult(
                status=ResolutionStatus.FAILED,
                components=(),
                diagnostics=tuple(diagnostics),
                duration=time.perf_counter() - started,
                timestamp=datetime.now(timezone.utc),
                plan=plan,
                env_vars_required=collect_unique(resolved, "env_vars"),
                post_install_steps=collect_unique(resolved, "post_install_steps"),
                verification_steps=collect_unique(resolved, "verification_steps"),
                configuration=configuration,
            )

        result = await Executor(self.config.max_concurrency).execute(
            plan,
            context,
            self.producer,
            strategy,
            dry_run=dry_run,
            on_progress=on_progress,
            diagnostics=diagnostics,
            required_failed=analysis.required_failed,
            configuration=configuration,
            started=started,
        )
        logger.info(
            "Resolution finished with status %s in %.3fs (%d diagnostics)",
            result.status.value,
            result.duration,
            len(result.diagnostics),
        )
        return result

    def preview(
        self,
        selection: Sequence[ComponentKey],
        context: ResolutionContext | None = None,
        optional_selection: Sequence[ComponentKey] = (),
        strategy: DependencyStrategy | None = None,
    ) -> tuple[ExecutionPlan, ResolutionResult]:
        """Build, validate and plan without executing anything.

        Returns:
            The plan and a result in which every planned step is reported as
            "would execute".
        """
        started = time.perf_counter()
        self._check_selection(selection, optional_selection)
        context = context or ResolutionContext()
        strategy = self._strategy(strategy)

        analysis = self._analyse(selection, optional_selection, context, strategy)
        plan, plan_diagnostics = Planner().plan(analysis.graph)
        diagnostics = tuple(analysis.diagnostics + plan_diagnostics)
        planned = [plan.descriptors[key] for key in plan.order]

        result = ResolutionResult(
            status=compute_status(diagnostics, strategy, analysis.required_failed),
            components=tuple(planned),
            diagnostics=diagnostics,
            duration=time.perf_counter() - started,
            timestamp=datetime.now(timezone.utc),
            plan=plan,
            outcomes=tuple(dry_run_outcomes(plan)),
            env_vars_required=collect_unique(planned, "env_vars"),
            post_install_steps=collect_unique(planned, "post_install_steps"),
            verification_steps=collect_unique(planned, "verification_steps"),
            configuration=self.resolve_configuration(analysis.graph, context),
        )
        return plan, result

    def can_resolve(
        self,
        selection: Sequence[ComponentKey],
        context: ResolutionContext | None = None,
    ) -> CanResolveReport:
        """Cheapest feasibility check: build and validate only."""
        self._check_selection(selection, ())
        context = context or ResolutionContext()
        strategy = self._strategy(None)

        analysis = self._analyse(selection, (), context, strategy)
        missing = tuple(
            key
            for d in analysis.diagnostics
            if d.code is DiagnosticCode.MISSING_COMPONENT and d.is_error
            for key in d.affected_keys
        )
        incompatibilities = tuple(
            d.message
            for d in analysis.diagnostics
            if d.code in _INCOMPATIBILITY_CODES and (d.is_error or d.is_warning)
        )
        ok = not missing and not any(d.is_error for d in analysis.diagnostics)
        return CanResolveReport(ok, missing, incompatibilities, tuple(analysis.diagnostics))

    def resolve_configuration(
        self, graph: ResolutionGraph, context: ResolutionContext
    ) -> dict[str, Any]:
        """Merge context fields, component defaults and user overrides.

        A user override named after a component key (``kind:type:provider``)
        and holding a mapping is merged into that component's configuration;
        every other override lands at the top level.
        """
        configuration: dict[str, Any] = {
            name: value
            for name, value in (
                ("framework", context.framework),
                ("platform", context.platform),
                ("context", context.context),
                ("environment", context.environment),
                ("region", context.region),
            )
            if value is not None
        }
        components: dict[str, dict[str, Any]] = {}
        for descriptor in graph.descriptors():
            component_config = dict(descriptor.default_config)
            override = context.overrides.get(str(descriptor.key))
            if isinstance(override, dict):
                component_config.update(override)
            components[str(descriptor.key)] = component_config

        for name, value in context.overrides.items():
            if name not in components:
                configuration[name] = value
        configuration["components"] = components
        return configuration

    def _analyse(
        self,
        selection: Sequence[ComponentKey],
        optional_selection: Sequence[ComponentKey],
        context: ResolutionContext,
        strategy: DependencyStrategy,
    ) -> _Analysis:
        builder = GraphBuilder(
            self.store,
            max_depth=self.config.max_depth,
            enable_conditional_inclusion=self.config.enable_conditional_inclusion,
        )
        graph, diagnostics = builder.build(selection, optional_selection, context)

        validator = Validator(
            strategy=strategy,
            strict_compatibility=self.config.strict_compatibility,
            enable_version_checks=self.config.enable_version_checks,
            enable_compatibility_checks=self.config.enable_compatibility_checks,
        )
        diagnostics.extend(validator.validate(graph, context))

        requested = set(selection)
        required_failed = any(
            d.code is DiagnosticCode.MISSING_COMPONENT
            and d.is_error
            and requested.intersection(d.affected_keys)
            for d in diagnostics
        )
        return _Analysis(graph, diagnostics, required_failed)

    def _strategy(self, strategy: DependencyStrategy | None) -> DependencyStrategy:
        return strategy if strategy is not None else self.config.strategy

    @staticmethod
    def _check_selection(
        selection: Iterable[ComponentKey], optional_selection: Iterable[ComponentKey]
    ) -> None:
        selection = list(selection)
        if not selection:
            raise InvalidSelectionError("Selection must contain at least one component")
        for key in selection + list(optional_selection):
            if not isinstance(key, ComponentKey):
                raise InvalidSelectionError(f"Selection entries must be component keys, got {key!r}")
