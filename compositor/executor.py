"""Execution of a plan against an artifact producer."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Protocol

from .models import (
    ComponentDescriptor,
    DependencyStrategy,
    Diagnostic,
    DiagnosticCode,
    ExecutionPlan,
    ExecutionStep,
    ProduceOutcome,
    ResolutionContext,
    ResolutionResult,
    Severity,
    StepOutcome,
    StepStatus,
    compute_status,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4

ProgressCallback = Callable[[ExecutionStep, StepStatus], None]


class ArtifactProducer(Protocol):
    """Turns a resolved component into files. Invoked once per planned step."""

    async def produce(
        self,
        descriptor: ComponentDescriptor,
        context: ResolutionContext,
        dry_run: bool,
    ) -> ProduceOutcome: ...


def dry_run_outcomes(plan: ExecutionPlan) -> list[StepOutcome]:
    """Report every planned step as one that would execute."""
    return [
        StepOutcome(step.id, step.component_key, StepStatus.WOULD_EXECUTE)
        for step in plan.steps
    ]


def collect_unique(descriptors: Iterable[ComponentDescriptor], attribute: str) -> tuple[str, ...]:
    """Gather a per-descriptor string list in order, dropping repeats."""
    return tuple(
        dict.fromkeys(item for descriptor in descriptors for item in getattr(descriptor, attribute))
    )


class _StepRun:
    """What one step produced, before it is merged into the run."""

    def __init__(
        self,
        outcome: StepOutcome,
        diagnostics: list[Diagnostic],
        fatal: bool = False,
    ):
        self.outcome = outcome
        self.diagnostics = diagnostics
        self.fatal = fatal


class Executor:
    """Walks plan batches, invoking the producer with bounded concurrency."""

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        """Initialize the executor.

        Args:
            max_concurrency: Upper bound on concurrent producer calls within a batch.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency

    async def execute(
        self,
        plan: ExecutionPlan,
        context: ResolutionContext,
        producer: ArtifactProducer,
        strategy: DependencyStrategy = DependencyStrategy.STRICT,
        *,
        dry_run: bool = False,
        on_progress: ProgressCallback | None = None,
        diagnostics: Iterable[Diagnostic] = (),
        required_failed: bool = False,
        configuration: Mapping[str, Any] | None = None,
        started: float | None = None,
    ) -> ResolutionResult:
        """Execute a plan and aggregate the outcome.

        Args:
            plan: The plan produced by the planner.
            context: Resolution context handed to the producer.
            producer: The artifact producer.
            strategy: Failure handling policy.
            dry_run: Report steps as "would execute" without calling the producer.
            on_progress: Called with each step and its status at every batch barrier.
            diagnostics: Diagnostics from earlier phases, kept at the front of the result.
            required_failed: Whether an earlier phase already lost a required component.
            configuration: Resolved configuration to attach to the result.
            started: ``time.perf_counter()`` value the duration is measured from.

        Returns:
            The final resolution result.
        """
        start = started if started is not None else time.perf_counter()
        all_diagnostics = list(diagnostics)
        outcomes: dict[str, StepOutcome] = {}
        cancelled = False

        for batch in plan.batch_steps():
            if cancelled:
                for step in batch:
                    outcomes[step.id] = StepOutcome(step.id, step.component_key, StepStatus.CANCELLED)
            elif dry_run:
                for step in batch:
                    outcomes[step.id] = StepOutcome(step.id, step.component_key, StepStatus.WOULD_EXECUTE)
            else:
                runs = await self._run_batch(batch, plan, context, producer, strategy)
                for run in runs:
                    outcomes[run.outcome.step_id] = run.outcome
                    all_diagnostics.extend(run.diagnostics)
                if any(run.fatal for run in runs):
                    cancelled = True
                    required_failed = True
                    logger.warning("Required component failed under strict strategy, stopping execution")

            self._notify(on_progress, batch, outcomes)

        ordered = [outcomes[step.id] for step in plan.steps]
        cancelled_keys = tuple(
            outcome.component_key for outcome in ordered if outcome.status is StepStatus.CANCELLED
        )
        if cancelled_keys:
            all_diagnostics.append(
                Diagnostic(
                    Severity.INFO,
                    DiagnosticCode.EXECUTION_CANCELLED,
                    f"{len(cancelled_keys)} step(s) not started after a required failure: "
                    + ", ".join(str(key) for key in cancelled_keys),
                    cancelled_keys,
                )
            )

        planned = [plan.descriptors[step.component_key] for step in plan.steps]
        completed = (StepStatus.SUCCEEDED, StepStatus.WOULD_EXECUTE)
        components = tuple(
            plan.descriptors[outcome.component_key] for outcome in ordered if outcome.status in completed
        )

        return ResolutionResult(
            status=compute_status(all_diagnostics, strategy, required_failed),
            components=components,
            diagnostics=tuple(all_diagnostics),
            duration=time.perf_counter() - start,
            timestamp=datetime.now(timezone.utc),
            plan=plan,
            outcomes=tuple(ordered),
            files_affected=tuple(dict.fromkeys(f for o in ordered for f in o.files_affected)),
            dependencies_added=tuple(dict.fromkeys(d for o in ordered for d in o.dependencies_added)),
            env_vars_required=collect_unique(planned, "env_vars"),
            post_install_steps=collect_unique(planned, "post_install_steps"),
            verification_steps=collect_unique(planned, "verification_steps"),
            configuration=dict(configuration or {}),
        )

    async def _run_batch(
        self,
        batch: list[ExecutionStep],
        plan: ExecutionPlan,
        context: ResolutionContext,
        producer: ArtifactProducer,
        strategy: DependencyStrategy,
    ) -> list[_StepRun]:
        semaphore = asyncio.Semaphore(min(len(batch), self.max_concurrency))
        cancel = asyncio.Event()

        async def run_step(step: ExecutionStep) -> _StepRun:
            async with semaphore:
                # Queued siblings do not start once a fatal failure is seen
                if cancel.is_set():
                    return _StepRun(StepOutcome(step.id, step.component_key, StepStatus.CANCELLED), [])
                run = await self._run_step(step, plan.descriptors[step.component_key], context, producer, strategy)
                if run.fatal:
                    cancel.set()
                return run

        return list(await asyncio.gather(*(run_step(step) for step in batch)))

    async def _run_step(
        self,
        step: ExecutionStep,
        descriptor: ComponentDescriptor,
        context: ResolutionContext,
        producer: ArtifactProducer,
        strategy: DependencyStrategy,
    ) -> _StepRun:
        try:
            produced = await producer.produce(descriptor, context, False)
            reason = produced.error
        except Exception as e:
            logger.warning("Producer raised for %s: %s", step.component_key, e)
            produced = ProduceOutcome(success=False)
            reason = str(e) or type(e).__name__

        diagnostics = list(produced.diagnostics)
        if produced.success:
            status = StepStatus.SUCCEEDED
            fatal = False
        else:
            status = StepStatus.FAILED
            fatal = step.required and strategy.is_strict
            label = "Required" if step.required else "Optional"
            message = f"{label} component {step.component_key} failed to produce"
            if reason:
                message += f": {reason}"
            diagnostics.append(
                Diagnostic(
                    Severity.ERROR if step.required else Severity.WARNING,
                    DiagnosticCode.PRODUCER_FAILURE,
                    message,
                    (step.component_key,),
                )
            )

        return _StepRun(
            StepOutcome(
                step.id,
                step.component_key,
                status,
                tuple(produced.files_affected),
                tuple(produced.dependencies_added),
            ),
            diagnostics,
            fatal,
        )

    @staticmethod
    def _notify(
        on_progress: ProgressCallback | None,
        batch: list[ExecutionStep],
        outcomes: dict[str, StepOutcome],
    ) -> None:
        if on_progress is None:
            return
        for step in batch:
            on_progress(step, outcomes[step.id].status)
