"""Core data models for the composition engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from .predicates import Predicate

DEFAULT_PRIORITY = 50

# Seconds assumed for a step when the descriptor gives no estimate
DEFAULT_ESTIMATED_TIME = {"fragment": 2.0, "service": 5.0}


class ComponentKind(str, Enum):
    """Family a component belongs to."""

    FRAGMENT = "fragment"
    SERVICE = "service"


class Severity(str, Enum):
    """Severity of a diagnostic."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DiagnosticCode(str, Enum):
    """Stable codes attached to every diagnostic."""

    MISSING_COMPONENT = "MissingComponent"
    CIRCULAR_DEPENDENCY = "CircularDependency"
    MAX_DEPTH_EXCEEDED = "MaxDepthExceeded"
    VERSION_INCOMPATIBLE = "VersionIncompatible"
    FRAMEWORK_INCOMPATIBLE = "FrameworkIncompatible"
    PLATFORM_INCOMPATIBLE = "PlatformIncompatible"
    CONTEXT_INCOMPATIBLE = "ContextIncompatible"
    COMPONENT_CONFLICT = "ComponentConflict"
    UNRESOLVED_REQUIRED_DEPENDENCY = "UnresolvedRequiredDependency"
    PRODUCER_FAILURE = "ProducerFailure"
    MALFORMED_DESCRIPTOR = "ValidationMalformedDescriptor"
    COMPONENT_SKIPPED = "ComponentSkipped"
    EXECUTION_CANCELLED = "ExecutionCancelled"


class DependencyStrategy(str, Enum):
    """How dependency and execution failures are handled."""

    STRICT = "strict"
    LENIENT = "lenient"
    BEST_EFFORT = "best-effort"

    @property
    def is_strict(self) -> bool:
        return self is DependencyStrategy.STRICT


class ResolutionStatus(str, Enum):
    """Overall status of a resolution."""

    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Outcome of a single execution step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    WOULD_EXECUTE = "would_execute"


@dataclass(frozen=True, order=True)
class ComponentKey:
    """Identity of a component family: (kind, type, provider)."""

    kind: ComponentKind
    type: str
    provider: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.type}:{self.provider}"

    @classmethod
    def service(cls, type_: str, provider: str) -> "ComponentKey":
        return cls(ComponentKind.SERVICE, type_, provider)

    @classmethod
    def fragment(cls, type_: str, provider: str) -> "ComponentKey":
        return cls(ComponentKind.FRAGMENT, type_, provider)

    @classmethod
    def parse(cls, text: str) -> "ComponentKey":
        """Parse ``kind:type:provider`` or ``type:provider`` (a service).

        Raises:
            ValueError: If the text does not have two or three non-empty parts,
                or names an unknown kind.
        """
        parts = [part.strip() for part in text.split(":")]
        if len(parts) == 2:
            parts.insert(0, ComponentKind.SERVICE.value)
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Invalid component key: {text!r}")
        return cls(ComponentKind(parts[0]), parts[1], parts[2])


@dataclass(frozen=True)
class Dependency:
    """A ``requires`` edge from one component to another component family."""

    key: ComponentKey
    version_requirement: str | None = None
    required: bool = True


@dataclass(frozen=True)
class Compatibility:
    """Targets a component supports. An empty set means no restriction."""

    frameworks: frozenset[str] = frozenset()
    platforms: frozenset[str] = frozenset()
    contexts: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ComponentDescriptor:
    """One version of a component, as served by a component store."""

    key: ComponentKey
    version: str
    requires: tuple[Dependency, ...] = ()
    conflicts: tuple[ComponentKey, ...] = ()
    compatibility: Compatibility = field(default_factory=Compatibility)
    condition: Predicate | None = None
    priority: int = DEFAULT_PRIORITY
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False)
    description: str = ""
    default_config: Mapping[str, Any] = field(default_factory=dict, compare=False)
    env_vars: tuple[str, ...] = ()
    estimated_time: float | None = None
    post_install_steps: tuple[str, ...] = ()
    verification_steps: tuple[str, ...] = ()

    @property
    def expected_time(self) -> float:
        """Estimated seconds to produce this component."""
        if self.estimated_time is not None:
            return self.estimated_time
        return DEFAULT_ESTIMATED_TIME[self.key.kind.value]


@dataclass(frozen=True)
class ResolutionContext:
    """Per-run targets and user overrides. Immutable once constructed."""

    framework: str | None = None
    platform: str | None = None
    context: str | None = None
    environment: str = "development"
    region: str | None = None
    overrides: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def lookup(self, name: str) -> Any:
        """Return a context field by name, falling back to user overrides."""
        if name in ("framework", "platform", "context", "environment", "region"):
            return getattr(self, name)
        return self.overrides.get(name)


@dataclass(frozen=True)
class Diagnostic:
    """A single issue found while resolving or executing."""

    severity: Severity
    code: DiagnosticCode
    message: str
    affected_keys: tuple[ComponentKey, ...] = ()

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    @property
    def is_warning(self) -> bool:
        return self.severity is Severity.WARNING


@dataclass(frozen=True)
class ExecutionStep:
    """A planned invocation of the artifact producer for one component."""

    id: str
    component_key: ComponentKey
    depends_on: tuple[str, ...]
    priority: int
    parallelizable: bool
    batch: int
    required: bool = True
    estimated_time: float = 0.0


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered steps grouped into batches, with the descriptors to produce."""

    steps: tuple[ExecutionStep, ...]
    batches: tuple[tuple[str, ...], ...]
    descriptors: Mapping[ComponentKey, ComponentDescriptor] = field(compare=False)

    @property
    def order(self) -> list[ComponentKey]:
        return [step.component_key for step in self.steps]

    @property
    def estimated_duration(self) -> float:
        """Sum of the step estimates, in seconds."""
        return sum(step.estimated_time for step in self.steps)

    def step(self, step_id: str) -> ExecutionStep:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def batch_steps(self) -> list[list[ExecutionStep]]:
        by_id = {step.id: step for step in self.steps}
        return [[by_id[step_id] for step_id in batch] for batch in self.batches]


@dataclass
class ProduceOutcome:
    """What the artifact producer reports for one component."""

    success: bool
    files_affected: list[str] = field(default_factory=list)
    dependencies_added: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class StepOutcome:
    """Execution outcome for one planned step."""

    step_id: str
    component_key: ComponentKey
    status: StepStatus
    files_affected: tuple[str, ...] = ()
    dependencies_added: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolutionResult:
    """Final artifact of a resolution call. Never mutated after return."""

    status: ResolutionStatus
    components: tuple[ComponentDescriptor, ...]
    diagnostics: tuple[Diagnostic, ...]
    duration: float
    timestamp: datetime
    plan: ExecutionPlan | None = None
    outcomes: tuple[StepOutcome, ...] = ()
    files_affected: tuple[str, ...] = ()
    dependencies_added: tuple[str, ...] = ()
    env_vars_required: tuple[str, ...] = ()
    post_install_steps: tuple[str, ...] = ()
    verification_steps: tuple[str, ...] = ()
    configuration: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_warning]

    def by_code(self, code: DiagnosticCode) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.code is code]


@dataclass(frozen=True)
class CanResolveReport:
    """Cheap feasibility check: build and validate only."""

    ok: bool
    missing: tuple[ComponentKey, ...] = ()
    incompatibilities: tuple[str, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()


def compute_status(
    diagnostics: list[Diagnostic] | tuple[Diagnostic, ...],
    strategy: DependencyStrategy,
    required_failed: bool = False,
) -> ResolutionStatus:
    """Derive the overall status from accumulated diagnostics.

    Args:
        diagnostics: Every diagnostic produced by the run.
        strategy: The dependency strategy in effect.
        required_failed: Whether a required component failed outright.

    Returns:
        ``failed`` on any error under the strict strategy or on a required
        failure, ``warning`` when warnings or tolerated errors remain,
        ``success`` otherwise.
    """
    has_errors = any(d.is_error for d in diagnostics)
    if required_failed or (has_errors and strategy.is_strict):
        return ResolutionStatus.FAILED
    if has_errors or any(d.is_warning for d in diagnostics):
        return ResolutionStatus.WARNING
    return ResolutionStatus.SUCCESS
