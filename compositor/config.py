"""Engine configuration."""

from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .errors import CompositionError
from .models import DependencyStrategy


class EngineConfig(BaseModel):
    """Settings that shape how a resolution behaves."""

    strategy: DependencyStrategy = DependencyStrategy.STRICT
    strict_compatibility: bool = False
    max_depth: int = Field(default=10, ge=1)
    max_concurrency: int = Field(default=4, ge=1)
    enable_version_checks: bool = True
    enable_compatibility_checks: bool = True
    enable_conditional_inclusion: bool = True

    model_config = {"frozen": True, "extra": "forbid"}


def load_config(path: str | Path) -> EngineConfig:
    """Load engine configuration from a JSON file.

    Args:
        path: Location of the JSON document.

    Returns:
        The validated configuration.

    Raises:
        CompositionError: If the file is missing or does not validate.
    """
    path_obj = Path(path)
    if not path_obj.exists():
        raise CompositionError(f"Config file {path} not found")
    try:
        return EngineConfig.model_validate_json(path_obj.read_text())
    except ValidationError as e:
        raise CompositionError(f"Invalid config file {path}: {e}") from e
