"""FastAPI web application for Compositor."""

from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from compositor.config import EngineConfig
from compositor.engine import CompositionEngine
from compositor.errors import CompositionError
from compositor.models import ComponentKey, DependencyStrategy, ResolutionContext
from compositor.report import can_resolve_to_dict, plan_to_dict, result_to_dict
from compositor.store import catalog_from_data

app = FastAPI(
    title="Compositor",
    description="Resolve component selections into ordered execution plans",
    version="0.1.0",
)


class ContextModel(BaseModel):
    """Resolution context supplied by the client."""
    framework: Optional[str] = None
    platform: Optional[str] = None
    context: Optional[str] = None
    environment: str = "development"
    region: Optional[str] = None
    overrides: dict[str, Any] = Field(default_factory=dict)


class SelectionRequest(BaseModel):
    """Request model shared by every endpoint."""
    catalog: list[dict[str, Any]]
    select: list[str]
    optional: list[str] = Field(default_factory=list)
    context: ContextModel = Field(default_factory=ContextModel)
    strategy: Optional[DependencyStrategy] = None
    strict_compatibility: bool = False
    max_depth: int = 10


class ResolveResponse(BaseModel):
    """Response model for resolve and preview."""
    status: str
    components: list[dict]
    diagnostics: list[dict]
    plan: Optional[dict] = None
    outcomes: list[dict]
    files_affected: list[str]
    dependencies_added: list[str]
    env_vars_required: list[str]
    post_install_steps: list[str]
    verification_steps: list[str]
    configuration: dict
    duration: float
    timestamp: str


class CanResolveResponse(BaseModel):
    """Response model for the feasibility check."""
    ok: bool
    missing: list[str]
    incompatibilities: list[str]
    diagnostics: list[dict]


def _engine(request: SelectionRequest) -> CompositionEngine:
    try:
        store = catalog_from_data(request.catalog)
        config = EngineConfig(
            strategy=request.strategy or DependencyStrategy.STRICT,
            strict_compatibility=request.strict_compatibility,
            max_depth=request.max_depth,
        )
    except CompositionError as e:
        raise HTTPException(status_code=400, detail=f"Invalid catalog: {e}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid settings: {e}")
    return CompositionEngine(store, config=config)


def _keys(values: list[str]) -> list[ComponentKey]:
    try:
        return [ComponentKey.parse(value) for value in values]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _context(model: ContextModel) -> ResolutionContext:
    return ResolutionContext(**model.model_dump())


@app.post("/api/resolve", response_model=ResolveResponse)
async def resolve_selection(request: SelectionRequest):
    """Resolve a selection. Always a dry run: the server never writes files."""
    engine = _engine(request)
    try:
        result = await engine.resolve(
            _keys(request.select),
            _keys(request.optional),
            _context(request.context),
            dry_run=True,
        )
    except CompositionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result_to_dict(result)


@app.post("/api/preview", response_model=ResolveResponse)
async def preview_selection(request: SelectionRequest):
    """Build, validate and plan a selection."""
    engine = _engine(request)
    try:
        plan, result = engine.preview(
            _keys(request.select),
            _context(request.context),
            _keys(request.optional),
        )
    except CompositionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    payload = result_to_dict(result)
    payload["plan"] = plan_to_dict(plan)
    return payload


@app.post("/api/can-resolve", response_model=CanResolveResponse)
async def can_resolve_selection(request: SelectionRequest):
    """Check whether a selection can be resolved."""
    engine = _engine(request)
    try:
        report = engine.can_resolve(_keys(request.select), _context(request.context))
    except CompositionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return can_resolve_to_dict(report)
