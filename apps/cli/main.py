"""CLI application for Compositor."""

import asyncio
import json
import logging
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from compositor.config import EngineConfig, load_config
from compositor.engine import CompositionEngine
from compositor.errors import CompositionError
from compositor.models import (
    ComponentKey,
    DependencyStrategy,
    ExecutionPlan,
    ResolutionContext,
    ResolutionResult,
    ResolutionStatus,
    Severity,
    StepStatus,
)
from compositor.producers import FileArtifactProducer
from compositor.report import can_resolve_to_dict, plan_to_dict, result_to_dict
from compositor.store import fetch_catalog, load_catalog

console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLES = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "dim",
}

class OutputFormat(str, Enum):
    TABLE = "table"
    JSON = "json"


STATUS_STYLES = {
    ResolutionStatus.SUCCESS: "green",
    ResolutionStatus.WARNING: "yellow",
    ResolutionStatus.FAILED: "red",
}


def load_store(catalog: str):
    """Load a catalog from a file path or an http(s) URL."""
    if catalog.startswith(("http://", "https://")):
        return fetch_catalog(catalog)
    return load_catalog(catalog)


def parse_keys(values: list[str] | None) -> list[ComponentKey]:
    keys = []
    for value in values or []:
        try:
            keys.append(ComponentKey.parse(value))
        except ValueError as e:
            raise CompositionError(str(e)) from e
    return keys


def parse_overrides(values: list[str] | None) -> dict:
    """Parse ``name=value`` pairs; values are read as JSON when possible."""
    overrides = {}
    for value in values or []:
        if "=" not in value:
            raise CompositionError(f"Invalid override {value!r}, expected name=value")
        name, raw = value.split("=", 1)
        try:
            overrides[name.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            overrides[name.strip()] = raw
    return overrides


def build_config(
    config_path: str | None,
    strategy: DependencyStrategy | None,
    strict_compat: bool,
    max_depth: int | None,
    concurrency: int | None,
) -> EngineConfig:
    config = load_config(config_path) if config_path else EngineConfig()
    updates = {}
    if strategy is not None:
        updates["strategy"] = strategy
    if strict_compat:
        updates["strict_compatibility"] = True
    if max_depth is not None:
        updates["max_depth"] = max_depth
    if concurrency is not None:
        updates["max_concurrency"] = concurrency
    return EngineConfig.model_validate({**config.model_dump(), **updates})


def format_plan_table(plan: ExecutionPlan, result: ResolutionResult | None = None) -> Table:
    """Render the plan as a table, one row per step."""
    statuses = {outcome.step_id: outcome.status for outcome in result.outcomes} if result else {}
    table = Table(title="Execution plan")
    table.add_column("#", justify="right")
    table.add_column("Batch", justify="right")
    table.add_column("Component")
    table.add_column("Version")
    table.add_column("Status")
    for index, step in enumerate(plan.steps, start=1):
        status = statuses.get(step.id)
        table.add_row(
            str(index),
            str(step.batch + 1),
            str(step.component_key),
            plan.descriptors[step.component_key].version,
            status.value if isinstance(status, StepStatus) else "-",
        )
    return table


def print_result(result: ResolutionResult) -> None:
    if result.plan is not None and result.plan.steps:
        console.print(format_plan_table(result.plan, result))
        console.print(f"Estimated duration: {result.plan.estimated_duration:.0f}s")
    for diagnostic in result.diagnostics:
        console.print(
            f"[{diagnostic.severity.value}] {diagnostic.code.value}: {diagnostic.message}",
            style=SEVERITY_STYLES[diagnostic.severity],
            markup=False,
        )
    for path in result.files_affected:
        console.print(f"  {path}", markup=False)
    if result.post_install_steps:
        console.print("Post-install steps:")
        for index, step in enumerate(result.post_install_steps, start=1):
            console.print(f"  {index}. {step}", markup=False)
    console.print(
        f"Status: {result.status.value}",
        style=STATUS_STYLES[result.status],
        markup=False,
    )


def make_context(
    framework: str | None,
    platform: str | None,
    runtime: str | None,
    environment: str,
    region: str | None,
    overrides: list[str] | None,
) -> ResolutionContext:
    return ResolutionContext(
        framework=framework,
        platform=platform,
        context=runtime,
        environment=environment,
        region=region,
        overrides=parse_overrides(overrides),
    )


app = typer.Typer(
    name="compositor",
    help="Compositor - Resolve component selections into ordered execution plans",
    add_completion=False,
)

CatalogArgument = typer.Argument(help="Path or URL of a JSON component catalog")
SelectOption = typer.Option(..., "--select", "-s", help="Component key kind:type:provider (repeatable)")
OptionalOption = typer.Option(None, "--optional", help="Optional component key (repeatable)")
FrameworkOption = typer.Option(None, "--framework", help="Target framework")
PlatformOption = typer.Option(None, "--platform", help="Target platform")
RuntimeOption = typer.Option(None, "--runtime", help="Target runtime context (web, server, native)")
EnvOption = typer.Option("development", "--env", help="Environment name")
RegionOption = typer.Option(None, "--region", help="Region")
SetOption = typer.Option(None, "--set", help="User override name=value (repeatable)")
StrategyOption = typer.Option(None, "--strategy", help="Dependency strategy")
StrictCompatOption = typer.Option(False, "--strict-compat", help="Treat incompatibilities as errors")
MaxDepthOption = typer.Option(None, "--max-depth", help="Maximum dependency depth")
ConcurrencyOption = typer.Option(None, "--concurrency", help="Maximum concurrent producer calls")
ConfigOption = typer.Option(None, "--config", help="JSON engine configuration file")
FormatOption = typer.Option(OutputFormat.TABLE, "--format", help="Output format")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    """Compositor - Resolve component selections into ordered execution plans."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.command()
def resolve(
    catalog: str = CatalogArgument,
    select: list[str] = SelectOption,
    optional: list[str] | None = OptionalOption,
    framework: str | None = FrameworkOption,
    platform: str | None = PlatformOption,
    runtime: str | None = RuntimeOption,
    environment: str = EnvOption,
    region: str | None = RegionOption,
    overrides: list[str] | None = SetOption,
    strategy: DependencyStrategy | None = StrategyOption,
    strict_compat: bool = StrictCompatOption,
    max_depth: int | None = MaxDepthOption,
    concurrency: int | None = ConcurrencyOption,
    config_path: str | None = ConfigOption,
    out: str | None = typer.Option(None, "--out", "-o", help="Output directory for produced files"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan and report without writing files"),
    format_type: OutputFormat = FormatOption,
) -> None:
    """Resolve a selection and produce its components."""
    try:
        if not dry_run and not out:
            console.print("Error: Specify --out or --dry-run", style="red")
            raise typer.Exit(1)

        store = load_store(catalog)
        config = build_config(config_path, strategy, strict_compat, max_depth, concurrency)
        producer = FileArtifactProducer(Path(out)) if out else None
        engine = CompositionEngine(store, producer, config)
        context = make_context(framework, platform, runtime, environment, region, overrides)

        result = asyncio.run(
            engine.resolve(parse_keys(select), parse_keys(optional), context, dry_run=dry_run)
        )

        if format_type is OutputFormat.JSON:
            typer.echo(json.dumps(result_to_dict(result), indent=2, default=str))
        else:
            print_result(result)

        if result.status is ResolutionStatus.FAILED:
            raise typer.Exit(1)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)


@app.command()
def preview(
    catalog: str = CatalogArgument,
    select: list[str] = SelectOption,
    optional: list[str] | None = OptionalOption,
    framework: str | None = FrameworkOption,
    platform: str | None = PlatformOption,
    runtime: str | None = RuntimeOption,
    environment: str = EnvOption,
    region: str | None = RegionOption,
    overrides: list[str] | None = SetOption,
    strategy: DependencyStrategy | None = StrategyOption,
    strict_compat: bool = StrictCompatOption,
    max_depth: int | None = MaxDepthOption,
    config_path: str | None = ConfigOption,
    format_type: OutputFormat = FormatOption,
) -> None:
    """Show the execution plan for a selection without producing anything."""
    try:
        store = load_store(catalog)
        config = build_config(config_path, strategy, strict_compat, max_depth, None)
        engine = CompositionEngine(store, config=config)
        context = make_context(framework, platform, runtime, environment, region, overrides)

        plan, result = engine.preview(parse_keys(select), context, parse_keys(optional))

        if format_type is OutputFormat.JSON:
            payload = result_to_dict(result)
            payload["plan"] = plan_to_dict(plan)
            typer.echo(json.dumps(payload, indent=2, default=str))
        else:
            print_result(result)

        if result.status is ResolutionStatus.FAILED:
            raise typer.Exit(1)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)


@app.command()
def check(
    catalog: str = CatalogArgument,
    select: list[str] = SelectOption,
    framework: str | None = FrameworkOption,
    platform: str | None = PlatformOption,
    runtime: str | None = RuntimeOption,
    environment: str = EnvOption,
    region: str | None = RegionOption,
    strategy: DependencyStrategy | None = StrategyOption,
    strict_compat: bool = StrictCompatOption,
    config_path: str | None = ConfigOption,
    format_type: OutputFormat = FormatOption,
) -> None:
    """Check whether a selection can be resolved."""
    try:
        store = load_store(catalog)
        config = build_config(config_path, strategy, strict_compat, None, None)
        engine = CompositionEngine(store, config=config)
        context = make_context(framework, platform, runtime, environment, region, None)

        report = engine.can_resolve(parse_keys(select), context)

        if format_type is OutputFormat.JSON:
            typer.echo(json.dumps(can_resolve_to_dict(report), indent=2))
        else:
            for key in report.missing:
                console.print(f"Missing: {key}", style="red", markup=False)
            for issue in report.incompatibilities:
                console.print(f"Incompatible: {issue}", style="yellow", markup=False)
            console.print("Can resolve" if report.ok else "Cannot resolve")

        if not report.ok:
            raise typer.Exit(1)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
