"""JSON-ready renderings of plans and results."""

from .models import CanResolveReport, Diagnostic, ExecutionPlan, ResolutionResult


def diagnostic_to_dict(diagnostic: Diagnostic) -> dict:
    return {
        "severity": diagnostic.severity.value,
        "code": diagnostic.code.value,
        "message": diagnostic.message,
        "affected": [str(key) for key in diagnostic.affected_keys],
    }


def plan_to_dict(plan: ExecutionPlan) -> dict:
    """Format a plan as batches of steps."""
    return {
        "batches": [
            [
                {
                    "id": step.id,
                    "component": str(step.component_key),
                    "version": plan.descriptors[step.component_key].version,
                    "depends_on": list(step.depends_on),
                    "priority": step.priority,
                    "parallelizable": step.parallelizable,
                    "required": step.required,
                    "estimated_time": step.estimated_time,
                }
                for step in batch
            ]
            for batch in plan.batch_steps()
        ],
        "order": [str(key) for key in plan.order],
        "estimated_duration": plan.estimated_duration,
    }


def result_to_dict(result: ResolutionResult) -> dict:
    """Format a resolution result for JSON output."""
    return {
        "status": result.status.value,
        "components": [
            {"component": str(descriptor.key), "version": descriptor.version}
            for descriptor in result.components
        ],
        "diagnostics": [diagnostic_to_dict(d) for d in result.diagnostics],
        "plan": plan_to_dict(result.plan) if result.plan is not None else None,
        "outcomes": [
            {"step": outcome.step_id, "status": outcome.status.value}
            for outcome in result.outcomes
        ],
        "files_affected": list(result.files_affected),
        "dependencies_added": list(result.dependencies_added),
        "env_vars_required": list(result.env_vars_required),
        "post_install_steps": list(result.post_install_steps),
        "verification_steps": list(result.verification_steps),
        "configuration": dict(result.configuration),
        "duration": round(result.duration, 6),
        "timestamp": result.timestamp.isoformat(),
    }


def can_resolve_to_dict(report: CanResolveReport) -> dict:
    return {
        "ok": report.ok,
        "missing": [str(key) for key in report.missing],
        "incompatibilities": list(report.incompatibilities),
        "diagnostics": [diagnostic_to_dict(d) for d in report.diagnostics],
    }
