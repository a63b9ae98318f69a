"""Command-line interface router for nexus-workforce."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from nexus_workforce.config import (
    ConfigLoadError,
    ConfigValidationError,
    EngineSettings,
    assert_valid_config,
    dump_effective_config,
    load_config,
    redact_config,
)
from nexus_workforce.control_plane import (
    AttemptContext,
    GenerationResult,
    TaskRunResult,
    Verdict,
    WorkforceController,
    estimate_cost,
)
from nexus_workforce.domain.events import EventType, WorkforceEvent
from nexus_workforce.domain.models import (
    GateKind,
    ScaleTier,
    SecurityTier,
    Task,
    TaskStatus,
    WorkerRole,
    roles_by_seniority,
)
from nexus_workforce.errors import GateAlreadyResolvedError
from nexus_workforce.observability.logging import configure_from_settings
from nexus_workforce.ui.render import CLIRenderer, create_renderer

DEFAULT_COST_HOURS: Final[float] = 8.0
DEFAULT_SIMULATED_TASKS: Final[int] = 6
DEFAULT_SIMULATED_GATE_TIMEOUT: Final[float] = 0.05
SIMULATED_COST_PER_ATTEMPT_USD: Final[float] = 0.01
SIMULATION_DEFAULT_WORKLOAD: Final[dict[str, object]] = {"features": 3}


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexus-workforce",
        description=(
            "nexus-workforce: size, dispatch, gate and verify a worker pool.\n\n"
            "Common workflows:\n"
            "  nexus-workforce size --features 12 --security elevated\n"
            "  nexus-workforce size --workload workload.yaml --json\n"
            "  nexus-workforce simulate --tasks 8 --gate-kind pre_commit\n"
            "  nexus-workforce config --profile strict\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to workforce TOML config (default: ./workforce.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--log-level", default=None, help="Override observability.log_level (e.g. DEBUG)."
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    workload = argparse.ArgumentParser(add_help=False)
    workload.add_argument(
        "--workload",
        dest="workload_path",
        default=None,
        help="YAML or JSON workload profile file; flags below override its fields.",
    )
    workload.add_argument("--features", type=int, default=None)
    workload.add_argument("--integrations", type=int, default=None)
    workload.add_argument(
        "--security", choices=[tier.value for tier in SecurityTier], default=None
    )
    workload.add_argument("--scale", choices=[tier.value for tier in ScaleTier], default=None)
    workload.add_argument("--complexity", type=float, default=None)
    workload.add_argument("--workflows-per-hour", type=float, default=None)

    subparsers = parser.add_subparsers(dest="command", required=True)

    # size ----------------------------------------------------------------
    size_parser = subparsers.add_parser(
        "size",
        parents=[common, workload],
        help="Compute the worker composition for a workload profile",
    )
    size_parser.add_argument(
        "--hours",
        type=float,
        default=DEFAULT_COST_HOURS,
        help=f"Hours used for the cost estimate (default: {DEFAULT_COST_HOURS:g}).",
    )
    size_parser.set_defaults(handler=_cmd_size)

    # simulate ------------------------------------------------------------
    simulate_parser = subparsers.add_parser(
        "simulate",
        parents=[common, workload],
        help="Run an in-process demo with a deterministic mock generator/verifier",
    )
    simulate_parser.add_argument("--tasks", type=int, default=DEFAULT_SIMULATED_TASKS)
    simulate_parser.add_argument(
        "--unfixable",
        type=int,
        default=0,
        help="Number of tasks whose verifier never passes.",
    )
    simulate_parser.add_argument(
        "--gate-kind",
        choices=[kind.value for kind in GateKind],
        default=None,
        help="Gate every task's result behind this gate kind.",
    )
    simulate_parser.add_argument(
        "--approve-gates",
        action="store_true",
        help="Approve gates as soon as they open instead of letting them time out.",
    )
    simulate_parser.add_argument(
        "--gate-timeout",
        type=float,
        default=DEFAULT_SIMULATED_GATE_TIMEOUT,
        help="Seconds before an unanswered gate falls back to its timeout policy.",
    )
    simulate_parser.set_defaults(handler=_cmd_simulate)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_size(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    controller = WorkforceController(EngineSettings.from_config(config))
    report = controller.sizer.size_with_report(_workload_from_args(args))
    cost = estimate_cost(report.composition, hours=args.hours)

    payload = {
        "command": "size",
        **report.to_dict(),
        "estimated_cost_usd": cost,
        "hours": args.hours,
    }
    if args.json:
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.composition(report.composition, title="Worker composition:")
    renderer.kv("  estimated cost", f"${cost:.2f} over {args.hours:g}h")
    if report.clamped:
        renderer.warning(f"raw total {report.raw.total} clamped into the configured band")
    if report.degraded:
        renderer.warning("workload profile missing or unparseable; using minimum viable team")
    return 0


def _cmd_simulate(args: argparse.Namespace) -> int:
    if args.tasks < 0 or args.unfixable < 0:
        raise CLIError("--tasks and --unfixable must be >= 0", exit_code=2)
    if args.gate_timeout <= 0:
        raise CLIError("--gate-timeout must be > 0", exit_code=2)

    config = _load_effective_config(args)
    controller = WorkforceController.from_settings(EngineSettings.from_config(config))
    try:
        summary = asyncio.run(_simulate(controller, args))
    finally:
        controller.close()

    results: list[TaskRunResult] = summary["results"]
    failed = [result for result in results if result.status is not TaskStatus.COMPLETED]
    payload = {
        "command": "simulate",
        "project": summary["project"],
        "results": [result.to_dict() for result in results],
        "completed": len(results) - len(failed),
        "failed": len(failed),
        "close": summary["close"],
    }
    if args.json:
        _emit_json(payload)
    else:
        renderer = _get_renderer(args)
        renderer.kv("Project", summary["project"]["project_id"])
        renderer.kv("Workers", len(summary["project"]["worker_ids"]))
        renderer.table(
            ("task", "status", "attempts", "reason"),
            [
                (
                    result.task_id,
                    result.status.value,
                    result.outcome.attempt_count if result.outcome is not None else 0,
                    result.failure_reason or "",
                )
                for result in results
            ],
            title="Tasks:",
        )
        renderer.kv("Completed", payload["completed"])
        renderer.kv("Failed", payload["failed"])
    return 0 if not failed else 1


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.json:
        _emit_json(
            {"command": "config", "active_profile": args.profile, "config": redact_config(config)}
        )
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Active profile", args.profile or "(default)")
    renderer.text(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


async def _simulate(controller: WorkforceController, args: argparse.Namespace) -> dict[str, Any]:
    handle = controller.create_project(_workload_from_args(args) or SIMULATION_DEFAULT_WORKLOAD)
    project_id = handle.project_id

    if args.approve_gates:
        loop = asyncio.get_running_loop()

        def _approve(gate_id: str) -> None:
            try:
                controller.gates.approve(gate_id, resolved_by="simulator")
            except GateAlreadyResolvedError:
                return

        def _approve_when_created(event: WorkforceEvent) -> None:
            gate_id = event.payload.get("id")
            if event.payload.get("status") == "pending" and isinstance(gate_id, str):
                loop.call_soon(_approve, gate_id)

        controller.event_bus.subscribe(EventType.GATE_CREATED, _approve_when_created)

    roles = [role for role in roles_by_seniority() if handle.composition.count(role) > 0]
    unfixable = set(range(min(args.unfixable, args.tasks)))
    for index in range(args.tasks):
        controller.submit_task(
            project_id,
            roles[index % len(roles)] if roles else WorkerRole.COORDINATOR,
            {"index": index, "fixable": index not in unfixable},
            gate_kind=args.gate_kind,
        )

    results = await controller.run_until_idle(
        project_id, _simulated_handler, gate_timeout_seconds=args.gate_timeout
    )
    results.sort(key=lambda result: controller.dispatcher.get(result.task_id).sequence)
    close = controller.close_project(project_id, reason="simulation_finished")
    return {"project": handle.to_dict(), "results": results, "close": close.to_dict()}


def _simulated_handler(task: Task) -> tuple[Any, Any]:
    payload = task.payload if isinstance(task.payload, Mapping) else {}
    index = int(payload.get("index", 0))
    fixable = bool(payload.get("fixable", True))
    # Every third task needs one retry before its output verifies.
    attempts_needed = 2 if index % 3 == 2 else 1

    def generate(context: AttemptContext) -> GenerationResult:
        output = {
            "task_id": task.id,
            "attempt": context.attempt_number,
            "applied_feedback": context.last_feedback,
        }
        return GenerationResult(output=output, cost_usd=SIMULATED_COST_PER_ATTEMPT_USD, tokens=100)

    def verify(output: object) -> Verdict:
        attempt = output.get("attempt", 0) if isinstance(output, Mapping) else 0
        if fixable and attempt >= attempts_needed:
            return Verdict(passed=True)
        return Verdict(passed=False, feedback=f"attempt {attempt}: output rejected by verifier")

    return generate, verify


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=bool(getattr(args, "no_color", False)))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {}
    if args.log_level:
        overrides["observability.log_level"] = args.log_level.upper()
    try:
        loaded = load_config(args.config_path, profile=args.profile, cli_overrides=overrides)
        validated = assert_valid_config(loaded, active_profile=args.profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    configure_from_settings(validated.get("observability", {}))
    return validated


def _workload_from_args(args: argparse.Namespace) -> dict[str, object] | None:
    profile: dict[str, object] = {}
    if args.workload_path:
        profile.update(_read_workload_file(Path(args.workload_path)))
    flags = {
        "feature_count": args.features,
        "integration_count": args.integrations,
        "security_tier": args.security,
        "scale_tier": args.scale,
        "complexity_score": args.complexity,
        "workflows_per_hour": args.workflows_per_hour,
    }
    profile.update({key: value for key, value in flags.items() if value is not None})
    return profile or None


def _read_workload_file(path: Path) -> dict[str, object]:
    try:
        raw = path.expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"cannot read workload file {path}: {exc}", exit_code=2) from exc
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise CLIError(f"workload file {path} is not valid YAML/JSON: {exc}", exit_code=2) from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, Mapping):
        raise CLIError(f"workload file {path} must contain a mapping", exit_code=2)
    return {str(key): value for key, value in parsed.items()}


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
