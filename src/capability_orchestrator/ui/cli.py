"""Command-line interface router for capability-orchestrator."""

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

from capability_orchestrator.audit import (
    AuditLedger,
    AuditReport,
    ComplianceAuditor,
    InventoryError,
    RecencyWindows,
    RequirementsParseError,
    load_inventory,
    load_requirements,
)
from capability_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from capability_orchestrator.control_plane import (
    Dispatcher,
    Executor,
    RunStatus,
    Workflow,
    standard_development_workflow,
)
from capability_orchestrator.domain import ids as domain_ids
from capability_orchestrator.domain.errors import ConfigurationError, DispatchError
from capability_orchestrator.domain.models import WorkItem
from capability_orchestrator.observability.logging import (
    LoggingConfig,
    configure_structlog,
    setup_structured_logging,
    shutdown_logging,
)
from capability_orchestrator.routing import Router
from capability_orchestrator.routing.catalog import Catalog, load_catalog
from capability_orchestrator.ui.render import CLIRenderer, create_renderer

DEFAULT_REPORT_PREFIX: Final[str] = "audit-"


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
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="capo",
        description=(
            "capability-orchestrator: route work items to capability handlers,\n"
            "run staged workflows, and audit a codebase against its requirements.\n\n"
            "Common workflows:\n"
            "  capo route --payload '{\"task\": \"review\"}'   Show matching handlers\n"
            "  capo dispatch --workflow --payload-file item.yaml\n"
            "  capo audit requirements.md inventory.yaml\n"
            "  capo config --profile strict\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to orchestrator TOML config (default: ./orchestrator.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Config profile overlay name.")
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config value, e.g. --set executor.max_concurrency=4 (repeatable).",
    )
    common.add_argument("--json", action="store_true", help="Emit JSON output")
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    item_args = argparse.ArgumentParser(add_help=False)
    item_args.add_argument("--catalog", default=None, help="Handler catalog TOML (default: paths.catalog).")
    item_args.add_argument("--payload", default=None, help="Work item payload as a JSON object.")
    item_args.add_argument(
        "--payload-file", default=None, help="Work item payload from a YAML or JSON file."
    )
    item_args.add_argument("--category", default=None, help="Work item category hint.")
    item_args.add_argument("--stage", default=None, help="Originating stage name.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    route_parser = subparsers.add_parser(
        "route",
        parents=[common, item_args],
        help="Show which handlers a work item would be routed to",
    )
    route_parser.set_defaults(handler=_cmd_route)

    dispatch_parser = subparsers.add_parser(
        "dispatch",
        parents=[common, item_args],
        help="Submit a work item directly or through the staged workflow",
        description=(
            "Direct dispatch runs every matching handler once and drains follow-ups.\n"
            "With --workflow the item runs through the catalog workflow (or the\n"
            "standard development workflow when the catalog defines none).\n\n"
            "Exit code 1 means a stage gate halted the workflow."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    dispatch_parser.add_argument(
        "--workflow", action="store_true", help="Use staged dispatch through a workflow."
    )
    dispatch_parser.set_defaults(handler=_cmd_dispatch)

    workflow_parser = subparsers.add_parser(
        "workflow",
        parents=[common],
        help="Validate and show the workflow stage graph",
    )
    workflow_parser.add_argument("--catalog", default=None, help="Handler catalog TOML.")
    workflow_parser.add_argument(
        "--standard",
        action="store_true",
        help="Show the built-in development workflow instead of the catalog's.",
    )
    workflow_parser.set_defaults(handler=_cmd_workflow)

    audit_parser = subparsers.add_parser(
        "audit",
        parents=[common],
        help="Audit an inventory against a requirements corpus",
    )
    audit_parser.add_argument("requirements", help="Requirements corpus (markdown).")
    audit_parser.add_argument("inventory", help="Inventory of artifacts (YAML or JSON list).")
    audit_parser.add_argument(
        "--output", default=None, help="Report path (default: <reports_dir>/audit-<digest>.json)."
    )
    audit_parser.add_argument("--ledger", default=None, help="Append the report to a JSON-lines ledger.")
    audit_parser.set_defaults(handler=_cmd_audit)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration",
        description=(
            "Display the effective config after merging defaults, file, env, profile,\n"
            "and --set overrides."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    configure_structlog()
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


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_route(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    catalog = _load_catalog(args, config)
    work_item = _work_item_from_args(args)
    router = Router(catalog.registry)
    try:
        scored = router.scores(work_item)
    except DispatchError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    matched = [(handler, score) for handler, score in scored if score.matched]

    if args.json:
        _emit_json(
            {
                "command": "route",
                "work_item": work_item.to_dict(),
                "matches": [
                    {"handler": handler.name, "category": handler.category.value, "score": score.value}
                    for handler, score in matched
                ],
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Work item", work_item.id)
    if not matched:
        renderer.text("No handler matched.")
        return 0
    renderer.table(
        ("HANDLER", "CATEGORY", "SCORE", "CONCURRENCY"),
        [
            (handler.name, handler.category.value, score.value, str(handler.concurrency))
            for handler, score in matched
        ],
        title="Matches:",
    )
    return 0


def _cmd_dispatch(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    catalog = _load_catalog(args, config)
    work_item = _work_item_from_args(args)
    workflow: Workflow | None = None
    if args.workflow:
        workflow = catalog.workflow or standard_development_workflow()

    router = Router(catalog.registry)
    executor = Executor.from_config(config["executor"])
    dispatcher = Dispatcher(
        router,
        executor,
        max_follow_up_depth=config["dispatch"]["max_follow_up_depth"],
    )

    _start_logging(config, run_id=domain_ids.generate_run_id())
    try:
        receipt = asyncio.run(_submit(dispatcher, work_item, workflow))
    except DispatchError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    finally:
        shutdown_logging()

    run = dispatcher.get_run(receipt.run_id) if receipt.run_id is not None else None
    halted = run is not None and run.status is RunStatus.HALTED

    if args.json:
        payload: dict[str, object] = {"command": "dispatch", "receipt": receipt.to_dict()}
        if run is not None:
            payload["run"] = run.to_dict()
        _emit_json(payload)
        return 1 if halted else 0

    renderer = _get_renderer(args)
    renderer.kv("Work item", receipt.work_item_id)
    if run is None:
        _render_results(renderer, receipt.results)
        if receipt.dropped_follow_ups:
            renderer.warning(f"{receipt.dropped_follow_ups} follow-up(s) dropped at depth limit")
        return 0

    renderer.kv("Run", run.id)
    renderer.kv("Workflow", run.workflow.name)
    renderer.kv("Status", run.status.value)
    for outcome in run.outcomes.values():
        label = f"{outcome.stage} ({len(outcome.results)} result(s))"
        if outcome.gate_passed:
            renderer.ok(label)
        else:
            renderer.fail(label)
    if run.failure is not None:
        renderer.section("Gate failure:")
        renderer.text(f"  {run.failure}")
    if run.follow_ups:
        renderer.kv("Follow-ups", len(run.follow_ups))
    return 1 if halted else 0


async def _submit(dispatcher: Dispatcher, work_item: WorkItem, workflow: Workflow | None) -> Any:
    try:
        return await dispatcher.submit(work_item, workflow=workflow)
    finally:
        await dispatcher.executor.drain(timeout_seconds=1.0)


def _cmd_workflow(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.standard:
        workflow = standard_development_workflow()
    else:
        workflow = _load_catalog(args, config).workflow
        if workflow is None:
            raise CLIError("catalog defines no [[stages]]; use --standard", exit_code=2)

    if args.json:
        _emit_json(
            {
                "command": "workflow",
                "workflow": workflow.to_dict(),
                "order": list(workflow.topological_order()),
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Workflow", workflow.name)
    renderer.table(
        ("STAGE", "AFTER", "GATE", "CATEGORIES", "TERMINAL"),
        [
            (
                stage.name,
                ",".join(stage.predecessors) or "-",
                str(stage.gate),
                ",".join(sorted(item.value for item in stage.categories)) or "*",
                "yes" if stage.terminal else "",
            )
            for stage in (workflow.stage(name) for name in workflow.topological_order())
        ],
        title="Stages:",
    )
    return 0


def _cmd_audit(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    audit_config = config["audit"]
    try:
        corpus = load_requirements(_existing_file(args.requirements))
        artifacts = load_inventory(
            _existing_file(args.inventory), windows=RecencyWindows.from_config(audit_config)
        )
    except (InventoryError, RequirementsParseError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    _start_logging(config, run_id=domain_ids.generate_run_id())
    try:
        report = ComplianceAuditor.from_config(audit_config).audit(corpus, artifacts)
    finally:
        shutdown_logging()

    output = (
        Path(args.output)
        if args.output
        else Path(config["paths"]["reports_dir"]) / f"{DEFAULT_REPORT_PREFIX}{report.digest[:12]}.json"
    )
    report.write(output)
    if args.ledger:
        AuditLedger(args.ledger).append(report)

    if args.json:
        _emit_json({"command": "audit", "report_path": output.as_posix(), "report": report.to_dict()})
        return 0

    _render_report(_get_renderer(args), report, output)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.json:
        _emit_json({"command": "config", "active_profile": args.profile, "config": config})
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Active profile", args.profile or "(default)")
    renderer.text(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=args.no_color, verbose=args.verbose)


def _render_results(renderer: CLIRenderer, results: Sequence[Any]) -> None:
    if not results:
        renderer.text("No handler matched.")
        return
    renderer.table(
        ("HANDLER", "STATUS", "MS", "DIAGNOSTIC"),
        [
            (result.handler_name, result.status.value, result.duration_ms, result.diagnostic or "")
            for result in results
        ],
        title="Results:",
    )


def _render_report(renderer: CLIRenderer, report: AuditReport, output: Path) -> None:
    renderer.kv("Report", output.as_posix())
    renderer.kv("Digest", report.digest)
    renderer.kv("Coverage", f"{report.coverage_percent:.2f}%")
    renderer.table(
        ("REQUIREMENT", "PRIORITY", "COVERAGE", "DESCRIPTION"),
        [
            (item.requirement_id, item.priority.value, item.coverage.value, item.description[:60])
            for item in report.gaps
        ],
        title="Gaps:",
    )
    renderer.table(
        ("PATH", "PHASE", "FAILED CONDITIONS"),
        [(item.path, item.phase.value, ",".join(item.failed_conditions) or "-") for item in report.overages],
        title="Overages:",
    )
    if report.uncertain:
        renderer.section("Uncertain (manual review):")
        renderer.items(list(report.uncertain))
    if report.inconsistencies:
        renderer.section("Inconsistencies:")
        renderer.items([f"{item.path}: {item.message}" for item in report.inconsistencies])
    if renderer.verbose and report.dependency_notes:
        renderer.section("Dependency notes:")
        renderer.items([f"{item.path}: {item.note}" for item in report.dependency_notes])


# ---------------------------------------------------------------------------
# Helpers: config, inputs, logging
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    try:
        return load_config(
            args.config_path,
            profile=args.profile,
            cli_overrides=_parse_overrides(args.overrides),
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _parse_overrides(raw: Sequence[str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for entry in raw:
        key, sep, value = entry.partition("=")
        if not sep or not key.strip():
            raise CLIError(f"invalid --set value {entry!r}; expected KEY=VALUE", exit_code=2)
        try:
            overrides[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            overrides[key.strip()] = value
    return overrides


def _load_catalog(args: argparse.Namespace, config: Mapping[str, Any]) -> Catalog:
    path = Path(args.catalog) if args.catalog else Path(config["paths"]["catalog"])
    try:
        return load_catalog(path)
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _work_item_from_args(args: argparse.Namespace) -> WorkItem:
    if args.payload is not None and args.payload_file is not None:
        raise CLIError("give either --payload or --payload-file, not both", exit_code=2)
    payload: object = {}
    if args.payload is not None:
        try:
            payload = json.loads(args.payload)
        except json.JSONDecodeError as exc:
            raise CLIError(f"--payload is not valid JSON: {exc}", exit_code=2) from exc
    elif args.payload_file is not None:
        try:
            with _existing_file(args.payload_file).open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise CLIError(f"{args.payload_file}: invalid YAML ({exc})", exit_code=2) from exc
    if not isinstance(payload, Mapping):
        raise CLIError("work item payload must be an object", exit_code=2)
    try:
        return WorkItem(payload=payload, category_hint=args.category, originating_stage=args.stage)
    except ValueError as exc:
        raise CLIError(f"invalid work item: {exc}", exit_code=2) from exc


def _existing_file(raw: str) -> Path:
    path = Path(raw).expanduser()
    if not path.is_file():
        raise CLIError(f"file not found: {path}", exit_code=2)
    return path


def _start_logging(config: Mapping[str, Any], *, run_id: str) -> None:
    observability = config["observability"]
    setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=observability["log_dir"],
            level=observability["log_level"],
            log_to_stdout=observability["log_to_stdout"],
            redact_secrets=observability["redact_secrets"],
        )
    )


__all__ = ["CLIError", "build_parser", "run_cli"]
