"""Command-line interface router for patchgate."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from patchgate.config import dump_effective_config, load_config
from patchgate.domain.envelope import recompute_artifact_id
from patchgate.observability import LoggingConfig, configure_structlog, setup_structured_logging
from patchgate.pipeline import (
    create_apply_rollback_record,
    create_intent_mapping,
    create_patch_run,
    create_review_bundle,
    create_safe_diff_plan,
    create_workspace_snapshot,
)
from patchgate.policy import load_apply_policy
from patchgate.utils.fs import atomic_write

INPUT_ERROR_EXIT_CODE: Final[int] = 3
DECISION_BLOCKED_EXIT_CODE: Final[int] = 1


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = INPUT_ERROR_EXIT_CODE

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for every pipeline stage."""

    parser = argparse.ArgumentParser(
        prog="patchgate",
        description=(
            "patchgate — intent to bounded, verified, reversible workspace edits.\n\n"
            "Common workflows:\n"
            "  patchgate snapshot . --out snap.json\n"
            "  patchgate map snap.json --intent 'rename capability' --out map.json\n"
            "  patchgate plan map.json --out plan.json\n"
            "  patchgate patch plan.json --verification results.json --out patch.json\n"
            "  patchgate bundle patch.json --plan plan.json --out bundle.json\n"
            "  patchgate apply bundle.json . --execute --out apply.json\n"
            "  patchgate verify apply.json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to patchgate TOML config (default: ./patchgate.toml if present).",
    )
    common.add_argument(
        "--log-level",
        default=None,
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Override the configured log level.",
    )
    common.add_argument(
        "--out",
        default=None,
        help="Write the produced artifact to this path (default: stdout).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # snapshot ------------------------------------------------------------
    snapshot_parser = subparsers.add_parser(
        "snapshot", parents=[common], help="Capture a workspace snapshot artifact"
    )
    snapshot_parser.add_argument("workspace_root", help="Workspace directory to snapshot")
    snapshot_parser.add_argument(
        "--ignore",
        dest="ignored_paths",
        action="append",
        default=None,
        help="Ignored path pattern (repeatable; replaces configured defaults)",
    )
    snapshot_parser.set_defaults(handler=_cmd_snapshot)

    # map -----------------------------------------------------------------
    map_parser = subparsers.add_parser("map", parents=[common], help="Map an intent onto workspace targets")
    map_parser.add_argument("snapshot", help="Workspace snapshot artifact JSON")
    map_parser.add_argument("--intent", required=True, help="Free-text intent")
    map_parser.add_argument("--intent-source", default=None, help="Intent provenance label")
    map_parser.add_argument("--min-confidence", type=float, default=None)
    map_parser.add_argument("--ambiguity-gap", type=float, default=None)
    map_parser.add_argument("--max-alternatives", type=int, default=None)
    map_parser.set_defaults(handler=_cmd_map)

    # plan ----------------------------------------------------------------
    plan_parser = subparsers.add_parser("plan", parents=[common], help="Build a bounded safe diff plan")
    plan_parser.add_argument("mapping", help="Intent mapping artifact JSON")
    plan_parser.add_argument("--edits", default=None, help="Planned edits JSON file (list of edit objects)")
    plan_parser.add_argument("--planner-profile", default=None)
    plan_parser.add_argument("--max-file-changes", type=int, default=None)
    plan_parser.add_argument("--max-hunks", type=int, default=None)
    plan_parser.set_defaults(handler=_cmd_plan)

    # patch ---------------------------------------------------------------
    patch_parser = subparsers.add_parser("patch", parents=[common], help="Materialize a patch run")
    patch_parser.add_argument("plan", help="Safe diff plan artifact JSON")
    patch_parser.add_argument(
        "--verification", default=None, help="Verification results JSON file (list of check results)"
    )
    patch_parser.add_argument(
        "--required-check",
        dest="required_checks",
        action="append",
        default=None,
        help="Required check name (repeatable; replaces configured defaults)",
    )
    patch_parser.set_defaults(handler=_cmd_patch)

    # bundle --------------------------------------------------------------
    bundle_parser = subparsers.add_parser("bundle", parents=[common], help="Assemble a review bundle")
    bundle_parser.add_argument("patch_run", help="Patch run artifact JSON")
    bundle_parser.add_argument("--snapshot", default=None, help="Workspace snapshot artifact JSON")
    bundle_parser.add_argument("--mapping", default=None, help="Intent mapping artifact JSON")
    bundle_parser.add_argument("--plan", default=None, help="Safe diff plan artifact JSON")
    bundle_parser.add_argument("--summary", default=None)
    bundle_parser.add_argument("--rationale", default=None)
    bundle_parser.add_argument("--risk", dest="risks", action="append", default=None)
    bundle_parser.add_argument("--verification-evidence-ref", default=None)
    bundle_parser.set_defaults(handler=_cmd_bundle)

    # apply / rollback ----------------------------------------------------
    for action in ("apply", "rollback"):
        action_parser = subparsers.add_parser(
            action, parents=[common], help=f"Gate and optionally execute a review bundle {action}"
        )
        action_parser.add_argument("bundle", help="Review bundle artifact JSON")
        action_parser.add_argument("workspace_root", help="Target workspace directory")
        action_parser.add_argument(
            "--execute", action="store_true", default=False, help="Perform the side effect (default: dry run)"
        )
        action_parser.add_argument(
            "--previous-record",
            default=None,
            required=action == "rollback",
            help="Prior apply record artifact JSON",
        )
        action_parser.add_argument("--policy", default=None, help="Apply policy YAML (overrides config)")
        action_parser.add_argument("--approval-evidence-ref", default=None)
        action_parser.add_argument("--capability", dest="capabilities", action="append", default=None)
        action_parser.add_argument("--expected-digest", default=None)
        action_parser.add_argument("--target-workspace-ref", default=None)
        action_parser.add_argument("--benchmark-report", default=None, help="Benchmark report JSON")
        action_parser.add_argument("--require-benchmark-valid-gain", action="store_true", default=False)
        action_parser.set_defaults(handler=_cmd_apply_rollback, action=action)

    # verify --------------------------------------------------------------
    verify_parser = subparsers.add_parser("verify", parents=[common], help="Recompute an artifact id")
    verify_parser.add_argument("artifact", help="Artifact JSON to verify")
    verify_parser.set_defaults(handler=_cmd_verify)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser("config", parents=[common], help="Print the effective config")
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

    config = load_config(
        namespace.config_path,
        cli_overrides={"logging.level": namespace.log_level},
    )
    logging_section = config["logging"]
    handle = setup_structured_logging(
        LoggingConfig(
            run_label=namespace.command,
            base_log_dir=logging_section["log_dir"],
            level=logging_section["level"],
            json_output=logging_section["json"],
        )
    )
    configure_structlog()
    try:
        return int(handler(namespace, config))
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        handle.shutdown()


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_snapshot(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    artifact = create_workspace_snapshot(
        args.workspace_root,
        ignored_paths=_first(args.ignored_paths, config["snapshot"]["ignored_paths"]),
    )
    _emit_artifact(artifact, args.out)
    return 0


def _cmd_map(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    mapping = config["mapping"]
    artifact = create_intent_mapping(
        _read_json(args.snapshot),
        args.intent,
        intent_source=args.intent_source,
        min_confidence=_first(args.min_confidence, mapping["min_confidence"]),
        ambiguity_gap=_first(args.ambiguity_gap, mapping["ambiguity_gap"]),
        max_alternatives=_first(args.max_alternatives, mapping["max_alternatives"]),
    )
    return _finish(artifact, args.out)


def _cmd_plan(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    plan = config["plan"]
    artifact = create_safe_diff_plan(
        _read_json(args.mapping),
        planned_edits=_read_json(args.edits) if args.edits else None,
        planner_profile=_first(args.planner_profile, plan["planner_profile"]),
        forbidden_path_patterns=plan["forbidden_path_patterns"],
        max_file_changes=_first(args.max_file_changes, plan["max_file_changes"]),
        max_hunks=_first(args.max_hunks, plan["max_hunks"]),
    )
    return _finish(artifact, args.out)


def _cmd_patch(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    patch = config["patch"]
    artifact = create_patch_run(
        _read_json(args.plan),
        verification_results=_read_json(args.verification) if args.verification else None,
        required_checks=_first(args.required_checks, patch["required_checks"]),
        policy_sensitive_path_patterns=patch["policy_sensitive_path_patterns"],
    )
    return _finish(artifact, args.out)


def _cmd_bundle(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    del config
    lineage = {
        key: _read_json(path)
        for key, path in (
            ("workspace_snapshot", args.snapshot),
            ("intent_mapping", args.mapping),
            ("safe_diff_plan", args.plan),
        )
        if path
    }
    options: dict[str, Any] = {
        "lineage": lineage,
        "summary": args.summary,
        "rationale": args.rationale,
        "risk_tradeoffs": args.risks,
    }
    if args.verification_evidence_ref is not None:
        options["verification_evidence_ref"] = args.verification_evidence_ref
    artifact = create_review_bundle(_read_json(args.patch_run), **options)
    return _finish(artifact, args.out)


def _cmd_apply_rollback(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    apply_section = config["apply"]
    policy = load_apply_policy(args.policy or apply_section["policy_file"])
    options = policy.engine_options(args.action)
    if args.capabilities:
        options["declared_capabilities"] = sorted({*options["declared_capabilities"], *args.capabilities})
    if args.policy is None and apply_section["policy_file"] is None:
        options["policy_profile_ref"] = apply_section["policy_profile_ref"]

    artifact = create_apply_rollback_record(
        args.action,
        _read_json(args.bundle),
        args.workspace_root,
        execute=args.execute,
        previous_record=_read_json(args.previous_record) if args.previous_record else None,
        benchmark_report=_read_json(args.benchmark_report) if args.benchmark_report else None,
        require_benchmark_valid_gain=args.require_benchmark_valid_gain,
        expected_target_state_digest=args.expected_digest,
        target_workspace_ref=args.target_workspace_ref,
        verification_contract_ref=apply_section["verification_contract_ref"],
        approval_evidence_ref=args.approval_evidence_ref,
        **options,
    )
    return _finish(artifact, args.out)


def _cmd_verify(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    del config
    artifact = _read_json(args.artifact)
    if not isinstance(artifact, Mapping):
        raise CLIError(f"artifact must be a JSON object: {args.artifact}")
    try:
        recomputed = recompute_artifact_id(artifact)
    except ValueError as exc:
        raise CLIError(f"cannot verify {args.artifact}: {exc}") from exc
    recorded = artifact.get("artifact_id")
    valid = recorded == recomputed
    _emit_json(
        {
            "artifact": args.artifact,
            "artifact_type": artifact.get("artifact_type"),
            "recorded_artifact_id": recorded,
            "recomputed_artifact_id": recomputed,
            "valid": valid,
        }
    )
    return 0 if valid else DECISION_BLOCKED_EXIT_CODE


def _cmd_config(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    del args
    print(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _finish(artifact: Mapping[str, Any], out: str | None) -> int:
    _emit_artifact(artifact, out)
    payload = artifact.get("payload")
    decision = None
    if isinstance(payload, Mapping):
        # Review bundles carry their decision inside the readiness block.
        readiness = payload.get("readiness")
        decision = payload.get("decision") or (
            readiness.get("decision") if isinstance(readiness, Mapping) else None
        )
    return 0 if decision == "continue" else DECISION_BLOCKED_EXIT_CODE


def _emit_artifact(artifact: Mapping[str, Any], out: str | None) -> None:
    rendered = json.dumps(artifact, indent=2, ensure_ascii=False) + "\n"
    if out is None:
        sys.stdout.write(rendered)
        return
    target = Path(out).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    atomic_write(target, rendered)


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _read_json(path_arg: str) -> Any:
    path = Path(path_arg).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"unable to read {path}: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise CLIError(f"invalid JSON in {path}: {exc}") from exc


def _first(value: object, fallback: object) -> object:
    return fallback if value is None else value


__all__ = ["CLIError", "build_parser", "run_cli"]
