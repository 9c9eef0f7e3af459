"""
patchgate — apply/rollback engine

File: src/patchgate/pipeline/apply_rollback.py
Last updated: 2026-10-18

Purpose
- Gate and (optionally) execute the application or reversal of a review bundle against a real workspace.
- Record the decision, policy evaluation, and before/after state snapshots as an auditable artifact.

Functional requirements
- Gates run in a fixed order and the first blocking gate wins: upstream outcomes, verification,
  rollback availability, prior-record consistency, benchmark evidence, policy, target-state preconditions.
- Execution happens only for a ``continue`` decision with ``execute=True``; dry runs record the
  pre-state as the post-state.
- A rollback that does not reproduce the recorded pre-apply digest downgrades to ``stop``.

Non-functional requirements
- Every path is resolved inside the workspace root before any write; filesystem failures raise
  ``EXECUTION_FAILED``.
- Restores validate every snapshot entry before touching the filesystem.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from patchgate.constants import (
    APPLY_ROLLBACK_RECORD_ARTIFACT_TYPE,
    ARTIFACT_SCHEMA_VERSION,
    BENCHMARK_REPORT_ARTIFACT_TYPE,
    PATCH_RUN_ARTIFACT_TYPE,
    REVIEW_BUNDLE_ARTIFACT_TYPE,
)
from patchgate.domain import decisions
from patchgate.domain.decisions import (
    APPLY_REASON_CODES,
    BUNDLE_REASON_CODES,
    DECISION_VALUES,
    PATCH_REASON_CODES,
    Decision,
    Outcome,
)
from patchgate.domain.edits import EDIT_OPERATIONS, EditOperation
from patchgate.domain.envelope import Artifact, artifact_ref, build_artifact
from patchgate.domain.errors import ApplyRollbackError
from patchgate.domain.hooks import Clock, RunIdFactory, resolve_produced_at, resolve_run_id
from patchgate.domain.validation import FieldValidator
from patchgate.pipeline.patch_run import CHECK_STATUSES, DEFAULT_POLICY_SENSITIVE_PATH_PATTERNS, PATCH_FORMAT
from patchgate.pipeline.review_bundle import BOUNDARY_MODE, ROLLBACK_STRATEGIES
from patchgate.pipeline.state_snapshot import (
    StateSnapshot,
    capture_state,
    parse_state_snapshot,
    restore_state,
    workspace_file,
)
from patchgate.pipeline.workspace_walk import resolve_workspace_root
from patchgate.utils.fs import WorkspacePathError, atomic_write, safe_unlink
from patchgate.utils.globs import GlobMatcher
from patchgate.utils.hashing import sha256_prefixed
from patchgate.utils.paths import escapes_workspace, normalize_relative_path

APPLY: Final[str] = "apply"
ROLLBACK: Final[str] = "rollback"
ACTIONS: Final[tuple[str, ...]] = (APPLY, ROLLBACK)

EXECUTION_MODE: Final[str] = "deterministic_workspace_placeholder_v1"
PLACEHOLDER_HEADER: Final[str] = "# patchgate deterministic apply/rollback placeholder"
DEFAULT_POLICY_PROFILE_REF: Final[str] = "policy.unspecified"
DEFAULT_VERIFICATION_CONTRACT_REF: Final[str] = "verification.unspecified"
REQUIRED_CAPABILITIES: Final[dict[str, str]] = {
    APPLY: "workspace.apply_patch",
    ROLLBACK: "workspace.rollback_patch",
}
DEFAULT_ESCALATION_PATH_PATTERNS: Final[tuple[str, ...]] = DEFAULT_POLICY_SENSITIVE_PATH_PATTERNS
DEFAULT_BLOCKED_PATH_PATTERNS: Final[tuple[str, ...]] = (
    ".env",
    ".env.*",
    "**/.env",
    "**/.env.*",
    "**/*.pem",
    "**/*.key",
    "**/id_rsa",
    "**/id_ed25519",
    "**/credentials*",
)
READINESS_DECISIONS: Final[tuple[str, ...]] = (Decision.CONTINUE.value, Decision.STOP.value)

_bundle_validator = FieldValidator(ApplyRollbackError, "INVALID_PR_BUNDLE")
_record_validator = FieldValidator(ApplyRollbackError, "INVALID_PREVIOUS_RECORD")
_benchmark_validator = FieldValidator(ApplyRollbackError, "INVALID_BENCHMARK_REPORT")
_options_validator = FieldValidator(ApplyRollbackError, "INVALID_OPTIONS")


def _stripped_or_none(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _unique_sorted(validator: FieldValidator, value: object, path: str, *, allow_empty: bool = True) -> list[str]:
    items = {item.strip() for item in validator.as_str_list(value, path)}
    if not allow_empty and not items:
        validator.fail(path, "must include at least one item")
    return sorted(items)


def _sorted_strs(validator: FieldValidator, value: object, path: str) -> list[str]:
    return sorted(item.strip() for item in validator.as_str_list(value, path))


def _ordered_unique(values: Sequence[str | None]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


# Review bundle input


@dataclass(frozen=True, slots=True)
class ChangeEntry:
    """One changed path taken from the bundle's diff-plan edit summaries."""

    path: str
    operation: EditOperation
    target_id: str | None = None
    symbol_path: str | None = None
    has_symbol_path: bool = False

    @property
    def symbol_label(self) -> str:
        if not self.has_symbol_path:
            return "symbol:unspecified"
        return f"symbol:{self.symbol_path}" if self.symbol_path is not None else "symbol:file"

    @property
    def target_label(self) -> str:
        return f"target:{self.target_id}" if self.target_id else "target:none"


@dataclass(frozen=True, slots=True)
class BundleRollback:
    strategy: str | None
    package_ref: str | None
    package_digest: str | None
    package_format: str | None
    package_valid: bool
    instructions_present: bool
    supported: bool

    @property
    def available(self) -> bool:
        return bool(
            self.supported
            and self.strategy
            and self.package_ref
            and self.package_valid
            and self.instructions_present
        )


@dataclass(frozen=True, slots=True)
class BundleInput:
    ref: dict[str, str]
    run_id: str
    trace_lineage: list[str]
    patch_run_ref: dict[str, str]
    patch_digest: str
    verification: dict[str, Any]
    rollback: BundleRollback
    readiness: Outcome
    patch_run_outcome: Outcome
    changes: list[ChangeEntry]

    @property
    def artifact_id(self) -> str:
        return self.ref["artifact_id"]

    @property
    def changed_paths(self) -> list[str]:
        return [change.path for change in self.changes]


def _parse_change_entries(value: object, path: str) -> list[ChangeEntry]:
    v = _bundle_validator
    changes: dict[str, ChangeEntry] = {}
    for index, item in enumerate(v.as_list(value, path)):
        where = f"{path}[{index}]"
        entry = v.expect_object(item, where)
        raw_path = v.as_str(entry.get("path"), f"{where}.path").strip()
        change_path = normalize_relative_path(raw_path)
        if change_path != raw_path or change_path == "." or escapes_workspace(change_path):
            v.fail(f"{where}.path", "must be a normalized workspace-relative path")
        operation = v.as_choice(entry.get("operation"), f"{where}.operation", EDIT_OPERATIONS)
        if change_path in changes:
            v.fail(
                path,
                f"contains duplicate path entries ({change_path}); "
                "deterministic apply/rollback requires one edit per path",
            )
        raw_target = entry.get("target_id")
        raw_symbol = entry.get("symbol_path")
        has_symbol_path = "symbol_path" in entry
        changes[change_path] = ChangeEntry(
            path=change_path,
            operation=EditOperation(operation),
            target_id=None if raw_target is None else v.as_str(raw_target, f"{where}.target_id").strip(),
            symbol_path=None if raw_symbol is None else v.as_str(raw_symbol, f"{where}.symbol_path").strip(),
            has_symbol_path=has_symbol_path,
        )
    return [changes[key] for key in sorted(changes)]


def _parse_check_results(value: object, path: str) -> list[dict[str, str]]:
    v = _bundle_validator
    results: dict[str, dict[str, str]] = {}
    for index, item in enumerate(v.as_list(value, path)):
        where = f"{path}[{index}]"
        entry = v.expect_object(item, where)
        check = v.as_str(entry.get("check"), f"{where}.check").strip()
        if check in results:
            v.fail(f"{where}.check", "must be unique")
        result = {"check": check, "status": v.as_choice(entry.get("status"), f"{where}.status", CHECK_STATUSES)}
        evidence_ref = _stripped_or_none(entry.get("evidence_ref"))
        if evidence_ref is not None:
            result["evidence_ref"] = evidence_ref
        detail = _stripped_or_none(entry.get("detail"))
        if detail is not None:
            result["detail"] = detail
        results[check] = result
    return [results[key] for key in sorted(results)]


def _parse_bundle_rollback(value: object) -> BundleRollback:
    v = _bundle_validator
    rollback = v.expect_object(value, "review_bundle.payload.rollback")
    supported = v.as_bool(rollback.get("supported"), "review_bundle.payload.rollback.supported")
    raw_strategy = rollback.get("strategy")
    strategy = (
        None
        if raw_strategy is None
        else v.as_choice(raw_strategy, "review_bundle.payload.rollback.strategy", ROLLBACK_STRATEGIES)
    )
    raw_instructions = rollback.get("instructions")
    instructions = (
        []
        if raw_instructions is None
        else _unique_sorted(v, raw_instructions, "review_bundle.payload.rollback.instructions")
    )

    package_digest: str | None = None
    package_format: str | None = None
    package_valid = False
    if rollback.get("package") is not None:
        where = "review_bundle.payload.rollback.package"
        package = v.expect_object(rollback["package"], where)
        content = v.as_any_str(package.get("content"), f"{where}.content")
        digest = v.as_str(package.get("digest"), f"{where}.digest").strip()
        package_format = v.as_choice(package.get("format"), f"{where}.format", (PATCH_FORMAT,))
        if sha256_prefixed(content) != digest:
            v.fail(f"{where}.digest", "does not match package.content")
        package_digest = digest
        package_valid = True

    return BundleRollback(
        strategy=strategy,
        package_ref=_stripped_or_none(rollback.get("package_ref")),
        package_digest=package_digest,
        package_format=package_format,
        package_valid=package_valid,
        instructions_present=bool(instructions),
        supported=supported,
    )


def parse_review_bundle(value: object) -> BundleInput:
    """Validate a review bundle and re-verify its patch and rollback package digests."""

    v = _bundle_validator
    bundle = v.expect_envelope(value, "review_bundle", artifact_type=REVIEW_BUNDLE_ARTIFACT_TYPE)
    patch_run_ref = v.single_input_ref(bundle, "review_bundle", artifact_type=PATCH_RUN_ARTIFACT_TYPE)
    assert patch_run_ref is not None
    trace = v.expect_object(bundle["trace"], "review_bundle.trace")
    trace_lineage = (
        []
        if trace.get("lineage") is None
        else _ordered_unique([item.strip() for item in v.as_str_list(trace["lineage"], "review_bundle.trace.lineage")])
    )
    payload = v.expect_object(bundle["payload"], "review_bundle.payload")

    patch = v.expect_object(payload.get("patch"), "review_bundle.payload.patch")
    v.as_choice(patch.get("format"), "review_bundle.payload.patch.format", (PATCH_FORMAT,))
    content = v.as_any_str(patch.get("content"), "review_bundle.payload.patch.content")
    patch_digest = v.as_str(patch.get("digest"), "review_bundle.payload.patch.digest").strip()
    if sha256_prefixed(content) != patch_digest:
        v.fail("review_bundle.payload.patch.digest", "does not match payload.patch.content")

    where = "review_bundle.payload.verification"
    verification = v.expect_object(payload.get("verification"), where)
    patch_run_id = v.as_str(
        patch.get("patch_run_artifact_id"), "review_bundle.payload.patch.patch_run_artifact_id"
    ).strip()
    verification_run_id = v.as_str(
        verification.get("patch_run_artifact_id"), f"{where}.patch_run_artifact_id"
    ).strip()
    if patch_run_id != verification_run_id:
        v.fail("review_bundle.payload", "patch and verification patch_run_artifact_id values must match")
    if patch_run_id != patch_run_ref["artifact_id"]:
        v.fail(
            "review_bundle.payload.patch.patch_run_artifact_id",
            f"must match the {PATCH_RUN_ARTIFACT_TYPE} input reference",
        )

    readiness_payload = v.expect_object(payload.get("readiness"), "review_bundle.payload.readiness")
    v.as_choice(readiness_payload.get("decision"), "review_bundle.payload.readiness.decision", READINESS_DECISIONS)
    readiness = v.as_outcome(readiness_payload, "review_bundle.payload.readiness", BUNDLE_REASON_CODES)

    traceability = v.expect_object(payload.get("traceability"), "review_bundle.payload.traceability")
    patch_run_outcome = v.as_outcome(
        v.expect_object(
            traceability.get("patch_run_outcome"), "review_bundle.payload.traceability.patch_run_outcome"
        ),
        "review_bundle.payload.traceability.patch_run_outcome",
        PATCH_REASON_CODES,
    )

    return BundleInput(
        ref=artifact_ref(bundle),
        run_id=str(bundle["run_id"]).strip(),
        trace_lineage=trace_lineage,
        patch_run_ref=patch_run_ref,
        patch_digest=patch_digest,
        verification={
            "patch_run_artifact_id": patch_run_id,
            "pr_bundle_ready": readiness.proceeds,
            "pr_bundle_readiness": readiness.to_dict(),
            "patch_run_outcome": patch_run_outcome.to_dict(),
            "required_checks": _unique_sorted(
                v, verification.get("required_checks"), f"{where}.required_checks", allow_empty=False
            ),
            "results": _parse_check_results(verification.get("results"), f"{where}.results"),
            "checks_complete": v.as_bool(verification.get("checks_complete"), f"{where}.checks_complete"),
            "evidence_complete": v.as_bool(verification.get("evidence_complete"), f"{where}.evidence_complete"),
            "all_required_passed": v.as_bool(
                verification.get("all_required_passed"), f"{where}.all_required_passed"
            ),
            "missing_required_checks": _sorted_strs(
                v, verification.get("missing_required_checks"), f"{where}.missing_required_checks"
            ),
            "incomplete_checks": _sorted_strs(v, verification.get("incomplete_checks"), f"{where}.incomplete_checks"),
            "failing_checks": _sorted_strs(v, verification.get("failing_checks"), f"{where}.failing_checks"),
        },
        rollback=_parse_bundle_rollback(payload.get("rollback")),
        readiness=readiness,
        patch_run_outcome=patch_run_outcome,
        changes=_parse_change_entries(
            traceability.get("diff_plan_edits"), "review_bundle.payload.traceability.diff_plan_edits"
        ),
    )


# Prior apply record and benchmark evidence


@dataclass(frozen=True, slots=True)
class PriorApplyRecord:
    ref: dict[str, str]
    bundle_artifact_id: str
    state_before: StateSnapshot
    state_after: StateSnapshot
    changed_paths: list[str]
    rollback_available: bool
    rollback_strategy: str | None
    rollback_package_digest: str | None

    @property
    def artifact_id(self) -> str:
        return self.ref["artifact_id"]


def parse_previous_record(value: object) -> PriorApplyRecord:
    v = _record_validator
    record = v.expect_envelope(value, "previous_record", artifact_type=APPLY_ROLLBACK_RECORD_ARTIFACT_TYPE)
    payload = v.expect_object(record["payload"], "previous_record.payload")
    if payload.get("action") != APPLY:
        v.fail("previous_record.payload.action", "must be apply")
    if payload.get("decision") != Decision.CONTINUE.value:
        v.fail("previous_record.payload.decision", "must be continue for rollback")
    traceability = v.expect_object(payload.get("traceability"), "previous_record.payload.traceability")
    target_state = v.expect_object(payload.get("target_state"), "previous_record.payload.target_state")
    execution = v.expect_object(payload.get("execution"), "previous_record.payload.execution")
    rollback = v.expect_object(payload.get("rollback"), "previous_record.payload.rollback")
    raw_strategy = rollback.get("strategy")
    return PriorApplyRecord(
        ref=artifact_ref(record),
        bundle_artifact_id=v.as_str(
            traceability.get("pr_bundle_artifact_id"), "previous_record.payload.traceability.pr_bundle_artifact_id"
        ).strip(),
        state_before=parse_state_snapshot(
            v, execution.get("state_before"), "previous_record.payload.execution.state_before"
        ),
        state_after=parse_state_snapshot(
            v, execution.get("state_after"), "previous_record.payload.execution.state_after"
        ),
        changed_paths=_sorted_strs(
            v, target_state.get("changed_paths"), "previous_record.payload.target_state.changed_paths"
        ),
        rollback_available=v.as_bool(rollback.get("available"), "previous_record.payload.rollback.available"),
        rollback_strategy=(
            None
            if raw_strategy is None
            else v.as_choice(raw_strategy, "previous_record.payload.rollback.strategy", ROLLBACK_STRATEGIES)
        ),
        rollback_package_digest=_stripped_or_none(rollback.get("package_digest")),
    )


@dataclass(frozen=True, slots=True)
class BenchmarkEvidence:
    ref: dict[str, str]
    outcome: Outcome
    quality_floor_preserved: bool
    valid_gain: bool

    def summary(self, *, enforced: bool) -> dict[str, Any]:
        return {
            "benchmark_artifact_id": self.ref["artifact_id"],
            **self.outcome.to_dict(),
            "quality_floor_preserved": self.quality_floor_preserved,
            "valid_gain": self.valid_gain,
            "enforced": enforced,
        }


def parse_benchmark_report(value: object) -> BenchmarkEvidence:
    v = _benchmark_validator
    report = v.expect_object(value, "benchmark_report")
    if report.get("artifact_type") != BENCHMARK_REPORT_ARTIFACT_TYPE:
        v.fail("benchmark_report.artifact_type", f"expected {BENCHMARK_REPORT_ARTIFACT_TYPE!r}")
    if report.get("schema_version") != ARTIFACT_SCHEMA_VERSION:
        v.fail("benchmark_report.schema_version", f"expected {ARTIFACT_SCHEMA_VERSION!r}")
    artifact_id = v.as_str(report.get("artifact_id"), "benchmark_report.artifact_id").strip()
    payload = v.expect_object(report.get("payload"), "benchmark_report.payload")
    where = "benchmark_report.payload.benchmark_evaluation"
    evaluation = v.expect_object(payload.get("benchmark_evaluation"), where)
    decision = v.as_choice(evaluation.get("decision"), f"{where}.decision", DECISION_VALUES)
    return BenchmarkEvidence(
        ref={
            "artifact_id": artifact_id,
            "artifact_type": BENCHMARK_REPORT_ARTIFACT_TYPE,
            "schema_version": ARTIFACT_SCHEMA_VERSION,
        },
        outcome=Outcome(
            Decision(decision),
            v.as_str(evaluation.get("reason_code"), f"{where}.reason_code").strip(),
            v.as_str(evaluation.get("reason_detail"), f"{where}.reason_detail").strip(),
        ),
        quality_floor_preserved=v.as_bool(
            evaluation.get("quality_floor_preserved"), f"{where}.quality_floor_preserved"
        ),
        valid_gain=v.as_bool(evaluation.get("valid_gain"), f"{where}.valid_gain"),
    )


# Option normalization


def _optional_bool(value: object, option: str, default: bool) -> bool:
    if value is None:
        return default
    return _options_validator.as_bool(value, option)


def _path_patterns(value: object, option: str, default: Sequence[str]) -> list[str]:
    if value is None:
        return sorted(default)
    return _unique_sorted(_options_validator, value, option)


# Gates


def build_policy_summary(
    *,
    action: str,
    allow_action: bool,
    approval_required: bool,
    approval_evidence_ref: str | None,
    declared_capabilities: list[str],
    changed_paths: list[str],
    blocked_patterns: list[str],
    escalation_patterns: list[str],
    matcher: GlobMatcher,
) -> dict[str, Any]:
    required = REQUIRED_CAPABILITIES[action]
    return {
        "action_allowed": allow_action,
        "approval_required": approval_required,
        "approval_evidence_ref": approval_evidence_ref,
        "required_capability": required,
        "declared_capabilities": sorted(declared_capabilities),
        "missing_capabilities": [] if required in declared_capabilities else [required],
        "blocked_paths": matcher.collect_matches(changed_paths, blocked_patterns),
        "escalation_paths": matcher.collect_matches(changed_paths, escalation_patterns),
    }


def gate_upstream(action: str, bundle: BundleInput) -> Outcome | None:
    upstream = bundle.patch_run_outcome
    if not upstream.proceeds:
        reason_code = upstream.reason_code if upstream.reason_code in APPLY_REASON_CODES else "unsupported_input"
        return Outcome(
            upstream.decision, reason_code, f"Upstream patch run outcome blocks {action}: {upstream.reason_detail}"
        )
    readiness = bundle.readiness
    if not readiness.proceeds:
        reason_code = readiness.reason_code if readiness.reason_code in APPLY_REASON_CODES else "bundle_incomplete"
        return decisions.stop(reason_code, f"PR bundle readiness blocks {action}: {readiness.reason_detail}")
    return None


def gate_verification(action: str, verification: dict[str, Any]) -> Outcome | None:
    if not verification["checks_complete"] or not verification["evidence_complete"]:
        pieces: list[str] = []
        if verification["missing_required_checks"]:
            pieces.append(f"missing required checks: {', '.join(verification['missing_required_checks'])}")
        if verification["incomplete_checks"]:
            pieces.append(f"incomplete checks: {', '.join(verification['incomplete_checks'])}")
        detail = (
            f"Required verification evidence is incomplete for {action}: {'; '.join(pieces)}."
            if pieces
            else f"Required verification evidence is incomplete for {action}."
        )
        return decisions.stop("verification_incomplete", detail)
    if not verification["all_required_passed"]:
        failing = verification["failing_checks"]
        detail = (
            f"Required verification checks failed for {action}: {', '.join(failing)}."
            if failing
            else f"Required verification checks failed for {action}."
        )
        return decisions.stop("verification_failed", detail)
    return None


def gate_rollback_availability(action: str, bundle: BundleInput) -> Outcome | None:
    if action == APPLY and not bundle.rollback.available:
        return decisions.stop(
            "rollback_unavailable",
            "Apply is blocked because PR bundle rollback support is unavailable, invalid, or incomplete.",
        )
    return None


def gate_prior_record(bundle: BundleInput, record: PriorApplyRecord | None) -> Outcome | None:
    if record is None:
        return decisions.stop(
            "prior_apply_record_missing",
            "Rollback requires a prior apply record artifact for the same PR bundle.",
        )
    if record.bundle_artifact_id != bundle.artifact_id:
        return decisions.stop(
            "conflict_detected",
            f"Rollback prior apply record references PR bundle {record.bundle_artifact_id}, "
            f"but current input is {bundle.artifact_id}.",
        )
    if not record.rollback_available or not record.rollback_strategy:
        return decisions.stop(
            "rollback_unavailable",
            "Rollback prior apply record does not include a usable rollback strategy or restore snapshot.",
        )
    if (
        bundle.rollback.package_digest
        and record.rollback_package_digest
        and bundle.rollback.package_digest != record.rollback_package_digest
    ):
        return decisions.stop("conflict_detected", "Rollback package digest does not match the prior apply record.")
    if bundle.rollback.strategy and record.rollback_strategy != bundle.rollback.strategy:
        return decisions.stop("conflict_detected", "Rollback strategy does not match the prior apply record.")
    return None


def gate_benchmark(action: str, evidence: BenchmarkEvidence | None, *, enforce: bool) -> Outcome | None:
    if evidence is None or not enforce or action != APPLY:
        return None
    if not evidence.quality_floor_preserved:
        return decisions.stop(
            "benchmark_quality_floor_failed",
            "Apply is blocked because benchmark evidence reports quality_floor_preserved=false "
            "for the benchmark evaluation.",
        )
    if not evidence.valid_gain:
        return decisions.stop(
            "benchmark_invalid_gain",
            "Apply is blocked because benchmark evidence reports valid_gain=false "
            "for the benchmark evaluation.",
        )
    return None


def gate_policy(action: str, policy: dict[str, Any]) -> Outcome | None:
    if not policy["action_allowed"]:
        return decisions.stop("policy_blocked", f"Policy blocks {action} for the selected target workspace.")
    if policy["missing_capabilities"]:
        return decisions.escalate(
            "undeclared_capability",
            f"Apply/rollback requires declared capability {', '.join(policy['missing_capabilities'])} "
            f"before {action} can proceed.",
        )
    if policy["approval_required"] and not policy["approval_evidence_ref"]:
        return decisions.escalate(
            "policy_blocked", f"Explicit approval evidence is required before {action} can proceed."
        )
    if policy["blocked_paths"]:
        return decisions.stop(
            "policy_blocked",
            "Apply/rollback targets blocked paths and cannot proceed autonomously: "
            f"{', '.join(policy['blocked_paths'])}.",
        )
    if policy["escalation_paths"]:
        return decisions.escalate(
            "policy_blocked",
            "Apply/rollback targets policy-sensitive paths requiring human review: "
            f"{', '.join(policy['escalation_paths'])}.",
        )
    return None


def check_apply_preconditions(
    state_before: StateSnapshot, changes: Sequence[ChangeEntry], expected_digest: str | None
) -> str | None:
    """Return the failure detail for an apply, or ``None`` when the target state is as expected."""

    if expected_digest and state_before.digest != expected_digest:
        return (
            f"Apply target state digest mismatch: expected {expected_digest}, observed {state_before.digest}."
        )
    by_path = {entry.path: entry for entry in state_before.files}
    for change in changes:
        entry = by_path.get(change.path)
        if entry is None:
            return f"Target state snapshot is missing path {change.path}."
        if change.operation is EditOperation.CREATE and entry.exists:
            return f"Apply create precondition failed because {change.path} already exists."
        if change.operation is not EditOperation.CREATE and not entry.exists:
            return f"Apply {change.operation.value} precondition failed because {change.path} does not exist."
    return None


def check_rollback_preconditions(
    state_before: StateSnapshot, record: PriorApplyRecord, changed_paths: list[str]
) -> str | None:
    """Return the failure detail for a rollback; later checks take precedence over earlier ones."""

    failure: str | None = None
    if state_before.digest != record.state_after.digest:
        failure = (
            f"Rollback target state digest mismatch: expected {record.state_after.digest}, "
            f"observed {state_before.digest}."
        )
    if not record.state_before.covers(changed_paths):
        failure = "Rollback prior apply record restore snapshot does not cover all current PR bundle changed paths."
    if not record.state_after.covers(changed_paths):
        failure = (
            "Rollback prior apply record post-apply snapshot does not cover all current PR bundle changed paths."
        )
    if sorted(record.changed_paths) != changed_paths:
        failure = "Rollback prior apply record changed paths do not match the current PR bundle diff-plan edits."
    return failure


# Execution


def render_placeholder(change: ChangeEntry, bundle: BundleInput, action: str) -> str:
    lines = (
        PLACEHOLDER_HEADER,
        f"action:{action}",
        f"operation:{change.operation.value}",
        f"path:{change.path}",
        f"pr_bundle:{bundle.artifact_id}",
        f"patch_run:{bundle.patch_run_ref['artifact_id']}",
        f"patch_digest:{bundle.patch_digest}",
        change.target_label,
        change.symbol_label,
    )
    return "\n".join(lines) + "\n"


def apply_changes(root: Path, bundle: BundleInput, action: str) -> None:
    """Write every change; targets and parent directories are prepared before the first write."""

    planned: list[tuple[Path, str | None]] = []
    for change in bundle.changes:
        target = workspace_file(root, change.path)
        if change.operation is EditOperation.DELETE:
            planned.append((target, None))
            continue
        planned.append((target, render_placeholder(change, bundle, action)))

    for target, content in planned:
        if content is not None:
            target.parent.mkdir(parents=True, exist_ok=True)

    for target, content in planned:
        if content is None:
            safe_unlink(target, root)
            continue
        atomic_write(target, content)


def _execute(root: Path, action: str, bundle: BundleInput, record: PriorApplyRecord | None) -> None:
    try:
        if action == APPLY:
            apply_changes(root, bundle, action)
        else:
            if record is None:
                raise ApplyRollbackError("INVALID_OPTIONS", "rollback execution requires previous_record")
            restore_state(root, record.state_before)
    except (OSError, WorkspacePathError) as exc:
        raise ApplyRollbackError("EXECUTION_FAILED", f"apply/rollback execution failed: {exc}") from exc


def create_apply_rollback_record(
    action: object,
    review_bundle: object,
    workspace_root: object,
    *,
    execute: object = None,
    previous_record: object = None,
    benchmark_report: object = None,
    require_benchmark_valid_gain: object = None,
    expected_target_state_digest: object = None,
    target_workspace_ref: object = None,
    policy_profile_ref: object = None,
    verification_contract_ref: object = None,
    declared_capabilities: object = None,
    allow_action: object = None,
    approval_required: object = None,
    approval_evidence_ref: object = None,
    escalation_path_patterns: object = None,
    blocked_path_patterns: object = None,
    matcher: GlobMatcher | None = None,
    now: Clock | None = None,
    run_id_factory: RunIdFactory | None = None,
    tool_version: str | None = None,
    logger: Any | None = None,
) -> Artifact:
    """Evaluate every gate for ``action`` on ``review_bundle`` and execute it when allowed."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    chosen = _options_validator.as_choice(action, "action", ACTIONS)
    bundle = parse_review_bundle(review_bundle)
    root = resolve_workspace_root(
        workspace_root,
        error_type=ApplyRollbackError,
        label="workspace_root",
        invalid_code="INVALID_OPTIONS",
        unreadable_code="INVALID_OPTIONS",
        not_directory_code="INVALID_OPTIONS",
    )
    do_execute = _optional_bool(execute, "execute", False)
    allowed = _optional_bool(allow_action, "allow_action", True)
    needs_approval = _optional_bool(approval_required, "approval_required", chosen == APPLY)
    enforce_benchmark = _optional_bool(require_benchmark_valid_gain, "require_benchmark_valid_gain", False)
    capabilities = (
        []
        if declared_capabilities is None
        else _unique_sorted(_options_validator, declared_capabilities, "declared_capabilities")
    )
    blocked = _path_patterns(blocked_path_patterns, "blocked_path_patterns", DEFAULT_BLOCKED_PATH_PATTERNS)
    escalation = _path_patterns(
        escalation_path_patterns, "escalation_path_patterns", DEFAULT_ESCALATION_PATH_PATTERNS
    )
    profile_ref = _stripped_or_none(policy_profile_ref) or DEFAULT_POLICY_PROFILE_REF
    contract_ref = _stripped_or_none(verification_contract_ref) or DEFAULT_VERIFICATION_CONTRACT_REF
    benchmark = None if benchmark_report is None else parse_benchmark_report(benchmark_report)
    record = None if previous_record is None else parse_previous_record(previous_record)

    changed_paths = sorted(bundle.changed_paths)
    state_before = capture_state(root, changed_paths)
    expected_digest = _stripped_or_none(expected_target_state_digest)
    failure: str | None = None
    if chosen == APPLY:
        failure = check_apply_preconditions(state_before, bundle.changes, expected_digest)
    elif record is not None:
        expected_digest = record.state_after.digest
        failure = check_rollback_preconditions(state_before, record, changed_paths)

    glob_matcher = matcher if matcher is not None else GlobMatcher()
    policy = build_policy_summary(
        action=chosen,
        allow_action=allowed,
        approval_required=needs_approval,
        approval_evidence_ref=_stripped_or_none(approval_evidence_ref),
        declared_capabilities=capabilities,
        changed_paths=changed_paths,
        blocked_patterns=blocked,
        escalation_patterns=escalation,
        matcher=glob_matcher,
    )

    gates = (
        lambda: gate_upstream(chosen, bundle),
        lambda: gate_verification(chosen, bundle.verification),
        lambda: gate_rollback_availability(chosen, bundle),
        lambda: gate_prior_record(bundle, record) if chosen == ROLLBACK else None,
        lambda: gate_benchmark(chosen, benchmark, enforce=enforce_benchmark),
        lambda: gate_policy(chosen, policy),
        lambda: decisions.stop("conflict_detected", failure) if failure else None,
    )
    outcome = decisions.ok("All apply/rollback policy, verification, and precondition checks passed.")
    for gate in gates:
        blocked_by = gate()
        if blocked_by is not None:
            outcome = blocked_by
            break

    state_after = state_before
    executed = False
    restored = False
    if outcome.proceeds and do_execute:
        _execute(root, chosen, bundle, record)
        executed = True
        state_after = capture_state(root, changed_paths)
        if chosen == ROLLBACK and record is not None:
            restored = state_after.digest == record.state_before.digest
            if not restored:
                outcome = decisions.stop(
                    "conflict_detected",
                    f"Rollback execution did not restore the prior state digest {record.state_before.digest}; "
                    f"observed {state_after.digest}.",
                )
                log.warning(
                    "rollback_restore_mismatch",
                    expected=record.state_before.digest,
                    observed=state_after.digest,
                )

    if outcome.proceeds and not do_execute:
        outcome = Outcome(
            outcome.decision,
            outcome.reason_code,
            f"{outcome.reason_detail} Execution skipped because execute=false (dry-run).",
        )

    if chosen == ROLLBACK:
        rollback_available = bool(record and record.rollback_available)
        rollback_strategy = (record.rollback_strategy if record else None) or bundle.rollback.strategy
        rollback_digest = (record.rollback_package_digest if record else None) or bundle.rollback.package_digest
    else:
        rollback_available = bundle.rollback.available
        rollback_strategy = bundle.rollback.strategy
        rollback_digest = bundle.rollback.package_digest

    inputs = [bundle.ref]
    if record is not None:
        inputs.append(record.ref)
    if benchmark is not None:
        inputs.append(benchmark.ref)

    artifact = build_artifact(
        artifact_type=APPLY_ROLLBACK_RECORD_ARTIFACT_TYPE,
        run_id=resolve_run_id(run_id_factory, stage="apply_rollback", upstream_run_id=bundle.run_id, logger=log),
        produced_at=resolve_produced_at(now, stage="apply_rollback", logger=log),
        tool_version=tool_version,
        inputs=inputs,
        trace={
            "lineage": _ordered_unique(
                [
                    *bundle.trace_lineage,
                    bundle.patch_run_ref["artifact_id"],
                    bundle.artifact_id,
                    record.artifact_id if record else None,
                    benchmark.ref["artifact_id"] if benchmark else None,
                ]
            ),
            "boundary_mode": BOUNDARY_MODE,
            "policy_profile_ref": profile_ref,
            "verification_contract_ref": contract_ref,
            "target_workspace_ref": _stripped_or_none(target_workspace_ref),
        },
        payload={
            "action": chosen,
            **outcome.to_dict(),
            "policy": policy,
            "verification": bundle.verification,
            "rollback": {
                "available": rollback_available,
                "strategy": rollback_strategy,
                "package_ref": bundle.rollback.package_ref,
                "package_digest": rollback_digest,
                "package_format": bundle.rollback.package_format,
                "package_valid": bundle.rollback.package_valid,
                "instructions_present": bundle.rollback.instructions_present,
                "prior_apply_record_artifact_id": record.artifact_id if record else None,
                "previous_apply_restore_snapshot_available": (
                    record.state_before.covers(changed_paths) if record else False
                ),
                "restored_to_prior_state": restored,
            },
            "target_state": {
                "changed_paths": changed_paths,
                "expected_precondition_digest": expected_digest,
                "observed_precondition_digest": state_before.digest,
                "preconditions_met": failure is None,
                "observed_result_digest": state_after.digest,
            },
            "execution": {
                "mode": EXECUTION_MODE,
                "execute_requested": do_execute,
                "executed": executed,
                "state_before": state_before.to_dict(),
                "state_after": state_after.to_dict(),
            },
            "traceability": {
                "pr_bundle_artifact_id": bundle.artifact_id,
                "patch_run_artifact_id": bundle.patch_run_ref["artifact_id"],
                "benchmark_gate": benchmark.summary(enforced=enforce_benchmark) if benchmark else None,
            },
        },
    )
    log.info(
        "apply_rollback_decision",
        artifact_id=artifact["artifact_id"],
        action=chosen,
        decision=outcome.decision.value,
        reason_code=outcome.reason_code,
        executed=executed,
    )
    return artifact


__all__ = [
    "ACTIONS",
    "APPLY",
    "DEFAULT_BLOCKED_PATH_PATTERNS",
    "DEFAULT_ESCALATION_PATH_PATTERNS",
    "DEFAULT_POLICY_PROFILE_REF",
    "DEFAULT_VERIFICATION_CONTRACT_REF",
    "EXECUTION_MODE",
    "PLACEHOLDER_HEADER",
    "REQUIRED_CAPABILITIES",
    "ROLLBACK",
    "BenchmarkEvidence",
    "BundleInput",
    "ChangeEntry",
    "PriorApplyRecord",
    "apply_changes",
    "build_policy_summary",
    "check_apply_preconditions",
    "check_rollback_preconditions",
    "create_apply_rollback_record",
    "gate_benchmark",
    "gate_policy",
    "gate_prior_record",
    "gate_upstream",
    "gate_verification",
    "parse_benchmark_report",
    "parse_previous_record",
    "parse_review_bundle",
    "render_placeholder",
]
