"""
patchgate — patch run stage

File: src/patchgate/pipeline/patch_run.py
Last updated: 2026-10-18

Purpose
- Materialize a safe diff plan into a digest-addressed unified diff and evaluate verification evidence.

Functional requirements
- A plan that did not ``continue`` propagates its decision and reason code without materializing edits.
- Verification is evaluated and reported for every run, blocked or not.
- Decision precedence for materialized edits: incomplete evidence, failing checks, policy-sensitive paths.

Non-functional requirements
- ``patch_digest`` is the prefixed SHA-256 of ``patch.content`` and is reproducible from it alone.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from patchgate.constants import PATCH_RUN_ARTIFACT_TYPE, SAFE_DIFF_PLAN_ARTIFACT_TYPE
from patchgate.domain import decisions
from patchgate.domain.decisions import PATCH_REASON_CODES, PLAN_REASON_CODES, Outcome
from patchgate.domain.edits import Edit, parse_edits
from patchgate.domain.envelope import Artifact, artifact_ref, build_artifact
from patchgate.domain.errors import PatchRunError
from patchgate.domain.hooks import Clock, RunIdFactory, resolve_produced_at, resolve_run_id
from patchgate.domain.validation import FieldValidator
from patchgate.pipeline.materializer import PatchMaterializer, PlaceholderPatchMaterializer
from patchgate.utils.globs import GlobMatcher
from patchgate.utils.hashing import sha256_prefixed
from patchgate.utils.paths import normalize_separators

DEFAULT_PATCH_MATERIALIZATION: Final[str] = PlaceholderPatchMaterializer.name
DEFAULT_REQUIRED_CHECKS: Final[tuple[str, ...]] = ("lint", "typecheck", "test")
DEFAULT_POLICY_SENSITIVE_PATH_PATTERNS: Final[tuple[str, ...]] = (
    ".github/workflows/**",
    ".github/actions/**",
    "docs/spec/schemas/**",
    "docs/spec/policyprofile-*.md",
    "docs/spec/verificationcontract-*.md",
)
PATCH_FORMAT: Final[str] = "unified_diff"
CHECK_STATUSES: Final[tuple[str, ...]] = ("pass", "fail", "not_run")

_plan_validator = FieldValidator(PatchRunError, "INVALID_SAFE_DIFF_PLAN")
_options_validator = FieldValidator(PatchRunError, "INVALID_OPTIONS")


def _stripped_or_none(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_required_checks(value: object) -> list[str]:
    if value is None:
        return sorted(DEFAULT_REQUIRED_CHECKS)
    checks = {item.strip() for item in _options_validator.as_str_list(value, "required_checks")}
    if not checks:
        _options_validator.fail("required_checks", "must include at least one required check")
    return sorted(checks)


def normalize_verification_results(value: object) -> list[dict[str, str]]:
    """Validate caller-supplied check results; ``status`` defaults to ``not_run``."""

    if value is None:
        return []
    results: list[dict[str, str]] = []
    seen: set[str] = set()
    for index, item in enumerate(_options_validator.as_list(value, "verification_results")):
        where = f"verification_results[{index}]"
        entry = _options_validator.expect_object(item, where)
        check = _options_validator.as_str(entry.get("check"), f"{where}.check").strip()
        if check in seen:
            _options_validator.fail("verification_results", f"contains duplicate check {check!r}")
        seen.add(check)
        raw_status = entry.get("status")
        status = (
            "not_run"
            if raw_status is None
            else _options_validator.as_choice(raw_status, f"{where}.status", CHECK_STATUSES)
        )
        result = {"check": check, "status": status}
        evidence_ref = _stripped_or_none(entry.get("evidence_ref"))
        if evidence_ref is not None:
            result["evidence_ref"] = evidence_ref
        detail = _stripped_or_none(entry.get("detail"))
        if detail is not None:
            result["detail"] = detail
        results.append(result)
    return sorted(results, key=lambda result: result["check"])


def normalize_policy_sensitive_patterns(value: object) -> list[str]:
    if value is None:
        return list(DEFAULT_POLICY_SENSITIVE_PATH_PATTERNS)
    patterns = _options_validator.as_str_list(value, "policy_sensitive_path_patterns")
    return sorted({normalize_separators(pattern.strip()) for pattern in patterns})


@dataclass(slots=True)
class VerificationSummary:
    """Per-check evaluation of ``results`` against ``required_checks``."""

    required_checks: list[str]
    results: list[dict[str, str]]
    checks_complete: bool = True
    evidence_complete: bool = True
    all_required_passed: bool = True
    missing_required_checks: list[str] = field(default_factory=list)
    incomplete_checks: list[str] = field(default_factory=list)
    failing_checks: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.checks_complete and self.evidence_complete

    def status_of(self, check: str) -> str | None:
        for result in self.results:
            if result["check"] == check:
                return result["status"]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "required_checks": list(self.required_checks),
            "results": [dict(result) for result in self.results],
            "checks_complete": self.checks_complete,
            "evidence_complete": self.evidence_complete,
            "all_required_passed": self.all_required_passed,
            "missing_required_checks": list(self.missing_required_checks),
            "incomplete_checks": list(self.incomplete_checks),
            "failing_checks": list(self.failing_checks),
        }


def evaluate_verification(
    required_checks: Sequence[str],
    results: Sequence[dict[str, str]],
) -> VerificationSummary:
    by_check = {result["check"]: result for result in results}
    summary = VerificationSummary(required_checks=list(required_checks), results=list(results))
    incomplete: set[str] = set()
    failing: set[str] = set()

    for check in required_checks:
        result = by_check.get(check)
        if result is None:
            summary.missing_required_checks.append(check)
            incomplete.add(check)
            summary.checks_complete = False
            summary.evidence_complete = False
            summary.all_required_passed = False
            continue
        if "evidence_ref" not in result:
            summary.evidence_complete = False
            incomplete.add(check)
        if result["status"] == "not_run":
            summary.checks_complete = False
            summary.all_required_passed = False
            incomplete.add(check)
        elif result["status"] == "fail":
            summary.all_required_passed = False
            failing.add(check)

    summary.incomplete_checks = sorted(incomplete)
    summary.failing_checks = sorted(failing)
    return summary


def format_incomplete_reason(summary: VerificationSummary) -> str:
    parts: list[str] = []
    if summary.missing_required_checks:
        parts.append(f"missing required checks: {', '.join(summary.missing_required_checks)}")
    not_run = [check for check in summary.incomplete_checks if summary.status_of(check) == "not_run"]
    evidence_only = [
        check
        for check in summary.incomplete_checks
        if check not in summary.missing_required_checks and check not in not_run
    ]
    if not_run:
        parts.append(f"not-run required checks: {', '.join(not_run)}")
    if evidence_only:
        parts.append(f"missing evidence links for: {', '.join(evidence_only)}")
    text = "; ".join(parts) if parts else "required verification evidence is incomplete"
    return f"Required verification evidence is incomplete: {text}."


def collect_policy_sensitive_paths(
    edits: Sequence[Edit], patterns: Sequence[str], matcher: GlobMatcher
) -> list[str]:
    return sorted({edit.path for edit in edits if matcher.matches_any(edit.path, patterns)})


class _PlanInput:
    def __init__(self, value: object) -> None:
        plan = _plan_validator.expect_envelope(
            value, "safe_diff_plan", artifact_type=SAFE_DIFF_PLAN_ARTIFACT_TYPE
        )
        payload = _plan_validator.expect_object(plan["payload"], "safe_diff_plan.payload")
        self.ref = artifact_ref(plan)
        self.run_id = str(plan["run_id"]).strip()
        self.outcome = _plan_validator.as_outcome(payload, "safe_diff_plan.payload", PLAN_REASON_CODES)
        self.edits = parse_edits(
            _plan_validator, payload.get("edits"), "safe_diff_plan.payload.edits", mode="normalize"
        )


def _decide(
    edits: Sequence[Edit],
    verification: VerificationSummary,
    *,
    policy_patterns: Sequence[str],
    matcher: GlobMatcher,
) -> Outcome:
    if not verification.complete:
        return decisions.stop("verification_incomplete", format_incomplete_reason(verification))
    if not verification.all_required_passed:
        return decisions.stop(
            "verification_failed",
            f"Required verification checks failed: {', '.join(verification.failing_checks)}.",
        )
    sensitive = collect_policy_sensitive_paths(edits, policy_patterns, matcher)
    if sensitive:
        return decisions.escalate(
            "policy_blocked",
            f"Patch targets policy-sensitive paths requiring human review: {', '.join(sensitive)}.",
        )
    return decisions.ok("All required checks passed with complete evidence")


def create_patch_run(
    safe_diff_plan: object,
    *,
    verification_results: object = None,
    required_checks: object = None,
    patch_materialization: object = None,
    policy_sensitive_path_patterns: object = None,
    materializer: PatchMaterializer | None = None,
    matcher: GlobMatcher | None = None,
    now: Clock | None = None,
    run_id_factory: RunIdFactory | None = None,
    tool_version: str | None = None,
    logger: Any | None = None,
) -> Artifact:
    """Materialize ``safe_diff_plan`` and gate it on verification evidence."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    plan = _PlanInput(safe_diff_plan)
    chosen_materializer = materializer if materializer is not None else PlaceholderPatchMaterializer()
    materialization = (
        _stripped_or_none(patch_materialization)
        or _stripped_or_none(getattr(chosen_materializer, "name", None))
        or DEFAULT_PATCH_MATERIALIZATION
    )
    checks = normalize_required_checks(required_checks)
    results = normalize_verification_results(verification_results)
    policy_patterns = normalize_policy_sensitive_patterns(policy_sensitive_path_patterns)

    edits: list[Edit] = []
    if not plan.outcome.proceeds:
        if plan.outcome.reason_code not in PATCH_REASON_CODES:
            _plan_validator.fail(
                "safe_diff_plan.payload.reason_code", "reason_code cannot be propagated"
            )
        outcome = Outcome(
            plan.outcome.decision,
            plan.outcome.reason_code,
            f"Safe diff plan blocked patch generation: {plan.outcome.reason_detail}",
        )
    elif not plan.edits:
        outcome = decisions.stop(
            "unsupported_input",
            "Safe diff plan continue decision did not include any edits to materialize.",
        )
    else:
        edits = plan.edits
        outcome = decisions.stop("unsupported_input", "Patch generation did not run.")

    content = chosen_materializer.materialize(edits)
    verification = evaluate_verification(checks, results)
    if edits:
        outcome = _decide(
            edits,
            verification,
            policy_patterns=policy_patterns,
            matcher=matcher if matcher is not None else GlobMatcher(),
        )

    artifact = build_artifact(
        artifact_type=PATCH_RUN_ARTIFACT_TYPE,
        run_id=resolve_run_id(run_id_factory, stage="patch_run", upstream_run_id=plan.run_id, logger=log),
        produced_at=resolve_produced_at(now, stage="patch_run", logger=log),
        tool_version=tool_version,
        inputs=[plan.ref],
        trace={"patch_materialization": materialization},
        payload={
            "patch": {
                "format": PATCH_FORMAT,
                "content": content,
                "file_count": len({edit.path for edit in edits}),
                "hunk_count": len(edits),
            },
            "patch_digest": sha256_prefixed(content),
            "verification": verification.to_dict(),
            **outcome.to_dict(),
        },
    )
    log.info(
        "patch_run_decision",
        artifact_id=artifact["artifact_id"],
        decision=outcome.decision.value,
        reason_code=outcome.reason_code,
        hunks=len(edits),
    )
    return artifact


__all__ = [
    "CHECK_STATUSES",
    "DEFAULT_PATCH_MATERIALIZATION",
    "DEFAULT_POLICY_SENSITIVE_PATH_PATTERNS",
    "DEFAULT_REQUIRED_CHECKS",
    "PATCH_FORMAT",
    "VerificationSummary",
    "collect_policy_sensitive_paths",
    "create_patch_run",
    "evaluate_verification",
    "format_incomplete_reason",
    "normalize_policy_sensitive_patterns",
    "normalize_required_checks",
    "normalize_verification_results",
]
