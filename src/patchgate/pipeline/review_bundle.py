"""
patchgate — review bundle stage

File: src/patchgate/pipeline/review_bundle.py
Last updated: 2026-10-18

Purpose
- Package a patch run, its lineage, and a reverse-patch rollback into one reviewable artifact.
- Decide whether the bundle is ready to hand to the apply/rollback engine.

Functional requirements
- The patch run's ``patch_digest`` is recomputed from its content before anything else is trusted.
- Supplied ancestors must share the patch run's ``run_id`` and match their child's input reference.
- Rollback packages invert each planned edit and replay them in reverse order.
- Readiness covers ten ordered sections; any missing section forces ``stop``.

Non-functional requirements
- The bundle is a pure function of its inputs plus the clock and run-id hooks.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from patchgate.constants import (
    INTENT_MAPPING_ARTIFACT_TYPE,
    PATCH_RUN_ARTIFACT_TYPE,
    REVIEW_BUNDLE_ARTIFACT_TYPE,
    SAFE_DIFF_PLAN_ARTIFACT_TYPE,
    SHA256_PREFIX,
    WORKSPACE_SNAPSHOT_ARTIFACT_TYPE,
)
from patchgate.domain import decisions
from patchgate.domain.decisions import PATCH_REASON_CODES, Decision, Outcome
from patchgate.domain.edits import Edit, parse_edits
from patchgate.domain.envelope import Artifact, artifact_ref, build_artifact, dedupe_refs
from patchgate.domain.errors import ReviewBundleError
from patchgate.domain.hooks import Clock, RunIdFactory, resolve_produced_at, resolve_run_id
from patchgate.domain.validation import FieldValidator
from patchgate.pipeline.materializer import render_rollback_package, squash_line
from patchgate.pipeline.patch_run import CHECK_STATUSES, PATCH_FORMAT
from patchgate.utils.hashing import sha256_prefixed
from patchgate.utils.paths import normalize_separators

BOUNDARY_MODE: Final[str] = "artifact_only"
ROLLBACK_STRATEGY: Final[str] = "reverse_patch"
ROLLBACK_STRATEGIES: Final[tuple[str, ...]] = (ROLLBACK_STRATEGY,)
ROLLBACK_REF_PREFIX: Final[str] = "rollback_"
ROLLBACK_REF_DIGEST_CHARS: Final[int] = 12
RATIONALE_PATH_PREVIEW: Final[int] = 3

READINESS_SECTIONS: Final[tuple[str, ...]] = (
    "patch_digest",
    "patch_payload",
    "change_summary",
    "change_rationale",
    "risk_tradeoffs",
    "verification_link",
    "verification_results",
    "rollback_package",
    "rollback_instructions",
    "lineage_trace_complete",
)

_patch_validator = FieldValidator(ReviewBundleError, "INVALID_PATCH_RUN")
_lineage_validator = FieldValidator(ReviewBundleError, "INVALID_LINEAGE")
_options_validator = FieldValidator(ReviewBundleError, "INVALID_OPTIONS")

_MISSING = object()


def _stripped_or_none(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_string_array(validator: FieldValidator, value: object, path: str) -> list[str] | None:
    """Trim, drop blanks, and dedupe in first-seen order; ``None`` means "not supplied"."""

    if value is None:
        return None
    items: list[str] = []
    for index, item in enumerate(validator.as_list(value, path)):
        text = validator.as_any_str(item, f"{path}[{index}]").strip()
        if text and text not in items:
            items.append(text)
    return items


# Patch run input


@dataclass(slots=True)
class PatchRunInput:
    ref: dict[str, str]
    run_id: str
    plan_ref: dict[str, str]
    patch: dict[str, Any]
    verification: dict[str, Any]
    outcome: Outcome

    @property
    def artifact_id(self) -> str:
        return self.ref["artifact_id"]

    @property
    def verification_complete(self) -> bool:
        return bool(self.verification["checks_complete"] and self.verification["evidence_complete"])

    @property
    def verification_passed(self) -> bool:
        return bool(self.verification_complete and self.verification["all_required_passed"])


def _parse_check_results(value: object, path: str) -> list[dict[str, str]]:
    results: list[dict[str, str]] = []
    for index, item in enumerate(_patch_validator.as_list(value, path)):
        where = f"{path}[{index}]"
        entry = _patch_validator.expect_object(item, where)
        result = {
            "check": _patch_validator.as_str(entry.get("check"), f"{where}.check").strip(),
            "status": _patch_validator.as_choice(entry.get("status"), f"{where}.status", CHECK_STATUSES),
        }
        evidence_ref = _stripped_or_none(entry.get("evidence_ref"))
        if evidence_ref is not None:
            result["evidence_ref"] = evidence_ref
        detail = _stripped_or_none(entry.get("detail"))
        if detail is not None:
            result["detail"] = detail
        results.append(result)
    return results


def parse_patch_run(value: object) -> PatchRunInput:
    """Validate a patch run artifact and re-verify its patch digest."""

    v = _patch_validator
    artifact = v.expect_envelope(value, "patch_run", artifact_type=PATCH_RUN_ARTIFACT_TYPE)
    plan_ref = v.single_input_ref(artifact, "patch_run", artifact_type=SAFE_DIFF_PLAN_ARTIFACT_TYPE)
    assert plan_ref is not None
    payload = v.expect_object(artifact["payload"], "patch_run.payload")

    patch = v.expect_object(payload.get("patch"), "patch_run.payload.patch")
    v.as_choice(patch.get("format"), "patch_run.payload.patch.format", (PATCH_FORMAT,))
    content = v.as_any_str(patch.get("content"), "patch_run.payload.patch.content")
    digest = v.as_str(payload.get("patch_digest"), "patch_run.payload.patch_digest").strip()
    if sha256_prefixed(content) != digest:
        v.fail("patch_run.payload.patch_digest", "does not match payload.patch.content")
    file_count = v.as_int(patch.get("file_count"), "patch_run.payload.patch.file_count", minimum=0)
    hunk_count = v.as_int(patch.get("hunk_count"), "patch_run.payload.patch.hunk_count", minimum=0)

    where = "patch_run.payload.verification"
    verification = v.expect_object(payload.get("verification"), where)
    required_checks = normalize_string_array(v, verification.get("required_checks"), f"{where}.required_checks")
    if required_checks is None:
        v.fail(f"{where}.required_checks", "must be an array")
    results = _parse_check_results(verification.get("results"), f"{where}.results")
    flags = {
        name: v.as_bool(verification.get(name), f"{where}.{name}")
        for name in ("checks_complete", "evidence_complete", "all_required_passed")
    }
    lists = {
        name: normalize_string_array(v, verification.get(name), f"{where}.{name}") or []
        for name in ("missing_required_checks", "incomplete_checks", "failing_checks")
    }

    outcome = v.as_outcome(payload, "patch_run.payload", PATCH_REASON_CODES)
    ref = artifact_ref(artifact)
    return PatchRunInput(
        ref=ref,
        run_id=str(artifact["run_id"]).strip(),
        plan_ref=plan_ref,
        patch={
            "format": PATCH_FORMAT,
            "digest": digest,
            "content": content,
            "file_count": file_count,
            "hunk_count": hunk_count,
            "patch_run_artifact_id": ref["artifact_id"],
        },
        verification={
            "patch_run_artifact_id": ref["artifact_id"],
            "required_checks": required_checks,
            "results": results,
            **flags,
            **lists,
        },
        outcome=outcome,
    )


# Lineage


@dataclass(slots=True)
class _LineageNode:
    ref: dict[str, str]
    run_id: str
    parent_ref: dict[str, str] | None = None


@dataclass(slots=True)
class _MappingNode(_LineageNode):
    intent_summary: str = ""
    mapped_targets: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class _PlanNode(_LineageNode):
    edits: list[Edit] = field(default_factory=list)


@dataclass(slots=True)
class Lineage:
    workspace_snapshot: _LineageNode | None = None
    intent_mapping: _MappingNode | None = None
    safe_diff_plan: _PlanNode | None = None
    complete: bool = False

    def chain(self, patch_ref: dict[str, str]) -> dict[str, dict[str, str]]:
        chain: dict[str, dict[str, str]] = {}
        if self.workspace_snapshot is not None:
            chain["workspace_snapshot"] = self.workspace_snapshot.ref
        if self.intent_mapping is not None:
            chain["intent_mapping"] = self.intent_mapping.ref
        if self.safe_diff_plan is not None:
            chain["safe_diff_plan"] = self.safe_diff_plan.ref
        chain["patch_run"] = patch_ref
        return chain

    def refs(self, patch_ref: dict[str, str]) -> list[dict[str, str]]:
        return dedupe_refs(list(self.chain(patch_ref).values()))

    @property
    def edits(self) -> list[Edit]:
        return self.safe_diff_plan.edits if self.safe_diff_plan is not None else []


def _parse_snapshot_node(value: object) -> _LineageNode:
    where = "lineage.workspace_snapshot"
    artifact = _lineage_validator.expect_envelope(value, where, artifact_type=WORKSPACE_SNAPSHOT_ARTIFACT_TYPE)
    return _LineageNode(ref=artifact_ref(artifact), run_id=str(artifact["run_id"]).strip())


def _parse_mapped_target(value: object, path: str) -> dict[str, Any]:
    entry = _lineage_validator.expect_object(value, path)
    symbol_path = _lineage_validator.as_optional_str(entry.get("symbol_path"), f"{path}.symbol_path")
    return {
        "target_id": _lineage_validator.as_str(entry.get("target_id"), f"{path}.target_id").strip(),
        "path": normalize_separators(_lineage_validator.as_str(entry.get("path"), f"{path}.path").strip()),
        "symbol_path": symbol_path.strip() if symbol_path is not None else None,
    }


def _parse_mapping_node(value: object) -> _MappingNode:
    where = "lineage.intent_mapping"
    v = _lineage_validator
    artifact = v.expect_envelope(value, where, artifact_type=INTENT_MAPPING_ARTIFACT_TYPE)
    payload = v.expect_object(artifact["payload"], f"{where}.payload")
    intent = v.expect_object(payload.get("intent"), f"{where}.payload.intent")
    candidates = v.as_list(payload.get("candidates"), f"{where}.payload.candidates")
    return _MappingNode(
        ref=artifact_ref(artifact),
        run_id=str(artifact["run_id"]).strip(),
        parent_ref=v.single_input_ref(
            artifact, where, artifact_type=WORKSPACE_SNAPSHOT_ARTIFACT_TYPE, required=False
        ),
        intent_summary=v.as_str(intent.get("summary"), f"{where}.payload.intent.summary").strip(),
        mapped_targets=[
            _parse_mapped_target(item, f"{where}.payload.candidates[{index}]")
            for index, item in enumerate(candidates)
        ],
    )


def _parse_plan_node(value: object) -> _PlanNode:
    where = "lineage.safe_diff_plan"
    v = _lineage_validator
    artifact = v.expect_envelope(value, where, artifact_type=SAFE_DIFF_PLAN_ARTIFACT_TYPE)
    payload = v.expect_object(artifact["payload"], f"{where}.payload")
    return _PlanNode(
        ref=artifact_ref(artifact),
        run_id=str(artifact["run_id"]).strip(),
        parent_ref=v.single_input_ref(
            artifact, where, artifact_type=INTENT_MAPPING_ARTIFACT_TYPE, required=False
        ),
        edits=parse_edits(v, payload.get("edits"), f"{where}.payload.edits", mode="normalize"),
    )


def resolve_lineage(value: object, patch_run: PatchRunInput) -> Lineage:
    """Validate supplied ancestors of ``patch_run`` and decide whether the chain is complete."""

    if value is None:
        return Lineage()
    supplied = _options_validator.expect_object(value, "lineage")
    snapshot = (
        _parse_snapshot_node(supplied["workspace_snapshot"])
        if supplied.get("workspace_snapshot") is not None
        else None
    )
    mapping = (
        _parse_mapping_node(supplied["intent_mapping"])
        if supplied.get("intent_mapping") is not None
        else None
    )
    plan = (
        _parse_plan_node(supplied["safe_diff_plan"])
        if supplied.get("safe_diff_plan") is not None
        else None
    )

    run_ids: list[str] = []
    for node_run_id in (
        patch_run.run_id,
        plan.run_id if plan else None,
        mapping.run_id if mapping else None,
        snapshot.run_id if snapshot else None,
    ):
        if node_run_id is not None and node_run_id not in run_ids:
            run_ids.append(node_run_id)
    if len(run_ids) > 1:
        _lineage_validator.fail(
            "lineage", f"artifacts must share a run_id with patch run; observed: {', '.join(run_ids)}"
        )

    if plan is not None and plan.ref != patch_run.plan_ref:
        _lineage_validator.fail("lineage.safe_diff_plan", "does not match patch run inputs reference")
    if mapping is not None and plan is not None and plan.parent_ref is not None and plan.parent_ref != mapping.ref:
        _lineage_validator.fail("lineage.intent_mapping", "does not match safe diff plan inputs reference")
    if (
        snapshot is not None
        and mapping is not None
        and mapping.parent_ref is not None
        and mapping.parent_ref != snapshot.ref
    ):
        _lineage_validator.fail(
            "lineage.workspace_snapshot", "does not match intent mapping inputs reference"
        )

    complete = (
        snapshot is not None
        and mapping is not None
        and plan is not None
        and plan.parent_ref == mapping.ref
        and mapping.parent_ref == snapshot.ref
    )
    return Lineage(workspace_snapshot=snapshot, intent_mapping=mapping, safe_diff_plan=plan, complete=complete)


# Rollback


@dataclass(slots=True)
class Rollback:
    strategy: str
    supported: bool
    package_ref: str | None
    package: dict[str, Any] | None
    instructions: list[str]

    @property
    def package_ready(self) -> bool:
        return bool(
            self.supported
            and self.package_ref
            and self.package is not None
            and self.package["content"]
            and self.package["digest"]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "supported": self.supported,
            "package_ref": self.package_ref,
            "package": self.package,
            "instructions": list(self.instructions),
        }


def default_rollback_instructions(package_ref: str, patch_run_id: str, plan_id: str | None) -> list[str]:
    instructions = [
        f"Apply rollback package {package_ref} as a unified diff against the same workspace baseline "
        f"expected by patch run {patch_run_id}.",
        "Verify the target workspace state matches the expected pre-apply conditions before executing rollback.",
        "Re-run required checks and record evidence linkage in the future apply/rollback artifact.",
    ]
    if plan_id:
        instructions.insert(
            1,
            f"Use safe diff plan {plan_id} as the authoritative path/order reference "
            "when reviewing rollback hunks.",
        )
    return instructions


def derive_rollback(lineage: Lineage, patch_run: PatchRunInput, overrides: object = None) -> Rollback:
    options = {} if overrides is None else _options_validator.expect_object(overrides, "rollback")
    raw_strategy = options.get("strategy")
    strategy = (
        ROLLBACK_STRATEGY
        if raw_strategy is None
        else _options_validator.as_choice(raw_strategy, "rollback.strategy", ROLLBACK_STRATEGIES)
    )
    forced_supported = (
        None
        if options.get("supported") is None
        else _options_validator.as_bool(options["supported"], "rollback.supported")
    )
    instructions_override = normalize_string_array(
        _options_validator, options.get("instructions"), "rollback.instructions"
    )
    raw_ref = options.get("package_ref")
    if raw_ref is not None:
        _options_validator.as_any_str(raw_ref, "rollback.package_ref")
    ref_override = _stripped_or_none(raw_ref)

    plan = lineage.safe_diff_plan
    can_build = plan is not None and bool(plan.edits)
    supported = can_build if forced_supported is None else forced_supported
    if plan is None or not (supported and can_build):
        return Rollback(
            strategy=strategy,
            supported=False,
            package_ref=ref_override,
            package=None,
            instructions=instructions_override or [],
        )

    content = render_rollback_package(plan.edits)
    digest = sha256_prefixed(content)
    hex_digest = digest[len(SHA256_PREFIX) :]
    package_ref = ref_override or f"{ROLLBACK_REF_PREFIX}{hex_digest[:ROLLBACK_REF_DIGEST_CHARS]}"
    return Rollback(
        strategy=strategy,
        supported=True,
        package_ref=package_ref,
        package={
            "format": PATCH_FORMAT,
            "content": content,
            "digest": digest,
            "file_count": len({edit.path for edit in plan.edits}),
            "hunk_count": len(plan.edits),
        },
        instructions=(
            instructions_override
            if instructions_override is not None
            else default_rollback_instructions(package_ref, patch_run.artifact_id, plan.ref["artifact_id"])
        ),
    )


# Narrative sections


def resolve_summary(value: object, lineage: Lineage, patch_run: PatchRunInput) -> str:
    explicit = _stripped_or_none(value)
    if explicit:
        return explicit
    if lineage.intent_mapping is not None:
        return squash_line(lineage.intent_mapping.intent_summary, 160)
    base = f"PR-equivalent bundle for patch run {patch_run.artifact_id}"
    if patch_run.outcome.decision is Decision.ESCALATE:
        return f"{base} (human review required)"
    return base


def resolve_rationale(value: object, lineage: Lineage, patch_run: PatchRunInput) -> str:
    explicit = _stripped_or_none(value)
    if explicit:
        return explicit
    edits = lineage.edits
    if edits and lineage.safe_diff_plan is not None:
        preview = ", ".join(edit.path for edit in edits[:RATIONALE_PATH_PREVIEW])
        extra = len(edits) - RATIONALE_PATH_PREVIEW
        suffix = f" (+{extra} more)" if extra > 0 else ""
        return (
            f"Packages patch run {patch_run.artifact_id} with {len(edits)} planned edit(s) from safe diff plan "
            f"{lineage.safe_diff_plan.ref['artifact_id']}: {preview}{suffix}."
        )
    return (
        f"Packages patch run {patch_run.artifact_id} into a human-inspectable PR-equivalent artifact "
        "bundle for review and downstream apply/rollback gating."
    )


def resolve_risk_tradeoffs(value: object, lineage: Lineage, patch_run: PatchRunInput) -> list[str]:
    explicit = normalize_string_array(_options_validator, value, "risk_tradeoffs")
    if explicit is not None:
        return explicit
    risks = [
        "Patch content remains a deterministic placeholder unified diff intended for review/package "
        "handoff, not full file-content patch synthesis."
    ]
    outcome = patch_run.outcome
    if outcome.decision is Decision.ESCALATE and outcome.reason_code == "policy_blocked":
        risks.append(
            "Patch run marked policy-sensitive paths; human review is required before any apply decision."
        )
    elif outcome.decision is Decision.STOP:
        risks.append(
            f"Patch run blocked continuation ({outcome.reason_code}); this bundle is inspection-only "
            "and not apply-ready."
        )
    if not lineage.complete:
        risks.append(
            "Lineage trace is incomplete; bundle should not be used as an autonomous apply prerequisite."
        )
    return risks


def resolve_verification_evidence_ref(value: object, patch_run: PatchRunInput) -> str | None:
    """Absent defaults to the patch run id; explicit ``None`` or a blank/non-string clears it."""

    if value is _MISSING:
        return patch_run.artifact_id
    return _stripped_or_none(value)


# Readiness


def evaluate_readiness(
    *,
    patch_run: PatchRunInput,
    summary: str,
    rationale: str,
    risk_tradeoffs: Sequence[str],
    verification_evidence_ref: str | None,
    rollback: Rollback,
    lineage_complete: bool,
) -> dict[str, Any]:
    sections = {
        "patch_digest": bool(patch_run.patch["digest"]),
        "patch_payload": bool(patch_run.patch["content"]),
        "change_summary": bool(summary.strip()),
        "change_rationale": bool(rationale.strip()),
        "risk_tradeoffs": bool(risk_tradeoffs),
        "verification_link": bool(verification_evidence_ref),
        "verification_results": patch_run.verification_passed,
        "rollback_package": rollback.package_ready,
        "rollback_instructions": bool(rollback.instructions),
        "lineage_trace_complete": lineage_complete,
    }
    missing = [name for name in READINESS_SECTIONS if not sections[name]]
    upstream = patch_run.outcome

    if not missing and upstream.decision is not Decision.STOP:
        outcome = decisions.ok(
            "PR-equivalent bundle includes patch payload, rationale, risk tradeoffs, verification "
            "linkage/results, rollback package/instructions, and complete lineage trace."
        )
    else:
        if not patch_run.verification_complete:
            reason_code = "verification_incomplete"
        elif not patch_run.verification["all_required_passed"]:
            reason_code = "verification_failed"
        elif upstream.decision is Decision.STOP and upstream.reason_code in PATCH_REASON_CODES:
            reason_code = upstream.reason_code
        elif not rollback.package_ready:
            reason_code = "rollback_unavailable"
        else:
            reason_code = "bundle_incomplete"
        detail = (
            f"PR-equivalent bundle is not ready; missing required sections: {', '.join(missing)}."
            if missing
            else "PR-equivalent bundle is not ready."
        )
        if upstream.decision is not Decision.CONTINUE:
            detail += f" Upstream patch run outcome={upstream.decision.value}/{upstream.reason_code}."
        outcome = decisions.stop(reason_code, detail)

    return {**outcome.to_dict(), "required_sections": sections, "missing_sections": missing}


def _edit_summary(edit: Edit) -> dict[str, Any]:
    rendered: dict[str, Any] = {"path": edit.path, "operation": edit.operation.value}
    if edit.target_id is not None:
        rendered["target_id"] = edit.target_id
    if edit.has_symbol_path:
        rendered["symbol_path"] = edit.symbol_path
    return rendered


def create_review_bundle(
    patch_run: object,
    *,
    lineage: object = None,
    summary: object = None,
    rationale: object = None,
    risk_tradeoffs: object = None,
    verification_evidence_ref: object = _MISSING,
    rollback: object = None,
    now: Clock | None = None,
    run_id_factory: RunIdFactory | None = None,
    tool_version: str | None = None,
    logger: Any | None = None,
) -> Artifact:
    """Bundle ``patch_run`` with its lineage and rollback package, and compute readiness."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    patch = parse_patch_run(patch_run)
    chain = resolve_lineage(lineage, patch)
    rollback_info = derive_rollback(chain, patch, rollback)
    summary_text = resolve_summary(summary, chain, patch)
    rationale_text = resolve_rationale(rationale, chain, patch)
    risks = resolve_risk_tradeoffs(risk_tradeoffs, chain, patch)
    evidence_ref = resolve_verification_evidence_ref(verification_evidence_ref, patch)
    readiness = evaluate_readiness(
        patch_run=patch,
        summary=summary_text,
        rationale=rationale_text,
        risk_tradeoffs=risks,
        verification_evidence_ref=evidence_ref,
        rollback=rollback_info,
        lineage_complete=chain.complete,
    )

    traceability: dict[str, Any] = {
        "lineage_complete": chain.complete,
        "chain": chain.chain(patch.ref),
    }
    if chain.intent_mapping is not None:
        traceability["intent_summary"] = chain.intent_mapping.intent_summary
    traceability["mapped_targets"] = (
        [dict(target) for target in chain.intent_mapping.mapped_targets] if chain.intent_mapping else []
    )
    traceability["diff_plan_edits"] = [_edit_summary(edit) for edit in chain.edits]
    traceability["patch_run_outcome"] = patch.outcome.to_dict()

    inputs = chain.refs(patch.ref)
    artifact = build_artifact(
        artifact_type=REVIEW_BUNDLE_ARTIFACT_TYPE,
        run_id=resolve_run_id(run_id_factory, stage="review_bundle", upstream_run_id=patch.run_id, logger=log),
        produced_at=resolve_produced_at(now, stage="review_bundle", logger=log),
        tool_version=tool_version,
        inputs=inputs,
        trace={
            "lineage": list(dict.fromkeys(ref["artifact_id"] for ref in inputs)),
            "boundary_mode": BOUNDARY_MODE,
        },
        payload={
            "summary": summary_text,
            "rationale": rationale_text,
            "patch": patch.patch,
            "risk_tradeoffs": risks,
            "verification_evidence_ref": evidence_ref,
            "verification": patch.verification,
            "rollback": rollback_info.to_dict(),
            "traceability": traceability,
            "readiness": readiness,
        },
    )
    log.info(
        "review_bundle_readiness",
        artifact_id=artifact["artifact_id"],
        decision=readiness["decision"],
        reason_code=readiness["reason_code"],
        missing_sections=readiness["missing_sections"],
        lineage_complete=chain.complete,
    )
    return artifact


__all__ = [
    "BOUNDARY_MODE",
    "READINESS_SECTIONS",
    "ROLLBACK_STRATEGY",
    "Lineage",
    "PatchRunInput",
    "Rollback",
    "create_review_bundle",
    "default_rollback_instructions",
    "derive_rollback",
    "evaluate_readiness",
    "normalize_string_array",
    "parse_patch_run",
    "resolve_lineage",
    "resolve_rationale",
    "resolve_risk_tradeoffs",
    "resolve_summary",
    "resolve_verification_evidence_ref",
]
