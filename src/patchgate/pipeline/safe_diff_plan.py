"""
patchgate — safe diff plan stage

File: src/patchgate/pipeline/safe_diff_plan.py
Last updated: 2026-10-18

Purpose
- Turn a selected intent-mapping target into a bounded, policy-checked edit list.

Functional requirements
- A blocked mapping is inherited without generating edits.
- A continue mapping with several selected candidates escalates as ambiguous.
- Absent explicit edits, exactly one default edit is planned with an intent-inferred operation.
- Safety precedence: conflicts, forbidden or escaping paths, then change bounds.

Non-functional requirements
- Escaping paths are kept verbatim in the plan so the forbidden-path verdict is auditable.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Any, Final

import structlog

from patchgate.constants import INTENT_MAPPING_ARTIFACT_TYPE, SAFE_DIFF_PLAN_ARTIFACT_TYPE
from patchgate.domain import decisions
from patchgate.domain.decisions import MAPPING_REASON_CODES, Decision, Outcome
from patchgate.domain.edits import EDIT_OPERATIONS, Edit, EditOperation
from patchgate.domain.envelope import Artifact, artifact_ref, build_artifact
from patchgate.domain.errors import SafeDiffPlanError
from patchgate.domain.hooks import Clock, RunIdFactory, resolve_produced_at, resolve_run_id
from patchgate.domain.validation import FieldValidator
from patchgate.pipeline.intent_mapping import normalize_for_search
from patchgate.utils.globs import GlobMatcher
from patchgate.utils.paths import escapes_workspace, normalize_relative_path, normalize_separators

DEFAULT_PLANNER_PROFILE: Final[str] = "default-conservative"
DEFAULT_MAX_FILE_CHANGES: Final[int] = 5
DEFAULT_MAX_HUNKS: Final[int] = 20
BOUND_LIMIT: Final[int] = 10_000
DEFAULT_FORBIDDEN_PATH_PATTERNS: Final[tuple[str, ...]] = (
    ".git/**",
    "node_modules/**",
    ".env*",
    "**/.env*",
    "*.pem",
    "**/*.pem",
    "*.key",
    "**/*.key",
)

_DELETE_RE = re.compile(r"\b(delete|remove)\b")
_CREATE_RE = re.compile(r"\b(create|new)\b")
_ADD_RE = re.compile(r"\badd\b")
_ADD_NOUN_RE = re.compile(r"\b(?:file|section|entry|field|rule|check|capability|goal)\b")

_mapping_validator = FieldValidator(SafeDiffPlanError, "INVALID_INTENT_MAPPING")
_options_validator = FieldValidator(SafeDiffPlanError, "INVALID_OPTIONS")


def infer_operation(intent_summary: str) -> EditOperation:
    normalized = normalize_for_search(intent_summary)
    if _DELETE_RE.search(normalized):
        return EditOperation.DELETE
    if _CREATE_RE.search(normalized):
        return EditOperation.CREATE
    if _ADD_RE.search(normalized) and _ADD_NOUN_RE.search(normalized):
        return EditOperation.CREATE
    return EditOperation.MODIFY


def normalize_pattern_list(value: object, *, option: str, default: tuple[str, ...]) -> list[str]:
    if value is None:
        return sorted(set(default))
    patterns = _options_validator.as_str_list(value, option)
    return sorted({normalize_separators(pattern.strip()) for pattern in patterns})


def _normalize_bound(value: object, option: str, default: int) -> int:
    if value is None:
        return default
    return _options_validator.as_int(value, option, minimum=1, maximum=BOUND_LIMIT)


def _normalize_plan_path(value: object, path: str) -> str:
    raw = _options_validator.as_str(value, path)
    normalized = normalize_relative_path(raw)
    if normalized == ".":
        _options_validator.fail(path, "must name a file, not '.'")
    return normalized


def normalize_planned_edits(value: object) -> list[Edit] | None:
    """Validate caller-supplied edits; missing fields take planner-override defaults."""

    if value is None:
        return None
    edits: list[Edit] = []
    for index, item in enumerate(_options_validator.as_list(value, "planned_edits")):
        where = f"planned_edits[{index}]"
        entry = _options_validator.expect_object(item, where)
        edit_path = _normalize_plan_path(entry.get("path"), f"{where}.path")
        raw_operation = entry.get("operation")
        operation = EditOperation(
            "modify"
            if raw_operation is None
            else _options_validator.as_choice(raw_operation, f"{where}.operation", EDIT_OPERATIONS)
        )
        justification = entry.get("justification")
        if not isinstance(justification, str) or not justification.strip():
            justification = f"Planner override requested {operation.value} on {edit_path}."
        target_id = entry.get("target_id")
        has_symbol_path = "symbol_path" in entry
        symbol_path = (
            _options_validator.as_optional_str(entry["symbol_path"], f"{where}.symbol_path")
            if has_symbol_path
            else None
        )
        edits.append(
            Edit(
                path=edit_path,
                operation=operation,
                justification=justification.strip(),
                target_id=target_id.strip() if isinstance(target_id, str) and target_id.strip() else None,
                symbol_path=symbol_path.strip() if symbol_path else symbol_path,
                has_symbol_path=has_symbol_path,
            )
        )
    return edits


class _MappingInput:
    def __init__(self, value: object) -> None:
        mapping = _mapping_validator.expect_envelope(
            value, "intent_mapping", artifact_type=INTENT_MAPPING_ARTIFACT_TYPE
        )
        payload = _mapping_validator.expect_object(mapping["payload"], "intent_mapping.payload")
        intent = _mapping_validator.expect_object(payload.get("intent"), "intent_mapping.payload.intent")
        self.ref = artifact_ref(mapping)
        self.run_id = str(mapping["run_id"]).strip()
        self.intent_summary = _mapping_validator.as_str(
            intent.get("summary"), "intent_mapping.payload.intent.summary"
        ).strip()
        self.outcome = _mapping_validator.as_outcome(
            payload, "intent_mapping.payload", MAPPING_REASON_CODES
        )
        self.candidates: list[dict[str, Any]] = []
        for index, item in enumerate(
            _mapping_validator.as_list(payload.get("candidates"), "intent_mapping.payload.candidates")
        ):
            where = f"intent_mapping.payload.candidates[{index}]"
            candidate = _mapping_validator.expect_object(item, where)
            self.candidates.append(
                {
                    "target_id": _mapping_validator.as_str(candidate.get("target_id"), f"{where}.target_id"),
                    "path": _mapping_validator.as_str(candidate.get("path"), f"{where}.path"),
                    "symbol_path": _mapping_validator.as_optional_str(
                        candidate.get("symbol_path"), f"{where}.symbol_path"
                    ),
                }
            )


def build_default_edits(intent_summary: str, candidates: list[dict[str, Any]]) -> list[Edit]:
    if len(candidates) != 1:
        return []
    candidate = candidates[0]
    operation = infer_operation(intent_summary)
    label = f"{candidate['path']}#{candidate['symbol_path']}" if candidate["symbol_path"] else candidate["path"]
    return [
        Edit(
            path=normalize_relative_path(candidate["path"]),
            operation=operation,
            justification=f"Mapped intent to {label} for conservative {operation.value} planning.",
            target_id=candidate["target_id"],
            symbol_path=candidate["symbol_path"],
            has_symbol_path=True,
        )
    ]


def collect_conflict_paths(edits: list[Edit]) -> list[str]:
    counts = Counter(edit.path for edit in edits)
    return sorted(path for path, count in counts.items() if count > 1)


def collect_forbidden_paths(edits: list[Edit], patterns: list[str], matcher: GlobMatcher) -> list[str]:
    blocked = {
        edit.path
        for edit in edits
        if escapes_workspace(edit.path) or matcher.matches_any(edit.path, patterns)
    }
    return sorted(blocked)


def evaluate_safety(
    edits: list[Edit],
    *,
    forbidden_patterns: list[str],
    max_file_changes: int,
    max_hunks: int,
    matcher: GlobMatcher,
) -> tuple[dict[str, Any], Outcome]:
    """Return the ``safety_checks`` block and the safety verdict for non-empty ``edits``."""

    observed_files = len({edit.path for edit in edits})
    observed_hunks = len(edits)
    checks = {
        "forbidden_path_patterns": forbidden_patterns,
        "max_file_changes": {"limit": max_file_changes, "observed": observed_files},
        "max_hunks": {"limit": max_hunks, "observed": observed_hunks},
    }

    conflicts = collect_conflict_paths(edits)
    if conflicts:
        return checks, decisions.escalate(
            "conflict_detected",
            f"Planner produced conflicting edits for the same path(s): {', '.join(conflicts)}.",
        )
    forbidden = collect_forbidden_paths(edits, forbidden_patterns, matcher)
    if forbidden:
        return checks, decisions.stop(
            "forbidden_path", f"Plan targets forbidden path(s): {', '.join(forbidden)}."
        )
    exceeded: list[str] = []
    if observed_files > max_file_changes:
        exceeded.append(f"max_file_changes {observed_files}/{max_file_changes}")
    if observed_hunks > max_hunks:
        exceeded.append(f"max_hunks {observed_hunks}/{max_hunks}")
    if exceeded:
        return checks, decisions.escalate(
            "change_bound_exceeded",
            f"Plan exceeds conservative safety bounds: {'; '.join(exceeded)}.",
        )
    return checks, decisions.ok("Plan is within conservative safety bounds")


def _inherit_mapping_outcome(outcome: Outcome) -> Outcome:
    if outcome.reason_code in {"mapping_ambiguous", "mapping_low_confidence"}:
        reason_code = outcome.reason_code
    elif outcome.decision is Decision.STOP:
        reason_code = "unsupported_input"
    else:
        reason_code = "conflict_detected"
    return Outcome(
        outcome.decision,
        reason_code,
        f"Intent mapping blocked diff planning: {outcome.reason_detail}",
    )


def create_safe_diff_plan(
    intent_mapping: object,
    *,
    planned_edits: object = None,
    planner_profile: object = None,
    forbidden_path_patterns: object = None,
    max_file_changes: object = None,
    max_hunks: object = None,
    matcher: GlobMatcher | None = None,
    now: Clock | None = None,
    run_id_factory: RunIdFactory | None = None,
    tool_version: str | None = None,
    logger: Any | None = None,
) -> Artifact:
    """Plan bounded edits for the target selected by ``intent_mapping``."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    mapping = _MappingInput(intent_mapping)
    profile = (
        planner_profile.strip()
        if isinstance(planner_profile, str) and planner_profile.strip()
        else DEFAULT_PLANNER_PROFILE
    )
    forbidden = normalize_pattern_list(
        forbidden_path_patterns,
        option="forbidden_path_patterns",
        default=DEFAULT_FORBIDDEN_PATH_PATTERNS,
    )
    file_limit = _normalize_bound(max_file_changes, "max_file_changes", DEFAULT_MAX_FILE_CHANGES)
    hunk_limit = _normalize_bound(max_hunks, "max_hunks", DEFAULT_MAX_HUNKS)
    explicit_edits = normalize_planned_edits(planned_edits)

    edits: list[Edit] = []
    if not mapping.outcome.proceeds:
        outcome = _inherit_mapping_outcome(mapping.outcome)
    elif len(mapping.candidates) > 1:
        outcome = decisions.escalate(
            "mapping_ambiguous",
            "Intent mapping provided multiple selected candidates for a continue decision.",
        )
    else:
        edits = (
            explicit_edits
            if explicit_edits is not None
            else build_default_edits(mapping.intent_summary, mapping.candidates)
        )
        outcome = decisions.stop(
            "unsupported_input",
            "Planner produced no safe edits from the selected intent mapping target.",
        )

    safety_checks, verdict = evaluate_safety(
        edits,
        forbidden_patterns=forbidden,
        max_file_changes=file_limit,
        max_hunks=hunk_limit,
        matcher=matcher if matcher is not None else GlobMatcher(),
    )
    if edits:
        outcome = verdict

    artifact = build_artifact(
        artifact_type=SAFE_DIFF_PLAN_ARTIFACT_TYPE,
        run_id=resolve_run_id(
            run_id_factory, stage="safe_diff_plan", upstream_run_id=mapping.run_id, logger=log
        ),
        produced_at=resolve_produced_at(now, stage="safe_diff_plan", logger=log),
        tool_version=tool_version,
        inputs=[mapping.ref],
        trace={"planner_profile": profile},
        payload={
            "edits": [edit.to_dict() for edit in edits],
            "safety_checks": safety_checks,
            **outcome.to_dict(),
        },
    )
    log.info(
        "safe_diff_plan_decision",
        artifact_id=artifact["artifact_id"],
        decision=outcome.decision.value,
        reason_code=outcome.reason_code,
        edits=len(edits),
    )
    return artifact


__all__ = [
    "DEFAULT_FORBIDDEN_PATH_PATTERNS",
    "DEFAULT_MAX_FILE_CHANGES",
    "DEFAULT_MAX_HUNKS",
    "DEFAULT_PLANNER_PROFILE",
    "build_default_edits",
    "collect_conflict_paths",
    "collect_forbidden_paths",
    "create_safe_diff_plan",
    "evaluate_safety",
    "infer_operation",
    "normalize_pattern_list",
    "normalize_planned_edits",
]
