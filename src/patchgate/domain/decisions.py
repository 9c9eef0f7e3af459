"""Three-valued stage decisions and the per-stage reason-code vocabularies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Final


class Decision(StrEnum):
    CONTINUE = "continue"
    ESCALATE = "escalate"
    STOP = "stop"


DECISION_VALUES: Final[frozenset[str]] = frozenset(item.value for item in Decision)

MAPPING_REASON_CODES: Final[frozenset[str]] = frozenset(
    {"ok", "unsupported_input", "mapping_ambiguous", "mapping_low_confidence"}
)

PLAN_REASON_CODES: Final[frozenset[str]] = MAPPING_REASON_CODES | frozenset(
    {"forbidden_path", "change_bound_exceeded", "conflict_detected"}
)

PATCH_REASON_CODES: Final[frozenset[str]] = PLAN_REASON_CODES | frozenset(
    {"verification_failed", "verification_incomplete", "policy_blocked"}
)

BUNDLE_REASON_CODES: Final[frozenset[str]] = PATCH_REASON_CODES | frozenset(
    {"rollback_unavailable", "bundle_incomplete"}
)

APPLY_REASON_CODES: Final[frozenset[str]] = BUNDLE_REASON_CODES | frozenset(
    {
        "undeclared_capability",
        "benchmark_quality_floor_failed",
        "benchmark_invalid_gain",
        "prior_apply_record_missing",
    }
)


@dataclass(frozen=True, slots=True)
class Outcome:
    """Decision value embedded in every stage payload."""

    decision: Decision
    reason_code: str
    reason_detail: str

    @property
    def proceeds(self) -> bool:
        return self.decision is Decision.CONTINUE

    def to_dict(self) -> dict[str, str]:
        return {
            "decision": self.decision.value,
            "reason_code": self.reason_code,
            "reason_detail": self.reason_detail,
        }


def ok(detail: str) -> Outcome:
    return Outcome(Decision.CONTINUE, "ok", detail)


def escalate(reason_code: str, detail: str) -> Outcome:
    return Outcome(Decision.ESCALATE, reason_code, detail)


def stop(reason_code: str, detail: str) -> Outcome:
    return Outcome(Decision.STOP, reason_code, detail)


__all__ = [
    "APPLY_REASON_CODES",
    "BUNDLE_REASON_CODES",
    "DECISION_VALUES",
    "MAPPING_REASON_CODES",
    "PATCH_REASON_CODES",
    "PLAN_REASON_CODES",
    "Decision",
    "Outcome",
    "escalate",
    "ok",
    "stop",
]
