"""
patchgate — fail-closed field validation

File: src/patchgate/domain/validation.py
Last updated: 2026-10-18

Purpose
- Narrow untrusted JSON-shaped values (artifacts, options) into typed Python values.

Functional requirements
- Every failure raises the owning stage's error type with the stage-chosen code.
- Messages are path-qualified (``payload.edits[2].path: ...``) so callers can locate the defect.
- Envelope checks cover artifact type, schema version, ids, inputs, trace, and payload shape.

Non-functional requirements
- No coercion: booleans are not integers, blank strings are not strings.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import NoReturn

from patchgate.constants import ARTIFACT_SCHEMA_VERSION
from patchgate.domain.decisions import DECISION_VALUES, Decision, Outcome
from patchgate.domain.errors import PipelineError

__all__ = ["FieldValidator"]


class FieldValidator:
    """Validation helpers bound to one stage error type and error code."""

    def __init__(self, error_type: type[PipelineError], code: str) -> None:
        self._error_type = error_type
        self._code = code

    def with_code(self, code: str) -> FieldValidator:
        return FieldValidator(self._error_type, code)

    def fail(self, path: str, message: str) -> NoReturn:
        raise self._error_type(self._code, f"{path}: {message}")

    def expect_object(self, value: object, path: str) -> dict[str, object]:
        if not isinstance(value, Mapping):
            self.fail(path, f"expected object, got {type(value).__name__}")
        parsed: dict[str, object] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                self.fail(path, f"object keys must be strings, got {type(key).__name__}")
            parsed[key] = item
        return parsed

    def as_str(self, value: object, path: str) -> str:
        if not isinstance(value, str):
            self.fail(path, f"expected string, got {type(value).__name__}")
        if not value.strip():
            self.fail(path, "must be a non-empty string")
        return value

    def as_any_str(self, value: object, path: str) -> str:
        if not isinstance(value, str):
            self.fail(path, f"expected string, got {type(value).__name__}")
        return value

    def as_optional_str(self, value: object, path: str) -> str | None:
        if value is None:
            return None
        return self.as_str(value, path)

    def as_bool(self, value: object, path: str) -> bool:
        if isinstance(value, bool):
            return value
        self.fail(path, f"expected boolean, got {type(value).__name__}")

    def as_int(
        self,
        value: object,
        path: str,
        *,
        minimum: int | None = None,
        maximum: int | None = None,
    ) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            self.fail(path, f"expected integer, got {type(value).__name__}")
        if minimum is not None and value < minimum:
            self.fail(path, f"must be >= {minimum}")
        if maximum is not None and value > maximum:
            self.fail(path, f"must be <= {maximum}")
        return value

    def as_unit_interval(self, value: object, path: str) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.fail(path, f"expected number, got {type(value).__name__}")
        parsed = float(value)
        if not math.isfinite(parsed) or parsed < 0.0 or parsed > 1.0:
            self.fail(path, "must be a finite number within [0, 1]")
        return parsed

    def as_list(self, value: object, path: str) -> list[object]:
        if isinstance(value, (list, tuple)):
            return list(value)
        self.fail(path, f"expected array, got {type(value).__name__}")

    def as_str_list(self, value: object, path: str, *, allow_empty: bool = True) -> list[str]:
        items = self.as_list(value, path)
        if not allow_empty and not items:
            self.fail(path, "must not be empty")
        return [self.as_str(item, f"{path}[{index}]") for index, item in enumerate(items)]

    def as_choice(self, value: object, path: str, choices: Iterable[str]) -> str:
        allowed = frozenset(choices)
        parsed = self.as_str(value, path)
        if parsed not in allowed:
            self.fail(path, f"invalid value {parsed!r}; expected one of: {', '.join(sorted(allowed))}")
        return parsed

    def as_outcome(
        self,
        payload: Mapping[str, object],
        path: str,
        reason_codes: Iterable[str],
    ) -> Outcome:
        decision = self.as_choice(payload.get("decision"), f"{path}.decision", DECISION_VALUES)
        reason_code = self.as_choice(payload.get("reason_code"), f"{path}.reason_code", reason_codes)
        reason_detail = self.as_str(payload.get("reason_detail"), f"{path}.reason_detail")
        return Outcome(Decision(decision), reason_code, reason_detail)

    def expect_envelope(self, value: object, path: str, *, artifact_type: str) -> dict[str, object]:
        """Check the shared envelope fields and return the artifact as a dict."""

        artifact = self.expect_object(value, path)
        if artifact.get("artifact_type") != artifact_type:
            self.fail(f"{path}.artifact_type", f"expected {artifact_type!r}")
        if artifact.get("schema_version") != ARTIFACT_SCHEMA_VERSION:
            self.fail(f"{path}.schema_version", f"expected {ARTIFACT_SCHEMA_VERSION!r}")
        self.as_str(artifact.get("artifact_id"), f"{path}.artifact_id")
        self.as_str(artifact.get("run_id"), f"{path}.run_id")
        self.as_input_refs(artifact.get("inputs"), f"{path}.inputs")
        self.expect_object(artifact.get("trace"), f"{path}.trace")
        self.expect_object(artifact.get("payload"), f"{path}.payload")
        return artifact

    def as_input_refs(self, value: object, path: str) -> list[dict[str, str]]:
        refs: list[dict[str, str]] = []
        for index, item in enumerate(self.as_list(value, path)):
            entry = self.expect_object(item, f"{path}[{index}]")
            refs.append(
                {
                    "artifact_id": self.as_str(entry.get("artifact_id"), f"{path}[{index}].artifact_id"),
                    "artifact_type": self.as_str(
                        entry.get("artifact_type"), f"{path}[{index}].artifact_type"
                    ),
                    "schema_version": self.as_str(
                        entry.get("schema_version"), f"{path}[{index}].schema_version"
                    ),
                }
            )
        return refs

    def single_input_ref(
        self,
        artifact: Mapping[str, object],
        path: str,
        *,
        artifact_type: str,
        required: bool = True,
    ) -> dict[str, str] | None:
        """Return the one input reference of ``artifact_type``; more than one is invalid."""

        matches = [
            ref
            for ref in self.as_input_refs(artifact.get("inputs"), f"{path}.inputs")
            if ref["artifact_type"] == artifact_type
        ]
        if len(matches) > 1:
            self.fail(f"{path}.inputs", f"must contain at most one {artifact_type} reference")
        if not matches:
            if required:
                self.fail(f"{path}.inputs", f"must reference a {artifact_type} artifact")
            return None
        return matches[0]
