"""
patchgate — configuration schema and validation.

File: src/patchgate/config/schema.py
Last updated: 2026-10-18

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Defaults mirror the stage defaults so an empty file changes nothing.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from patchgate.constants import CONFIG_SCHEMA_VERSION
from patchgate.pipeline.apply_rollback import DEFAULT_POLICY_PROFILE_REF, DEFAULT_VERIFICATION_CONTRACT_REF
from patchgate.pipeline.intent_mapping import (
    DEFAULT_AMBIGUITY_GAP,
    DEFAULT_MAX_ALTERNATIVES,
    DEFAULT_MIN_CONFIDENCE,
    MAX_ALTERNATIVES_LIMIT,
)
from patchgate.pipeline.patch_run import DEFAULT_POLICY_SENSITIVE_PATH_PATTERNS, DEFAULT_REQUIRED_CHECKS
from patchgate.pipeline.safe_diff_plan import (
    BOUND_LIMIT,
    DEFAULT_FORBIDDEN_PATH_PATTERNS,
    DEFAULT_MAX_FILE_CHANGES,
    DEFAULT_MAX_HUNKS,
    DEFAULT_PLANNER_PROFILE,
)
from patchgate.pipeline.workspace_snapshot import DEFAULT_IGNORED_PATHS

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("apply", "policy_file"),
    ("logging", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class SnapshotConfig(TypedDict):
    ignored_paths: list[str]


class MappingConfig(TypedDict):
    min_confidence: float
    ambiguity_gap: float
    max_alternatives: int


class PlanConfig(TypedDict):
    planner_profile: str
    max_file_changes: int
    max_hunks: int
    forbidden_path_patterns: list[str]


class PatchConfig(TypedDict):
    required_checks: list[str]
    policy_sensitive_path_patterns: list[str]


class ApplyConfig(TypedDict):
    policy_file: str | None
    policy_profile_ref: str
    verification_contract_ref: str


class LoggingSection(TypedDict):
    level: str
    log_dir: str | None
    json: bool


class PatchgateConfig(TypedDict):
    meta: MetaConfig
    snapshot: SnapshotConfig
    mapping: MappingConfig
    plan: PlanConfig
    patch: PatchConfig
    apply: ApplyConfig
    logging: LoggingSection


DEFAULT_CONFIG: Final[PatchgateConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "snapshot": {
        "ignored_paths": list(DEFAULT_IGNORED_PATHS),
    },
    "mapping": {
        "min_confidence": DEFAULT_MIN_CONFIDENCE,
        "ambiguity_gap": DEFAULT_AMBIGUITY_GAP,
        "max_alternatives": DEFAULT_MAX_ALTERNATIVES,
    },
    "plan": {
        "planner_profile": DEFAULT_PLANNER_PROFILE,
        "max_file_changes": DEFAULT_MAX_FILE_CHANGES,
        "max_hunks": DEFAULT_MAX_HUNKS,
        "forbidden_path_patterns": list(DEFAULT_FORBIDDEN_PATH_PATTERNS),
    },
    "patch": {
        "required_checks": list(DEFAULT_REQUIRED_CHECKS),
        "policy_sensitive_path_patterns": list(DEFAULT_POLICY_SENSITIVE_PATH_PATTERNS),
    },
    "apply": {
        "policy_file": None,
        "policy_profile_ref": DEFAULT_POLICY_PROFILE_REF,
        "verification_contract_ref": DEFAULT_VERIFICATION_CONTRACT_REF,
    },
    "logging": {
        "level": "INFO",
        "log_dir": None,
        "json": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_Validator = Callable[[Mapping[str, object], str, _IssueCollector], dict[str, Any]]


def default_config() -> PatchgateConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade patchgate.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the patchgate runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    sections: dict[str, _Validator] = {
        "meta": _validate_meta,
        "snapshot": _validate_snapshot,
        "mapping": _validate_mapping,
        "plan": _validate_plan,
        "patch": _validate_patch,
        "apply": _validate_apply,
        "logging": _validate_logging,
    }
    _reject_unknown_keys(root, set(sections), "", issues)
    _require_keys(root, set(sections), "", issues)

    normalized: dict[str, Any] = {}
    for key in sorted(sections):
        raw = root.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        normalized[key] = sections[key](section, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_meta(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_snapshot(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"ignored_paths"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "ignored_paths" in payload:
        parsed = _as_str_list(payload["ignored_paths"], _join(path, "ignored_paths"), issues)
        if parsed is not None:
            out["ignored_paths"] = parsed
    return out


def _validate_mapping(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"min_confidence", "ambiguity_gap", "max_alternatives"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("min_confidence", "ambiguity_gap"):
        if key in payload:
            parsed = _as_float(payload[key], _join(path, key), issues, minimum=0.0, maximum=1.0)
            if parsed is not None:
                out[key] = parsed

    if "max_alternatives" in payload:
        parsed_alternatives = _as_int(
            payload["max_alternatives"],
            _join(path, "max_alternatives"),
            issues,
            minimum=0,
            maximum=MAX_ALTERNATIVES_LIMIT,
        )
        if parsed_alternatives is not None:
            out["max_alternatives"] = parsed_alternatives
    return out


def _validate_plan(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"planner_profile", "max_file_changes", "max_hunks", "forbidden_path_patterns"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "planner_profile" in payload:
        parsed_profile = _as_str(payload["planner_profile"], _join(path, "planner_profile"), issues)
        if parsed_profile is not None:
            out["planner_profile"] = parsed_profile

    for key in ("max_file_changes", "max_hunks"):
        if key in payload:
            parsed_bound = _as_int(payload[key], _join(path, key), issues, minimum=1, maximum=BOUND_LIMIT)
            if parsed_bound is not None:
                out[key] = parsed_bound

    if "forbidden_path_patterns" in payload:
        parsed_patterns = _as_str_list(
            payload["forbidden_path_patterns"], _join(path, "forbidden_path_patterns"), issues
        )
        if parsed_patterns is not None:
            out["forbidden_path_patterns"] = parsed_patterns
    return out


def _validate_patch(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"required_checks", "policy_sensitive_path_patterns"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "required_checks" in payload:
        parsed_checks = _as_str_list(
            payload["required_checks"], _join(path, "required_checks"), issues, allow_empty=False
        )
        if parsed_checks is not None:
            out["required_checks"] = parsed_checks

    if "policy_sensitive_path_patterns" in payload:
        parsed_patterns = _as_str_list(
            payload["policy_sensitive_path_patterns"],
            _join(path, "policy_sensitive_path_patterns"),
            issues,
        )
        if parsed_patterns is not None:
            out["policy_sensitive_path_patterns"] = parsed_patterns
    return out


def _validate_apply(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"policy_file", "policy_profile_ref", "verification_contract_ref"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed - {"policy_file"}, path, issues)

    out: dict[str, Any] = {"policy_file": None}
    if payload.get("policy_file") is not None:
        out["policy_file"] = _as_path_text(payload["policy_file"], _join(path, "policy_file"), issues)

    for key in ("policy_profile_ref", "verification_contract_ref"):
        if key in payload:
            parsed = _as_str(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_logging(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"level", "log_dir", "json"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed - {"log_dir"}, path, issues)

    out: dict[str, Any] = {"log_dir": None}
    if "level" in payload:
        parsed_level = _as_enum(
            payload["level"].upper() if isinstance(payload["level"], str) else payload["level"],
            _join(path, "level"),
            issues,
            allowed_values=LOG_LEVELS,
        )
        if parsed_level is not None:
            out["level"] = parsed_level

    if payload.get("log_dir") is not None:
        out["log_dir"] = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)

    if "json" in payload:
        parsed_json = _as_bool(payload["json"], _join(path, "json"), issues)
        if parsed_json is not None:
            out["json"] = parsed_json
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_str_list(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allow_empty: bool = True,
) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    if not allow_empty and not value:
        issues.add(path, "must not be empty")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return out


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and value > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "PatchgateConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
