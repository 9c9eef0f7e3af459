"""
patchgate — apply policy profile

File: src/patchgate/policy/profile.py
Last updated: 2026-10-18

Purpose
- Describe who may apply or roll back a review bundle, and on which paths, in a reviewable YAML file.

Example policy.yaml:

```yaml
profile_ref: policy.repo-default
allow_apply: true
allow_rollback: true
approval_required:
  apply: true
  rollback: false
declared_capabilities: [workspace.apply_patch, workspace.rollback_patch]
blocked_path_patterns: ["**/*.pem", ".env"]
escalation_path_patterns: [".github/workflows/**"]
```

Functional requirements
- Unset fields fall back to the apply/rollback engine defaults.
- Unknown keys and wrongly typed values raise ``PolicyProfileError``.

Non-functional requirements
- Parsing is ``yaml.safe_load`` only; the source digest is recorded for traceability.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Final

import yaml

from patchgate.pipeline.apply_rollback import APPLY, DEFAULT_POLICY_PROFILE_REF, ROLLBACK
from patchgate.utils.hashing import sha256_prefixed

_ALLOWED_KEYS: Final[frozenset[str]] = frozenset(
    {
        "profile_ref",
        "allow_apply",
        "allow_rollback",
        "approval_required",
        "blocked_path_patterns",
        "escalation_path_patterns",
        "declared_capabilities",
    }
)


class PolicyProfileError(ValueError):
    """Raised when an apply policy file cannot be read or is malformed."""


@dataclass(frozen=True, slots=True)
class ApplyPolicy:
    """Frozen apply/rollback policy; ``None`` pattern lists mean "use engine defaults"."""

    profile_ref: str = DEFAULT_POLICY_PROFILE_REF
    allow_apply: bool = True
    allow_rollback: bool = True
    approval_required_apply: bool = True
    approval_required_rollback: bool = False
    blocked_path_patterns: tuple[str, ...] | None = None
    escalation_path_patterns: tuple[str, ...] | None = None
    declared_capabilities: tuple[str, ...] = ()
    source_digest: str | None = None

    @classmethod
    def from_dict(cls, payload: object) -> ApplyPolicy:
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise PolicyProfileError(f"policy root must be a mapping, got {type(payload).__name__}")
        unknown = sorted(str(key) for key in payload if key not in _ALLOWED_KEYS)
        if unknown:
            raise PolicyProfileError(f"unknown policy fields: {', '.join(unknown)}")

        approval = payload.get("approval_required", {})
        if isinstance(approval, bool):
            approval = {APPLY: approval, ROLLBACK: approval}
        if not isinstance(approval, Mapping):
            raise PolicyProfileError("approval_required must be a boolean or a mapping with apply/rollback")
        extra = sorted(str(key) for key in approval if key not in {APPLY, ROLLBACK})
        if extra:
            raise PolicyProfileError(f"unknown approval_required fields: {', '.join(extra)}")

        profile_ref = payload.get("profile_ref", DEFAULT_POLICY_PROFILE_REF)
        if not isinstance(profile_ref, str) or not profile_ref.strip():
            raise PolicyProfileError("profile_ref must be a non-empty string")

        return cls(
            profile_ref=profile_ref.strip(),
            allow_apply=_as_bool(payload.get("allow_apply", True), "allow_apply"),
            allow_rollback=_as_bool(payload.get("allow_rollback", True), "allow_rollback"),
            approval_required_apply=_as_bool(approval.get(APPLY, True), "approval_required.apply"),
            approval_required_rollback=_as_bool(approval.get(ROLLBACK, False), "approval_required.rollback"),
            blocked_path_patterns=_as_optional_patterns(
                payload.get("blocked_path_patterns"), "blocked_path_patterns"
            ),
            escalation_path_patterns=_as_optional_patterns(
                payload.get("escalation_path_patterns"), "escalation_path_patterns"
            ),
            declared_capabilities=_as_optional_patterns(
                payload.get("declared_capabilities"), "declared_capabilities"
            )
            or (),
        )

    @classmethod
    def from_yaml(cls, content: str) -> ApplyPolicy:
        try:
            parsed = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise PolicyProfileError(f"invalid policy YAML: {exc}") from exc
        policy = cls.from_dict(parsed)
        return replace(policy, source_digest=sha256_prefixed(content))

    @classmethod
    def from_file(cls, path: str | Path) -> ApplyPolicy:
        resolved = Path(path).expanduser().resolve()
        try:
            content = resolved.read_text(encoding="utf-8")
        except OSError as exc:
            raise PolicyProfileError(f"unable to read policy file {resolved}: {exc}") from exc
        return cls.from_yaml(content)

    def allows(self, action: str) -> bool:
        return self.allow_apply if action == APPLY else self.allow_rollback

    def approval_required(self, action: str) -> bool:
        return self.approval_required_apply if action == APPLY else self.approval_required_rollback

    def engine_options(self, action: str) -> dict[str, Any]:
        """Keyword arguments for ``create_apply_rollback_record`` derived from this policy."""

        if action not in (APPLY, ROLLBACK):
            raise PolicyProfileError(f"unsupported action {action!r}")
        options: dict[str, Any] = {
            "policy_profile_ref": self.profile_ref,
            "allow_action": self.allows(action),
            "approval_required": self.approval_required(action),
            "declared_capabilities": list(self.declared_capabilities),
        }
        if self.blocked_path_patterns is not None:
            options["blocked_path_patterns"] = list(self.blocked_path_patterns)
        if self.escalation_path_patterns is not None:
            options["escalation_path_patterns"] = list(self.escalation_path_patterns)
        return options


def load_apply_policy(path: str | Path | None) -> ApplyPolicy:
    """Load ``path`` when given; otherwise return the default policy."""

    if path is None:
        return ApplyPolicy()
    return ApplyPolicy.from_file(path)


def _as_bool(value: object, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise PolicyProfileError(f"{field_name} must be a boolean, got {type(value).__name__}")
    return value


def _as_optional_patterns(value: object, field_name: str) -> tuple[str, ...] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise PolicyProfileError(f"{field_name} must be a list of strings")
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise PolicyProfileError(f"{field_name}[{index}] must be a non-empty string")
        items.append(item.strip())
    return tuple(sorted(set(items)))


__all__ = ["ApplyPolicy", "PolicyProfileError", "load_apply_policy"]
