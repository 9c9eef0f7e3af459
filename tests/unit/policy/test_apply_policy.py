"""
patchgate — unit tests for apply policy profiles

File: tests/unit/policy/test_apply_policy.py
Last updated: 2026-10-18

Purpose
- Validate YAML policy parsing and its translation into apply/rollback engine options.

What this test file should cover
- Documented example profile, defaults, and shorthand boolean approval.
- Strict rejection of unknown keys and mistyped values.
- Pattern lists are trimmed, de-duplicated, and sorted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from patchgate.policy import ApplyPolicy, PolicyProfileError, load_apply_policy
from patchgate.utils.hashing import sha256_prefixed

if TYPE_CHECKING:
    from pathlib import Path

EXAMPLE_POLICY = """\
profile_ref: policy.repo-default
allow_apply: true
allow_rollback: true
approval_required:
  apply: true
  rollback: false
declared_capabilities: [workspace.apply_patch, workspace.rollback_patch]
blocked_path_patterns: ["**/*.pem", ".env"]
escalation_path_patterns: [".github/workflows/**"]
"""


def test_example_policy_round_trips_into_engine_options() -> None:
    policy = ApplyPolicy.from_yaml(EXAMPLE_POLICY)

    assert policy.profile_ref == "policy.repo-default"
    assert policy.source_digest == sha256_prefixed(EXAMPLE_POLICY)
    assert policy.engine_options("apply") == {
        "policy_profile_ref": "policy.repo-default",
        "allow_action": True,
        "approval_required": True,
        "declared_capabilities": ["workspace.apply_patch", "workspace.rollback_patch"],
        "blocked_path_patterns": ["**/*.pem", ".env"],
        "escalation_path_patterns": [".github/workflows/**"],
    }
    assert policy.engine_options("rollback")["approval_required"] is False


def test_defaults_leave_engine_patterns_untouched() -> None:
    policy = load_apply_policy(None)

    assert policy == ApplyPolicy()
    assert policy.engine_options("rollback") == {
        "policy_profile_ref": "policy.unspecified",
        "allow_action": True,
        "approval_required": False,
        "declared_capabilities": [],
    }
    assert ApplyPolicy.from_yaml("").source_digest == sha256_prefixed("")


def test_boolean_approval_shorthand_and_disallowed_rollback() -> None:
    policy = ApplyPolicy.from_yaml("approval_required: false\nallow_rollback: false\n")

    assert policy.approval_required("apply") is False
    assert policy.approval_required("rollback") is False
    assert policy.allows("apply") is True
    assert policy.allows("rollback") is False


def test_policy_file_is_loaded_from_disk(tmp_path: Path) -> None:
    target = tmp_path / "policy.yaml"
    target.write_text(EXAMPLE_POLICY, encoding="utf-8")
    assert load_apply_policy(target) == ApplyPolicy.from_yaml(EXAMPLE_POLICY)

    with pytest.raises(PolicyProfileError, match="unable to read policy file"):
        load_apply_policy(tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    ("content", "fragment"),
    [
        ("- a\n- b\n", "policy root must be a mapping"),
        ("allow_merge: true\n", "unknown policy fields: allow_merge"),
        ("allow_apply: 'yes'\n", "allow_apply must be a boolean"),
        ("approval_required: [apply]\n", "approval_required must be a boolean or a mapping"),
        ("approval_required: {deploy: true}\n", "unknown approval_required fields: deploy"),
        ("profile_ref: '  '\n", "profile_ref must be a non-empty string"),
        ("blocked_path_patterns: '*.pem'\n", "blocked_path_patterns must be a list of strings"),
        ("declared_capabilities: [ok, '']\n", "declared_capabilities[1] must be a non-empty string"),
        ("allow_apply: [unclosed\n", "invalid policy YAML"),
    ],
)
def test_malformed_policies_are_rejected(content: str, fragment: str) -> None:
    with pytest.raises(PolicyProfileError) as excinfo:
        ApplyPolicy.from_yaml(content)
    assert fragment in str(excinfo.value)


def test_unknown_action_is_rejected() -> None:
    with pytest.raises(PolicyProfileError, match="unsupported action 'merge'"):
        ApplyPolicy().engine_options("merge")


@given(
    st.lists(
        st.text(alphabet="abc*/._", min_size=1, max_size=8),
        min_size=1,
        max_size=6,
    )
)
@settings(max_examples=40, derandomize=True, deadline=None)
def test_pattern_lists_are_sorted_and_unique(patterns: list[str]) -> None:
    policy = ApplyPolicy.from_dict({"escalation_path_patterns": [f" {item} " for item in patterns]})
    assert policy.escalation_path_patterns == tuple(sorted(set(patterns)))
