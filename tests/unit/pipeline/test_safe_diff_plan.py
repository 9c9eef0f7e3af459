"""
patchgate — unit tests for the safe diff plan stage

File: tests/unit/pipeline/test_safe_diff_plan.py
Last updated: 2026-10-18

Purpose
- Validate default edit planning, planner overrides, safety precedence, and mapping inheritance.

What this test file should cover
- The selected capability becomes one ``modify`` edit carrying its target id and symbol path.
- Conflicts outrank forbidden paths, which outrank change bounds.
- Blocked mappings are inherited without planning edits.
"""

from __future__ import annotations

import copy

import pytest

from patchgate.domain.edits import EditOperation
from patchgate.domain.errors import SafeDiffPlanError
from patchgate.pipeline.intent_mapping import create_intent_mapping
from patchgate.pipeline.safe_diff_plan import (
    DEFAULT_FORBIDDEN_PATH_PATTERNS,
    create_safe_diff_plan,
    infer_operation,
    normalize_planned_edits,
)
from patchgate.pipeline.workspace_snapshot import create_workspace_snapshot


@pytest.fixture
def snapshot(agent_workspace, hooks):
    return create_workspace_snapshot(str(agent_workspace.root), **hooks)


@pytest.fixture
def mapping(snapshot, agent_workspace, hooks):
    return create_intent_mapping(snapshot, agent_workspace.intent, **hooks)


def test_default_plan_modifies_selected_capability(mapping, hooks, recording_logger) -> None:
    plan = create_safe_diff_plan(mapping, logger=recording_logger, **hooks)
    payload = plan["payload"]
    [candidate] = mapping["payload"]["candidates"]

    assert payload["decision"] == "continue"
    assert payload["reason_code"] == "ok"
    assert payload["edits"] == [
        {
            "path": "spec/agent.ls",
            "operation": "modify",
            "justification": (
                "Mapped intent to spec/agent.ls#capability:read_docs for conservative modify planning."
            ),
            "target_id": candidate["target_id"],
            "symbol_path": "capability:read_docs",
        }
    ]
    assert payload["safety_checks"] == {
        "forbidden_path_patterns": sorted(DEFAULT_FORBIDDEN_PATH_PATTERNS),
        "max_file_changes": {"limit": 5, "observed": 1},
        "max_hunks": {"limit": 20, "observed": 1},
    }
    assert plan["trace"] == {"planner_profile": "default-conservative"}
    assert plan["inputs"][0]["artifact_id"] == mapping["artifact_id"]
    assert plan["run_id"] == mapping["run_id"]
    assert recording_logger.names("info") == ["safe_diff_plan_decision"]


@pytest.mark.parametrize(
    ("summary", "operation"),
    [
        ("Remove the stale capability", EditOperation.DELETE),
        ("Delete docs", EditOperation.DELETE),
        ("Create a glossary", EditOperation.CREATE),
        ("Write a new-style intro", EditOperation.CREATE),
        ("Add a check for citations", EditOperation.CREATE),
        ("Add more detail", EditOperation.MODIFY),
        ("Address the capability wording", EditOperation.MODIFY),
    ],
)
def test_infer_operation(summary: str, operation: EditOperation) -> None:
    assert infer_operation(summary) is operation


def test_planner_override_defaults() -> None:
    [edit] = normalize_planned_edits([{"path": ".\\docs\\notes.txt", "target_id": "  "}])
    assert edit.to_dict() == {
        "path": "docs/notes.txt",
        "operation": "modify",
        "justification": "Planner override requested modify on docs/notes.txt.",
    }
    assert normalize_planned_edits(None) is None


def test_forbidden_path_stops(mapping) -> None:
    plan = create_safe_diff_plan(
        mapping,
        planned_edits=[
            {"path": "config/.env.local", "operation": "modify"},
            {"path": "docs/notes.txt"},
        ],
    )
    payload = plan["payload"]
    assert payload["decision"] == "stop"
    assert payload["reason_code"] == "forbidden_path"
    assert "config/.env.local" in payload["reason_detail"]
    assert len(payload["edits"]) == 2


def test_escaping_paths_are_forbidden_and_kept_verbatim(mapping) -> None:
    plan = create_safe_diff_plan(mapping, planned_edits=[{"path": "../outside.md", "operation": "create"}])
    payload = plan["payload"]
    assert payload["reason_code"] == "forbidden_path"
    assert payload["edits"][0]["path"] == "../outside.md"


def test_conflicts_take_precedence_over_forbidden_paths(mapping) -> None:
    plan = create_safe_diff_plan(
        mapping,
        planned_edits=[{"path": "keys/site.pem"}, {"path": "keys/site.pem", "operation": "delete"}],
    )
    payload = plan["payload"]
    assert payload["decision"] == "escalate"
    assert payload["reason_code"] == "conflict_detected"
    assert payload["safety_checks"]["max_file_changes"]["observed"] == 1
    assert payload["safety_checks"]["max_hunks"]["observed"] == 2


def test_change_bounds_escalate(mapping) -> None:
    plan = create_safe_diff_plan(
        mapping,
        planned_edits=[{"path": "a.md"}, {"path": "b.md"}],
        max_file_changes=1,
        max_hunks=1,
    )
    payload = plan["payload"]
    assert payload["decision"] == "escalate"
    assert payload["reason_code"] == "change_bound_exceeded"
    assert payload["reason_detail"] == (
        "Plan exceeds conservative safety bounds: max_file_changes 2/1; max_hunks 2/1."
    )


def test_custom_forbidden_patterns_replace_defaults(mapping) -> None:
    plan = create_safe_diff_plan(
        mapping,
        planned_edits=[{"path": "secrets/site.pem"}],
        forbidden_path_patterns=["docs\\**", "docs/**"],
    )
    payload = plan["payload"]
    assert payload["safety_checks"]["forbidden_path_patterns"] == ["docs/**"]
    assert payload["decision"] == "continue"


def test_empty_override_list_stops_as_unsupported(mapping) -> None:
    plan = create_safe_diff_plan(mapping, planned_edits=[])
    payload = plan["payload"]
    assert payload["decision"] == "stop"
    assert payload["reason_code"] == "unsupported_input"
    assert payload["edits"] == []


def test_blocked_mapping_is_inherited(snapshot, agent_workspace) -> None:
    low = create_intent_mapping(snapshot, agent_workspace.intent, min_confidence=0.95)
    plan = create_safe_diff_plan(low, planned_edits=[{"path": "docs/notes.txt"}])
    payload = plan["payload"]

    assert payload["decision"] == "escalate"
    assert payload["reason_code"] == "mapping_low_confidence"
    assert payload["reason_detail"].startswith("Intent mapping blocked diff planning: ")
    assert payload["edits"] == []
    assert payload["safety_checks"]["max_hunks"]["observed"] == 0

    unsupported = create_intent_mapping(snapshot, "zebra quantum")
    stopped = create_safe_diff_plan(unsupported)["payload"]
    assert (stopped["decision"], stopped["reason_code"]) == ("stop", "unsupported_input")


def test_multiple_candidates_on_continue_are_ambiguous(mapping) -> None:
    doctored = copy.deepcopy(mapping)
    candidate = doctored["payload"]["candidates"][0]
    doctored["payload"]["candidates"].append({**candidate, "path": "docs/notes.txt", "symbol_path": None})

    payload = create_safe_diff_plan(doctored)["payload"]
    assert payload["decision"] == "escalate"
    assert payload["reason_code"] == "mapping_ambiguous"
    assert payload["edits"] == []


def test_planner_profile_is_trimmed(mapping) -> None:
    plan = create_safe_diff_plan(mapping, planner_profile="  strict-profile ")
    assert plan["trace"] == {"planner_profile": "strict-profile"}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_hunks": 0},
        {"max_file_changes": 10_001},
        {"max_hunks": "5"},
        {"forbidden_path_patterns": "*.pem"},
        {"forbidden_path_patterns": ["ok", " "]},
        {"planned_edits": {"path": "a.md"}},
        {"planned_edits": [{"path": "."}]},
        {"planned_edits": [{"path": "a.md", "operation": "rename"}]},
        {"planned_edits": [{"path": "a.md", "symbol_path": ""}]},
    ],
)
def test_invalid_options(mapping, kwargs: dict[str, object]) -> None:
    with pytest.raises(SafeDiffPlanError) as excinfo:
        create_safe_diff_plan(mapping, **kwargs)
    assert excinfo.value.code == "INVALID_OPTIONS"


def test_planned_edits_are_validated_even_when_mapping_blocks(snapshot) -> None:
    unsupported = create_intent_mapping(snapshot, "zebra quantum")
    with pytest.raises(SafeDiffPlanError) as excinfo:
        create_safe_diff_plan(unsupported, planned_edits=[{"path": ""}])
    assert excinfo.value.code == "INVALID_OPTIONS"


def test_invalid_mapping_artifacts(mapping) -> None:
    with pytest.raises(SafeDiffPlanError) as excinfo:
        create_safe_diff_plan({**mapping, "artifact_type": "patchgate.safe_diff_plan"})
    assert excinfo.value.code == "INVALID_INTENT_MAPPING"

    bad_reason = copy.deepcopy(mapping)
    bad_reason["payload"]["reason_code"] = "forbidden_path"
    with pytest.raises(SafeDiffPlanError) as excinfo:
        create_safe_diff_plan(bad_reason)
    assert excinfo.value.code == "INVALID_INTENT_MAPPING"
    assert "reason_code" in str(excinfo.value)
