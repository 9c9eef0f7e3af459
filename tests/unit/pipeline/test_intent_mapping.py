"""
patchgate — unit tests for the intent mapping stage

File: tests/unit/pipeline/test_intent_mapping.py
Last updated: 2026-10-18

Purpose
- Pin candidate scoring, ranking, and the mapping decision policy over a small fixture workspace.

What this test file should cover
- The capability named by the intent wins with AST symbol lookup and a symbol-name hit.
- Lower-scoring declarations and plain-text files surface as alternatives.
- Low-confidence, ambiguous, and unsupported intents escalate or stop.
- Malformed snapshots and options raise ``IntentMappingError``.
"""

from __future__ import annotations

import pytest

from patchgate.domain.errors import IntentMappingError
from patchgate.parsing.ls_document import ParseResult
from patchgate.pipeline.intent_mapping import (
    IntentQuery,
    create_intent_mapping,
    create_target_id,
    find_best_matching_line,
    normalize_for_search,
    round_confidence,
    select_candidates,
    tokenize_for_search,
)
from patchgate.pipeline.workspace_snapshot import create_workspace_snapshot
from patchgate.utils.hashing import sha256_text


@pytest.fixture
def snapshot(agent_workspace, hooks):
    return create_workspace_snapshot(str(agent_workspace.root), **hooks)


def test_named_capability_is_selected(snapshot, agent_workspace, hooks, recording_logger) -> None:
    mapping = create_intent_mapping(snapshot, agent_workspace.intent, logger=recording_logger, **hooks)
    payload = mapping["payload"]

    assert payload["decision"] == "continue"
    assert payload["reason_code"] == "ok"
    assert payload["intent"] == {"summary": agent_workspace.intent}
    assert mapping["inputs"] == [
        {
            "artifact_id": snapshot["artifact_id"],
            "artifact_type": "patchgate.workspace_snapshot",
            "schema_version": "1.0.0",
        }
    ]
    assert mapping["trace"] == {
        "intent_source": "user_prompt",
        "extraction_methods": ["ast_symbol_lookup", "text_match"],
    }

    [selected] = payload["candidates"]
    assert selected["path"] == "spec/agent.ls"
    assert selected["symbol_path"] == "capability:read_docs"
    assert selected["confidence"] == 0.85
    assert selected["target_id"].startswith("spec/agent.ls#capability:read_docs_")
    assert selected["provenance"]["method"] == "ast_symbol_lookup"
    assert selected["provenance"]["range"] == {"start_line": 3, "start_column": 1, "end_line": 3, "end_column": 54}
    assert "exact symbol-name hit" in selected["rationale"]
    assert recording_logger.names("info") == ["intent_mapping_decision"]


def test_alternatives_are_ranked_and_capped(snapshot, agent_workspace, hooks) -> None:
    mapping = create_intent_mapping(snapshot, agent_workspace.intent, **hooks)
    alternatives = mapping["payload"]["alternatives"]

    assert [(item["path"], item["symbol_path"], item["confidence"]) for item in alternatives] == [
        ("spec/agent.ls", "goal", 0.44),
        ("docs/notes.txt", None, 0.312),
    ]
    notes = alternatives[1]
    assert notes["provenance"] == {
        "source_path": "docs/notes.txt",
        "method": "text_match",
        "range": {"start_line": 1, "start_column": 1, "end_line": 1, "end_column": 26},
    }

    capped = create_intent_mapping(snapshot, agent_workspace.intent, max_alternatives=0, **hooks)
    assert capped["payload"]["alternatives"] == []


def test_low_confidence_escalates_with_top_candidate(snapshot, agent_workspace) -> None:
    mapping = create_intent_mapping(snapshot, agent_workspace.intent, min_confidence=0.9)
    payload = mapping["payload"]

    assert payload["decision"] == "escalate"
    assert payload["reason_code"] == "mapping_low_confidence"
    assert [item["symbol_path"] for item in payload["candidates"]] == ["capability:read_docs"]
    assert "0.8500 below minimum confidence 0.9000" in payload["reason_detail"]


def test_candidates_within_gap_are_ambiguous(snapshot, agent_workspace) -> None:
    mapping = create_intent_mapping(snapshot, agent_workspace.intent, min_confidence=0.3, ambiguity_gap=0.5)
    payload = mapping["payload"]

    assert payload["decision"] == "escalate"
    assert payload["reason_code"] == "mapping_ambiguous"
    assert [item["symbol_path"] for item in payload["candidates"]] == ["capability:read_docs", "goal"]
    assert [item["path"] for item in payload["alternatives"]] == ["docs/notes.txt"]


def test_unmatched_intent_stops(snapshot) -> None:
    mapping = create_intent_mapping(snapshot, "zebra quantum")
    payload = mapping["payload"]

    assert payload["decision"] == "stop"
    assert payload["reason_code"] == "unsupported_input"
    assert payload["candidates"] == []
    assert payload["alternatives"] == []
    assert mapping["trace"]["extraction_methods"] == ["ast_symbol_lookup", "text_match"]


def test_unparseable_documents_fall_back_to_text_match(snapshot, agent_workspace) -> None:
    class _RejectingParser:
        def parse(self, source: str) -> ParseResult:
            return ParseResult(None)

    mapping = create_intent_mapping(snapshot, agent_workspace.intent, document_parser=_RejectingParser())

    assert mapping["trace"]["extraction_methods"] == ["text_match"]
    paths = [item["path"] for item in mapping["payload"]["candidates"] + mapping["payload"]["alternatives"]]
    assert sorted(paths) == ["docs/notes.txt", "spec/agent.ls"]
    assert all(item["symbol_path"] is None for item in mapping["payload"]["candidates"])


def test_non_utf8_text_files_are_scored_not_rejected(agent_workspace, hooks) -> None:
    (agent_workspace.root / "docs" / "latin1.txt").write_bytes(b"caf\xe9 notes about read docs\n")
    snapshot = create_workspace_snapshot(str(agent_workspace.root), **hooks)

    mapping = create_intent_mapping(snapshot, agent_workspace.intent, **hooks)
    payload = mapping["payload"]

    assert (payload["decision"], payload["reason_code"]) == ("continue", "ok")
    assert [item["symbol_path"] for item in payload["candidates"]] == ["capability:read_docs"]
    assert "docs/latin1.txt" in [item["path"] for item in payload["alternatives"]]


def test_mapping_is_deterministic_with_hooks(snapshot, agent_workspace, hooks) -> None:
    first = create_intent_mapping(snapshot, agent_workspace.intent, **hooks)
    second = create_intent_mapping(snapshot, agent_workspace.intent, **hooks)
    assert first == second
    assert first["run_id"] == "run-fixture-0001"


def test_run_id_propagates_from_snapshot(agent_workspace) -> None:
    snapshot = create_workspace_snapshot(str(agent_workspace.root), run_id_factory=lambda: "upstream-run")
    mapping = create_intent_mapping(snapshot, agent_workspace.intent)
    assert mapping["run_id"] == "upstream-run"


@pytest.mark.parametrize(
    ("kwargs", "code"),
    [
        ({"intent": "   "}, "INVALID_INTENT"),
        ({"intent": None}, "INVALID_INTENT"),
        ({"intent_source": " "}, "INVALID_INTENT_SOURCE"),
        ({"min_confidence": 1.5}, "INVALID_OPTIONS"),
        ({"ambiguity_gap": True}, "INVALID_OPTIONS"),
        ({"max_alternatives": 51}, "INVALID_OPTIONS"),
        ({"max_alternatives": -1}, "INVALID_OPTIONS"),
    ],
)
def test_invalid_arguments(snapshot, agent_workspace, kwargs: dict[str, object], code: str) -> None:
    arguments: dict[str, object] = {"intent": agent_workspace.intent, **kwargs}
    intent = arguments.pop("intent")
    with pytest.raises(IntentMappingError) as excinfo:
        create_intent_mapping(snapshot, intent, **arguments)
    assert excinfo.value.code == code


def test_invalid_snapshot_envelopes(snapshot, agent_workspace) -> None:
    wrong_type = {**snapshot, "artifact_type": "patchgate.patch_run"}
    with pytest.raises(IntentMappingError) as excinfo:
        create_intent_mapping(wrong_type, agent_workspace.intent)
    assert excinfo.value.code == "INVALID_WORKSPACE_SNAPSHOT"

    blank_root = {**snapshot, "trace": {**snapshot["trace"], "workspace_root": ""}}
    with pytest.raises(IntentMappingError) as excinfo:
        create_intent_mapping(blank_root, agent_workspace.intent)
    assert excinfo.value.code == "INVALID_WORKSPACE_SNAPSHOT"


def test_missing_snapshot_root_is_unreadable(snapshot, agent_workspace, tmp_path) -> None:
    moved = {**snapshot, "trace": {**snapshot["trace"], "workspace_root": str(tmp_path / "gone")}}
    with pytest.raises(IntentMappingError) as excinfo:
        create_intent_mapping(moved, agent_workspace.intent)
    assert excinfo.value.code == "WORKSPACE_ROOT_UNREADABLE"


def test_search_normalization_and_tokens() -> None:
    assert normalize_for_search("  Read_Docs--NOW!  ") == "read docs now"
    assert tokenize_for_search("The read_docs AND-Docs") == ["docs", "read"]
    query = IntentQuery.from_summary("Update the goal")
    assert query.tokens == ("goal", "update")


@pytest.mark.parametrize(("value", "expected"), [(0.123456, 0.1235), (0.99994, 0.9999), (0.25, 0.25)])
def test_round_confidence_half_up(value: float, expected: float) -> None:
    assert round_confidence(value) == expected


def test_target_ids_are_readable_and_collision_resistant() -> None:
    target_id = create_target_id("docs/a b.md", None)
    assert target_id == f"docs/a_b.md#file_{sha256_text('docs/a b.md#file')[:12]}"
    assert create_target_id("x.ls", "goal") != create_target_id("x.ls", "check:goal")


def test_best_matching_line_prefers_highest_overlap() -> None:
    query = IntentQuery.from_summary("local rfc index")
    source = "intro\nlocal notes\nlocal rfc index here\n"
    assert find_best_matching_line(source, query) == {
        "start_line": 3,
        "start_column": 1,
        "end_line": 3,
        "end_column": 21,
    }
    assert find_best_matching_line("nothing here", query) is None


def test_select_candidates_ignores_low_scores_inside_gap() -> None:
    ranked = [
        {"path": "a.md", "symbol_path": None, "confidence": 0.8},
        {"path": "b.md", "symbol_path": None, "confidence": 0.78},
    ]
    selected, alternatives, outcome = select_candidates(
        ranked, min_confidence=0.79, ambiguity_gap=0.05, max_alternatives=5
    )
    assert outcome.reason_code == "ok"
    assert [item["path"] for item in selected] == ["a.md"]
    assert [item["path"] for item in alternatives] == ["b.md"]
