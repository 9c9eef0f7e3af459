"""
patchgate — unit tests for the patch run stage and placeholder materializer

File: tests/unit/pipeline/test_patch_run.py
Last updated: 2026-10-18

Purpose
- Validate diff materialization, digest addressing, and the verification decision ladder.

What this test file should cover
- Placeholder hunks per operation, joined deterministically.
- Incomplete evidence outranks failures, which outrank policy-sensitive paths.
- Blocked plans propagate without materializing edits.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence

import pytest

from patchgate.domain.edits import Edit, EditOperation
from patchgate.domain.errors import PatchRunError
from patchgate.pipeline.intent_mapping import create_intent_mapping
from patchgate.pipeline.materializer import (
    PlaceholderPatchMaterializer,
    metadata_label,
    render_rollback_package,
    squash_line,
)
from patchgate.pipeline.patch_run import (
    create_patch_run,
    evaluate_verification,
    normalize_verification_results,
)
from patchgate.pipeline.safe_diff_plan import create_safe_diff_plan
from patchgate.pipeline.workspace_snapshot import create_workspace_snapshot
from patchgate.utils.hashing import sha256_prefixed


@pytest.fixture
def mapping(agent_workspace, hooks):
    snapshot = create_workspace_snapshot(str(agent_workspace.root), **hooks)
    return create_intent_mapping(snapshot, agent_workspace.intent, **hooks)


@pytest.fixture
def plan(mapping, hooks):
    return create_safe_diff_plan(mapping, **hooks)


def test_passing_verification_continues(plan, passing_verification, hooks, recording_logger) -> None:
    patch_run = create_patch_run(
        plan, verification_results=passing_verification, logger=recording_logger, **hooks
    )
    payload = patch_run["payload"]
    [edit] = plan["payload"]["edits"]

    assert payload["decision"] == "continue"
    assert payload["reason_code"] == "ok"
    assert payload["patch"]["format"] == "unified_diff"
    assert payload["patch"]["file_count"] == 1
    assert payload["patch"]["hunk_count"] == 1
    assert payload["patch"]["content"] == (
        "diff --git a/spec/agent.ls b/spec/agent.ls\n"
        "--- a/spec/agent.ls\n"
        "+++ b/spec/agent.ls\n"
        "@@ -1 +1 @@\n"
        "-__patchgate_patch_run_before__\n"
        f"+__patchgate_patch_run_after__ symbol:capability:read_docs | target:{edit['target_id']} | "
        f"why:{edit['justification']}\n"
    )
    assert payload["patch_digest"] == sha256_prefixed(payload["patch"]["content"])
    assert payload["verification"]["required_checks"] == ["lint", "test", "typecheck"]
    assert payload["verification"]["all_required_passed"] is True
    assert patch_run["trace"] == {"patch_materialization": "deterministic_text_patch_v1"}
    assert recording_logger.names("info") == ["patch_run_decision"]


def test_missing_results_are_incomplete(plan) -> None:
    payload = create_patch_run(plan)["payload"]

    assert payload["decision"] == "stop"
    assert payload["reason_code"] == "verification_incomplete"
    assert payload["reason_detail"] == (
        "Required verification evidence is incomplete: missing required checks: lint, test, typecheck."
    )
    assert payload["verification"]["missing_required_checks"] == ["lint", "test", "typecheck"]
    assert payload["verification"]["checks_complete"] is False


def test_incomplete_evidence_outranks_failures(plan) -> None:
    results = [
        {"check": "lint", "status": "fail"},
        {"check": "test", "status": "not_run", "evidence_ref": "e/test"},
        {"check": "typecheck", "status": "pass"},
    ]
    payload = create_patch_run(plan, verification_results=results)["payload"]

    assert payload["reason_code"] == "verification_incomplete"
    assert payload["reason_detail"] == (
        "Required verification evidence is incomplete: not-run required checks: test; "
        "missing evidence links for: lint, typecheck."
    )
    assert payload["verification"]["failing_checks"] == ["lint"]
    assert payload["verification"]["incomplete_checks"] == ["lint", "test", "typecheck"]


def test_failing_checks_stop(plan, passing_verification) -> None:
    results = copy.deepcopy(passing_verification)
    results[0]["status"] = "fail"
    payload = create_patch_run(plan, verification_results=results)["payload"]

    assert payload["decision"] == "stop"
    assert payload["reason_code"] == "verification_failed"
    assert payload["reason_detail"] == "Required verification checks failed: lint."


def test_policy_sensitive_paths_escalate(mapping, passing_verification) -> None:
    plan = create_safe_diff_plan(mapping, planned_edits=[{"path": ".github/workflows/ci.yml"}])
    payload = create_patch_run(plan, verification_results=passing_verification)["payload"]

    assert payload["decision"] == "escalate"
    assert payload["reason_code"] == "policy_blocked"
    assert ".github/workflows/ci.yml" in payload["reason_detail"]

    relaxed = create_patch_run(
        plan, verification_results=passing_verification, policy_sensitive_path_patterns=[]
    )["payload"]
    assert relaxed["decision"] == "continue"


def test_custom_required_checks(plan) -> None:
    results = [{"check": "docs-build", "status": "pass", "evidence_ref": "ci/42"}]
    payload = create_patch_run(plan, verification_results=results, required_checks=[" docs-build "])["payload"]
    assert payload["decision"] == "continue"
    assert payload["verification"]["required_checks"] == ["docs-build"]


def test_blocked_plan_propagates_without_materializing(mapping, passing_verification) -> None:
    plan = create_safe_diff_plan(mapping, planned_edits=[{"path": "keys/site.pem"}])
    payload = create_patch_run(plan, verification_results=passing_verification)["payload"]

    assert (payload["decision"], payload["reason_code"]) == ("stop", "forbidden_path")
    assert payload["reason_detail"].startswith("Safe diff plan blocked patch generation: ")
    assert payload["patch"] == {"format": "unified_diff", "content": "", "file_count": 0, "hunk_count": 0}
    assert payload["patch_digest"] == sha256_prefixed("")
    assert payload["verification"]["all_required_passed"] is True


def test_continue_plan_without_edits_is_unsupported(plan) -> None:
    doctored = copy.deepcopy(plan)
    doctored["payload"]["edits"] = []
    payload = create_patch_run(doctored)["payload"]
    assert (payload["decision"], payload["reason_code"]) == ("stop", "unsupported_input")


def test_custom_materializer_is_used(plan, passing_verification) -> None:
    class _EchoMaterializer:
        def materialize(self, edits: Sequence[Edit]) -> str:
            return "".join(f"{edit.operation.value} {edit.path}\n" for edit in edits)

    patch_run = create_patch_run(
        plan,
        verification_results=passing_verification,
        materializer=_EchoMaterializer(),
        patch_materialization="echo",
    )
    assert patch_run["payload"]["patch"]["content"] == "modify spec/agent.ls\n"
    assert patch_run["trace"] == {"patch_materialization": "echo"}


def test_trace_label_follows_injected_materializer_name(plan, passing_verification) -> None:
    class _NamedMaterializer:
        name = "custom_renderer_v2"

        def materialize(self, edits: Sequence[Edit]) -> str:
            return "".join(f"{edit.path}\n" for edit in edits)

    class _UnnamedMaterializer:
        def materialize(self, edits: Sequence[Edit]) -> str:
            return "unnamed\n"

    named = create_patch_run(plan, verification_results=passing_verification, materializer=_NamedMaterializer())
    assert named["payload"]["patch"]["content"] == "spec/agent.ls\n"
    assert named["trace"] == {"patch_materialization": "custom_renderer_v2"}

    overridden = create_patch_run(
        plan,
        verification_results=passing_verification,
        materializer=_NamedMaterializer(),
        patch_materialization="  pinned_label  ",
    )
    assert overridden["trace"] == {"patch_materialization": "pinned_label"}

    unnamed = create_patch_run(plan, verification_results=passing_verification, materializer=_UnnamedMaterializer())
    assert unnamed["trace"] == {"patch_materialization": "deterministic_text_patch_v1"}


@pytest.mark.parametrize(
    "results",
    [
        {"check": "lint"},
        [{"check": "lint", "status": "skipped"}],
        [{"check": "lint"}, {"check": " lint "}],
        [{"status": "pass"}],
    ],
)
def test_invalid_verification_results(plan, results: object) -> None:
    with pytest.raises(PatchRunError) as excinfo:
        create_patch_run(plan, verification_results=results)
    assert excinfo.value.code == "INVALID_OPTIONS"


@pytest.mark.parametrize("checks", [[], ["  "], "lint"])
def test_invalid_required_checks(plan, checks: object) -> None:
    with pytest.raises(PatchRunError) as excinfo:
        create_patch_run(plan, required_checks=checks)
    assert excinfo.value.code == "INVALID_OPTIONS"


def test_invalid_plan_artifacts(plan) -> None:
    with pytest.raises(PatchRunError) as excinfo:
        create_patch_run({**plan, "schema_version": "0.9.0"})
    assert excinfo.value.code == "INVALID_SAFE_DIFF_PLAN"

    escaping = copy.deepcopy(plan)
    escaping["payload"]["edits"][0]["path"] = "../../etc/passwd"
    with pytest.raises(PatchRunError) as excinfo:
        create_patch_run(escaping)
    assert excinfo.value.code == "INVALID_SAFE_DIFF_PLAN"


def test_results_default_to_not_run_and_sort_by_check() -> None:
    results = normalize_verification_results(
        [{"check": "test", "evidence_ref": "  ", "detail": " flaky "}, {"check": "lint", "status": "pass"}]
    )
    assert results == [
        {"check": "lint", "status": "pass"},
        {"check": "test", "status": "not_run", "detail": "flaky"},
    ]
    summary = evaluate_verification(["lint", "test"], results)
    assert summary.incomplete_checks == ["lint", "test"]
    assert summary.status_of("test") == "not_run"
    assert summary.status_of("docs") is None


def test_placeholder_chunks_per_operation() -> None:
    edits = [
        Edit("new.md", EditOperation.CREATE, "add doc"),
        Edit("old.md", EditOperation.DELETE, "drop doc", target_id="t-1", symbol_path=None, has_symbol_path=True),
    ]
    content = PlaceholderPatchMaterializer().materialize(edits)

    assert content == (
        "diff --git a/new.md b/new.md\n"
        "new file mode 100644\n"
        "--- /dev/null\n"
        "+++ b/new.md\n"
        "@@ -0,0 +1 @@\n"
        "+__patchgate_patch_run_create__ symbol:unspecified | target:none | why:add doc\n"
        "\n"
        "diff --git a/old.md b/old.md\n"
        "deleted file mode 100644\n"
        "--- a/old.md\n"
        "+++ /dev/null\n"
        "@@ -1 +0,0 @@\n"
        "-__patchgate_patch_run_delete__ symbol:file | target:t-1 | why:drop doc\n"
    )
    assert PlaceholderPatchMaterializer().materialize([]) == ""


def test_rollback_package_reverses_and_inverts() -> None:
    edits = [
        Edit("a.md", EditOperation.CREATE, "one"),
        Edit("b.md", EditOperation.MODIFY, "two"),
    ]
    content = render_rollback_package(edits)
    headers = [line for line in content.splitlines() if line.startswith(("diff --git", "+__", "-__"))]

    assert headers == [
        "diff --git a/b.md b/b.md",
        "-__patchgate_rollback_before__",
        "+__patchgate_rollback_after__ symbol:unspecified | target:none | why:two",
        "diff --git a/a.md b/a.md",
        "-__patchgate_rollback_delete__ symbol:unspecified | target:none | why:one",
    ]


def test_metadata_is_squashed_and_truncated() -> None:
    assert squash_line("  a \n  b\tc ") == "a b c"
    assert squash_line("x" * 10, max_length=6) == "xxx..."
    edit = Edit("a.md", EditOperation.MODIFY, "why " * 60, symbol_path="s", has_symbol_path=True)
    label = metadata_label(edit)
    assert label.startswith("symbol:s | target:none | why:")
    assert label.endswith("...")
