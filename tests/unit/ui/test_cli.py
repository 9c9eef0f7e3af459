"""
patchgate — unit tests for the CLI router

File: tests/unit/ui/test_cli.py
Last updated: 2026-10-18

Purpose
- Drive every subcommand in-process and check exit codes, artifact files, and stdout payloads.

What this test file should cover
- The full snapshot-to-apply chain through artifact files on disk.
- Blocked decisions exit with 1; unreadable inputs exit with 3.
- ``verify`` detects tampered artifacts; ``config`` prints the effective config.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import structlog

from patchgate.ui.cli import build_parser, run_cli


@pytest.fixture(autouse=True)
def _isolated_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    yield
    structlog.reset_defaults()


def _write_json(path: Path, payload: object) -> str:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def _read(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def _run_chain(workspace: Path, out: Path, verification: list[dict[str, str]]) -> dict[str, Path]:
    paths = {name: out / f"{name}.json" for name in ("snapshot", "mapping", "plan", "patch", "bundle")}
    results = _write_json(out / "results.json", verification)

    assert run_cli(["snapshot", str(workspace), "--out", str(paths["snapshot"])]) == 0
    assert (
        run_cli(
            [
                "map",
                str(paths["snapshot"]),
                "--intent",
                "Update capability read_docs description to mention local RFCs",
                "--out",
                str(paths["mapping"]),
            ]
        )
        == 0
    )
    assert run_cli(["plan", str(paths["mapping"]), "--out", str(paths["plan"])]) == 0
    assert run_cli(["patch", str(paths["plan"]), "--verification", results, "--out", str(paths["patch"])]) == 0
    assert (
        run_cli(
            [
                "bundle",
                str(paths["patch"]),
                "--snapshot",
                str(paths["snapshot"]),
                "--mapping",
                str(paths["mapping"]),
                "--plan",
                str(paths["plan"]),
                "--out",
                str(paths["bundle"]),
            ]
        )
        == 0
    )
    return paths


def test_full_chain_through_artifact_files(agent_workspace, passing_verification, tmp_path: Path) -> None:
    out = tmp_path / "artifacts"
    out.mkdir()
    paths = _run_chain(agent_workspace.root, out, passing_verification)

    bundle = _read(paths["bundle"])
    assert bundle["payload"]["readiness"]["decision"] == "continue"
    assert [ref["artifact_id"] for ref in bundle["inputs"]][-1] == _read(paths["patch"])["artifact_id"]

    record_path = out / "apply.json"
    exit_code = run_cli(
        [
            "apply",
            str(paths["bundle"]),
            str(agent_workspace.root),
            "--capability",
            "workspace.apply_patch",
            "--approval-evidence-ref",
            "approvals/1",
            "--out",
            str(record_path),
        ]
    )
    record = _read(record_path)

    assert exit_code == 0
    assert record["payload"]["execution"]["executed"] is False
    assert record["trace"]["policy_profile_ref"] == "policy.unspecified"


def test_apply_then_rollback_restores_workspace(agent_workspace, passing_verification, tmp_path: Path) -> None:
    out = tmp_path / "artifacts"
    out.mkdir()
    paths = _run_chain(agent_workspace.root, out, passing_verification)
    original = agent_workspace.document_bytes
    policy = tmp_path / "policy.yaml"
    policy.write_text(
        "profile_ref: policy.cli-test\n"
        "approval_required: false\n"
        "declared_capabilities: [workspace.apply_patch, workspace.rollback_patch]\n",
        encoding="utf-8",
    )

    apply_args = ["apply", str(paths["bundle"]), str(agent_workspace.root), "--policy", str(policy)]
    assert run_cli([*apply_args, "--execute", "--out", str(out / "apply.json")]) == 0
    assert agent_workspace.document_bytes != original
    assert _read(out / "apply.json")["trace"]["policy_profile_ref"] == "policy.cli-test"

    rollback_args = [
        "rollback",
        str(paths["bundle"]),
        str(agent_workspace.root),
        "--policy",
        str(policy),
        "--previous-record",
        str(out / "apply.json"),
        "--execute",
        "--out",
        str(out / "rollback.json"),
    ]
    assert run_cli(rollback_args) == 0
    assert _read(out / "rollback.json")["payload"]["rollback"]["restored_to_prior_state"] is True
    assert agent_workspace.document_bytes == original


def test_blocked_decisions_exit_with_one(agent_workspace, tmp_path: Path) -> None:
    snapshot = tmp_path / "snapshot.json"
    mapping = tmp_path / "mapping.json"
    assert run_cli(["snapshot", str(agent_workspace.root), "--out", str(snapshot)]) == 0

    assert run_cli(["map", str(snapshot), "--intent", "zebra quantum", "--out", str(mapping)]) == 1
    assert _read(mapping)["payload"]["reason_code"] == "unsupported_input"


def test_patch_without_verification_is_blocked(agent_workspace, tmp_path: Path) -> None:
    snapshot, mapping, plan, patch = (tmp_path / f"{name}.json" for name in ("s", "m", "p", "r"))
    run_cli(["snapshot", str(agent_workspace.root), "--out", str(snapshot)])
    run_cli(["map", str(snapshot), "--intent", agent_workspace.intent, "--out", str(mapping)])
    run_cli(["plan", str(mapping), "--max-hunks", "3", "--out", str(plan)])

    assert run_cli(["patch", str(plan), "--out", str(patch)]) == 1
    assert _read(patch)["payload"]["reason_code"] == "verification_incomplete"
    assert _read(plan)["payload"]["safety_checks"]["max_hunks"]["limit"] == 3


def test_stdout_output_and_verify(agent_workspace, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["snapshot", str(agent_workspace.root)]) == 0
    snapshot = json.loads(capsys.readouterr().out)
    path = tmp_path / "snapshot.json"
    _write_json(path, snapshot)

    assert run_cli(["verify", str(path)]) == 0
    verdict = json.loads(capsys.readouterr().out)
    assert verdict["valid"] is True
    assert verdict["recomputed_artifact_id"] == snapshot["artifact_id"]

    snapshot["payload"]["snapshot_hash"] = "0" * 64
    _write_json(path, snapshot)
    assert run_cli(["verify", str(path)]) == 1
    assert json.loads(capsys.readouterr().out)["valid"] is False


def test_unreadable_inputs_exit_with_three(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["plan", str(tmp_path / "missing.json")]) == 3
    assert "error: unable to read" in capsys.readouterr().err

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert run_cli(["verify", str(broken)]) == 3
    assert "invalid JSON" in capsys.readouterr().err

    listed = tmp_path / "list.json"
    _write_json(listed, [1, 2])
    assert run_cli(["verify", str(listed)]) == 3


def test_config_command_prints_effective_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = tmp_path / "custom.toml"
    config_path.write_text("[plan]\nmax_hunks = 4\n", encoding="utf-8")

    assert run_cli(["config", "--config", str(config_path), "--log-level", "ERROR"]) == 0
    effective = json.loads(capsys.readouterr().out)

    assert effective["plan"]["max_hunks"] == 4
    assert effective["logging"]["level"] == "ERROR"


def test_parser_requires_previous_record_for_rollback() -> None:
    parser = build_parser()
    with pytest.raises(SystemExit) as excinfo:
        parser.parse_args(["rollback", "bundle.json", "."])
    assert excinfo.value.code == 2

    namespace = parser.parse_args(["apply", "bundle.json", ".", "--capability", "a", "--capability", "b"])
    assert namespace.action == "apply"
    assert namespace.capabilities == ["a", "b"]
    assert namespace.execute is False
