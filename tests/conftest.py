"""
patchgate — shared pytest fixtures

File: tests/conftest.py
Last updated: 2026-10-18

Purpose
- Provide an isolated git environment, a small fixture repository, and a deterministic
  pipeline runner shared by unit and smoke tests.

What this test file should cover
- Nothing directly; fixtures only.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from patchgate.pipeline import (
    create_intent_mapping,
    create_patch_run,
    create_review_bundle,
    create_safe_diff_plan,
    create_workspace_snapshot,
)

FIXED_NOW = datetime(2026, 10, 18, 12, 30, 45, 678000, tzinfo=UTC)
FIXED_RUN_ID = "run-fixture-0001"

AGENT_DOCUMENT = (
    'goal "Answer questions about local documentation"\n'
    "\n"
    'capability read_docs "Read local documentation files"\n'
    'check cites_sources "Responses cite the documents they used"\n'
)
NOTES_TEXT = "Local notes for the team.\n"
INTENT = "Update capability read_docs description to mention local RFCs"


def run_git(cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and completed.returncode != 0:
        msg = f"git command failed: git {' '.join(args)}\nstdout:\n{completed.stdout}\nstderr:\n{completed.stderr}"
        raise AssertionError(msg)
    return completed


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


@dataclass(frozen=True, slots=True)
class AgentWorkspace:
    """Committed git worktree holding one `.ls` document and one plain-text note."""

    root: Path
    intent: str = INTENT
    document_path: str = "spec/agent.ls"
    notes_path: str = "docs/notes.txt"

    @property
    def document_bytes(self) -> bytes:
        return (self.root / self.document_path).read_bytes()


def seed_git_repo(root: Path, files: dict[str, str]) -> None:
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    run_git(root, "init", "-q")
    run_git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(root, "config", "user.name", "Patchgate Tests")
    run_git(root, "config", "user.email", "tests@patchgate.invalid")
    run_git(root, "add", "--all")
    run_git(root, "commit", "-q", "--no-gpg-sign", "-m", "seed workspace")


@pytest.fixture
def agent_workspace(tmp_path: Path) -> AgentWorkspace:
    root = tmp_path / "workspace"
    seed_git_repo(root, {"spec/agent.ls": AGENT_DOCUMENT, "docs/notes.txt": NOTES_TEXT})
    return AgentWorkspace(root=root)


@pytest.fixture
def hooks() -> dict[str, Any]:
    """Clock and run-id hooks that make every artifact byte-reproducible."""

    return {"now": lambda: FIXED_NOW, "run_id_factory": lambda: FIXED_RUN_ID}


@pytest.fixture
def passing_verification() -> list[dict[str, str]]:
    return [
        {"check": "lint", "status": "pass", "evidence_ref": "evidence/lint.log"},
        {"check": "typecheck", "status": "pass", "evidence_ref": "evidence/typecheck.log"},
        {"check": "test", "status": "pass", "evidence_ref": "evidence/test.log"},
    ]


@pytest.fixture
def run_pipeline(
    agent_workspace: AgentWorkspace,
    hooks: dict[str, Any],
    passing_verification: list[dict[str, str]],
):
    """Return a callable that runs snapshot through review bundle over ``agent_workspace``."""

    def _run(
        *,
        intent: str | None = None,
        planned_edits: object = None,
        verification_results: object = passing_verification,
        with_lineage: bool = True,
    ) -> dict[str, dict[str, Any]]:
        snapshot = create_workspace_snapshot(str(agent_workspace.root), **hooks)
        mapping = create_intent_mapping(snapshot, intent or agent_workspace.intent, **hooks)
        plan = create_safe_diff_plan(mapping, planned_edits=planned_edits, **hooks)
        patch_run = create_patch_run(plan, verification_results=verification_results, **hooks)
        lineage = (
            {"workspace_snapshot": snapshot, "intent_mapping": mapping, "safe_diff_plan": plan}
            if with_lineage
            else None
        )
        bundle = create_review_bundle(patch_run, lineage=lineage, **hooks)
        return {
            "snapshot": snapshot,
            "mapping": mapping,
            "plan": plan,
            "patch_run": patch_run,
            "bundle": bundle,
        }

    return _run


class RecordingLogger:
    """Minimal structlog-compatible logger capturing ``(level, event, fields)`` tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, event: str, **fields: Any) -> None:
        self.events.append((level, event, fields))

    def info(self, event: str, **fields: Any) -> None:
        self._record("info", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._record("warning", event, **fields)

    def names(self, level: str | None = None) -> list[str]:
        return [event for event_level, event, _ in self.events if level is None or event_level == level]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()
