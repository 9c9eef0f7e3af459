"""
patchgate — integration tests for the read-only git metadata reader

File: tests/unit/integration_plane/test_git_metadata.py
Last updated: 2026-10-18

Purpose
- Exercise ``GitMetadataReader`` against real temporary repositories.

What this test file should cover
- Head SHA, branch, and clean status for a freshly committed repository.
- Untracked and modified files appear in normalized, sorted porcelain output.
- Non-repositories raise ``GitCommandError`` with the failing command recorded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from patchgate.integration_plane.git_engine import (
    GitCommandError,
    GitEngineError,
    GitMetadataReader,
    normalize_porcelain,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_normalize_porcelain_sorts_and_drops_blank_lines() -> None:
    raw = "?? z.txt  \n\n M a.txt\n?? b/c.txt\n"
    assert normalize_porcelain(raw) == " M a.txt\n?? b/c.txt\n?? z.txt"
    assert normalize_porcelain("\n \n") == ""


@pytest.mark.integration
def test_clean_repository_metadata(agent_workspace) -> None:
    metadata = GitMetadataReader(agent_workspace.root).read()

    assert len(metadata.head_sha) == 40
    assert metadata.branch == "main"
    assert metadata.status_porcelain == ""
    assert not metadata.is_dirty


@pytest.mark.integration
def test_dirty_repository_lists_untracked_files_individually(agent_workspace) -> None:
    (agent_workspace.root / "docs" / "notes.txt").write_text("changed\n", encoding="utf-8")
    nested = agent_workspace.root / "new" / "deeper"
    nested.mkdir(parents=True)
    (nested / "file.txt").write_text("x\n", encoding="utf-8")

    metadata = GitMetadataReader(agent_workspace.root).read()

    assert metadata.is_dirty
    assert metadata.status_porcelain.splitlines() == [" M docs/notes.txt", "?? new/deeper/file.txt"]


@pytest.mark.integration
def test_non_repository_raises_command_error(tmp_path: Path) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()

    with pytest.raises(GitCommandError) as excinfo:
        GitMetadataReader(plain).read()

    assert excinfo.value.returncode != 0
    assert excinfo.value.command[-2:] == ("rev-parse", "HEAD")
    assert isinstance(excinfo.value, GitEngineError)


def test_missing_git_binary_raises_engine_error(tmp_path: Path) -> None:
    reader = GitMetadataReader(tmp_path, git_binary="patchgate-no-such-git-binary")
    with pytest.raises(GitEngineError, match="unable to execute git"):
        reader.read()
