"""Read-only Git metadata helpers for workspace snapshots."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class GitEngineError(RuntimeError):
    """Base error for git engine failures."""


class GitCommandError(GitEngineError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result for deterministic git wrapper behavior."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class GitMetadata:
    """Head, branch, and normalized dirty status of a worktree."""

    head_sha: str
    branch: str
    status_porcelain: str

    @property
    def is_dirty(self) -> bool:
        return self.status_porcelain != ""


def normalize_porcelain(raw: str) -> str:
    """Right-strip lines, drop blanks, sort, and join with ``\\n``."""

    lines = [line.rstrip() for line in raw.splitlines()]
    return "\n".join(sorted(line for line in lines if line))


class GitMetadataReader:
    """Query a worktree for the metadata recorded in workspace snapshots."""

    def __init__(
        self,
        repo_path: str | Path,
        *,
        git_binary: str = "git",
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path)
        self._git_binary = git_binary
        self._env_overrides = dict(env_overrides or {})

    def read(self) -> GitMetadata:
        head_sha = self._run_git(("rev-parse", "HEAD")).stdout.strip()
        branch = self._run_git(("rev-parse", "--abbrev-ref", "HEAD")).stdout.strip()
        status = self._run_git(("status", "--porcelain", "--untracked-files=all")).stdout
        if not head_sha or not branch:
            raise GitEngineError(f"git returned empty head or branch for {self.repo_path.as_posix()}")
        return GitMetadata(
            head_sha=head_sha,
            branch=branch,
            status_porcelain=normalize_porcelain(status),
        )

    def _run_git(self, args: Sequence[str]) -> CommandResult:
        command = (self._git_binary, "-C", self.repo_path.as_posix(), *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)

        try:
            completed = subprocess.run(
                command,
                env=env,
                text=True,
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            raise GitEngineError(f"unable to execute git: {exc}") from exc

        result = CommandResult(
            command=command,
            cwd=self.repo_path.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


__all__ = [
    "CommandResult",
    "GitCommandError",
    "GitEngineError",
    "GitMetadata",
    "GitMetadataReader",
    "normalize_porcelain",
]
