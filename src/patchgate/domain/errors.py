"""
patchgate — typed pipeline errors

File: src/patchgate/domain/errors.py
Last updated: 2026-10-18

Purpose
- Define the contract-violation channel shared by every pipeline stage.

Functional requirements
- Each stage raises exactly one error type carrying a closed string ``code``.
- Codes outside a stage's closed set are a programming error and are rejected at construction.
- Root-resolution failures also carry the offending ``workspace_root``.

Non-functional requirements
- Business outcomes (stop/escalate decisions) are never raised; they are artifacts.
"""

from __future__ import annotations

from typing import ClassVar


class PipelineError(RuntimeError):
    """Base error for malformed inputs, options, and execution failures."""

    codes: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, code: str, message: str, *, workspace_root: str | None = None) -> None:
        if self.codes and code not in self.codes:
            raise ValueError(f"{type(self).__name__} does not define error code {code!r}")
        self.code = code
        self.workspace_root = workspace_root
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}: {self.args[0]}"


class WorkspaceSnapshotError(PipelineError):
    codes = frozenset(
        {
            "INVALID_WORKSPACE_ROOT",
            "INVALID_IGNORED_PATHS",
            "WORKSPACE_ROOT_UNREADABLE",
            "WORKSPACE_ROOT_NOT_DIRECTORY",
            "WORKSPACE_ENTRY_UNREADABLE",
            "GIT_METADATA_UNAVAILABLE",
        }
    )


class IntentMappingError(PipelineError):
    codes = frozenset(
        {
            "INVALID_INTENT",
            "INVALID_INTENT_SOURCE",
            "INVALID_WORKSPACE_SNAPSHOT",
            "INVALID_OPTIONS",
            "WORKSPACE_ROOT_UNREADABLE",
            "WORKSPACE_ROOT_NOT_DIRECTORY",
            "WORKSPACE_ENTRY_UNREADABLE",
        }
    )


class SafeDiffPlanError(PipelineError):
    codes = frozenset({"INVALID_INTENT_MAPPING", "INVALID_OPTIONS"})


class PatchRunError(PipelineError):
    codes = frozenset({"INVALID_SAFE_DIFF_PLAN", "INVALID_OPTIONS"})


class ReviewBundleError(PipelineError):
    codes = frozenset({"INVALID_PATCH_RUN", "INVALID_LINEAGE", "INVALID_OPTIONS"})


class ApplyRollbackError(PipelineError):
    codes = frozenset(
        {
            "INVALID_OPTIONS",
            "INVALID_PR_BUNDLE",
            "INVALID_PREVIOUS_RECORD",
            "INVALID_BENCHMARK_REPORT",
            "EXECUTION_FAILED",
        }
    )


__all__ = [
    "ApplyRollbackError",
    "IntentMappingError",
    "PatchRunError",
    "PipelineError",
    "ReviewBundleError",
    "SafeDiffPlanError",
    "WorkspaceSnapshotError",
]
