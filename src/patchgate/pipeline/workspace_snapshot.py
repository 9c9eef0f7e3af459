"""
patchgate — workspace snapshot stage

File: src/patchgate/pipeline/workspace_snapshot.py
Last updated: 2026-10-18

Purpose
- Fingerprint a git worktree: head, branch, dirty status, and a file inventory.

Functional requirements
- The root is canonicalized to its real path and must be a directory.
- Ignored-path patterns are de-duplicated, separator-normalized, and sorted.
- Symbolic links and ignored paths are never walked.
- File contents are not hashed; the snapshot is a structural fingerprint.
- Any git metadata failure is fatal (``GIT_METADATA_UNAVAILABLE``).

Non-functional requirements
- The artifact id is derived from the snapshot hash, so equal worktrees yield equal ids.
"""

from __future__ import annotations

import posixpath
from collections.abc import Callable
from pathlib import Path
from typing import Any, Final

import structlog

from patchgate.constants import WORKSPACE_SNAPSHOT_ARTIFACT_TYPE
from patchgate.domain.envelope import Artifact, build_artifact, snapshot_artifact_id
from patchgate.domain.errors import WorkspaceSnapshotError
from patchgate.domain.hooks import Clock, RunIdFactory, resolve_produced_at, resolve_run_id
from patchgate.integration_plane.git_engine import GitEngineError, GitMetadata, GitMetadataReader
from patchgate.pipeline.workspace_walk import iter_workspace_files, resolve_workspace_root
from patchgate.utils.hashing import sha256_json
from patchgate.utils.paths import normalize_separators

DEFAULT_IGNORED_PATHS: Final[tuple[str, ...]] = (".git/**", "node_modules/**")
TRACE_SOURCE: Final[str] = "local_git_worktree"

LANGUAGE_BY_EXTENSION: Final[dict[str, str]] = {
    ".cjs": "JavaScript",
    ".js": "JavaScript",
    ".json": "JSON",
    ".jsx": "JavaScript",
    ".ls": "L-Semantica",
    ".md": "Markdown",
    ".mdx": "Markdown",
    ".mjs": "JavaScript",
    ".sh": "Shell",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".yaml": "YAML",
    ".yml": "YAML",
}

GitReaderFactory = Callable[[Path], GitMetadataReader]


def normalize_ignored_paths(value: object) -> list[str]:
    if value is None:
        return list(DEFAULT_IGNORED_PATHS)
    if not isinstance(value, (list, tuple)):
        raise WorkspaceSnapshotError(
            "INVALID_IGNORED_PATHS", "ignored_paths must be an array of non-empty strings"
        )
    normalized: set[str] = set()
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise WorkspaceSnapshotError(
                "INVALID_IGNORED_PATHS", "ignored_paths must contain only non-empty strings"
            )
        normalized.add(normalize_separators(item.strip()))
    return sorted(normalized)


def detect_language(relative_path: str) -> str | None:
    extension = posixpath.splitext(relative_path)[1].lower()
    return LANGUAGE_BY_EXTENSION.get(extension)


def _collect_inventory(root: Path, ignored_paths: list[str]) -> dict[str, Any]:
    files: list[dict[str, object]] = []
    languages: set[str] = set()
    files_supported = 0
    for workspace_file in iter_workspace_files(root, ignored_paths, error_type=WorkspaceSnapshotError):
        record: dict[str, object] = {
            "path": workspace_file.relative_path,
            "size_bytes": workspace_file.size_bytes,
        }
        language = detect_language(workspace_file.relative_path)
        if language is not None:
            files_supported += 1
            languages.add(language)
            record["language"] = language
        files.append(record)
    files.sort(key=lambda record: str(record["path"]))
    return {
        "files_scanned": len(files),
        "files_supported": files_supported,
        "languages": sorted(languages),
        "files": files,
    }


def _read_git_metadata(root: Path, git_reader_factory: GitReaderFactory | None) -> GitMetadata:
    reader = git_reader_factory(root) if git_reader_factory is not None else GitMetadataReader(root)
    try:
        return reader.read()
    except GitEngineError as exc:
        raise WorkspaceSnapshotError(
            "GIT_METADATA_UNAVAILABLE",
            f"failed to read git metadata: {exc}",
            workspace_root=root.as_posix(),
        ) from exc


def create_workspace_snapshot(
    workspace_root: object,
    *,
    ignored_paths: object = None,
    now: Clock | None = None,
    run_id_factory: RunIdFactory | None = None,
    tool_version: str | None = None,
    git_reader_factory: GitReaderFactory | None = None,
    logger: Any | None = None,
) -> Artifact:
    """Capture a workspace snapshot artifact for ``workspace_root``."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    root = resolve_workspace_root(
        workspace_root,
        error_type=WorkspaceSnapshotError,
        label="workspace_root",
        invalid_code="INVALID_WORKSPACE_ROOT",
    )
    filters = normalize_ignored_paths(ignored_paths)
    inventory = _collect_inventory(root, filters)
    git = _read_git_metadata(root, git_reader_factory)

    snapshot_hash = sha256_json(
        {
            "git": {
                "head_sha": git.head_sha,
                "branch": git.branch,
                "is_dirty": git.is_dirty,
                "status_porcelain": git.status_porcelain,
            },
            "inventory": inventory,
            "filters": {"ignored_paths": filters},
        }
    )

    artifact = build_artifact(
        artifact_type=WORKSPACE_SNAPSHOT_ARTIFACT_TYPE,
        run_id=resolve_run_id(run_id_factory, stage="workspace_snapshot", logger=log),
        produced_at=resolve_produced_at(now, stage="workspace_snapshot", logger=log),
        tool_version=tool_version,
        inputs=[],
        trace={"workspace_root": root.as_posix(), "source": TRACE_SOURCE},
        payload={
            "git": {"head_sha": git.head_sha, "branch": git.branch, "is_dirty": git.is_dirty},
            "inventory": {
                "files_scanned": inventory["files_scanned"],
                "files_supported": inventory["files_supported"],
                "languages": inventory["languages"],
            },
            "filters": {"ignored_paths": filters},
            "snapshot_hash": snapshot_hash,
        },
        artifact_id=snapshot_artifact_id(snapshot_hash),
    )
    log.info(
        "workspace_snapshot_created",
        artifact_id=artifact["artifact_id"],
        files_scanned=inventory["files_scanned"],
        is_dirty=git.is_dirty,
    )
    return artifact


__all__ = [
    "DEFAULT_IGNORED_PATHS",
    "LANGUAGE_BY_EXTENSION",
    "create_workspace_snapshot",
    "detect_language",
    "normalize_ignored_paths",
]
