"""Workspace root resolution and deterministic file walking shared by snapshot and mapping."""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from patchgate.domain.errors import PipelineError


@dataclass(frozen=True, slots=True)
class WorkspaceFile:
    """A regular, non-symlink file discovered under the workspace root."""

    relative_path: str
    absolute_path: Path
    size_bytes: int


def resolve_workspace_root(
    value: object,
    *,
    error_type: type[PipelineError],
    label: str,
    invalid_code: str,
    unreadable_code: str = "WORKSPACE_ROOT_UNREADABLE",
    not_directory_code: str = "WORKSPACE_ROOT_NOT_DIRECTORY",
) -> Path:
    """
    Canonicalize a workspace root to its real path.

    ``invalid_code`` is raised for blank or non-string values. Missing or unreadable
    roots raise ``unreadable_code``; non-directories raise ``not_directory_code``.
    """

    if not isinstance(value, str) or not value.strip():
        raise error_type(invalid_code, f"{label} must be a non-empty string")
    raw = value.strip()
    try:
        real_root = Path(os.path.realpath(Path(raw).absolute(), strict=True))
        is_directory = real_root.is_dir()
    except OSError as exc:
        raise error_type(
            unreadable_code,
            f"{label} is unreadable or does not exist",
            workspace_root=raw,
        ) from exc
    if not is_directory:
        raise error_type(
            not_directory_code,
            f"{label} must point to a directory",
            workspace_root=real_root.as_posix(),
        )
    return real_root


def is_ignored_path(relative_path: str, ignored_paths: list[str]) -> bool:
    """Prefix match for ``<prefix>/**`` patterns, exact match otherwise."""

    for pattern in ignored_paths:
        if pattern.endswith("/**"):
            prefix = pattern[:-3]
            if relative_path == prefix or relative_path.startswith(f"{prefix}/"):
                return True
        elif relative_path == pattern:
            return True
    return False


def iter_workspace_files(
    root: Path,
    ignored_paths: list[str],
    *,
    error_type: type[PipelineError],
) -> Iterator[WorkspaceFile]:
    """
    Walk ``root`` depth-first, skipping ignored paths and symbolic links.

    Directory entries are visited in name order. Unreadable entries raise
    ``WORKSPACE_ENTRY_UNREADABLE`` on ``error_type``.
    """

    pending = [root]
    while pending:
        directory = pending.pop()
        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda entry: entry.name)
        except OSError as exc:
            raise error_type(
                "WORKSPACE_ENTRY_UNREADABLE",
                f"unreadable directory entry: {Path(directory).as_posix()}",
                workspace_root=root.as_posix(),
            ) from exc

        for entry in entries:
            absolute = Path(entry.path)
            relative = absolute.relative_to(root).as_posix()
            if not relative or is_ignored_path(relative, ignored_paths):
                continue
            try:
                if entry.is_symlink():
                    continue
                if entry.is_dir(follow_symlinks=False):
                    pending.append(absolute)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
                size_bytes = entry.stat(follow_symlinks=False).st_size
            except OSError as exc:
                raise error_type(
                    "WORKSPACE_ENTRY_UNREADABLE",
                    f"unreadable file entry: {relative}",
                    workspace_root=root.as_posix(),
                ) from exc
            yield WorkspaceFile(relative, absolute, size_bytes)


__all__ = ["WorkspaceFile", "is_ignored_path", "iter_workspace_files", "resolve_workspace_root"]
