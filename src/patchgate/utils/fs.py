"""
patchgate — filesystem utilities

File: src/patchgate/utils/fs.py
Last updated: 2026-10-18

Purpose
- Provide safe, minimal filesystem helpers for atomic writes and workspace-bounded access.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Workspace path resolution refuses anything that lands outside the workspace root.
- Deletion refuses paths outside the workspace root.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path, PurePosixPath

PathLike = str | os.PathLike[str]

__all__ = [
    "WorkspacePathError",
    "atomic_write",
    "is_within",
    "resolve_workspace_path",
    "safe_unlink",
]


class WorkspacePathError(ValueError):
    """Raised when a workspace-relative path would resolve outside the workspace."""


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        if isinstance(data, bytes):
            with os.fdopen(fd, "wb") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())
        else:
            with os.fdopen(fd, "w", encoding=encoding, newline="") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    return _is_relative_to(Path(child).resolve(), Path(parent).resolve())


def resolve_workspace_path(workspace_root: PathLike, relative_path: str) -> Path:
    """
    Join a POSIX workspace-relative path onto ``workspace_root``.

    The result is resolved (symlinks followed) and must stay inside the root.
    """

    root = Path(workspace_root)
    segments = [segment for segment in PurePosixPath(relative_path).parts if segment not in {"", "/"}]
    candidate = root.joinpath(*segments).resolve()
    if candidate != root and not _is_relative_to(candidate, root):
        raise WorkspacePathError(f"resolved workspace path escapes workspace root: {relative_path}")
    return candidate


def safe_unlink(path: Path, workspace_root: PathLike) -> None:
    """Remove a regular file under ``workspace_root``; missing files are ignored."""

    if not _is_relative_to(path, Path(workspace_root)):
        raise WorkspacePathError(f"refusing to delete path outside workspace root: {path!s}")
    path.unlink(missing_ok=True)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
