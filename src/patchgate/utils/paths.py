"""Workspace-relative POSIX path normalization and boundary checks."""

from __future__ import annotations

import posixpath
import re

_WINDOWS_DRIVE_PATH_RE = re.compile(r"^[A-Za-z]:/")

__all__ = [
    "escapes_workspace",
    "normalize_relative_path",
    "normalize_separators",
]


def normalize_separators(value: str) -> str:
    """Replace Windows separators with ``/``."""

    return value.replace("\\", "/")


def normalize_relative_path(raw: str) -> str:
    """
    Normalize a caller-supplied path to POSIX form.

    The value is stripped, separators are converted, ``.``/``..`` segments are
    collapsed, and a leading ``./`` is removed. The result is not checked for
    escapes; use :func:`escapes_workspace` for that.
    """

    normalized = posixpath.normpath(normalize_separators(raw.strip()))
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def escapes_workspace(path: str) -> bool:
    """Return ``True`` for absolute, drive-letter, or parent-traversing paths."""

    return (
        path.startswith("/")
        or _WINDOWS_DRIVE_PATH_RE.match(path) is not None
        or path == ".."
        or path.startswith("../")
        or "/../" in path
        or path.endswith("/..")
    )
