"""Utility exports for filesystem, hashing, path, and glob helpers."""

from patchgate.utils.fs import (
    WorkspacePathError,
    atomic_write,
    is_within,
    resolve_workspace_path,
    safe_unlink,
)
from patchgate.utils.globs import GlobMatcher, glob_to_regex
from patchgate.utils.hashing import (
    canonical_json,
    is_sha256_prefixed,
    sha256_bytes,
    sha256_file,
    sha256_json,
    sha256_prefixed,
    sha256_text,
)
from patchgate.utils.paths import escapes_workspace, normalize_relative_path, normalize_separators

__all__ = [
    "GlobMatcher",
    "WorkspacePathError",
    "atomic_write",
    "canonical_json",
    "escapes_workspace",
    "glob_to_regex",
    "is_sha256_prefixed",
    "is_within",
    "normalize_relative_path",
    "normalize_separators",
    "resolve_workspace_path",
    "safe_unlink",
    "sha256_bytes",
    "sha256_file",
    "sha256_json",
    "sha256_prefixed",
    "sha256_text",
]
