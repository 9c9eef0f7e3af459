"""
patchgate — target-state snapshots for apply/rollback

File: src/patchgate/pipeline/state_snapshot.py
Last updated: 2026-10-18

Purpose
- Capture, digest, validate, and restore the exact bytes of the paths an apply touches.

Functional requirements
- Each entry records existence, byte length, ``sha256:`` content digest, and canonical base64 content.
- The snapshot digest covers every entry except the base64 payload.
- Restore validates every entry and resolves every path before the first write.

Non-functional requirements
- Paths that resolve outside the workspace root fail with ``EXECUTION_FAILED``.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from patchgate.domain.errors import ApplyRollbackError
from patchgate.domain.validation import FieldValidator
from patchgate.utils.fs import WorkspacePathError, atomic_write, resolve_workspace_path, safe_unlink
from patchgate.utils.hashing import canonical_json, sha256_prefixed
from patchgate.utils.paths import escapes_workspace, normalize_relative_path


@dataclass(frozen=True, slots=True)
class FileState:
    path: str
    exists: bool
    byte_length: int
    content_sha256: str | None
    content_base64: str | None

    def digest_view(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "exists": self.exists,
            "byte_length": self.byte_length,
            "content_sha256": self.content_sha256,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.digest_view(), "content_base64": self.content_base64}


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    digest: str
    files: tuple[FileState, ...]

    @property
    def paths(self) -> frozenset[str]:
        return frozenset(entry.path for entry in self.files)

    def covers(self, paths: Iterable[str]) -> bool:
        available = self.paths
        return all(path in available for path in paths)

    def to_dict(self) -> dict[str, Any]:
        return {"digest": self.digest, "files": [entry.to_dict() for entry in self.files]}


def snapshot_digest(files: Sequence[FileState]) -> str:
    return sha256_prefixed(canonical_json([entry.digest_view() for entry in files]))


def build_snapshot(files: Iterable[FileState]) -> StateSnapshot:
    ordered = tuple(sorted(files, key=lambda entry: entry.path))
    return StateSnapshot(digest=snapshot_digest(ordered), files=ordered)


def workspace_file(root: Path, relative_path: str) -> Path:
    try:
        return resolve_workspace_path(root, relative_path)
    except WorkspacePathError as exc:
        raise ApplyRollbackError(
            "EXECUTION_FAILED", f"Resolved workspace path escapes workspace root: {relative_path}"
        ) from exc


def capture_file_state(root: Path, relative_path: str) -> FileState:
    target = workspace_file(root, relative_path)
    if not target.exists():
        return FileState(relative_path, False, 0, None, None)
    if not target.is_file():
        raise ApplyRollbackError(
            "EXECUTION_FAILED",
            f"apply/rollback supports file paths only; {relative_path} is not a regular file",
        )
    try:
        content = target.read_bytes()
    except OSError as exc:
        raise ApplyRollbackError("EXECUTION_FAILED", f"cannot read {relative_path}: {exc}") from exc
    return FileState(
        path=relative_path,
        exists=True,
        byte_length=len(content),
        content_sha256=sha256_prefixed(content),
        content_base64=base64.b64encode(content).decode("ascii"),
    )


def capture_state(root: Path, paths: Iterable[str]) -> StateSnapshot:
    return build_snapshot(capture_file_state(root, path) for path in paths)


def decode_canonical_base64(validator: FieldValidator, value: str, path: str) -> bytes:
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        validator.fail(path, "must be canonical base64-encoded content")
    if base64.b64encode(decoded).decode("ascii") != value:
        validator.fail(path, "must be canonical base64-encoded content")
    return decoded


def _parse_snapshot_path(validator: FieldValidator, value: object, path: str) -> str:
    normalized = normalize_relative_path(validator.as_str(value, path))
    if normalized in {"", "."} or escapes_workspace(normalized):
        validator.fail(path, "must be a normalized workspace-relative path")
    return normalized


def parse_file_state(validator: FieldValidator, value: object, path: str) -> FileState:
    entry = validator.expect_object(value, path)
    relative_path = _parse_snapshot_path(validator, entry.get("path"), f"{path}.path")
    exists = validator.as_bool(entry.get("exists"), f"{path}.exists")
    byte_length = validator.as_int(entry.get("byte_length"), f"{path}.byte_length", minimum=0)
    raw_sha = entry.get("content_sha256")
    raw_base64 = entry.get("content_base64")
    if not exists:
        if raw_sha is not None or raw_base64 is not None:
            validator.fail(path, "must set content_sha256/content_base64 to null when exists=false")
        return FileState(relative_path, False, byte_length, None, None)
    if raw_sha is None or raw_base64 is None:
        validator.fail(path, "must include content_sha256 and content_base64 when exists=true")
    content_sha = validator.as_str(raw_sha, f"{path}.content_sha256").strip()
    content_base64 = validator.as_any_str(raw_base64, f"{path}.content_base64")
    decoded = decode_canonical_base64(validator, content_base64, f"{path}.content_base64")
    if len(decoded) != byte_length:
        validator.fail(f"{path}.content_base64", "decoded byte length does not match byte_length")
    if sha256_prefixed(decoded) != content_sha:
        validator.fail(f"{path}.content_base64", "decoded content does not match content_sha256")
    return FileState(relative_path, True, byte_length, content_sha, content_base64)


def parse_state_snapshot(validator: FieldValidator, value: object, path: str) -> StateSnapshot:
    """Validate a recorded snapshot, including its digest over the sorted entries."""

    snapshot = validator.expect_object(value, path)
    files: list[FileState] = []
    seen: set[str] = set()
    for index, item in enumerate(validator.as_list(snapshot.get("files"), f"{path}.files")):
        entry = parse_file_state(validator, item, f"{path}.files[{index}]")
        if entry.path in seen:
            validator.fail(f"{path}.files", f"contains duplicate path entries ({entry.path})")
        seen.add(entry.path)
        files.append(entry)
    digest = validator.as_str(snapshot.get("digest"), f"{path}.digest").strip()
    rebuilt = build_snapshot(files)
    if rebuilt.digest != digest:
        validator.fail(f"{path}.digest", f"does not match {path}.files")
    return rebuilt


def restore_state(root: Path, snapshot: StateSnapshot) -> None:
    """Write ``snapshot`` back byte-for-byte; nothing is written unless every entry checks out."""

    validator = FieldValidator(ApplyRollbackError, "EXECUTION_FAILED")
    planned: list[tuple[Path, bytes | None]] = []
    for entry in snapshot.files:
        target = workspace_file(root, entry.path)
        if not entry.exists:
            planned.append((target, None))
            continue
        where = f"rollback snapshot {entry.path}"
        if entry.content_base64 is None:
            validator.fail(where, "is missing content_base64")
        content = decode_canonical_base64(validator, entry.content_base64, f"{where}.content_base64")
        if len(content) != entry.byte_length:
            validator.fail(where, "byte_length does not match decoded content")
        if sha256_prefixed(content) != entry.content_sha256:
            validator.fail(where, "content_sha256 does not match decoded content")
        planned.append((target, content))

    for target, content in planned:
        if content is None:
            safe_unlink(target, root)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(target, content)


__all__ = [
    "FileState",
    "StateSnapshot",
    "build_snapshot",
    "capture_file_state",
    "capture_state",
    "decode_canonical_base64",
    "parse_file_state",
    "parse_state_snapshot",
    "restore_state",
    "snapshot_digest",
    "workspace_file",
]
