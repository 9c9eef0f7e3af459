"""
patchgate — hashing utilities

File: src/patchgate/utils/hashing.py
Last updated: 2026-10-18

Purpose
- Provide deterministic SHA-256 helpers for bytes, text, files, and JSON values.
- Provide the ``sha256:<hex>`` digest form used by every standalone digest field.

Functional requirements
- Canonical JSON is key-sorted, compact, and UTF-8 encoded so equal values hash equally.
- Prefixed digests are verified by exact string comparison after recomputation.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json
import os
import string
from pathlib import Path

from patchgate.constants import SHA256_PREFIX

PathLike = str | os.PathLike[str]

_SHA256_HEX_LENGTH = 64
_FILE_READ_CHUNK_BYTES = 1024 * 1024
_HEX_DIGITS = set(string.hexdigits.lower())

__all__ = [
    "canonical_json",
    "is_sha256_prefixed",
    "sha256_bytes",
    "sha256_file",
    "sha256_json",
    "sha256_prefixed",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def canonical_json(value: object) -> str:
    """Render ``value`` as canonical JSON text (sorted keys, compact separators)."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_json(value: object) -> str:
    """Return SHA-256 hex digest of the canonical JSON rendering of ``value``."""

    return sha256_text(canonical_json(value))


def sha256_prefixed(data: bytes | str) -> str:
    """Return ``sha256:<hex>`` for bytes, or for text encoded as UTF-8."""

    raw = data.encode("utf-8") if isinstance(data, str) else data
    return f"{SHA256_PREFIX}{sha256_bytes(raw)}"


def is_sha256_prefixed(value: str) -> bool:
    """Return ``True`` when ``value`` has the ``sha256:<64 lowercase hex>`` shape."""

    if not value.startswith(SHA256_PREFIX):
        return False
    hex_part = value[len(SHA256_PREFIX) :]
    return len(hex_part) == _SHA256_HEX_LENGTH and set(hex_part).issubset(_HEX_DIGITS)
