"""
patchgate — placeholder unified-diff rendering

File: src/patchgate/pipeline/materializer.py
Last updated: 2026-10-18

Purpose
- Render one deterministic ``diff --git`` chunk per planned edit.
- Provide the ``PatchMaterializer`` seam so a real content-diff engine can replace the placeholder.

Functional requirements
- Chunk bodies are marker lines carrying ``symbol:… | target:… | why:…`` metadata, not file contents.
- Chunks are joined by a blank line and the content ends with a newline; no edits render as ``""``.
- Rollback packages render the edits in reverse order with inverted operations.

Non-functional requirements
- Output depends only on the edit list.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Final, Protocol

from patchgate.domain.edits import Edit, EditOperation

PATCH_RUN_MARKER_PREFIX: Final[str] = "__patchgate_patch_run"
ROLLBACK_MARKER_PREFIX: Final[str] = "__patchgate_rollback"

_WHITESPACE_RE = re.compile(r"\s+")


class PatchMaterializer(Protocol):
    """Turns a validated edit list into unified-diff text."""

    def materialize(self, edits: Sequence[Edit]) -> str: ...


def squash_line(value: str, max_length: int = 180) -> str:
    single = _WHITESPACE_RE.sub(" ", value).strip()
    if len(single) <= max_length:
        return single
    return f"{single[: max_length - 3]}..."


def metadata_label(edit: Edit) -> str:
    if not edit.has_symbol_path:
        symbol = "symbol:unspecified"
    elif edit.symbol_path is None:
        symbol = "symbol:file"
    else:
        symbol = f"symbol:{squash_line(edit.symbol_path, 96)}"
    target = f"target:{squash_line(edit.target_id, 96)}" if edit.target_id else "target:none"
    return " | ".join((symbol, target, f"why:{squash_line(edit.justification, 120)}"))


def render_chunk(path: str, operation: EditOperation, metadata: str, marker_prefix: str) -> str:
    header = f"diff --git a/{path} b/{path}"
    if operation is EditOperation.CREATE:
        lines = (
            header,
            "new file mode 100644",
            "--- /dev/null",
            f"+++ b/{path}",
            "@@ -0,0 +1 @@",
            f"+{marker_prefix}_create__ {metadata}",
        )
    elif operation is EditOperation.DELETE:
        lines = (
            header,
            "deleted file mode 100644",
            f"--- a/{path}",
            "+++ /dev/null",
            "@@ -1 +0,0 @@",
            f"-{marker_prefix}_delete__ {metadata}",
        )
    else:
        lines = (
            header,
            f"--- a/{path}",
            f"+++ b/{path}",
            "@@ -1 +1 @@",
            f"-{marker_prefix}_before__",
            f"+{marker_prefix}_after__ {metadata}",
        )
    return "\n".join(lines)


def join_chunks(chunks: Sequence[str]) -> str:
    if not chunks:
        return ""
    return "\n\n".join(chunks) + "\n"


class PlaceholderPatchMaterializer:
    """Default materializer: metadata-keyed placeholder hunks."""

    name: Final[str] = "deterministic_text_patch_v1"

    def __init__(self, marker_prefix: str = PATCH_RUN_MARKER_PREFIX) -> None:
        self._marker_prefix = marker_prefix

    def materialize(self, edits: Sequence[Edit]) -> str:
        return join_chunks(
            [
                render_chunk(edit.path, edit.operation, metadata_label(edit), self._marker_prefix)
                for edit in edits
            ]
        )


def render_rollback_package(edits: Sequence[Edit]) -> str:
    """Reverse-patch content undoing ``edits``: reversed order, inverted operations."""

    return join_chunks(
        [
            render_chunk(
                edit.path,
                edit.operation.inverted(),
                metadata_label(edit),
                ROLLBACK_MARKER_PREFIX,
            )
            for edit in reversed(edits)
        ]
    )


__all__ = [
    "PATCH_RUN_MARKER_PREFIX",
    "ROLLBACK_MARKER_PREFIX",
    "PatchMaterializer",
    "PlaceholderPatchMaterializer",
    "join_chunks",
    "metadata_label",
    "render_chunk",
    "render_rollback_package",
    "squash_line",
]
