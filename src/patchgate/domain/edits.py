"""Planned edit value type shared by the plan, patch, bundle, and apply stages."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from patchgate.domain.validation import FieldValidator
from patchgate.utils.paths import escapes_workspace, normalize_relative_path


class EditOperation(StrEnum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"

    def inverted(self) -> EditOperation:
        if self is EditOperation.CREATE:
            return EditOperation.DELETE
        if self is EditOperation.DELETE:
            return EditOperation.CREATE
        return EditOperation.MODIFY


EDIT_OPERATIONS = frozenset(item.value for item in EditOperation)

_UNSET = object()


@dataclass(frozen=True, slots=True)
class Edit:
    """
    One planned file change.

    ``symbol_path`` distinguishes "absent" from ``None``: ``has_symbol_path`` records
    whether the key was present so serialization round-trips exactly.
    """

    path: str
    operation: EditOperation
    justification: str
    target_id: str | None = None
    symbol_path: str | None = None
    has_symbol_path: bool = False

    def to_dict(self) -> dict[str, object]:
        rendered: dict[str, object] = {
            "path": self.path,
            "operation": self.operation.value,
            "justification": self.justification,
        }
        if self.target_id is not None:
            rendered["target_id"] = self.target_id
        if self.has_symbol_path:
            rendered["symbol_path"] = self.symbol_path
        return rendered

    @property
    def display_target(self) -> str:
        return f"{self.path}#{self.symbol_path}" if self.symbol_path else self.path


def parse_edit(
    validator: FieldValidator,
    value: object,
    path: str,
    *,
    mode: str,
) -> Edit:
    """
    Validate an edit record.

    ``mode`` controls path handling:
    - ``"normalize"`` normalizes the path and rejects escapes;
    - ``"strict"`` requires the path to already be normalized and workspace-relative.
    """

    entry = validator.expect_object(value, path)
    raw_path = validator.as_str(entry.get("path"), f"{path}.path")
    if mode == "normalize":
        edit_path = normalize_relative_path(raw_path)
        if edit_path == "." or escapes_workspace(edit_path):
            validator.fail(f"{path}.path", "path must remain within workspace-relative bounds")
    elif mode == "strict":
        edit_path = raw_path
        if (
            edit_path != normalize_relative_path(edit_path)
            or edit_path == "."
            or escapes_workspace(edit_path)
        ):
            validator.fail(f"{path}.path", "must be a normalized workspace-relative POSIX path")
    else:
        raise ValueError(f"unknown edit path mode {mode!r}")

    operation = validator.as_choice(entry.get("operation"), f"{path}.operation", EDIT_OPERATIONS)
    justification = validator.as_str(entry.get("justification"), f"{path}.justification")
    target_id = validator.as_optional_str(entry.get("target_id"), f"{path}.target_id")
    raw_symbol = entry.get("symbol_path", _UNSET)
    has_symbol_path = raw_symbol is not _UNSET
    symbol_path = (
        validator.as_optional_str(raw_symbol, f"{path}.symbol_path") if has_symbol_path else None
    )
    return Edit(
        path=edit_path,
        operation=EditOperation(operation),
        justification=justification,
        target_id=target_id,
        symbol_path=symbol_path,
        has_symbol_path=has_symbol_path,
    )


def parse_edits(
    validator: FieldValidator,
    value: object,
    path: str,
    *,
    mode: str,
) -> list[Edit]:
    return [
        parse_edit(validator, item, f"{path}[{index}]", mode=mode)
        for index, item in enumerate(validator.as_list(value, path))
    ]


def edit_paths(edits: list[Edit]) -> list[str]:
    return sorted({edit.path for edit in edits})


def index_by_path(edits: list[Edit]) -> Mapping[str, Edit]:
    return {edit.path: edit for edit in edits}


__all__ = [
    "EDIT_OPERATIONS",
    "Edit",
    "EditOperation",
    "edit_paths",
    "index_by_path",
    "parse_edit",
    "parse_edits",
]
