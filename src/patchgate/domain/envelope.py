"""
patchgate — artifact envelope

File: src/patchgate/domain/envelope.py
Last updated: 2026-10-18

Purpose
- Assemble the shared envelope around every stage payload and derive its content address.

Functional requirements
- ``artifact_id`` is ``<prefix>_<sha256(canonical {inputs, trace, payload})[:12]>``.
- Workspace snapshots are addressed by their own snapshot hash instead.
- Input references are ordered and de-duplicated by ``artifact_id``.
- ``produced_at_utc`` renders with millisecond precision and a ``Z`` suffix.

Non-functional requirements
- Pure functions; identical arguments produce byte-identical envelopes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from patchgate.constants import (
    ARTIFACT_ID_DIGEST_CHARS,
    ARTIFACT_ID_PREFIXES,
    ARTIFACT_SCHEMA_VERSION,
    DEFAULT_TOOL_VERSION,
    WORKSPACE_SNAPSHOT_ARTIFACT_TYPE,
)
from patchgate.utils.hashing import sha256_json

Artifact = dict[str, object]

__all__ = [
    "Artifact",
    "artifact_ref",
    "build_artifact",
    "compute_artifact_id",
    "dedupe_refs",
    "format_produced_at",
    "recompute_artifact_id",
    "resolve_tool_version",
    "snapshot_artifact_id",
]


def format_produced_at(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def resolve_tool_version(value: str | None) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return DEFAULT_TOOL_VERSION


def artifact_ref(artifact: Mapping[str, object]) -> dict[str, str]:
    """Return the ``{artifact_id, artifact_type, schema_version}`` reference for an artifact."""

    return {
        "artifact_id": str(artifact["artifact_id"]),
        "artifact_type": str(artifact["artifact_type"]),
        "schema_version": str(artifact["schema_version"]),
    }


def dedupe_refs(refs: Iterable[Mapping[str, str]]) -> list[dict[str, str]]:
    seen: set[str] = set()
    ordered: list[dict[str, str]] = []
    for ref in refs:
        if ref["artifact_id"] in seen:
            continue
        seen.add(ref["artifact_id"])
        ordered.append(dict(ref))
    return ordered


def compute_artifact_id(
    artifact_type: str,
    *,
    inputs: object,
    trace: object,
    payload: object,
) -> str:
    prefix = ARTIFACT_ID_PREFIXES[artifact_type]
    digest = sha256_json({"inputs": inputs, "trace": trace, "payload": payload})
    return f"{prefix}_{digest[:ARTIFACT_ID_DIGEST_CHARS]}"


def snapshot_artifact_id(snapshot_hash: str) -> str:
    prefix = ARTIFACT_ID_PREFIXES[WORKSPACE_SNAPSHOT_ARTIFACT_TYPE]
    return f"{prefix}_{snapshot_hash[:ARTIFACT_ID_DIGEST_CHARS]}"


def build_artifact(
    *,
    artifact_type: str,
    run_id: str,
    produced_at: datetime,
    tool_version: str | None,
    inputs: list[dict[str, str]],
    trace: dict[str, object],
    payload: dict[str, object],
    artifact_id: str | None = None,
) -> Artifact:
    """Wrap ``payload`` in the shared envelope."""

    resolved_id = artifact_id or compute_artifact_id(
        artifact_type, inputs=inputs, trace=trace, payload=payload
    )
    return {
        "artifact_type": artifact_type,
        "schema_version": ARTIFACT_SCHEMA_VERSION,
        "artifact_id": resolved_id,
        "run_id": run_id,
        "produced_at_utc": format_produced_at(produced_at),
        "tool_version": resolve_tool_version(tool_version),
        "inputs": inputs,
        "trace": trace,
        "payload": payload,
    }


def recompute_artifact_id(artifact: Mapping[str, object]) -> str:
    """Recompute the content address of a stored artifact for integrity checks."""

    artifact_type = artifact.get("artifact_type")
    if artifact_type not in ARTIFACT_ID_PREFIXES:
        raise ValueError(f"artifact_type: unsupported artifact type {artifact_type!r}")
    if artifact_type == WORKSPACE_SNAPSHOT_ARTIFACT_TYPE:
        payload = artifact.get("payload")
        snapshot_hash = payload.get("snapshot_hash") if isinstance(payload, Mapping) else None
        if not isinstance(snapshot_hash, str) or not snapshot_hash:
            raise ValueError("payload.snapshot_hash: expected non-empty string")
        return snapshot_artifact_id(snapshot_hash)
    return compute_artifact_id(
        str(artifact_type),
        inputs=artifact.get("inputs"),
        trace=artifact.get("trace"),
        payload=artifact.get("payload"),
    )
