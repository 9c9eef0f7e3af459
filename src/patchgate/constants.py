"""Stable constants shared across pipeline stages."""

from __future__ import annotations

from typing import Final

from patchgate import __version__

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
ARTIFACT_SCHEMA_VERSION: Final[str] = "1.0.0"

DEFAULT_TOOL_VERSION: Final[str] = f"patchgate@{__version__}"

# Artifact type identifiers.
WORKSPACE_SNAPSHOT_ARTIFACT_TYPE: Final[str] = "patchgate.workspace_snapshot"
INTENT_MAPPING_ARTIFACT_TYPE: Final[str] = "patchgate.intent_mapping"
SAFE_DIFF_PLAN_ARTIFACT_TYPE: Final[str] = "patchgate.safe_diff_plan"
PATCH_RUN_ARTIFACT_TYPE: Final[str] = "patchgate.patch_run"
REVIEW_BUNDLE_ARTIFACT_TYPE: Final[str] = "patchgate.review_bundle"
APPLY_ROLLBACK_RECORD_ARTIFACT_TYPE: Final[str] = "patchgate.apply_rollback_record"
BENCHMARK_REPORT_ARTIFACT_TYPE: Final[str] = "patchgate.benchmark_report"

# artifact_id prefixes, keyed by artifact type.
ARTIFACT_ID_PREFIXES: Final[dict[str, str]] = {
    WORKSPACE_SNAPSHOT_ARTIFACT_TYPE: "wsnap",
    INTENT_MAPPING_ARTIFACT_TYPE: "imap",
    SAFE_DIFF_PLAN_ARTIFACT_TYPE: "dplan",
    PATCH_RUN_ARTIFACT_TYPE: "patch",
    REVIEW_BUNDLE_ARTIFACT_TYPE: "prb",
    APPLY_ROLLBACK_RECORD_ARTIFACT_TYPE: "applyrb",
}

ARTIFACT_ID_DIGEST_CHARS: Final[int] = 12
SHA256_PREFIX: Final[str] = "sha256:"

DEFAULT_CONFIG_FILE: Final[str] = "patchgate.toml"
ENV_PREFIX: Final[str] = "PATCHGATE_"

__all__ = [
    "APPLY_ROLLBACK_RECORD_ARTIFACT_TYPE",
    "ARTIFACT_ID_DIGEST_CHARS",
    "ARTIFACT_ID_PREFIXES",
    "ARTIFACT_SCHEMA_VERSION",
    "BENCHMARK_REPORT_ARTIFACT_TYPE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_TOOL_VERSION",
    "ENV_PREFIX",
    "INTENT_MAPPING_ARTIFACT_TYPE",
    "PATCH_RUN_ARTIFACT_TYPE",
    "REVIEW_BUNDLE_ARTIFACT_TYPE",
    "SAFE_DIFF_PLAN_ARTIFACT_TYPE",
    "SHA256_PREFIX",
    "WORKSPACE_SNAPSHOT_ARTIFACT_TYPE",
]
