"""Domain exports: decisions, envelope, errors, edits, and hooks."""

from patchgate.domain.decisions import (
    APPLY_REASON_CODES,
    BUNDLE_REASON_CODES,
    MAPPING_REASON_CODES,
    PATCH_REASON_CODES,
    PLAN_REASON_CODES,
    Decision,
    Outcome,
)
from patchgate.domain.edits import Edit, EditOperation
from patchgate.domain.envelope import (
    Artifact,
    artifact_ref,
    build_artifact,
    compute_artifact_id,
    recompute_artifact_id,
)
from patchgate.domain.errors import (
    ApplyRollbackError,
    IntentMappingError,
    PatchRunError,
    PipelineError,
    ReviewBundleError,
    SafeDiffPlanError,
    WorkspaceSnapshotError,
)

__all__ = [
    "APPLY_REASON_CODES",
    "BUNDLE_REASON_CODES",
    "MAPPING_REASON_CODES",
    "PATCH_REASON_CODES",
    "PLAN_REASON_CODES",
    "ApplyRollbackError",
    "Artifact",
    "Decision",
    "Edit",
    "EditOperation",
    "IntentMappingError",
    "Outcome",
    "PatchRunError",
    "PipelineError",
    "ReviewBundleError",
    "SafeDiffPlanError",
    "WorkspaceSnapshotError",
    "artifact_ref",
    "build_artifact",
    "compute_artifact_id",
    "recompute_artifact_id",
]
