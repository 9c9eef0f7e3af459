"""Pipeline stages: snapshot, intent mapping, diff plan, patch run, review bundle, apply/rollback."""

from patchgate.pipeline.apply_rollback import create_apply_rollback_record
from patchgate.pipeline.intent_mapping import create_intent_mapping
from patchgate.pipeline.patch_run import create_patch_run
from patchgate.pipeline.review_bundle import create_review_bundle
from patchgate.pipeline.safe_diff_plan import create_safe_diff_plan
from patchgate.pipeline.workspace_snapshot import create_workspace_snapshot

__all__ = [
    "create_apply_rollback_record",
    "create_intent_mapping",
    "create_patch_run",
    "create_review_bundle",
    "create_safe_diff_plan",
    "create_workspace_snapshot",
]
