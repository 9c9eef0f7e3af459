"""Apply/rollback policy profiles loaded from YAML."""

from patchgate.policy.profile import ApplyPolicy, PolicyProfileError, load_apply_policy

__all__ = ["ApplyPolicy", "PolicyProfileError", "load_apply_policy"]
