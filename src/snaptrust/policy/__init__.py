"""Policy constants — tier tables, windows, weights, badge thresholds."""

from snaptrust.policy.resolver import DEFAULT_POLICY, PolicyResolver

__all__ = ["DEFAULT_POLICY", "PolicyResolver"]
