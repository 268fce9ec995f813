"""Link management — mutual video confirmation and approval between parties."""

from snaptrust.linking.manager import LinkManager, derive_status

__all__ = ["LinkManager", "derive_status"]
