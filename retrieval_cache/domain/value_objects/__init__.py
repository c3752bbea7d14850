"""Domain value objects and shared value types."""

from retrieval_cache.domain.value_objects.core import TenantScope

__all__ = [
    "TenantScope",
]
