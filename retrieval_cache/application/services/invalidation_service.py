"""Pattern-based bulk invalidation for tenant and entity scopes.

Called by write paths outside the cache (document edits, catalogue
updates, predictor redeployment) to force fresh results. Every pattern is
pinned to one tenant (or one platform) so the SCAN cost and blast radius
stay bounded; global wildcards are refused.
"""

from __future__ import annotations

import logging

from retrieval_cache.application.services.key_deriver import KeyDeriver, ScopeLike
from retrieval_cache.domain.exceptions import ValidationException
from retrieval_cache.domain.value_objects import TenantScope
from retrieval_cache.infrastructure.cache.cache_protocol import CacheProtocol
from retrieval_cache.shared.telemetry.tracing import add_span_event, traced

logger = logging.getLogger(__name__)


class InvalidationService:
    """Deletes cached entries by tenant, key type, entity or platform."""

    def __init__(self, store: CacheProtocol, key_deriver: KeyDeriver) -> None:
        self.store = store
        self.keys = key_deriver

    async def _invalidate(self, pattern: str, reason: str) -> int:
        count = await self.store.delete_by_pattern(pattern)
        add_span_event("cache.invalidated", {"count": count})
        logger.info("Invalidated %s cache entries (%s): %s", count, reason, pattern)
        return count

    @traced("retrieval_cache.invalidate_tenant")
    async def invalidate_tenant(self, scope: ScopeLike) -> int:
        """Remove every entry owned by scope. Returns the number removed."""
        tenant = TenantScope.coerce(scope)
        return await self._invalidate(self.keys.tenant_pattern(tenant), f"tenant {tenant}")

    @traced("retrieval_cache.invalidate_by_prefix")
    async def invalidate_by_prefix(self, pattern: str) -> int:
        """Remove entries matching an explicit tenant-qualified pattern.

        Raises:
            ValidationException: If pattern is not pinned to one tenant.
        """
        if not isinstance(pattern, str) or not self.keys.is_scoped_pattern(pattern):
            raise ValidationException(
                f"Invalidation pattern must be tenant-scoped, got: {pattern!r}",
                field="pattern",
            )
        return await self._invalidate(pattern, "pattern")

    async def invalidate_key_type(self, scope: ScopeLike, key_type: str) -> int:
        """Remove one key type (e.g. all retrieval results) for scope."""
        tenant = TenantScope.coerce(scope)
        pattern = self.keys.key_type_pattern(tenant, key_type)
        return await self._invalidate(pattern, f"{key_type} for {tenant}")

    @traced("retrieval_cache.invalidate_entity")
    async def invalidate_entity(self, scope: ScopeLike, entity_id: str) -> int:
        """Remove every prediction cached for one entity (e.g. after a product edit)."""
        tenant = TenantScope.coerce(scope)
        pattern = self.keys.entity_pattern(tenant, entity_id)
        return await self._invalidate(pattern, f"entity {entity_id} for {tenant}")

    async def invalidate_platform(self, platform_id: str) -> int:
        """Remove entries for every store under a platform (hierarchical scopes)."""
        pattern = self.keys.platform_pattern(platform_id)
        return await self._invalidate(pattern, f"platform {platform_id}")
