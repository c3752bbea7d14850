"""Retrieval cache facade: domain entry points with per-domain TTL policy.

- retrieval results (semantic search hits): 30 min, content-addressed
- prediction results (per-entity ML scores): 60 min, entity id + context hash
- conversational session state: 24 h, keyed by session id
- query results (generic answers to a query + context): default TTL

Plain get/set paths never start background work; the *_or_revalidate
methods opt a domain into stale-while-revalidate.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from retrieval_cache.application.services.key_deriver import KeyDeriver, ScopeLike
from retrieval_cache.application.services.revalidation_service import (
    RevalidateFn,
    StaleWhileRevalidateController,
)
from retrieval_cache.core.config import Settings
from retrieval_cache.core.constants import (
    KEY_TYPE_QUERY,
    KEY_TYPE_RETRIEVAL,
    KEY_TYPE_SESSION,
)
from retrieval_cache.domain.exceptions import InvalidTTLError
from retrieval_cache.domain.value_objects import TenantScope
from retrieval_cache.infrastructure.cache.cache_protocol import CacheProtocol
from retrieval_cache.shared.telemetry.tracing import add_span_attributes, traced

Context = Mapping[str, Any] | None


def _resolve_ttl(ttl_seconds: int | None, default: int) -> int:
    """Return ttl_seconds (validated) or the domain default."""
    if ttl_seconds is None:
        return default
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds < 1:
        raise InvalidTTLError(ttl_seconds)
    return ttl_seconds


class RetrievalCacheService:
    """Tenant-scoped cache for retrieval, prediction and session data.

    Composes KeyDeriver (keys), a CacheProtocol store (get/set) and the
    stale-while-revalidate controller. Scope and TTL misuse raise
    ValidationException subclasses; backend problems only ever show up as
    misses.
    """

    def __init__(
        self,
        store: CacheProtocol,
        key_deriver: KeyDeriver,
        controller: StaleWhileRevalidateController,
        settings: Settings,
    ) -> None:
        self.store = store
        self.keys = key_deriver
        self.controller = controller
        self.settings = settings

    async def _get_data(self, key: str) -> Any | None:
        entry = await self.store.get(key)
        add_span_attributes(**{"cache.hit": entry is not None})
        return entry.data if entry is not None else None

    # ---- Retrieval results ----

    @traced("retrieval_cache.cache_retrieval_results")
    async def cache_retrieval_results(
        self,
        scope: ScopeLike,
        query: str,
        context: Context,
        results: list[Any],
        ttl_seconds: int | None = None,
    ) -> None:
        """Cache semantic search hits for (scope, query, context)."""
        ttl = _resolve_ttl(ttl_seconds, self.settings.cache_ttl_retrieval)
        key = self.keys.derive_key(scope, KEY_TYPE_RETRIEVAL, query, context)
        await self.store.set(key, results, ttl)

    @traced("retrieval_cache.get_cached_retrieval_results")
    async def get_cached_retrieval_results(
        self, scope: ScopeLike, query: str, context: Context
    ) -> list[Any] | None:
        """Return cached search hits, or None on miss."""
        key = self.keys.derive_key(scope, KEY_TYPE_RETRIEVAL, query, context)
        return await self._get_data(key)

    async def get_cached_retrieval_results_many(
        self, scope: ScopeLike, queries: list[tuple[str, Context]]
    ) -> dict[int, list[Any]]:
        """Bulk lookup of (query, context) pairs in one round-trip.

        Returns:
            Mapping of position in queries to cached results; misses omitted.
        """
        keys = [
            self.keys.derive_key(scope, KEY_TYPE_RETRIEVAL, query, context)
            for query, context in queries
        ]
        entries = await self.store.get_many(keys)
        return {
            index: entries[key].data
            for index, key in enumerate(keys)
            if key in entries
        }

    async def get_retrieval_results_or_revalidate(
        self,
        scope: ScopeLike,
        query: str,
        context: Context,
        revalidate_fn: RevalidateFn,
    ) -> list[Any] | None:
        """Retrieval lookup with stale-while-revalidate using the retrieval policy."""
        tenant = TenantScope.coerce(scope)
        key = self.keys.derive_key(tenant, KEY_TYPE_RETRIEVAL, query, context)
        return await self.controller.get_or_revalidate(
            key,
            self.settings.cache_grace_retrieval,
            revalidate_fn,
            ttl_seconds=self.settings.cache_ttl_retrieval,
            scope_id=tenant.scope_id,
        )

    # ---- Prediction results ----

    @traced("retrieval_cache.cache_prediction_results")
    async def cache_prediction_results(
        self,
        scope: ScopeLike,
        entity_id: str,
        context: Context,
        predictions: Any,
        ttl_seconds: int | None = None,
    ) -> None:
        """Cache ML scores for one entity (e.g. a SKU) under a user context."""
        ttl = _resolve_ttl(ttl_seconds, self.settings.cache_ttl_prediction)
        key = self.keys.prediction_key(scope, entity_id, context)
        await self.store.set(key, predictions, ttl)

    @traced("retrieval_cache.get_cached_prediction_results")
    async def get_cached_prediction_results(
        self, scope: ScopeLike, entity_id: str, context: Context
    ) -> Any | None:
        key = self.keys.prediction_key(scope, entity_id, context)
        return await self._get_data(key)

    async def get_prediction_results_or_revalidate(
        self,
        scope: ScopeLike,
        entity_id: str,
        context: Context,
        revalidate_fn: RevalidateFn,
    ) -> Any | None:
        """Prediction lookup with stale-while-revalidate using the prediction policy."""
        tenant = TenantScope.coerce(scope)
        key = self.keys.prediction_key(tenant, entity_id, context)
        return await self.controller.get_or_revalidate(
            key,
            self.settings.cache_grace_prediction,
            revalidate_fn,
            ttl_seconds=self.settings.cache_ttl_prediction,
            scope_id=tenant.scope_id,
        )

    # ---- Session state ----

    async def cache_session_data(
        self,
        scope: ScopeLike,
        session_id: str,
        session_data: Any,
        ttl_seconds: int | None = None,
    ) -> None:
        """Cache conversational session state under its session id."""
        ttl = _resolve_ttl(ttl_seconds, self.settings.cache_ttl_session)
        key = self.keys.identity_key(scope, KEY_TYPE_SESSION, session_id)
        await self.store.set(key, session_data, ttl)

    async def get_cached_session_data(self, scope: ScopeLike, session_id: str) -> Any | None:
        key = self.keys.identity_key(scope, KEY_TYPE_SESSION, session_id)
        return await self._get_data(key)

    async def delete_session_data(self, scope: ScopeLike, session_id: str) -> bool:
        """Drop a session (e.g. on conversation end). Returns True if it existed."""
        key = self.keys.identity_key(scope, KEY_TYPE_SESSION, session_id)
        return await self.store.delete(key)

    # ---- Generic query results ----

    async def cache_query_result(
        self,
        scope: ScopeLike,
        query: str,
        context: Context,
        value: Any,
        ttl_seconds: int | None = None,
    ) -> None:
        ttl = _resolve_ttl(ttl_seconds, self.settings.cache_default_ttl)
        key = self.keys.derive_key(scope, KEY_TYPE_QUERY, query, context)
        await self.store.set(key, value, ttl)

    async def get_cached_query_result(
        self, scope: ScopeLike, query: str, context: Context
    ) -> Any | None:
        key = self.keys.derive_key(scope, KEY_TYPE_QUERY, query, context)
        return await self._get_data(key)

    # ---- Stale-while-revalidate (any key type) ----

    @traced("retrieval_cache.get_or_revalidate")
    async def get_or_revalidate(
        self,
        scope: ScopeLike,
        key_type: str,
        payload: str,
        grace_seconds: int,
        revalidate_fn: RevalidateFn | None,
        context: Context = None,
        ttl_seconds: int | None = None,
    ) -> Any | None:
        """Serve (scope, key_type, payload, context) with stale-while-revalidate.

        Returns None on a miss without calling revalidate_fn; the caller
        computes the value and writes it via the matching cache_* method.
        """
        tenant = TenantScope.coerce(scope)
        if ttl_seconds is not None:
            _resolve_ttl(ttl_seconds, self.settings.cache_default_ttl)
        key = self.keys.derive_key(tenant, key_type, payload, context)
        return await self.controller.get_or_revalidate(
            key,
            grace_seconds,
            revalidate_fn,
            ttl_seconds=ttl_seconds,
            scope_id=tenant.scope_id,
        )

    async def health_check(self) -> bool:
        return await self.store.health_check()
