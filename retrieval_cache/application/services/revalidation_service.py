"""Stale-while-revalidate controller.

Readers never wait on recomputation: a stale entry is served immediately
and at most one background refresh per key is started, guarded by a
revalidation lock. A pure miss returns None; the caller computes and
writes the value itself.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from retrieval_cache.domain.exceptions import InvalidTTLError, RevalidationError
from retrieval_cache.infrastructure.cache.cache_protocol import (
    CacheProtocol,
    RevalidationLockProtocol,
)

logger = logging.getLogger(__name__)

RevalidateFn = Callable[[], Awaitable[Any] | Any]


class StaleWhileRevalidateController:
    """Serves cached entries and refreshes stale ones in the background.

    Background refreshes are asyncio tasks owned by the controller; call
    aclose() at shutdown so in-flight refreshes finish (or are cancelled)
    before the store is disconnected.
    """

    def __init__(self, store: CacheProtocol, lock: RevalidationLockProtocol) -> None:
        self.store = store
        self.lock = lock
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        """Number of background refreshes still running."""
        return len(self._pending)

    async def get_or_revalidate(
        self,
        key: str,
        grace_seconds: int,
        revalidate_fn: RevalidateFn | None = None,
        ttl_seconds: int | None = None,
        scope_id: str | None = None,
    ) -> Any | None:
        """Return cached data for key, refreshing it in the background when stale.

        Args:
            key: Cache key.
            grace_seconds: Stale window before expiry (entry is stale once
                age >= ttl - grace).
            revalidate_fn: Recomputes the value; awaited in the background.
                A None result leaves the stale entry in place.
            ttl_seconds: TTL for the refreshed entry (defaults to the stale
                entry's TTL).
            scope_id: Tenant id, used only for logging.

        Returns:
            Cached data (fresh or stale), or None when absent or expired.

        Raises:
            InvalidTTLError: If grace_seconds is negative.
        """
        if isinstance(grace_seconds, bool) or not isinstance(grace_seconds, int) or grace_seconds < 0:
            raise InvalidTTLError(grace_seconds, "grace_seconds")

        entry = await self.store.get(key)
        if entry is None:
            return None
        now_ms = self.store.now_ms()
        if entry.is_expired(now_ms):
            return None
        if not entry.is_stale(now_ms, grace_seconds):
            return entry.data

        if revalidate_fn is not None:
            token = await self.lock.acquire(key)
            if token is None:
                logger.debug("Revalidation already in flight: %s", key)
            elif await self._refreshed_meanwhile(key, grace_seconds):
                await self.lock.release(key, token)
                logger.debug("Revalidation already completed: %s", key)
            else:
                self._schedule(
                    key,
                    token,
                    revalidate_fn,
                    ttl_seconds if ttl_seconds is not None else entry.ttl,
                    scope_id,
                )
        return entry.data

    async def _refreshed_meanwhile(self, key: str, grace_seconds: int) -> bool:
        """True if another refresher rewrote key between our read and our lock."""
        current = await self.store.get(key)
        return current is not None and not current.is_stale(self.store.now_ms(), grace_seconds)

    def _schedule(
        self,
        key: str,
        token: str,
        revalidate_fn: RevalidateFn,
        ttl_seconds: int,
        scope_id: str | None,
    ) -> None:
        task = asyncio.create_task(
            self._revalidate(key, token, revalidate_fn, ttl_seconds, scope_id),
            name=f"revalidate:{key}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.debug("Revalidation scheduled: %s", key)

    async def _revalidate(
        self,
        key: str,
        token: str,
        revalidate_fn: RevalidateFn,
        ttl_seconds: int,
        scope_id: str | None,
    ) -> None:
        try:
            value = revalidate_fn()
            if inspect.isawaitable(value):
                value = await value
            if value is None:
                logger.debug("Revalidation returned no value, keeping stale entry: %s", key)
            elif await self.store.set(key, value, ttl_seconds):
                logger.debug("Revalidated: %s", key)
        except Exception as e:
            error = RevalidationError(key, scope_id, str(e))
            logger.warning(
                "%s (scope=%s): %s", error.message, scope_id, e, exc_info=True
            )
        finally:
            await self.lock.release(key, token)

    async def wait_for_pending(self) -> None:
        """Wait until every scheduled refresh has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self, timeout_seconds: float = 5.0) -> None:
        """Let in-flight refreshes finish, cancelling any that exceed timeout_seconds."""
        try:
            async with asyncio.timeout(timeout_seconds):
                await self.wait_for_pending()
        except TimeoutError:
            pending = list(self._pending)
            logger.warning("Cancelling %s unfinished revalidation(s)", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
