"""Cache warming: pre-load retrieval results for a tenant's hot queries.

The loader is the (expensive) retrieval call owned by the caller; the
warming service only decides what is missing, bounds concurrency and
writes results through the facade. start() repeats warm_many() on an
interval in an owned background task until stop().
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from retrieval_cache.application.services.retrieval_cache_service import (
    Context,
    RetrievalCacheService,
)
from retrieval_cache.domain.value_objects import TenantScope

logger = logging.getLogger(__name__)

RetrievalLoader = Callable[[TenantScope, str, Context], Awaitable[list[Any] | None]]
WarmQuery = tuple[str, Context]
WarmingPlan = Mapping[TenantScope, list[WarmQuery]]
PlanProvider = Callable[[], Awaitable[WarmingPlan]]


@dataclass
class WarmingReport:
    """Outcome of warming one tenant."""

    scope_id: str
    warmed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_queries: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.warmed + self.skipped + self.failed


class CacheWarmingService:
    """Fills retrieval cache gaps for known-hot queries."""

    def __init__(
        self,
        cache: RetrievalCacheService,
        loader: RetrievalLoader,
        concurrency: int = 4,
        interval_seconds: float = 900.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.cache = cache
        self.loader = loader
        self.concurrency = concurrency
        self.interval_seconds = interval_seconds
        self.completed_runs = 0
        self._task: asyncio.Task[None] | None = None

    async def warm_tenant(
        self, scope: TenantScope | str, queries: list[WarmQuery]
    ) -> WarmingReport:
        """Load and cache every query that is not already cached for scope.

        Loader failures are logged and counted; they never propagate.
        """
        tenant = TenantScope.coerce(scope)
        report = WarmingReport(scope_id=tenant.scope_id)
        if not queries:
            return report

        cached = await self.cache.get_cached_retrieval_results_many(tenant, queries)
        report.skipped = len(cached)
        missing = [q for index, q in enumerate(queries) if index not in cached]
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _warm_one(query: str, context: Context) -> None:
            async with semaphore:
                try:
                    results = await self.loader(tenant, query, context)
                except Exception:
                    logger.exception("Cache warming load failed for tenant %s", tenant)
                    report.failed += 1
                    report.failed_queries.append(query)
                    return
            if results is None:
                report.failed += 1
                report.failed_queries.append(query)
                return
            await self.cache.cache_retrieval_results(tenant, query, context, results)
            report.warmed += 1

        await asyncio.gather(*(_warm_one(query, context) for query, context in missing))
        logger.info(
            "Cache warmed for tenant %s: warmed=%s skipped=%s failed=%s",
            tenant,
            report.warmed,
            report.skipped,
            report.failed,
        )
        return report

    async def warm_many(
        self, plan: WarmingPlan
    ) -> dict[str, WarmingReport]:
        """Warm several tenants one after another. Returns reports keyed by scope id."""
        reports: dict[str, WarmingReport] = {}
        for scope, queries in plan.items():
            report = await self.warm_tenant(scope, queries)
            reports[report.scope_id] = report
        return reports

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, plan_provider: PlanProvider, interval_seconds: float | None = None) -> None:
        """Warm now, then every interval_seconds until stop().

        plan_provider is awaited before each run so the hot-query list can
        change between runs. A failing run is logged and the schedule goes on.
        """
        interval = self.interval_seconds if interval_seconds is None else interval_seconds
        if interval <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.is_running:
            logger.warning("Cache warming already running")
            return
        self._task = asyncio.create_task(
            self._run_periodically(plan_provider, interval), name="cache-warming"
        )
        logger.info("Cache warming started (interval: %ss)", interval)

    async def _run_periodically(self, plan_provider: PlanProvider, interval: float) -> None:
        while True:
            try:
                await self.warm_many(await plan_provider())
            except Exception:
                logger.exception("Cache warming run failed")
            self.completed_runs += 1
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        """Cancel the scheduled warming task and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cache warming stopped")
