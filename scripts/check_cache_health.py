"""Check cache backend health and print key count, memory and hit rate.

Usage:
    python -m scripts.check_cache_health
Exits 1 when the backend does not answer PING within HEALTH_CHECK_TIMEOUT.
"""

import asyncio
import sys

from retrieval_cache.core.bootstrap import cache_stack
from retrieval_cache.core.config import get_settings
from retrieval_cache.shared.telemetry.logging import setup_logging
from retrieval_cache.shared.utils.datetime import utc_now


async def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    target = f"{settings.redis_host}:{settings.redis_port}/{settings.redis_db}"

    async with cache_stack(settings) as stack:
        healthy = await stack.cache.health_check()
        print(f"[{utc_now().isoformat()}] {target}: {'ok' if healthy else 'UNAVAILABLE'}")
        if not healthy:
            sys.exit(1)
        stats = await stack.store.stats()

    hit_rate = (
        f"{stats.server_hit_rate:.1f}%" if stats.server_hit_rate is not None else "n/a"
    )
    print(f"Keys: {stats.total_keys}")
    print(f"Memory: {stats.memory_usage}")
    print(f"Server hit rate: {hit_rate}")


if __name__ == "__main__":
    asyncio.run(main())
