"""Invalidate every cached entry for one tenant scope.

Usage:
    python -m scripts.invalidate_tenant_cache <merchant_id>
    python -m scripts.invalidate_tenant_cache <platform_id> <store_id>
    python -m scripts.invalidate_tenant_cache --platform <platform_id>
Requires REDIS_HOST (and REDIS_PASSWORD when auth is enabled) set in config.
"""

import asyncio
import sys

from retrieval_cache.core.bootstrap import cache_stack
from retrieval_cache.core.config import get_settings
from retrieval_cache.domain.exceptions import ValidationException
from retrieval_cache.domain.value_objects import TenantScope
from retrieval_cache.shared.telemetry.logging import setup_logging


async def main() -> None:
    """Delete the scope's keys and print how many were removed."""
    args = sys.argv[1:]
    if not args or len(args) > 2:
        print(__doc__, file=sys.stderr)
        sys.exit(1)

    settings = get_settings()
    setup_logging(settings)

    async with cache_stack(settings) as stack:
        if not await stack.store.health_check():
            print(
                f"Redis not reachable at {settings.redis_host}:{settings.redis_port}",
                file=sys.stderr,
            )
            sys.exit(1)
        try:
            if args[0] == "--platform":
                if len(args) != 2:
                    print("--platform requires a platform id", file=sys.stderr)
                    sys.exit(1)
                label = f"platform {args[1]}"
                deleted = await stack.invalidation.invalidate_platform(args[1])
            else:
                scope = (
                    TenantScope.for_store(args[0], args[1])
                    if len(args) == 2
                    else TenantScope.for_merchant(args[0])
                )
                label = str(scope)
                deleted = await stack.invalidation.invalidate_tenant(scope)
        except ValidationException as e:
            print(f"Invalid scope: {e.message}", file=sys.stderr)
            sys.exit(1)

    print(f"Done. Invalidated {deleted} cache entr{'y' if deleted == 1 else 'ies'} for {label}")


if __name__ == "__main__":
    asyncio.run(main())
