"""Infrastructure layer: Redis-backed implementations of the cache protocols."""
