"""Core: config, constants, tenant validation and cache stack bootstrap.

Single place for settings and shared constants.
"""

from retrieval_cache.core.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
