"""Shared utilities: time and token generation."""

from retrieval_cache.shared.utils.datetime import epoch_millis, utc_now
from retrieval_cache.shared.utils.generators import generate_lock_token

__all__ = [
    "epoch_millis",
    "generate_lock_token",
    "utc_now",
]
