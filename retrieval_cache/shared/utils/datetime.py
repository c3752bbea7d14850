"""
UTC time utilities for cache timestamps.

Envelopes store write time as epoch milliseconds so entries written by
any client (including non-Python services sharing the store) compare
consistently. Use these helpers instead of time.time() arithmetic.
"""

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return the current UTC datetime with timezone info.

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(UTC)


def epoch_millis() -> int:
    """
    Return the current time as integer milliseconds since the Unix epoch.

    Returns:
        Epoch milliseconds
    """
    return time.time_ns() // 1_000_000

