"""JSON envelope codec for stored cache entries.

Wire format (shared with non-Python readers of the same store):

    {"data": <payload>, "timestamp": <epoch ms>, "ttl": <seconds>, "version": "<tag>"}
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from retrieval_cache.domain.entities import CacheEntry
from retrieval_cache.domain.exceptions import DeserializationError


class CacheEnvelope(BaseModel):
    """Stored representation of a CacheEntry."""

    model_config = ConfigDict(extra="ignore")

    data: Any = None
    timestamp: int = Field(ge=0)
    ttl: int = Field(ge=1)
    version: str

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "CacheEnvelope":
        return cls(
            data=entry.data,
            timestamp=entry.timestamp,
            ttl=entry.ttl,
            version=entry.version,
        )

    def to_entry(self) -> CacheEntry:
        return CacheEntry(
            data=self.data,
            timestamp=self.timestamp,
            ttl=self.ttl,
            version=self.version,
        )


def encode_entry(entry: CacheEntry) -> str:
    """Serialize entry to its JSON envelope.

    Raises:
        TypeError: If entry.data is not JSON-serializable.
    """
    try:
        return CacheEnvelope.from_entry(entry).model_dump_json()
    except ValueError as e:
        raise TypeError(f"Cache value is not JSON-serializable: {e}") from e


def decode_entry(key: str, raw: str | bytes, expected_version: str) -> CacheEntry:
    """Parse a stored envelope and check its schema version.

    Raises:
        DeserializationError: If raw is not a valid envelope or has another
            schema version. The error records the key only, never raw.
    """
    try:
        envelope = CacheEnvelope.model_validate_json(raw)
    except ValidationError as e:
        raise DeserializationError(key, f"invalid envelope ({e.error_count()} errors)") from e
    if envelope.version != expected_version:
        raise DeserializationError(
            key, f"schema version {envelope.version!r} != {expected_version!r}"
        )
    return envelope.to_entry()
