"""Cache key derivation (canonical JSON + SHA-256 content hash).

Key layout: {prefix}:{scope_kind}:{scope_id}:{key_type}:{content_hash}

Prediction keys keep the entity id in the clear ahead of the context hash
({...}:prediction:{entity_id}:{context_hash}) so one entity's entries can
be invalidated with a scoped pattern. Session keys use the session id in
place of the hash.
"""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from retrieval_cache.core.constants import (
    CACHE_KEY_SEP,
    KEY_TYPE_PREDICTION,
    SCOPE_ID_SEP,
    SCOPE_KIND_MERCHANT,
    SCOPE_KIND_PLATFORM_STORE,
)
from retrieval_cache.core.tenant_validation import (
    is_safe_key_component,
    is_valid_tenant_id_format,
)
from retrieval_cache.domain.exceptions import InvalidScopeError, ValidationException
from retrieval_cache.domain.value_objects import TenantScope

ScopeLike = TenantScope | str | Mapping[str, Any]


class HashAlgorithm(ABC):
    """Abstract content hash algorithm (OCP)."""

    @abstractmethod
    def hash(self, data: str) -> str:
        """Compute hash of input string as lowercase hex."""
        ...


class SHA256Algorithm(HashAlgorithm):
    """SHA-256 implementation (full 64-char digest, never truncated)."""

    def hash(self, data: str) -> str:
        # surrogatepass keeps lone surrogates (surrogateescape input) hashable
        return hashlib.sha256(data.encode("utf-8", "surrogatepass")).hexdigest()


def _require_component(value: Any, name: str) -> str:
    """Return value if it is safe inside a key; raise ValidationException otherwise."""
    if not isinstance(value, str) or not is_safe_key_component(value):
        raise ValidationException(
            f"{name} must be a non-empty string without whitespace, "
            f"'{CACHE_KEY_SEP}' or glob characters, got: {value!r}",
            field=name,
        )
    return value


class KeyDeriver:
    """Single source of truth for cache key and invalidation pattern format.

    Pure: no I/O and no mutable state, so one instance is shared by every
    caller in the process.
    """

    def __init__(self, key_prefix: str, algorithm: HashAlgorithm | None = None) -> None:
        self.key_prefix = _require_component(key_prefix, "key_prefix")
        self.algorithm = algorithm or SHA256Algorithm()

    @staticmethod
    def canonical_json(value: Any) -> str:
        """Canonical JSON for deterministic hashing (sorted keys, no whitespace).

        Raises:
            ValidationException: If value is not JSON-serializable.
        """
        try:
            return json.dumps(
                value, sort_keys=True, separators=(",", ":"), ensure_ascii=False
            )
        except (TypeError, ValueError) as e:
            raise ValidationException(
                f"Context is not JSON-serializable: {e}", field="context"
            ) from e

    def content_hash(self, payload: str, context: Mapping[str, Any] | None = None) -> str:
        """Hash payload followed by its canonicalized context."""
        if not isinstance(payload, str):
            raise ValidationException("Payload must be a string", field="payload")
        context_str = self.canonical_json(context) if context is not None else ""
        return self.algorithm.hash(f"{payload}{context_str}")

    def _scope_base(self, scope: ScopeLike) -> str:
        tenant = TenantScope.coerce(scope)
        return CACHE_KEY_SEP.join((self.key_prefix, tenant.kind, tenant.scope_id))

    def derive_key(
        self,
        scope: ScopeLike,
        key_type: str,
        payload: str,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        """Derive a content-addressed key for (scope, key_type, payload, context).

        Raises:
            InvalidScopeError: If scope is malformed.
            ValidationException: If key_type or context is unusable.
        """
        base = self._scope_base(scope)
        _require_component(key_type, "key_type")
        return CACHE_KEY_SEP.join((base, key_type, self.content_hash(payload, context)))

    def identity_key(self, scope: ScopeLike, key_type: str, identifier: str) -> str:
        """Key for data that already has a unique id (e.g. session state).

        The identifier is used verbatim instead of a content hash.
        """
        base = self._scope_base(scope)
        _require_component(key_type, "key_type")
        _require_component(identifier, "identifier")
        return CACHE_KEY_SEP.join((base, key_type, identifier))

    def prediction_key(
        self,
        scope: ScopeLike,
        entity_id: str,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        """Key for per-entity prediction results under a given context."""
        base = self._scope_base(scope)
        _require_component(entity_id, "entity_id")
        context_hash = self.content_hash("", context)
        return CACHE_KEY_SEP.join((base, KEY_TYPE_PREDICTION, entity_id, context_hash))

    # ---- Invalidation patterns (always scope-qualified) ----

    def tenant_pattern(self, scope: ScopeLike) -> str:
        """SCAN pattern matching every key owned by scope."""
        return f"{self._scope_base(scope)}{CACHE_KEY_SEP}*"

    def key_type_pattern(self, scope: ScopeLike, key_type: str) -> str:
        """SCAN pattern matching one key type within scope."""
        _require_component(key_type, "key_type")
        return f"{self._scope_base(scope)}{CACHE_KEY_SEP}{key_type}{CACHE_KEY_SEP}*"

    def entity_pattern(self, scope: ScopeLike, entity_id: str) -> str:
        """SCAN pattern matching every prediction entry for one entity."""
        _require_component(entity_id, "entity_id")
        return (
            f"{self._scope_base(scope)}{CACHE_KEY_SEP}{KEY_TYPE_PREDICTION}"
            f"{CACHE_KEY_SEP}{entity_id}{CACHE_KEY_SEP}*"
        )

    def platform_pattern(self, platform_id: str) -> str:
        """SCAN pattern matching every store scope under one platform."""
        if not isinstance(platform_id, str) or not is_valid_tenant_id_format(platform_id):
            raise InvalidScopeError(
                f"Invalid platform_id: {platform_id!r}", field="platform_id"
            )
        return CACHE_KEY_SEP.join(
            (self.key_prefix, SCOPE_KIND_PLATFORM_STORE, f"{platform_id}{SCOPE_ID_SEP}*")
        )

    def is_scoped_pattern(self, pattern: str) -> bool:
        """Return True if pattern is pinned to one concrete tenant.

        The prefix, scope kind and a wildcard-free tenant segment must all be
        literal; hierarchical patterns may wildcard the store after a literal
        platform id.
        """
        parts = pattern.split(CACHE_KEY_SEP)
        if len(parts) < 3 or parts[0] != self.key_prefix:
            return False
        kind, scope_id = parts[1], parts[2]
        if kind == SCOPE_KIND_PLATFORM_STORE:
            platform_id, sep, store = scope_id.partition(SCOPE_ID_SEP)
            return bool(sep) and is_valid_tenant_id_format(platform_id) and (
                store == "*" or is_valid_tenant_id_format(store)
            )
        return kind == SCOPE_KIND_MERCHANT and is_valid_tenant_id_format(scope_id)
