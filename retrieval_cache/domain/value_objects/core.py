"""Domain value objects for the retrieval cache.

Value objects are immutable types that represent domain concepts with
self-validation. They have no identity, only value.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from retrieval_cache.core.constants import (
    SCOPE_ID_SEP,
    SCOPE_KIND_MERCHANT,
    SCOPE_KIND_PLATFORM_STORE,
)
from retrieval_cache.core.tenant_validation import is_valid_tenant_id_format
from retrieval_cache.domain.exceptions import InvalidScopeError

_MERCHANT_KEYS = ("merchantId", "merchant_id")
_PLATFORM_KEYS = ("platformId", "platform_id")
_STORE_KEYS = ("storeId", "store_id")


def _validate_tenant_id(value: Any, field_name: str) -> None:
    """Raise InvalidScopeError unless value is a well-formed tenant id."""
    if not isinstance(value, str) or not is_valid_tenant_id_format(value):
        raise InvalidScopeError(
            f"{field_name} must be 1-64 characters of letters, digits, '-' or '_', got: {value!r}",
            field=field_name,
        )


def _first_present(data: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return None


@dataclass(frozen=True)
class TenantScope:
    """Tenant scope that owns a cache key.

    Either a merchant (flat model) or a platform + store pair
    (hierarchical model). Keys derived for different scopes never
    collide, and a scope's SCAN pattern never matches another scope.
    """

    merchant_id: str | None = None
    platform_id: str | None = None
    store_id: str | None = None

    def __post_init__(self) -> None:
        """Validate that exactly one scope shape is populated.

        Raises:
            InvalidScopeError: If ids are missing, mixed, or malformed.
        """
        if self.merchant_id is not None:
            if self.platform_id is not None or self.store_id is not None:
                raise InvalidScopeError(
                    "Scope must be either a merchant or a platform+store pair, not both"
                )
            _validate_tenant_id(self.merchant_id, "merchant_id")
            return
        if self.platform_id is None or self.store_id is None:
            raise InvalidScopeError(
                "Scope requires merchant_id, or both platform_id and store_id"
            )
        _validate_tenant_id(self.platform_id, "platform_id")
        _validate_tenant_id(self.store_id, "store_id")

    @classmethod
    def for_merchant(cls, merchant_id: str) -> "TenantScope":
        return cls(merchant_id=merchant_id)

    @classmethod
    def for_store(cls, platform_id: str, store_id: str) -> "TenantScope":
        return cls(platform_id=platform_id, store_id=store_id)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TenantScope":
        """Build a scope from a request-style mapping.

        Accepts camelCase (merchantId, platformId, storeId) or snake_case keys.

        Raises:
            InvalidScopeError: If the mapping does not describe a valid scope.
        """
        merchant_id = _first_present(data, _MERCHANT_KEYS)
        if merchant_id is not None:
            return cls(merchant_id=merchant_id)
        return cls(
            platform_id=_first_present(data, _PLATFORM_KEYS),
            store_id=_first_present(data, _STORE_KEYS),
        )

    @classmethod
    def coerce(cls, value: "TenantScope | str | Mapping[str, Any] | None") -> "TenantScope":
        """Return value as a TenantScope.

        A bare string is treated as a merchant id.

        Raises:
            InvalidScopeError: If value cannot be interpreted as a valid scope.
        """
        if isinstance(value, TenantScope):
            return value
        if isinstance(value, str):
            return cls(merchant_id=value)
        if isinstance(value, Mapping):
            return cls.from_mapping(value)
        raise InvalidScopeError(f"Unsupported scope type: {type(value).__name__}")

    @property
    def kind(self) -> str:
        """Scope kind segment of the cache key."""
        if self.merchant_id is not None:
            return SCOPE_KIND_MERCHANT
        return SCOPE_KIND_PLATFORM_STORE

    @property
    def scope_id(self) -> str:
        """Tenant identifier segment of the cache key."""
        if self.merchant_id is not None:
            return self.merchant_id
        return f"{self.platform_id}{SCOPE_ID_SEP}{self.store_id}"

    def __str__(self) -> str:
        return f"{self.kind}:{self.scope_id}"
