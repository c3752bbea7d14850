"""Tenant ID and key component format validation.

Shared by TenantScope (scope ids) and the key deriver (key types, entity
and session ids) so invalid components are rejected consistently and a
tenant-scoped SCAN pattern can never match another tenant's keys.
"""

import re

from retrieval_cache.core.constants import CACHE_KEY_SEP, GLOB_METACHARACTERS

# Alphanumeric, hyphen, underscore; no separator or glob characters possible.
TENANT_ID_MAX_LENGTH = 64
_TENANT_ID_RE = re.compile(
    r"^[a-zA-Z0-9_-]{1," + str(TENANT_ID_MAX_LENGTH) + r"}$"
)

KEY_COMPONENT_MAX_LENGTH = 256


def is_valid_tenant_id_format(value: str) -> bool:
    """Return True if value is safe for use as a tenant id inside a cache key."""
    if not isinstance(value, str) or not value or len(value) > TENANT_ID_MAX_LENGTH:
        return False
    return bool(_TENANT_ID_RE.fullmatch(value))


def is_safe_key_component(value: str) -> bool:
    """Return True if value can be embedded in a key without breaking its layout.

    Rejects empty values, whitespace, the key separator and any character
    that SCAN MATCH would interpret as a glob.
    """
    if not isinstance(value, str) or not value or len(value) > KEY_COMPONENT_MAX_LENGTH:
        return False
    if CACHE_KEY_SEP in value:
        return False
    return not any(ch in GLOB_METACHARACTERS or ch.isspace() for ch in value)
