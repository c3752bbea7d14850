"""Core constants: cache key layout and domain TTL defaults.

Single source of truth for cache key structure (DRY). Used by the key
deriver, the invalidation service and the revalidation lock.
"""

# Delimiter for composite keys
CACHE_KEY_SEP = ":"

# Default namespace prefix (overridable via CACHE_KEY_PREFIX)
CACHE_KEY_PREFIX_DEFAULT = "mindshop"

# Scope kinds (second key segment)
SCOPE_KIND_MERCHANT = "merchant"
SCOPE_KIND_PLATFORM_STORE = "platform+store"

# Joins platform and store ids inside a hierarchical scope id (not a valid tenant-id char).
SCOPE_ID_SEP = "."

# Key types (fourth key segment)
KEY_TYPE_QUERY = "query"
KEY_TYPE_RETRIEVAL = "retrieval"
KEY_TYPE_PREDICTION = "prediction"
KEY_TYPE_SESSION = "session"

# Suffix appended to a cache key to form its revalidation lock key
REVALIDATION_LOCK_SUFFIX = "swr-lock"

# Envelope schema version written on every set; other versions read as misses.
CACHE_SCHEMA_VERSION = "1"

# Domain TTLs in seconds
TTL_DEFAULT = 3600
TTL_RETRIEVAL = 1800  # 30 minutes
TTL_PREDICTION = 3600  # 1 hour
TTL_SESSION = 86400  # 24 hours

# Stale-while-revalidate grace windows in seconds (must stay below the TTL)
GRACE_RETRIEVAL = 300
GRACE_PREDICTION = 600

# Characters that are glob metacharacters for Redis SCAN MATCH
GLOB_METACHARACTERS = frozenset("*?[]\\")
