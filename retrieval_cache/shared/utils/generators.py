"""ID and token generators."""

from cuid2 import cuid_wrapper

cuid_generator = cuid_wrapper()


def generate_lock_token() -> str:
    """Generate a collision-resistant owner token for a revalidation lock (CUID2).

    The token is stored as the lock value so only the holder can release it.

    Returns:
        A new CUID string.
    """
    result = cuid_generator()
    if not isinstance(result, str):
        raise TypeError(
            f"Expected str from cuid_generator, got {type(result).__name__}"
        )
    return result
