"""
Internal service-to-service key.

A missing INTERNAL_API_KEY does not crash the import (local runs and tests have
no .env); it falls back to a development key and warns loudly instead.
"""
import secrets
import warnings

from shared.config import settings

_INTERNAL_API_KEY: str = settings.INTERNAL_API_KEY

if not _INTERNAL_API_KEY:
    warnings.warn(
        "INTERNAL_API_KEY is not set. Using an insecure development default. "
        "Set this env var in production!",
        stacklevel=2,
    )
    _INTERNAL_API_KEY = "insecure-default-change-me"

INTERNAL_API_KEY: str = _INTERNAL_API_KEY
INTERNAL_API_KEY_HEADER = "X-Internal-API-Key"


def verify_api_key(provided_key: str) -> bool:
    """Verify an API key using constant-time comparison."""
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), str(INTERNAL_API_KEY))


def internal_headers() -> dict:
    """Headers for outgoing calls to sibling services."""
    return {INTERNAL_API_KEY_HEADER: INTERNAL_API_KEY}
