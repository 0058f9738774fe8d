"""
Internal API key for service-to-service calls (payment webhooks -> order service).
Falls back to an insecure default with a loud warning so local runs still work.
"""
import secrets
import warnings

from shared.config.settings import INTERNAL_API_KEY as _CONFIGURED_KEY

if not _CONFIGURED_KEY:
    warnings.warn(
        "INTERNAL_API_KEY is not set. Using an insecure default. "
        "Set this env var in production!",
        stacklevel=2,
    )

INTERNAL_API_KEY: str = _CONFIGURED_KEY or "insecure-default-change-me"


def verify_api_key(provided_key: str) -> bool:
    """Verify an API key using constant-time comparison."""
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), str(INTERNAL_API_KEY))
