"""Identity provider package: privileged admin access to the auth backend."""

import logging
from typing import Optional

from app.config import settings
from app.core.errors import ConfigurationError
from app.services.identity.base import IdentityAdminClient, IdentityUser
from app.services.identity.claims import ClaimedSubject, extract_claimed_subject
from app.services.identity.gotrue import GoTrueAdminClient

logger = logging.getLogger(__name__)

# Module-level singleton (built lazily on first use)
_client: Optional[IdentityAdminClient] = None


def build_identity_client() -> IdentityAdminClient:
    """Construct the admin client from application settings."""
    if not settings.IDENTITY_BASE_URL or not settings.IDENTITY_SERVICE_ROLE_KEY:
        raise ConfigurationError(
            "Identity provider is not configured",
            details={"missing": ["IDENTITY_BASE_URL", "IDENTITY_SERVICE_ROLE_KEY"]},
        )
    return GoTrueAdminClient(
        base_url=settings.IDENTITY_BASE_URL,
        service_role_key=settings.IDENTITY_SERVICE_ROLE_KEY,
        timeout=settings.IDENTITY_TIMEOUT_SECONDS,
    )


def get_identity_client() -> IdentityAdminClient:
    global _client
    if _client is None:
        _client = build_identity_client()
        logger.info("Identity admin client initialised")
    return _client


def reset_identity_client() -> None:
    global _client
    _client = None


__all__ = [
    "ClaimedSubject",
    "GoTrueAdminClient",
    "IdentityAdminClient",
    "IdentityUser",
    "build_identity_client",
    "extract_claimed_subject",
    "get_identity_client",
    "reset_identity_client",
]
