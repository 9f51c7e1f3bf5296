"""FastAPI dependencies: bearer credential extraction and service factories.

Routers depend on these factories rather than on module singletons so tests
can swap in fakes through ``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.services.access_grant_service import AccessGrantService
from app.services.email_service import EmailService, email_service
from app.services.event_invite_service import EventInviteService
from app.services.identity import IdentityAdminClient, get_identity_client
from app.services.rate_limit_service import RateLimitService, get_rate_limit_service
from app.services.reverification_scheduler import ReverificationScheduler
from app.services.team_link_service import TeamLinkService
from app.services.verification_dispatcher import VerificationDispatcher

# Missing credentials are reported as UnauthorizedError by the services, so
# the scheme must not short-circuit with its own 403.
bearer = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[str]:
    """Raw bearer token from the Authorization header, if any."""
    return credentials.credentials if credentials else None


def get_identity() -> IdentityAdminClient:
    return get_identity_client()


def get_email() -> EmailService:
    return email_service


def get_rate_limiter() -> RateLimitService:
    return get_rate_limit_service()


def get_dispatcher(email: EmailService = Depends(get_email)) -> VerificationDispatcher:
    return VerificationDispatcher(email)


def get_scheduler(
    dispatcher: VerificationDispatcher = Depends(get_dispatcher),
) -> ReverificationScheduler:
    return ReverificationScheduler(dispatcher)


def get_team_link_service(
    identity: IdentityAdminClient = Depends(get_identity),
) -> TeamLinkService:
    return TeamLinkService(identity)


def get_access_grant_service(
    identity: IdentityAdminClient = Depends(get_identity),
    email: EmailService = Depends(get_email),
) -> AccessGrantService:
    return AccessGrantService(identity, email)


def get_event_invite_service(email: EmailService = Depends(get_email)) -> EventInviteService:
    return EventInviteService(email)
