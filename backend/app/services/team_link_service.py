"""Link an authenticated identity to its team member row.

Runs once per successful sign-in. The team row cannot be updated by its owner
until ``user_id`` is set, so this service writes through its own session, the
privileged path. It writes ``user_id`` and nothing else; ``has_access`` belongs
to the access grant workflow.

Authentication is two explicit steps and the first is never enough:

1. decode the bearer token without verifying it, to learn the claimed subject;
2. confirm that subject with the identity provider's admin API.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from app.core.logging_config import get_logger
from app.core.metrics import team_links_total
from app.models.team import TeamMember
from app.services.identity import IdentityAdminClient, IdentityUser, extract_claimed_subject
from app.utils.logging_utils import normalize_email, redact_email

logger = get_logger(__name__)


@dataclass(frozen=True)
class LinkResult:
    linked: bool
    already_linked: bool
    role: Optional[str]
    team_member_id: UUID


async def authenticate_subject(identity: IdentityAdminClient, credential: Optional[str]) -> IdentityUser:
    """
    Resolve a bearer credential to a live identity-provider user.

    Raises:
        UnauthorizedError: malformed credential, or the provider does not know the subject
        ProviderError: the provider could not be reached
    """
    claimed = extract_claimed_subject(credential)
    user = await identity.get_user(claimed.subject)
    if user is None:
        logger.warning("identity_subject_unconfirmed", subject=claimed.subject)
        raise UnauthorizedError("User not found")
    return user


async def find_active_team_member(db: AsyncSession, email: str) -> Optional[TeamMember]:
    """
    Case-insensitive lookup of an active team row (``is_active`` true or NULL).

    Duplicate rows for one email are a data problem upstream; the oldest wins.
    """
    result = await db.execute(
        select(TeamMember)
        .where(
            func.lower(TeamMember.email) == normalize_email(email),
            or_(TeamMember.is_active.is_(True), TeamMember.is_active.is_(None)),
        )
        .order_by(TeamMember.created_at.asc(), TeamMember.id.asc())
        .limit(1)
    )
    return result.scalars().first()


class TeamLinkService:
    """Links sign-ins to team rows and answers pre-authorization checks."""

    def __init__(self, identity: IdentityAdminClient):
        self.identity = identity

    async def link(self, db: AsyncSession, credential: Optional[str]) -> LinkResult:
        """
        Link the caller's identity to their team row.

        Idempotent: a second call for the same identity reports
        ``already_linked=True`` and performs no write.

        Raises:
            UnauthorizedError: credential not confirmed by the identity provider
            ValidationError: the identity has no email
            NotFoundError: no active team row for the identity's email
        """
        user = await authenticate_subject(self.identity, credential)
        if not user.email:
            raise ValidationError("No email on identity")

        member = await find_active_team_member(db, user.email)
        if member is None:
            logger.info("team_member_not_found", email=redact_email(user.email))
            raise NotFoundError("No team member found for this email")

        if member.user_id == user.id:
            team_links_total.labels(result="already_linked").inc()
            logger.info("team_member_already_linked", team_member_id=str(member.id))
            return LinkResult(
                linked=True, already_linked=True, role=member.role_name, team_member_id=member.id
            )

        member_id = member.id
        role = member.role_name
        previous_user_id = member.user_id
        await db.execute(
            update(TeamMember)
            .where(TeamMember.id == member_id)
            .values(user_id=user.id)
        )
        await db.commit()

        team_links_total.labels(result="linked").inc()
        logger.info(
            "team_member_linked",
            team_member_id=str(member_id),
            previous_user_id=previous_user_id,
            user_id=user.id,
        )
        return LinkResult(linked=True, already_linked=False, role=role, team_member_id=member_id)

    async def preauth_check(self, db: AsyncSession, email: Optional[str]) -> UUID:
        """
        Return the team row id if *email* may request a sign-in link.

        Raises:
            ValidationError: email missing
            ForbiddenError: no active team row for the email
        """
        email = normalize_email(email)
        if not email:
            raise ValidationError("Missing email")

        member = await find_active_team_member(db, email)
        if member is None:
            logger.info("preauth_denied", email=redact_email(email))
            raise ForbiddenError("Email is not pre-authorized", details={"allowed": False})

        logger.info("preauth_allowed", email=redact_email(email), team_member_id=str(member.id))
        return member.id
