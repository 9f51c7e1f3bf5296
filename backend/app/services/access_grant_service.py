"""Granting portal access to team members.

A grant provisions (or reuses) an identity-provider account, records an
:class:`AccessInvite` carrying a claim token, asks the provider for a magic
sign-in link that lands on the claim URL, and emails both links.

Delivering the email and recording the grant are decoupled: once the magic
link exists, ``has_access`` and ``user_id`` are written whatever happens to
the email. When delivery fails the response carries the links so the admin
can hand them over.
"""

import enum
import html
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import (
    ForbiddenError,
    NotFoundError,
    ProviderError,
    TokenExpiredError,
    ValidationError,
)
from app.core.logging_config import get_logger
from app.core.metrics import access_grants_total
from app.models.team import GRANTABLE_ROLES, AccessInvite, Role, TeamMember
from app.services.email_service import DeliveryFailure, EmailDeliveryError, EmailService
from app.services.identity import IdentityAdminClient, IdentityUser
from app.services.team_link_service import authenticate_subject, find_active_team_member
from app.utils.datetime_utils import utc_now
from app.utils.logging_utils import normalize_email, redact_email

logger = get_logger(__name__)

ADMIN_ROLE = "Admin"


class GrantDelivery(str, enum.Enum):
    DELIVERED = "delivered"
    NOT_CONFIGURED = DeliveryFailure.NOT_CONFIGURED.value
    SENDER_UNVERIFIED = DeliveryFailure.SENDER_UNVERIFIED.value
    TRANSIENT = DeliveryFailure.TRANSIENT.value


_DELIVERY_COPY = {
    GrantDelivery.NOT_CONFIGURED: (
        "Access granted, but the invitation email was not sent because email delivery "
        "is not configured. Share the sign-in link manually.",
        "Email not sent: email delivery is not configured",
    ),
    GrantDelivery.SENDER_UNVERIFIED: (
        "Access granted! The invitation email could not be sent because the sender domain "
        "is not verified with the email provider. Share the sign-in link manually or "
        "verify the sending domain.",
        "Email not sent: sender domain not verified",
    ),
    GrantDelivery.TRANSIENT: (
        "Access granted, but the invitation email failed to send. Share the sign-in link manually.",
        "Email not sent: delivery failed",
    ),
}


@dataclass(frozen=True)
class GrantOutcome:
    team_member_id: UUID
    user_id: str
    is_resend: bool
    delivery: GrantDelivery
    message: str
    warning: Optional[str] = None
    detail: Optional[str] = None
    claim_link: Optional[str] = None
    action_link: Optional[str] = None


@dataclass(frozen=True)
class ClaimOutcome:
    team_member_id: UUID
    email: str
    role: Optional[str]


def render_invite_html(name: str, portal_name: str, action_link: str, claim_link: str) -> str:
    name = html.escape(name or "there")
    action = html.escape(action_link, quote=True)
    claim = html.escape(claim_link, quote=True)
    return f"""
<table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="background:#f9fafb;padding:32px 0;font-family:Arial,Helvetica,sans-serif;">
  <tr>
    <td align="center">
      <table width="560" cellpadding="0" cellspacing="0" role="presentation" style="background:#ffffff;border-radius:12px;border:1px solid #e5e7eb;">
        <tr>
          <td style="padding:24px 28px;">
            <p style="margin:0 0 12px 0;font-size:14px;color:#6b7280;">{html.escape(portal_name)}</p>
            <h1 style="margin:0 0 16px 0;font-size:22px;color:#111827;">You've been granted access</h1>
            <p style="margin:0 0 12px 0;font-size:15px;color:#374151;">Hi {name},</p>
            <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">Click the magic link to sign in:</p>
            <p style="margin:0 0 24px 0;">
              <a href="{action}" style="display:inline-block;padding:12px 18px;background:#FF2B5E;color:#ffffff;text-decoration:none;border-radius:8px;font-weight:600;">Sign in</a>
            </p>
            <p style="margin:0 0 12px 0;font-size:15px;color:#374151;">After signing in, you'll be redirected to claim access. If not, use this link:</p>
            <p style="margin:0 0 8px 0;"><a href="{claim}">{claim}</a></p>
            <p style="margin:24px 0 0 0;font-size:12px;color:#9ca3af;">If you didn't request this, you can ignore this email.</p>
          </td>
        </tr>
      </table>
    </td>
  </tr>
</table>"""


def render_invite_text(name: str, action_link: str, claim_link: str) -> str:
    return (
        f"Hi {name or 'there'},\n\n"
        f"You've been granted access.\n"
        f"Sign in: {action_link}\n"
        f"Claim access: {claim_link}\n\n"
        f"If you didn't request this, ignore this email.\n"
    )


class AccessGrantService:
    """Grants portal access and lets the invitee claim it."""

    def __init__(
        self,
        identity: IdentityAdminClient,
        email: EmailService,
        app_base_url: str = settings.APP_BASE_URL,
        portal_name: str = settings.PORTAL_NAME,
        claim_ttl: timedelta = timedelta(hours=settings.ACCESS_CLAIM_TTL_HOURS),
    ):
        self.identity = identity
        self.email = email
        self.app_base_url = app_base_url.rstrip("/")
        self.portal_name = portal_name
        self.claim_ttl = claim_ttl

    async def grant_access(
        self,
        db: AsyncSession,
        credential: Optional[str],
        team_member_id: UUID,
        email: str,
        role: str,
        now: Optional[datetime] = None,
    ) -> GrantOutcome:
        """
        Grant (or re-send) portal access to a team member.

        Raises:
            UnauthorizedError: caller's credential not confirmed
            ForbiddenError: caller is not an active Admin team member
            NotFoundError: team member does not exist
            ValidationError: email mismatch or non-grantable role
            ProviderError: identity provider failed before a sign-in link existed
        """
        now = now or utc_now()
        caller = await authenticate_subject(self.identity, credential)
        await self._require_admin(db, caller)

        member = await db.get(TeamMember, team_member_id)
        if member is None:
            raise NotFoundError("Team member not found", details={"teamMemberId": str(team_member_id)})
        if normalize_email(member.email) != normalize_email(email):
            raise ValidationError("Member email does not match")
        if role not in GRANTABLE_ROLES:
            raise ValidationError("Role cannot be granted", details={"allowed": list(GRANTABLE_ROLES)})

        # Re-granting is a resend so admins can recover a lost invitation
        is_resend = bool(member.has_access)
        role_id = await self._role_id(db, role)
        if role_id is None:
            raise ValidationError("Role is not configured", details={"role": role})
        full_name = member.full_name
        target_email = member.email.strip()

        user = await self._provision_identity(target_email, full_name)

        claim_token = str(uuid.uuid4())
        claim_link = f"{self.app_base_url}/?token={claim_token}"
        db.add(
            AccessInvite(
                team_member_id=member.id,
                email=target_email,
                role_id=role_id,
                token=claim_token,
                expires_at=now + self.claim_ttl,
                created_at=now,
            )
        )
        await db.commit()

        try:
            action_link = await self.identity.generate_sign_in_link(target_email, redirect_to=claim_link)
        except ProviderError as exc:
            # Keep the identity link so a retry reuses it; access is not granted yet
            await self._persist_grant(db, member.id, user.id, has_access=None)
            logger.error(
                "access_grant_link_failed",
                team_member_id=str(member.id),
                email=redact_email(target_email),
            )
            raise ProviderError(
                "Failed to generate magic link",
                details={"claimLink": claim_link, **(exc.details or {})},
            ) from exc

        delivery = GrantDelivery.DELIVERED
        detail = None
        try:
            await self.email.send_email(
                target_email,
                f"Your access to {self.portal_name}",
                render_invite_html(full_name, self.portal_name, action_link, claim_link),
                render_invite_text(full_name, action_link, claim_link),
            )
        except EmailDeliveryError as exc:
            delivery = GrantDelivery(exc.reason.value)
            if delivery == GrantDelivery.TRANSIENT:
                detail = (exc.details or {}).get("provider_message") or exc.message

        # Recorded on every path: a failed email must not withhold the grant
        await self._persist_grant(db, member.id, user.id, has_access=True)

        access_grants_total.labels(outcome=delivery.value).inc()
        logger.info(
            "access_granted",
            team_member_id=str(member.id),
            email=redact_email(target_email),
            role=role,
            is_resend=is_resend,
            delivery=delivery.value,
        )

        if delivery == GrantDelivery.DELIVERED:
            return GrantOutcome(
                team_member_id=member.id,
                user_id=user.id,
                is_resend=is_resend,
                delivery=delivery,
                message="Access invitation re-sent" if is_resend else "Access invitation sent",
            )

        message, warning = _DELIVERY_COPY[delivery]
        return GrantOutcome(
            team_member_id=member.id,
            user_id=user.id,
            is_resend=is_resend,
            delivery=delivery,
            message=message,
            warning=warning,
            detail=detail,
            claim_link=claim_link,
            action_link=action_link,
        )

    async def claim_access(
        self,
        db: AsyncSession,
        credential: Optional[str],
        claim_token: Optional[str],
        now: Optional[datetime] = None,
    ) -> ClaimOutcome:
        """
        Mark an invite claimed by the signed-in invitee.

        Raises:
            ValidationError: claim token missing
            NotFoundError: no unclaimed invite with this token
            TokenExpiredError: the invite has expired
            ForbiddenError: the invite was issued to a different email
        """
        now = now or utc_now()
        if not claim_token:
            raise ValidationError("Missing token")
        caller = await authenticate_subject(self.identity, credential)

        result = await db.execute(
            select(AccessInvite).where(
                AccessInvite.token == claim_token,
                AccessInvite.claimed_at.is_(None),
            )
        )
        invite = result.scalar_one_or_none()
        if invite is None:
            raise NotFoundError("Invalid or expired invitation")
        if now > invite.expires_at:
            raise TokenExpiredError("Invitation has expired")
        if normalize_email(invite.email) != normalize_email(caller.email):
            raise ForbiddenError("Email mismatch - please sign in with the invited email")

        invite_id = invite.id
        team_member_id = invite.team_member_id
        invite_email = invite.email
        role_id = invite.role_id

        claimed = await db.execute(
            update(AccessInvite)
            .where(AccessInvite.id == invite_id, AccessInvite.claimed_at.is_(None))
            .values(claimed_at=now, claimed_by_user_id=caller.id)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            raise NotFoundError("Invalid or expired invitation")

        await db.execute(
            update(TeamMember).where(TeamMember.id == team_member_id).values(has_access=True)
        )
        await db.commit()

        role = await db.get(Role, role_id) if role_id is not None else None
        logger.info(
            "access_claimed",
            team_member_id=str(team_member_id),
            email=redact_email(invite_email),
        )
        return ClaimOutcome(
            team_member_id=team_member_id,
            email=invite_email,
            role=role.name if role else None,
        )

    async def _require_admin(self, db: AsyncSession, caller: IdentityUser) -> None:
        member = await find_active_team_member(db, caller.email)
        if member is None or member.role_name != ADMIN_ROLE:
            logger.warning("access_grant_denied", email=redact_email(caller.email))
            raise ForbiddenError("Only administrators can grant access")

    async def _role_id(self, db: AsyncSession, role: str) -> Optional[int]:
        result = await db.execute(select(Role.id).where(Role.name == role))
        return result.scalar_one_or_none()

    async def _provision_identity(self, email: str, full_name: str) -> IdentityUser:
        existing = await self.identity.find_user_by_email(email)
        if existing is not None:
            if not existing.confirmed:
                await self.identity.confirm_user(existing.id)
            return existing
        return await self.identity.create_user(
            email, confirmed=True, metadata={"full_name": full_name}
        )

    async def _persist_grant(
        self, db: AsyncSession, team_member_id: UUID, user_id: str, has_access: Optional[bool]
    ) -> None:
        values = {"user_id": user_id}
        if has_access is not None:
            values["has_access"] = has_access
        await db.execute(update(TeamMember).where(TeamMember.id == team_member_id).values(**values))
        await db.commit()
