"""Event invitations and RSVP handling.

Invitations carry three links (going, maybe, can't make it) that all point at
the RSVP endpoint with the same token. The token stays redeemable until it
expires, so an invitee can change their answer; the newest answer wins.
"""

import asyncio
import html
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import upsert_insert
from app.core.errors import NotFoundError, ValidationError
from app.core.logging_config import get_logger
from app.core.metrics import event_invites_total, rsvp_responses_total
from app.models.contact import Alumni
from app.models.event import Event, EventParticipant, RsvpStatus
from app.services.email_service import EmailDeliveryError, EmailService
from app.services.token_ledger import TokenLedger, TokenPurpose, token_ledger
from app.utils.datetime_utils import utc_now
from app.utils.logging_utils import normalize_email, redact_email

logger = get_logger(__name__)

_RSVP_PAGES = {
    RsvpStatus.GOING: ("You're in!", "#16a34a"),
    RsvpStatus.NOT_GOING: ("Maybe next time", "#ef4444"),
    RsvpStatus.PENDING: ("Thanks, noted", "#f59e0b"),
}


@dataclass(frozen=True)
class InviteRecipient:
    email: str
    first_name: Optional[str] = None
    alumni_id: Optional[UUID] = None


@dataclass
class InviteReport:
    event_id: UUID
    sent: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed)


@dataclass(frozen=True)
class RsvpResult:
    event_id: UUID
    status: RsvpStatus
    alumni_id: Optional[UUID]


def format_event_time(starts_at: Optional[datetime]) -> str:
    if starts_at is None:
        return "To be announced"
    return starts_at.strftime("%a, %b %d, %Y %I:%M %p")


def render_invite_html(event: Event, first_name: str, links: dict[RsvpStatus, str]) -> str:
    yes = html.escape(links[RsvpStatus.GOING], quote=True)
    maybe = html.escape(links[RsvpStatus.PENDING], quote=True)
    no = html.escape(links[RsvpStatus.NOT_GOING], quote=True)
    return f"""
<table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="background:#f9fafb;padding:32px 0;font-family:Arial,Helvetica,sans-serif;">
  <tr>
    <td align="center">
      <table width="640" cellpadding="0" cellspacing="0" role="presentation" style="background:#ffffff;border-radius:14px;border:1px solid #e5e7eb;">
        <tr>
          <td style="padding:28px 32px;">
            <p style="margin:0 0 12px 0;font-size:14px;color:#6b7280;">MARIAN Alumni Network</p>
            <h1 style="margin:0 0 16px 0;font-size:22px;color:#111827;">You're invited: {html.escape(event.title)}</h1>
            <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">Hi {html.escape(first_name)},</p>
            <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">Here are the details for the event. Let us know if you can make it.</p>
            <p style="margin:0 0 6px 0;font-size:13px;color:#6b7280;">Date &amp; Time</p>
            <p style="margin:0 0 12px 0;font-size:15px;color:#111827;font-weight:600;">{html.escape(format_event_time(event.starts_at))}</p>
            <p style="margin:0 0 6px 0;font-size:13px;color:#6b7280;">Location</p>
            <p style="margin:0 0 16px 0;font-size:15px;color:#111827;font-weight:600;">{html.escape(event.location or "")}</p>
            <p style="margin:0 0 14px 0;font-size:14px;color:#374151;">{html.escape(event.description or "")}</p>
            <p style="margin:0 0 12px 0;">
              <a href="{yes}" style="display:inline-block;padding:12px 18px;background:#16a34a;color:#ffffff;text-decoration:none;border-radius:10px;font-weight:700;">Yes, I'm in</a>
              <a href="{maybe}" style="display:inline-block;padding:12px 18px;background:#fbbf24;color:#92400e;text-decoration:none;border-radius:10px;font-weight:700;">Maybe</a>
              <a href="{no}" style="display:inline-block;padding:12px 18px;background:#ef4444;color:#ffffff;text-decoration:none;border-radius:10px;font-weight:700;">Can't make it</a>
            </p>
            <p style="margin:14px 0 0 0;font-size:12px;color:#9ca3af;">Your response updates our attendance list automatically.</p>
          </td>
        </tr>
      </table>
    </td>
  </tr>
</table>"""


def render_invite_text(event: Event, links: dict[RsvpStatus, str]) -> str:
    return (
        f"You're invited to {event.title}\n"
        f"{format_event_time(event.starts_at)}\n"
        f"{event.location or ''}\n"
        f"Yes: {links[RsvpStatus.GOING]}\n"
        f"Maybe: {links[RsvpStatus.PENDING]}\n"
        f"No: {links[RsvpStatus.NOT_GOING]}\n"
    )


def render_rsvp_page(status: Optional[RsvpStatus]) -> str:
    """Confirmation page shown after clicking an RSVP link; ``None`` renders the failure page."""
    if status is None:
        title, color = "Link invalid or expired", "#6b7280"
        body = "This RSVP link is invalid or has expired. Please contact the organizers."
    else:
        title, color = _RSVP_PAGES[status]
        body = "Your response has been recorded."
    return f"""
<html>
  <body style="font-family:Arial,Helvetica,sans-serif;background:#f9fafb;padding:32px;">
    <div style="max-width:520px;margin:0 auto;background:#fff;border:1px solid #e5e7eb;border-radius:12px;padding:24px;">
      <h2 style="margin:0 0 12px 0;color:{color};">{html.escape(title)}</h2>
      <p style="margin:0;color:#374151;">{body}</p>
    </div>
  </body>
</html>"""


class EventInviteService:
    """Sends event invitations and records RSVP answers."""

    def __init__(
        self,
        email: EmailService,
        ledger: TokenLedger = token_ledger,
        rsvp_url: str = settings.rsvp_url,
        token_ttl: timedelta = timedelta(hours=settings.EVENT_INVITE_TTL_HOURS),
        batch_size: int = settings.EVENT_INVITE_BATCH_SIZE,
        batch_delay: float = settings.EVENT_INVITE_BATCH_DELAY_SECONDS,
    ):
        self.email = email
        self.ledger = ledger
        self.rsvp_url = rsvp_url
        self.token_ttl = token_ttl
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay

    def build_links(self, secret: str, event_id: UUID) -> dict[RsvpStatus, str]:
        return {
            status: f"{self.rsvp_url}?"
            + urlencode({"token": secret, "status": status.value, "eventId": str(event_id)})
            for status in RsvpStatus
        }

    async def send_invites(
        self,
        db: AsyncSession,
        event_id: UUID,
        recipients: Sequence[InviteRecipient],
        now: Optional[datetime] = None,
    ) -> InviteReport:
        """
        Issue RSVP tokens and email invitations for an event.

        Tokens are issued up front; emails then go out in small batches with a
        pause between batches to stay under the provider's rate limit.
        Individual delivery failures are collected, never raised.

        Raises:
            NotFoundError: event does not exist
            ValidationError: no recipients
        """
        event = await db.get(Event, event_id)
        if event is None:
            raise NotFoundError("Event not found", details={"eventId": str(event_id)})
        if not recipients:
            raise ValidationError("Missing event or attendees")
        now = now or utc_now()

        outgoing = []
        seen: set[str] = set()
        for recipient in recipients:
            address = (recipient.email or "").strip()
            if "@" not in address:
                raise ValidationError("Invalid attendee email", details={"email": recipient.email})
            # One invitation per person; the first listing wins
            if normalize_email(address) in seen:
                continue
            seen.add(normalize_email(address))
            issued = await self.ledger.issue(
                db,
                TokenPurpose.EVENT_RSVP,
                address,
                self.token_ttl,
                event_id=event.id,
                alumni_id=recipient.alumni_id,
                now=now,
            )
            outgoing.append((address, recipient.first_name, self.build_links(issued.secret, event.id)))

        report = InviteReport(event_id=event.id)
        for start in range(0, len(outgoing), self.batch_size):
            batch = outgoing[start:start + self.batch_size]
            results = await asyncio.gather(
                *(self._send_one(event, address, first_name, links) for address, first_name, links in batch)
            )
            for address, error in results:
                if error is None:
                    report.sent.append(address)
                else:
                    report.failed.append({"email": address, "error": error})
            if start + self.batch_size < len(outgoing):
                await asyncio.sleep(self.batch_delay)

        if report.failed:
            logger.warning(
                "event_invites_partial",
                event_id=str(event.id),
                sent=len(report.sent),
                failed=len(report.failed),
            )
        logger.info("event_invites_sent", event_id=str(event.id), sent=len(report.sent))
        return report

    async def _send_one(
        self, event: Event, address: str, first_name: Optional[str], links: dict[RsvpStatus, str]
    ) -> tuple[str, Optional[str]]:
        try:
            await self.email.send_email(
                address,
                f"Invitation: {event.title}",
                render_invite_html(event, (first_name or "").strip() or "there", links),
                render_invite_text(event, links),
            )
        except EmailDeliveryError as exc:
            event_invites_total.labels(status="failed").inc()
            logger.warning(
                "event_invite_failed", email=redact_email(address), reason=exc.reason.value
            )
            return address, exc.message
        event_invites_total.labels(status="sent").inc()
        return address, None

    async def respond(
        self,
        db: AsyncSession,
        secret: Optional[str],
        status: Optional[str],
        now: Optional[datetime] = None,
    ) -> RsvpResult:
        """
        Record an RSVP answer from an invitation link.

        Raises:
            ValidationError: token or status missing, or status unknown
            TokenNotFoundError: token unknown
            TokenExpiredError: token past its expiry
        """
        if not secret or not status:
            raise ValidationError("Missing token or status")

        redeemed = await self.ledger.redeem(
            db, TokenPurpose.EVENT_RSVP, secret, status=status, now=now
        )
        alumni_id = redeemed.alumni_id or await self._alumni_by_email(db, redeemed.email)

        if alumni_id is not None:
            stmt = upsert_insert(db, EventParticipant.__table__).values(
                event_id=redeemed.event_id,
                alumni_id=alumni_id,
                rsvp_status=redeemed.status.value,
                updated_at=now or utc_now(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["event_id", "alumni_id"],
                set_={
                    "rsvp_status": stmt.excluded.rsvp_status,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await db.execute(stmt)
            await db.commit()
        else:
            logger.info("rsvp_without_alumni", email=redact_email(redeemed.email))

        rsvp_responses_total.labels(status=redeemed.status.value).inc()
        logger.info(
            "rsvp_recorded",
            event_id=str(redeemed.event_id),
            email=redact_email(redeemed.email),
            rsvp_status=redeemed.status.value,
        )
        return RsvpResult(event_id=redeemed.event_id, status=redeemed.status, alumni_id=alumni_id)

    async def _alumni_by_email(self, db: AsyncSession, email: str) -> Optional[UUID]:
        result = await db.execute(
            select(Alumni.id)
            .where(func.lower(Alumni.email) == normalize_email(email))
            .limit(1)
        )
        return result.scalars().first()
