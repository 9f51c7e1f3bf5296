"""Verification and re-verification email dispatch.

One call sends one email: issue a 24h verification token, render the copy for
the campaign and interval, hand it to the email provider, and on acceptance
record the bookkeeping the re-verification sweep depends on.

Bookkeeping writes are insert-if-absent:

- the address's :class:`ReverificationAnchor` is written on the first accepted
  send and never moved afterwards;
- each accepted ``rapport`` send writes one :class:`CampaignLogEntry` per
  (email, interval). A ``failed`` row for the same key is upgraded to ``sent``;
  a ``sent`` row is never touched again.

The provider call and the bookkeeping are not one transaction. A crash in
between can cause one duplicate send on the next sweep.
"""

import html
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import upsert_insert
from app.core.errors import ValidationError
from app.core.logging_config import get_logger
from app.core.metrics import verification_emails_total
from app.models.verification import (
    CampaignLogEntry,
    CampaignStatus,
    CampaignType,
    ReverificationAnchor,
)
from app.services.email_service import EmailDeliveryError, EmailService
from app.services.token_ledger import TokenLedger, TokenPurpose, token_ledger
from app.utils.datetime_utils import utc_now
from app.utils.logging_utils import normalize_email, redact_email

logger = get_logger(__name__)

ESCALATION_INTERVALS = (1, 3, 6, 12)


@dataclass(frozen=True)
class VerificationTemplate:
    subject: str
    heading: str
    intro: str
    detail: str
    cta_label: str


INITIAL_TEMPLATE = VerificationTemplate(
    subject="Please verify your email",
    heading="Verify your email",
    intro="Thank you for completing the form.",
    detail="Please confirm your email to activate your alumni profile.",
    cta_label="Verify email",
)

# Copy escalates with the interval: friendly reminder, then check-in, then
# a request to keep the profile, then a final notice before deactivation review.
RAPPORT_TEMPLATES = {
    1: VerificationTemplate(
        subject="Quick reminder: please verify your email",
        heading="Just checking in",
        intro="A month ago we asked you to confirm your email address, and we haven't heard back yet.",
        detail="Confirming takes one click and keeps you connected with the alumni network.",
        cta_label="Verify email",
    ),
    3: VerificationTemplate(
        subject="We'd love to stay in touch",
        heading="Are we still reaching you?",
        intro="It has been a few months and your email address is still unconfirmed.",
        detail="Please verify it so we can keep sharing events, programs and opportunities with you.",
        cta_label="Confirm my email",
    ),
    6: VerificationTemplate(
        subject="Action needed: confirm your alumni profile",
        heading="Please confirm your alumni profile",
        intro="Your alumni profile has been waiting for confirmation for six months.",
        detail="Unconfirmed profiles stop receiving updates. Verify your email to keep yours active.",
        cta_label="Keep my profile active",
    ),
    12: VerificationTemplate(
        subject="Final notice: your alumni profile will be reviewed",
        heading="Final reminder",
        intro="We have not been able to confirm your email address for a year.",
        detail=(
            "This is our last reminder. If we do not hear from you, your profile will be "
            "reviewed for deactivation."
        ),
        cta_label="Verify now",
    ),
}


def parse_campaign_type(value: Union[str, CampaignType, None]) -> CampaignType:
    if isinstance(value, CampaignType):
        return value
    try:
        return CampaignType((value or CampaignType.INITIAL.value).strip().lower())
    except ValueError:
        raise ValidationError(
            "Invalid campaign type",
            details={"allowed": [c.value for c in CampaignType]},
        )


def select_template(campaign_type: CampaignType, interval_months: Optional[int]) -> VerificationTemplate:
    """Pick the copy for a campaign. ``rapport`` requires an escalation interval."""
    if campaign_type == CampaignType.INITIAL:
        return INITIAL_TEMPLATE
    if interval_months not in RAPPORT_TEMPLATES:
        raise ValidationError(
            "Invalid re-verification interval",
            details={"allowed": list(ESCALATION_INTERVALS), "received": interval_months},
        )
    return RAPPORT_TEMPLATES[interval_months]


def render_html(template: VerificationTemplate, first_name: str, brand_name: str,
                verify_url: str) -> str:
    name = html.escape(first_name)
    brand = html.escape(brand_name)
    url = html.escape(verify_url, quote=True)
    return f"""
<table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="background:#f9fafb;padding:32px 0;font-family:Arial,Helvetica,sans-serif;">
  <tr>
    <td align="center">
      <table width="560" cellpadding="0" cellspacing="0" role="presentation" style="background:#ffffff;border-radius:12px;border:1px solid #e5e7eb;">
        <tr>
          <td style="padding:24px 28px;">
            <p style="margin:0 0 12px 0;font-size:14px;color:#6b7280;">{brand}</p>
            <h1 style="margin:0 0 16px 0;font-size:22px;color:#111827;">{html.escape(template.heading)}</h1>
            <p style="margin:0 0 12px 0;font-size:15px;color:#374151;">Hello {name},</p>
            <p style="margin:0 0 10px 0;font-size:15px;color:#374151;">{html.escape(template.intro)}</p>
            <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">{html.escape(template.detail)}</p>
            <p style="margin:0 0 24px 0;">
              <a href="{url}" style="display:inline-block;padding:12px 18px;background:#FF2B5E;color:#ffffff;text-decoration:none;border-radius:8px;font-weight:600;">
                {html.escape(template.cta_label)}
              </a>
            </p>
            <p style="margin:0 0 8px 0;font-size:13px;color:#6b7280;">If the button doesn't work, copy and paste this link:</p>
            <p style="margin:0;font-size:12px;color:#6b7280;word-break:break-all;">{url}</p>
            <p style="margin:24px 0 0 0;font-size:12px;color:#9ca3af;">This link expires in 24 hours. If you did not request this, you can safely ignore this message.</p>
            <p style="margin:24px 0 0 0;font-size:12px;color:#9ca3af;">Best regards,<br />MARIAN TBI</p>
          </td>
        </tr>
      </table>
    </td>
  </tr>
</table>"""


def render_text(template: VerificationTemplate, first_name: str, brand_name: str,
                verify_url: str) -> str:
    return (
        f"{brand_name}\n\n"
        f"Hello {first_name},\n\n"
        f"{template.intro}\n"
        f"{template.detail}\n"
        f"{verify_url}\n\n"
        f"This link expires in 24 hours. If you did not request this, you can safely ignore this message.\n\n"
        f"Best regards,\nMARIAN TBI\n"
    )


@dataclass(frozen=True)
class DispatchResult:
    email: str
    campaign_type: CampaignType
    interval_months: Optional[int]
    message_id: str
    sent_at: datetime


class VerificationDispatcher:
    """Sends verification emails and records anchors and campaign history."""

    def __init__(
        self,
        email: EmailService,
        ledger: TokenLedger = token_ledger,
        app_base_url: str = settings.APP_BASE_URL,
        token_ttl: timedelta = timedelta(hours=settings.VERIFICATION_TOKEN_TTL_HOURS),
        default_brand: str = settings.VERIFICATION_BRAND_NAME,
    ):
        self.email = email
        self.ledger = ledger
        self.app_base_url = app_base_url.rstrip("/")
        self.token_ttl = token_ttl
        self.default_brand = default_brand

    async def send(
        self,
        db: AsyncSession,
        to: str,
        campaign_type: Union[str, CampaignType] = CampaignType.INITIAL,
        interval_months: Optional[int] = None,
        first_name: Optional[str] = None,
        brand_name: Optional[str] = None,
        now: Optional[datetime] = None,
        anchor_at: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        Send one verification email to *to*.

        *anchor_at* is the first-send time the caller already knows for a
        contact without an anchor row; the anchor is written at the earlier of
        it and *now*.

        Raises:
            ValidationError: bad address, campaign type or interval
            EmailDeliveryError: the provider did not accept the message
        """
        to = (to or "").strip()
        if "@" not in to:
            raise ValidationError("A valid recipient email is required")
        campaign = parse_campaign_type(campaign_type)
        template = select_template(campaign, interval_months)
        if campaign == CampaignType.INITIAL:
            interval_months = None
        now = now or utc_now()

        issued = await self.ledger.issue(db, TokenPurpose.EMAIL_VERIFY, to, self.token_ttl, now=now)
        verify_url = f"{self.app_base_url}/verify-email?token={issued.secret}"
        greeting = (first_name or "").strip() or "there"
        brand = (brand_name or "").strip() or self.default_brand

        interval_label = str(interval_months or 0)
        try:
            message_id = await self.email.send_email(
                to,
                template.subject,
                render_html(template, greeting, brand, verify_url),
                render_text(template, greeting, brand, verify_url),
            )
        except EmailDeliveryError as exc:
            verification_emails_total.labels(
                campaign_type=campaign.value, interval=interval_label, status="failed"
            ).inc()
            logger.warning(
                "verification_email_failed",
                email=redact_email(to),
                campaign_type=campaign.value,
                interval_months=interval_months,
                reason=exc.reason.value,
            )
            if campaign == CampaignType.RAPPORT:
                await self._log_campaign(db, to, interval_months, CampaignStatus.FAILED, now, error=exc.message)
                await db.commit()
            raise

        await self._record_anchor(db, to, min(anchor_at, now) if anchor_at else now)
        if campaign == CampaignType.RAPPORT:
            await self._log_campaign(db, to, interval_months, CampaignStatus.SENT, now)
        await db.commit()

        verification_emails_total.labels(
            campaign_type=campaign.value, interval=interval_label, status="sent"
        ).inc()
        logger.info(
            "verification_email_sent",
            email=redact_email(to),
            campaign_type=campaign.value,
            interval_months=interval_months,
        )
        return DispatchResult(
            email=to,
            campaign_type=campaign,
            interval_months=interval_months,
            message_id=message_id,
            sent_at=now,
        )

    async def _record_anchor(self, db: AsyncSession, email: str, first_sent_at: datetime) -> None:
        stmt = upsert_insert(db, ReverificationAnchor.__table__).values(
            email=normalize_email(email), first_sent_at=first_sent_at
        )
        await db.execute(stmt.on_conflict_do_nothing(index_elements=["email"]))

    async def _log_campaign(
        self,
        db: AsyncSession,
        email: str,
        interval_months: int,
        status: CampaignStatus,
        now: datetime,
        error: Optional[str] = None,
    ) -> None:
        table = CampaignLogEntry.__table__
        stmt = upsert_insert(db, table).values(
            email=normalize_email(email),
            interval_months=interval_months,
            campaign_type=CampaignType.RAPPORT.value,
            sent_at=now,
            status=status.value,
            error=error,
        )
        # A sent row is final; only a failed attempt may be overwritten
        stmt = stmt.on_conflict_do_update(
            index_elements=["email", "interval_months", "campaign_type"],
            set_={
                "sent_at": stmt.excluded.sent_at,
                "status": stmt.excluded.status,
                "error": stmt.excluded.error,
            },
            where=table.c.status != CampaignStatus.SENT.value,
        )
        await db.execute(stmt)
