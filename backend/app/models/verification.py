"""Email verification tokens and re-verification bookkeeping."""

import enum
import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.utils.datetime_utils import utc_now_lambda


class CampaignType(str, enum.Enum):
    INITIAL = "initial"
    RAPPORT = "rapport"


class CampaignStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"


class EmailVerificationToken(Base):
    """Single-use token proving control of an email address."""

    __tablename__ = "email_verification_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Stored as submitted; compared case-insensitively downstream
    email = Column(String(255), nullable=False, index=True)
    # SHA-256 hex digest; the raw token is never stored
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)

    def __repr__(self):
        return f"<EmailVerificationToken id={self.id}>"


class ReverificationAnchor(Base):
    """When the first verification email reached an address.

    Write-once: every escalation interval is measured from ``first_sent_at``.
    """

    __tablename__ = "verification_email_anchors"

    email = Column(String(255), primary_key=True)  # lower-cased
    first_sent_at = Column(DateTime, nullable=False)


class CampaignLogEntry(Base):
    """One verification send per (email, interval, campaign type)."""

    __tablename__ = "reverification_campaign_log"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, index=True)
    interval_months = Column(Integer, nullable=False)  # 1, 3, 6 or 12
    campaign_type = Column(String(20), nullable=False)
    sent_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=CampaignStatus.SENT.value)
    error = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "email",
            "interval_months",
            "campaign_type",
            name="uq_campaign_log_email_interval_type",
        ),
    )

    def __repr__(self):
        return f"<CampaignLogEntry interval={self.interval_months} status={self.status}>"
