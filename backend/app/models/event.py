"""Event, participant and RSVP token models."""

import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.utils.datetime_utils import utc_now_lambda


class RsvpStatus(str, enum.Enum):
    """RSVP answer. ``pending`` doubles as the "maybe" link."""

    PENDING = "pending"
    GOING = "going"
    NOT_GOING = "not_going"


class Event(Base):
    """Calendar event alumni can be invited to."""

    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    starts_at = Column(DateTime, nullable=True)
    location = Column(String(255), nullable=True)


class EventParticipant(Base):
    """An alumnus' recorded RSVP for an event."""

    __tablename__ = "event_participants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    alumni_id = Column(
        UUID(as_uuid=True), ForeignKey("alumni.id", ondelete="CASCADE"), nullable=False
    )
    rsvp_status = Column(String(20), nullable=False, default=RsvpStatus.PENDING.value)
    updated_at = Column(DateTime, default=utc_now_lambda, onupdate=utc_now_lambda, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "alumni_id", name="uq_event_participants_event_alumni"),
    )


class EventInviteToken(Base):
    """RSVP token for one (event, email) pair.

    Unlike verification tokens these are redeemable repeatedly until expiry:
    each redemption overwrites ``status`` so invitees can change their answer.
    """

    __tablename__ = "event_invite_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    email = Column(String(255), nullable=False)
    alumni_id = Column(UUID(as_uuid=True), ForeignKey("alumni.id"), nullable=True)
    # SHA-256 hex digest of the raw token
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=RsvpStatus.PENDING.value)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "email", name="uq_event_invite_tokens_event_email"),
    )

    def __repr__(self):
        return f"<EventInviteToken event={self.event_id} status={self.status}>"
