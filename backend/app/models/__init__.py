"""SQLAlchemy models package."""

from app.models.contact import Alumni, EmailAddress
from app.models.event import Event, EventInviteToken, EventParticipant, RsvpStatus
from app.models.team import AccessInvite, Role, TeamMember
from app.models.verification import (
    CampaignLogEntry,
    CampaignStatus,
    CampaignType,
    EmailVerificationToken,
    ReverificationAnchor,
)

__all__ = [
    "AccessInvite",
    "Alumni",
    "CampaignLogEntry",
    "CampaignStatus",
    "CampaignType",
    "EmailAddress",
    "EmailVerificationToken",
    "Event",
    "EventInviteToken",
    "EventParticipant",
    "ReverificationAnchor",
    "Role",
    "RsvpStatus",
    "TeamMember",
]
