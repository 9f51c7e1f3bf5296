"""Event invitation Pydantic schemas."""

from typing import Optional
from uuid import UUID

from pydantic import Field

from app.schemas.common import CamelModel


class InviteAttendee(CamelModel):
    email: str = Field(..., min_length=3, max_length=255)
    first_name: Optional[str] = None
    alumni_id: Optional[UUID] = None


class SendInvitesRequest(CamelModel):
    attendees: list[InviteAttendee] = Field(..., min_length=1)


class FailedInvite(CamelModel):
    email: str
    error: str


class SendInvitesResponse(CamelModel):
    message: str = "processed"
    sent: list[str]
    failed: list[FailedInvite]


class RsvpRequest(CamelModel):
    token: Optional[str] = None
    status: Optional[str] = None
