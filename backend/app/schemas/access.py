"""Access grant and claim Pydantic schemas."""

from typing import Optional
from uuid import UUID

from pydantic import Field

from app.schemas.common import CamelModel


class GrantAccessRequest(CamelModel):
    """Schema for granting (or re-sending) portal access."""

    team_member_id: UUID
    email: str = Field(..., min_length=3, max_length=255)
    role: str


class GrantAccessResponse(CamelModel):
    """Links are only present when the invitation email was not delivered."""

    ok: bool = True
    message: str
    is_resend: bool
    delivery: str
    user_id: str
    warning: Optional[str] = None
    detail: Optional[str] = None
    claim_link: Optional[str] = None
    action_link: Optional[str] = None


class ClaimAccessRequest(CamelModel):
    token: str


class ClaimAccessResponse(CamelModel):
    ok: bool = True
    team_member_id: UUID
    email: str
    role: Optional[str] = None
