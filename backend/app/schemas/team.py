"""Team linking Pydantic schemas."""

from typing import Optional
from uuid import UUID

from app.schemas.common import CamelModel


class LinkAccountResponse(CamelModel):
    linked: bool
    already_linked: bool
    role: Optional[str] = None
    team_member_id: UUID


class PreauthCheckRequest(CamelModel):
    email: Optional[str] = None


class PreauthCheckResponse(CamelModel):
    allowed: bool = True
    team_id: UUID
