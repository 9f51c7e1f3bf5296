"""Email verification Pydantic schemas."""

from typing import Literal, Optional

from pydantic import Field

from app.schemas.common import CamelModel


class SendVerificationRequest(CamelModel):
    """Schema for sending one verification or re-verification email."""

    email: str = Field(..., min_length=3, max_length=255)
    first_name: Optional[str] = Field(None, max_length=100)
    campaign_type: Literal["initial", "rapport"] = "initial"
    interval_months: Optional[int] = None
    brand_name: Optional[str] = Field(None, max_length=100)


class SendVerificationResponse(CamelModel):
    sent: bool = True


class VerifyEmailRequest(CamelModel):
    token: str


class VerifyEmailResponse(CamelModel):
    email: str
