"""Email verification API endpoints."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db, upsert_insert
from app.core.errors import TokenError, ValidationError
from app.core.logging_config import get_logger
from app.dependencies import get_dispatcher, get_rate_limiter
from app.models.contact import EmailAddress
from app.schemas.verification import (
    SendVerificationRequest,
    SendVerificationResponse,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from app.services.rate_limit_service import RateLimitService
from app.services.token_ledger import TokenPurpose, token_ledger
from app.services.verification_dispatcher import VerificationDispatcher
from app.utils.datetime_utils import utc_now
from app.utils.logging_utils import normalize_email, redact_email

router = APIRouter()
logger = get_logger(__name__)

INVALID_LINK_MESSAGE = "Invalid or expired verification link"


@router.post("/send", response_model=SendVerificationResponse)
async def send_verification(
    data: SendVerificationRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: VerificationDispatcher = Depends(get_dispatcher),
):
    """Send a verification email (initial or a re-verification interval)."""
    await dispatcher.send(
        db,
        data.email,
        campaign_type=data.campaign_type,
        interval_months=data.interval_months,
        first_name=data.first_name,
        brand_name=data.brand_name,
    )
    return SendVerificationResponse(sent=True)


async def _verify(db: AsyncSession, token: Optional[str]) -> VerifyEmailResponse:
    if not token:
        raise ValidationError("Missing token")
    try:
        redeemed = await token_ledger.redeem(db, TokenPurpose.EMAIL_VERIFY, token)
    except TokenError:
        # One message for every failure so tokens cannot be enumerated
        raise ValidationError(INVALID_LINK_MESSAGE)

    email = normalize_email(redeemed.email)
    stmt = upsert_insert(db, EmailAddress.__table__).values(
        email=email, status=True, updated_at=utc_now()
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["email"],
        set_={"status": True, "updated_at": stmt.excluded.updated_at},
    )
    await db.execute(stmt)
    await db.commit()

    logger.info("email_verified", email=redact_email(email))
    return VerifyEmailResponse(email=email)


@router.post("/verify", response_model=VerifyEmailResponse)
async def verify_email(
    request: Request,
    data: VerifyEmailRequest = Body(...),
    db: AsyncSession = Depends(get_db),
    rate_limiter: RateLimitService = Depends(get_rate_limiter),
):
    """
    Redeem a verification token and mark the address verified.
    Rate limited to prevent brute-forcing tokens.
    """
    await rate_limiter.check_rate_limit(request=request)
    return await _verify(db, data.token)


@router.get("/verify", response_model=VerifyEmailResponse)
async def verify_email_link(
    request: Request,
    token: Optional[str] = Query(None, description="Email verification token from the link"),
    db: AsyncSession = Depends(get_db),
    rate_limiter: RateLimitService = Depends(get_rate_limiter),
):
    """Same as ``POST /verify`` for links opened directly."""
    await rate_limiter.check_rate_limit(request=request)
    return await _verify(db, token)
