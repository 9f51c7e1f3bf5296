"""Access grant and claim API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.dependencies import get_access_grant_service, get_bearer_token
from app.schemas.access import (
    ClaimAccessRequest,
    ClaimAccessResponse,
    GrantAccessRequest,
    GrantAccessResponse,
)
from app.services.access_grant_service import AccessGrantService

router = APIRouter()


@router.post("/grant", response_model=GrantAccessResponse)
async def grant_access(
    data: GrantAccessRequest,
    token: Optional[str] = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
    service: AccessGrantService = Depends(get_access_grant_service),
):
    """
    Grant (or re-send) portal access to a team member. Admins only.

    The grant is recorded even when the invitation email cannot be sent; the
    response then carries the sign-in and claim links for manual sharing.
    """
    outcome = await service.grant_access(db, token, data.team_member_id, data.email, data.role)
    return GrantAccessResponse(
        message=outcome.message,
        is_resend=outcome.is_resend,
        delivery=outcome.delivery.value,
        user_id=outcome.user_id,
        warning=outcome.warning,
        detail=outcome.detail,
        claim_link=outcome.claim_link,
        action_link=outcome.action_link,
    )


@router.post("/claim", response_model=ClaimAccessResponse)
async def claim_access(
    data: ClaimAccessRequest,
    token: Optional[str] = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
    service: AccessGrantService = Depends(get_access_grant_service),
):
    """Claim an access invitation as the signed-in invitee."""
    outcome = await service.claim_access(db, token, data.token)
    return ClaimAccessResponse(
        team_member_id=outcome.team_member_id,
        email=outcome.email,
        role=outcome.role,
    )
