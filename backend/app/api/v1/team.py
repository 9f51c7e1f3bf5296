"""Team member linking API endpoints."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.dependencies import get_bearer_token, get_rate_limiter, get_team_link_service
from app.schemas.team import LinkAccountResponse, PreauthCheckRequest, PreauthCheckResponse
from app.services.rate_limit_service import RateLimitService
from app.services.team_link_service import TeamLinkService

router = APIRouter()


@router.post("/link", response_model=LinkAccountResponse)
async def link_account(
    token: Optional[str] = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
    service: TeamLinkService = Depends(get_team_link_service),
):
    """Link the signed-in identity to its team member row. Called after every sign-in."""
    result = await service.link(db, token)
    return LinkAccountResponse(
        linked=result.linked,
        already_linked=result.already_linked,
        role=result.role,
        team_member_id=result.team_member_id,
    )


@router.post("/preauth-check", response_model=PreauthCheckResponse)
async def preauth_check(
    request: Request,
    data: PreauthCheckRequest = Body(...),
    db: AsyncSession = Depends(get_db),
    service: TeamLinkService = Depends(get_team_link_service),
    rate_limiter: RateLimitService = Depends(get_rate_limiter),
):
    """Check whether an email may request a sign-in link before one is sent."""
    await rate_limiter.check_rate_limit(request=request)
    team_id = await service.preauth_check(db, data.email)
    return PreauthCheckResponse(allowed=True, team_id=team_id)
