"""Event invitation and RSVP API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import TokenError
from app.dependencies import get_event_invite_service, get_rate_limiter
from app.schemas.event import FailedInvite, RsvpRequest, SendInvitesRequest, SendInvitesResponse
from app.services.event_invite_service import (
    EventInviteService,
    InviteRecipient,
    render_rsvp_page,
)
from app.services.rate_limit_service import RateLimitService

router = APIRouter()


@router.post("/{event_id}/invites", response_model=SendInvitesResponse)
async def send_event_invites(
    event_id: UUID,
    data: SendInvitesRequest,
    db: AsyncSession = Depends(get_db),
    service: EventInviteService = Depends(get_event_invite_service),
):
    """
    Email RSVP invitations for an event.

    Responds 207 with the failed recipients when only some emails went out.
    """
    report = await service.send_invites(
        db,
        event_id,
        [
            InviteRecipient(email=a.email, first_name=a.first_name, alumni_id=a.alumni_id)
            for a in data.attendees
        ],
    )
    body = SendInvitesResponse(
        sent=report.sent,
        failed=[FailedInvite(email=f["email"], error=f["error"]) for f in report.failed],
    )
    if report.partial:
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS,
            content=body.model_dump(by_alias=True),
        )
    return body


async def _respond(
    db: AsyncSession, service: EventInviteService, token: Optional[str], answer: Optional[str]
) -> HTMLResponse:
    # Missing token or bad status raise ValidationError (400 JSON); a token
    # that does not redeem renders the HTML failure page.
    try:
        result = await service.respond(db, token, answer)
    except TokenError:
        return HTMLResponse(render_rsvp_page(None), status_code=status.HTTP_400_BAD_REQUEST)
    return HTMLResponse(render_rsvp_page(result.status))


@router.get("/rsvp", response_class=HTMLResponse)
async def rsvp_link(
    request: Request,
    token: Optional[str] = Query(None),
    rsvp_status: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    service: EventInviteService = Depends(get_event_invite_service),
    rate_limiter: RateLimitService = Depends(get_rate_limiter),
):
    """Record the answer from an RSVP link clicked in the invitation email."""
    await rate_limiter.check_rate_limit(request=request)
    return await _respond(db, service, token, rsvp_status)


@router.post("/rsvp", response_class=HTMLResponse)
async def rsvp_submit(
    request: Request,
    token: Optional[str] = Query(None),
    rsvp_status: Optional[str] = Query(None, alias="status"),
    data: Optional[RsvpRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    service: EventInviteService = Depends(get_event_invite_service),
    rate_limiter: RateLimitService = Depends(get_rate_limiter),
):
    """Record an RSVP answer given in the query string or a JSON body (query wins)."""
    await rate_limiter.check_rate_limit(request=request)
    token = token or (data.token if data else None)
    rsvp_status = rsvp_status or (data.status if data else None)
    return await _respond(db, service, token, rsvp_status)
