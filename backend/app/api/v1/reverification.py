"""Re-verification sweep API endpoint."""

from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.dependencies import get_scheduler
from app.schemas.reverification import (
    ReverificationReportRequest,
    ReverificationReportResponse,
    SweepItemResponse,
)
from app.services.reverification_scheduler import ReverificationScheduler

router = APIRouter()


@router.post("/report", response_model=ReverificationReportResponse)
async def reverification_report(
    data: Optional[ReverificationReportRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    scheduler: ReverificationScheduler = Depends(get_scheduler),
):
    """
    Report which unverified contacts are due a re-verification email.

    Dry run by default; pass ``{"dryRun": false}`` to send the due emails.
    """
    dry_run = data.dry_run if data is not None else True
    report = await scheduler.sweep(db, dry_run=dry_run)
    return ReverificationReportResponse(
        dry_run=report.dry_run,
        unverified_count=report.unverified_count,
        skipped_no_anchor=report.skipped_no_anchor,
        due_count=report.due_count,
        sent_count=report.sent_count,
        inactive_candidates=report.inactive_candidates,
        results=[
            SweepItemResponse(email=item.email, interval=item.interval, sent=item.sent, error=item.error)
            for item in report.results
        ],
    )
