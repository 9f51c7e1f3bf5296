"""Re-verification sweep Pydantic schemas."""

from typing import Optional

from app.schemas.common import CamelModel


class ReverificationReportRequest(CamelModel):
    """Dry run unless explicitly disabled."""

    dry_run: bool = True


class SweepItemResponse(CamelModel):
    email: str
    interval: int
    sent: bool
    error: Optional[str] = None


class ReverificationReportResponse(CamelModel):
    dry_run: bool
    unverified_count: int
    skipped_no_anchor: int
    due_count: int
    sent_count: int
    inactive_candidates: list[str]
    results: list[SweepItemResponse]
