"""Periodic re-verification of unverified contact emails.

Due-ness is recomputed from persisted state on every sweep (anchor plus
campaign log), never from an in-memory queue. A send that failed last time is
therefore retried by the next sweep, and a send that succeeded is never
repeated because its log row makes the interval no longer due.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AppError
from app.core.logging_config import get_logger
from app.core.metrics import reverification_sweep_duration_seconds
from app.models.contact import EmailAddress
from app.models.verification import (
    CampaignLogEntry,
    CampaignStatus,
    CampaignType,
    ReverificationAnchor,
)
from app.services.verification_dispatcher import ESCALATION_INTERVALS, VerificationDispatcher
from app.utils.datetime_utils import months_between, utc_now
from app.utils.logging_utils import normalize_email, redact_email

logger = get_logger(__name__)

# Bound the size of IN (...) lists when loading anchors and logs
_LOOKUP_CHUNK = 500


@dataclass
class SweepItem:
    email: str
    interval: int
    sent: bool
    error: Optional[str] = None


@dataclass
class ReverificationReport:
    dry_run: bool
    unverified_count: int = 0
    skipped_no_anchor: int = 0
    due_count: int = 0
    sent_count: int = 0
    inactive_candidates: list[str] = field(default_factory=list)
    results: list[SweepItem] = field(default_factory=list)


def next_due_interval(elapsed_months: float, sent_intervals: Iterable[int]) -> Optional[int]:
    """
    Return the escalation interval due now, or None.

    The due interval is the highest threshold already reached that is above
    every interval sent so far. Skipped thresholds are never sent
    retroactively, so a contact first swept at seven months receives only the
    six-month email, and the cadence never steps backwards.

    >>> next_due_interval(1.03, [])
    1
    >>> next_due_interval(7.0, [])
    6
    >>> next_due_interval(1.5, [1]) is None
    True
    """
    highest_sent = max(sent_intervals, default=0)
    due = None
    for threshold in ESCALATION_INTERVALS:
        if threshold > highest_sent and elapsed_months >= threshold:
            due = threshold
    return due


class ReverificationScheduler:
    """Finds unverified contacts whose next escalation email is due and sends it."""

    def __init__(self, dispatcher: VerificationDispatcher):
        self.dispatcher = dispatcher

    async def sweep(
        self, db: AsyncSession, dry_run: bool = True, now: Optional[datetime] = None
    ) -> ReverificationReport:
        """
        Evaluate every unverified contact once.

        A dry run computes the same report and writes nothing. A real run
        sends at most one email per contact and keeps going past individual
        delivery failures, recording each in ``results``.
        """
        started = time.monotonic()
        now = now or utc_now()
        report = ReverificationReport(dry_run=dry_run)

        emails = await self._load_unverified_emails(db)
        report.unverified_count = len(emails)
        anchors = await self._load_anchors(db, emails)
        history = await self._load_sent_history(db, emails)

        for email in emails:
            sends = history.get(email, [])
            anchor = anchors.get(email)
            if anchor is None and sends:
                # Rows written before anchors existed: measure from the earliest send
                anchor = min(sent_at for _, sent_at in sends)
            if anchor is None:
                report.skipped_no_anchor += 1
                continue

            sent_intervals = {interval for interval, _ in sends}
            due = next_due_interval(months_between(anchor, now), sent_intervals)
            if due is None:
                if ESCALATION_INTERVALS[-1] in sent_intervals:
                    report.inactive_candidates.append(email)
                continue

            report.due_count += 1
            if dry_run:
                report.results.append(SweepItem(email=email, interval=due, sent=False))
                continue

            try:
                await self.dispatcher.send(
                    db,
                    email,
                    campaign_type=CampaignType.RAPPORT,
                    interval_months=due,
                    now=now,
                    anchor_at=anchor,
                )
            except AppError as exc:
                logger.warning(
                    "reverification_send_failed",
                    email=redact_email(email),
                    interval_months=due,
                    error_code=exc.code,
                )
                report.results.append(
                    SweepItem(email=email, interval=due, sent=False, error=exc.message)
                )
                continue
            except Exception as exc:
                # One bad contact must not stop the sweep; the next sweep retries it
                await db.rollback()
                logger.exception(
                    "reverification_send_crashed",
                    email=redact_email(email),
                    interval_months=due,
                    error=type(exc).__name__,
                )
                report.results.append(
                    SweepItem(email=email, interval=due, sent=False, error="Unexpected error")
                )
                continue

            report.sent_count += 1
            report.results.append(SweepItem(email=email, interval=due, sent=True))

        duration = time.monotonic() - started
        reverification_sweep_duration_seconds.labels(dry_run=str(dry_run).lower()).observe(duration)
        logger.info(
            "reverification_sweep_completed",
            dry_run=dry_run,
            unverified=report.unverified_count,
            skipped_no_anchor=report.skipped_no_anchor,
            due=report.due_count,
            sent=report.sent_count,
            inactive_candidates=len(report.inactive_candidates),
            duration_ms=int(duration * 1000),
        )
        return report

    async def _load_unverified_emails(self, db: AsyncSession) -> list[str]:
        result = await db.execute(
            select(EmailAddress.email).where(EmailAddress.status.is_(False))
        )
        normalized = {normalize_email(email) for email in result.scalars().all()}
        normalized.discard("")
        return sorted(normalized)

    async def _load_anchors(self, db: AsyncSession, emails: list[str]) -> dict[str, datetime]:
        anchors: dict[str, datetime] = {}
        for chunk in _chunks(emails):
            result = await db.execute(
                select(ReverificationAnchor.email, ReverificationAnchor.first_sent_at).where(
                    ReverificationAnchor.email.in_(chunk)
                )
            )
            for email, first_sent_at in result.all():
                anchors[email] = first_sent_at
        return anchors

    async def _load_sent_history(
        self, db: AsyncSession, emails: list[str]
    ) -> dict[str, list[tuple[int, datetime]]]:
        """Successful rapport sends per email, oldest first."""
        history: dict[str, list[tuple[int, datetime]]] = {}
        for chunk in _chunks(emails):
            result = await db.execute(
                select(
                    CampaignLogEntry.email,
                    CampaignLogEntry.interval_months,
                    CampaignLogEntry.sent_at,
                )
                .where(
                    CampaignLogEntry.email.in_(chunk),
                    CampaignLogEntry.campaign_type == CampaignType.RAPPORT.value,
                    CampaignLogEntry.status == CampaignStatus.SENT.value,
                )
                .order_by(CampaignLogEntry.sent_at.asc())
            )
            for email, interval, sent_at in result.all():
                history.setdefault(email, []).append((interval, sent_at))
        return history


def _chunks(items: list[str]):
    for start in range(0, len(items), _LOOKUP_CHUNK):
        yield items[start:start + _LOOKUP_CHUNK]
