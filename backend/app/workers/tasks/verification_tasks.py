"""Celery tasks for email re-verification and token housekeeping."""

import asyncio

from app.config import settings
from app.core.database import AsyncSessionLocal, engine
from app.core.logging_config import get_logger, task_log_context
from app.services.email_service import email_service
from app.services.reverification_scheduler import ReverificationScheduler
from app.services.token_ledger import token_ledger
from app.services.verification_dispatcher import VerificationDispatcher
from app.workers.celery_app import celery_app

logger = get_logger(__name__)


# A half-finished sweep is not retried: the next scheduled sweep recomputes
# what is due from the database and picks up whatever was missed.
@celery_app.task(name="run_reverification_sweep", max_retries=0)
def run_reverification_sweep_task(dry_run: bool = False):
    """Send every re-verification email that is due. Runs daily."""
    return asyncio.run(_run_reverification_sweep_async(dry_run))


async def _run_reverification_sweep_async(dry_run: bool) -> dict:
    settings.validate_runtime()
    try:
        with task_log_context(logger, "run_reverification_sweep") as summary:
            async with AsyncSessionLocal() as db:
                scheduler = ReverificationScheduler(VerificationDispatcher(email_service))
                report = await scheduler.sweep(db, dry_run=dry_run)
            summary.update(due=report.due_count, sent=report.sent_count, dry_run=report.dry_run)
    finally:
        # The pool is bound to this event loop, which asyncio.run closes
        await engine.dispose()

    return {
        "dryRun": report.dry_run,
        "dueCount": report.due_count,
        "sentCount": report.sent_count,
        "failed": [item.email for item in report.results if item.error],
    }


@celery_app.task(name="purge_expired_verification_tokens")
def purge_expired_verification_tokens_task():
    """Delete expired verification tokens. Runs daily at 4am."""
    return asyncio.run(_purge_expired_verification_tokens_async())


async def _purge_expired_verification_tokens_async() -> int:
    try:
        with task_log_context(logger, "purge_expired_verification_tokens") as summary:
            async with AsyncSessionLocal() as db:
                deleted = await token_ledger.purge_expired(db)
            summary["deleted"] = deleted
    finally:
        await engine.dispose()
    return deleted
