"""Tests for the Celery re-verification and housekeeping tasks."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import select

from app.core.errors import ConfigurationError
from app.models.contact import EmailAddress
from app.models.verification import EmailVerificationToken, ReverificationAnchor
from app.utils.datetime_utils import utc_now
from app.workers.tasks.verification_tasks import (
    _purge_expired_verification_tokens_async,
    _run_reverification_sweep_async,
)

TASKS = "app.workers.tasks.verification_tasks"


class _SessionContext:
    """Stands in for ``AsyncSessionLocal()`` and yields the test session."""

    def __init__(self, db):
        self.db = db

    async def __aenter__(self):
        return self.db

    async def __aexit__(self, *exc_info):
        return False


@pytest.fixture
def task_env(db, mailer):
    with patch(f"{TASKS}.AsyncSessionLocal", return_value=_SessionContext(db)), \
            patch(f"{TASKS}.engine") as mock_engine, \
            patch(f"{TASKS}.settings") as mock_settings, \
            patch(f"{TASKS}.email_service", mailer):
        mock_engine.dispose = AsyncMock()
        yield mock_settings, mock_engine


async def _seed_due_contact(db, email="grad@example.com"):
    db.add(EmailAddress(id=uuid4(), email=email, status=False, updated_at=utc_now()))
    db.add(ReverificationAnchor(email=email, first_sent_at=utc_now() - timedelta(days=40)))
    await db.commit()


@pytest.mark.unit
class TestReverificationSweepTask:
    async def test_dry_run_reports_without_sending(self, db, mailer, task_env):
        await _seed_due_contact(db)

        result = await _run_reverification_sweep_async(dry_run=True)

        assert result == {"dryRun": True, "dueCount": 1, "sentCount": 0, "failed": []}
        assert mailer.sent == []

    async def test_sends_due_emails(self, db, mailer, task_env):
        _, mock_engine = task_env
        await _seed_due_contact(db)

        result = await _run_reverification_sweep_async(dry_run=False)

        assert result["sentCount"] == 1
        assert [m["to"] for m in mailer.sent] == ["grad@example.com"]
        mock_engine.dispose.assert_awaited_once()

    async def test_failed_recipients_are_listed(self, db, mailer, task_env):
        await _seed_due_contact(db)
        mailer.fail_for = {"grad@example.com"}

        result = await _run_reverification_sweep_async(dry_run=False)

        assert result["failed"] == ["grad@example.com"]
        assert result["sentCount"] == 0

    async def test_refuses_to_run_unconfigured(self, db, task_env):
        mock_settings, _ = task_env
        mock_settings.validate_runtime.side_effect = ConfigurationError("Missing required configuration")

        with pytest.raises(ConfigurationError):
            await _run_reverification_sweep_async(dry_run=False)


@pytest.mark.unit
class TestPurgeTask:
    async def test_purges_expired_tokens(self, db, task_env):
        now = utc_now()
        db.add(EmailVerificationToken(
            email="a@example.com", token_hash="a" * 64,
            expires_at=now - timedelta(hours=1), created_at=now - timedelta(hours=25),
        ))
        db.add(EmailVerificationToken(
            email="b@example.com", token_hash="b" * 64,
            expires_at=now + timedelta(hours=23), created_at=now,
        ))
        await db.commit()

        deleted = await _purge_expired_verification_tokens_async()

        assert deleted == 1
        remaining = (await db.execute(select(EmailVerificationToken.email))).scalars().all()
        assert remaining == ["b@example.com"]
