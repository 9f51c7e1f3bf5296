"""Tests for structlog processors and task log context."""

from unittest.mock import Mock

import pytest
import structlog

from app.core.logging_config import REDACTED, drop_secrets, task_log_context


@pytest.mark.unit
class TestDropSecrets:
    def test_secret_values_are_blanked(self):
        event = {
            "event": "access_granted",
            "claim_link": "https://connect.example.org/?token=abc",
            "token": "abc",
            "email": "s***@example.com",
        }

        result = drop_secrets(None, "info", event)

        assert result["claim_link"] == REDACTED
        assert result["token"] == REDACTED
        assert result["email"] == "s***@example.com"

    def test_none_left_alone(self):
        assert drop_secrets(None, "info", {"action_link": None}) == {"action_link": None}


@pytest.mark.unit
class TestTaskLogContext:
    def test_success_logs_summary_and_unbinds(self):
        logger = Mock()
        seen = {}

        with task_log_context(logger, "purge_expired_verification_tokens") as summary:
            seen.update(structlog.contextvars.get_contextvars())
            summary["deleted"] = 3

        assert seen["task_name"] == "purge_expired_verification_tokens"
        assert "request_id" in seen
        event, = logger.info.call_args.args
        assert event == "celery_task_succeeded"
        assert logger.info.call_args.kwargs["deleted"] == 3
        assert "task_name" not in structlog.contextvars.get_contextvars()

    def test_failure_is_logged_and_reraised(self):
        logger = Mock()

        with pytest.raises(RuntimeError):
            with task_log_context(logger, "run_reverification_sweep"):
                raise RuntimeError("database went away")

        assert logger.error.call_args.kwargs["error"] == "RuntimeError"
        logger.info.assert_not_called()
        assert "request_id" not in structlog.contextvars.get_contextvars()
