"""Tests for verification email dispatch and its bookkeeping."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.core.errors import ValidationError
from app.models.verification import (
    CampaignLogEntry,
    CampaignType,
    EmailVerificationToken,
    ReverificationAnchor,
)
from app.services.email_service import DeliveryFailure, EmailDeliveryError
from app.services.token_ledger import TokenLedger
from app.services.verification_dispatcher import (
    INITIAL_TEMPLATE,
    RAPPORT_TEMPLATES,
    VerificationDispatcher,
    parse_campaign_type,
    render_html,
    select_template,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)


@pytest.fixture
def dispatcher(mailer):
    return VerificationDispatcher(
        mailer,
        ledger=TokenLedger(),
        app_base_url="https://connect.example.org/",
        token_ttl=timedelta(hours=24),
        default_brand="MARIAN TBI Connect",
    )


async def _anchors(db):
    return (await db.execute(select(ReverificationAnchor))).scalars().all()


async def _log(db):
    rows = (await db.execute(select(CampaignLogEntry))).scalars().all()
    for row in rows:
        await db.refresh(row)
    return rows


@pytest.mark.unit
class TestTemplates:
    def test_initial_ignores_interval(self):
        assert select_template(CampaignType.INITIAL, None) is INITIAL_TEMPLATE
        assert select_template(CampaignType.INITIAL, 5) is INITIAL_TEMPLATE

    @pytest.mark.parametrize("interval", [1, 3, 6, 12])
    def test_each_interval_has_distinct_copy(self, interval):
        template = select_template(CampaignType.RAPPORT, interval)
        assert template is RAPPORT_TEMPLATES[interval]
        others = [t.subject for m, t in RAPPORT_TEMPLATES.items() if m != interval]
        assert template.subject not in others

    @pytest.mark.parametrize("interval", [None, 0, 2, 24])
    def test_rapport_rejects_unknown_interval(self, interval):
        with pytest.raises(ValidationError):
            select_template(CampaignType.RAPPORT, interval)

    def test_parse_campaign_type_defaults_to_initial(self):
        assert parse_campaign_type(None) == CampaignType.INITIAL
        assert parse_campaign_type(" Rapport ") == CampaignType.RAPPORT

    def test_parse_campaign_type_rejects_unknown(self):
        with pytest.raises(ValidationError):
            parse_campaign_type("newsletter")

    def test_html_escapes_user_values(self):
        body = render_html(INITIAL_TEMPLATE, "<b>Ana</b>", "Brand & Co", "https://x.test/?token=a&b=c")
        assert "<b>Ana</b>" not in body
        assert "&lt;b&gt;Ana&lt;/b&gt;" in body
        assert "Brand &amp; Co" in body
        assert "token=a&amp;b=c" in body


@pytest.mark.unit
class TestSend:
    async def test_initial_send(self, db, dispatcher, mailer):
        result = await dispatcher.send(db, "Grad@Example.com", first_name="Ana", now=NOW)

        assert result.campaign_type == CampaignType.INITIAL
        assert result.interval_months is None
        assert result.message_id == "msg-1"
        assert len(mailer.sent) == 1
        message = mailer.sent[0]
        assert message["to"] == "Grad@Example.com"
        assert message["subject"] == INITIAL_TEMPLATE.subject
        assert "https://connect.example.org/verify-email?token=" in message["text"]
        assert "Hello Ana," in message["text"]

        anchors = await _anchors(db)
        assert [(a.email, a.first_sent_at) for a in anchors] == [("grad@example.com", NOW)]
        # initial sends are not campaign history
        assert await _log(db) == []
        tokens = (await db.execute(select(EmailVerificationToken))).scalars().all()
        assert len(tokens) == 1

    async def test_blank_first_name_greets_generically(self, db, dispatcher, mailer):
        await dispatcher.send(db, "grad@example.com", first_name="   ", now=NOW)
        assert "Hello there," in mailer.sent[0]["text"]

    async def test_brand_name_override(self, db, dispatcher, mailer):
        await dispatcher.send(db, "grad@example.com", brand_name="Alumni Office", now=NOW)
        assert mailer.sent[0]["text"].startswith("Alumni Office")

    async def test_anchor_is_write_once(self, db, dispatcher):
        await dispatcher.send(db, "grad@example.com", now=NOW)
        await dispatcher.send(db, "GRAD@example.com", now=NOW + timedelta(days=40))
        await dispatcher.send(
            db, "grad@example.com", campaign_type="rapport", interval_months=1,
            now=NOW + timedelta(days=60),
        )

        anchors = await _anchors(db)
        assert len(anchors) == 1
        await db.refresh(anchors[0])
        assert anchors[0].first_sent_at == NOW

    async def test_rapport_send_logs_interval(self, db, dispatcher, mailer):
        result = await dispatcher.send(
            db, "grad@example.com", campaign_type=CampaignType.RAPPORT, interval_months=3, now=NOW
        )

        assert result.interval_months == 3
        assert mailer.sent[0]["subject"] == RAPPORT_TEMPLATES[3].subject
        rows = await _log(db)
        assert len(rows) == 1
        assert rows[0].interval_months == 3
        assert rows[0].campaign_type == "rapport"
        assert rows[0].status == "sent"
        assert rows[0].sent_at == NOW

    async def test_invalid_recipient(self, db, dispatcher, mailer):
        with pytest.raises(ValidationError):
            await dispatcher.send(db, "not-an-email", now=NOW)
        assert mailer.sent == []

    async def test_invalid_interval_sends_nothing(self, db, dispatcher, mailer):
        with pytest.raises(ValidationError):
            await dispatcher.send(db, "grad@example.com", campaign_type="rapport", interval_months=2, now=NOW)

        assert mailer.sent == []
        assert (await db.execute(select(EmailVerificationToken))).scalars().all() == []

    async def test_not_configured_writes_no_anchor(self, db, mailer):
        mailer._configured = False
        service = VerificationDispatcher(mailer, ledger=TokenLedger(), app_base_url="https://x.test")

        with pytest.raises(EmailDeliveryError) as exc_info:
            await service.send(db, "grad@example.com", now=NOW)

        assert exc_info.value.reason == DeliveryFailure.NOT_CONFIGURED
        assert await _anchors(db) == []

    async def test_failed_rapport_is_logged_then_upgraded(self, db, dispatcher, mailer):
        mailer.failure = DeliveryFailure.TRANSIENT
        with pytest.raises(EmailDeliveryError):
            await dispatcher.send(db, "grad@example.com", campaign_type="rapport", interval_months=1, now=NOW)

        rows = await _log(db)
        assert [(r.status, r.error) for r in rows] == [("failed", "Email provider rejected the message")]
        assert await _anchors(db) == []

        mailer.failure = None
        later = NOW + timedelta(days=1)
        await dispatcher.send(db, "grad@example.com", campaign_type="rapport", interval_months=1, now=later)

        rows = await _log(db)
        assert len(rows) == 1
        assert rows[0].status == "sent"
        assert rows[0].error is None
        assert rows[0].sent_at == later

    async def test_sent_row_is_never_overwritten(self, db, dispatcher, mailer):
        await dispatcher.send(db, "grad@example.com", campaign_type="rapport", interval_months=6, now=NOW)

        mailer.failure = DeliveryFailure.TRANSIENT
        with pytest.raises(EmailDeliveryError):
            await dispatcher.send(
                db, "grad@example.com", campaign_type="rapport", interval_months=6,
                now=NOW + timedelta(days=2),
            )

        rows = await _log(db)
        assert len(rows) == 1
        assert rows[0].status == "sent"
        assert rows[0].sent_at == NOW
