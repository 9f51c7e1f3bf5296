"""Integration tests for event invitation and RSVP endpoints."""

import re
from datetime import datetime
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.models.contact import Alumni
from app.models.event import Event, EventParticipant


@pytest.fixture
async def demo_day(db):
    event = Event(id=uuid4(), title="Demo Day", starts_at=datetime(2025, 6, 20, 15, 0, 0))
    db.add(event)
    await db.commit()
    return event


def _rsvp_token(message):
    link = re.search(r"Yes: (\S+)", message["text"]).group(1)
    return parse_qs(urlparse(link).query)["token"][0]


@pytest.mark.integration
class TestSendInvites:
    async def test_all_sent(self, client: AsyncClient, demo_day, mailer):
        response = await client.post(
            f"/api/v1/events/{demo_day.id}/invites",
            json={"attendees": [{"email": "a@example.com", "firstName": "Ana"}, {"email": "b@example.com"}]},
        )

        assert response.status_code == 200
        assert response.json() == {
            "message": "processed",
            "sent": ["a@example.com", "b@example.com"],
            "failed": [],
        }
        assert {m["subject"] for m in mailer.sent} == {"Invitation: Demo Day"}

    async def test_partial_failure_is_207(self, client: AsyncClient, demo_day, mailer):
        mailer.fail_for = {"b@example.com"}

        response = await client.post(
            f"/api/v1/events/{demo_day.id}/invites",
            json={"attendees": [{"email": "a@example.com"}, {"email": "b@example.com"}]},
        )

        assert response.status_code == 207
        body = response.json()
        assert body["sent"] == ["a@example.com"]
        assert body["failed"] == [{"email": "b@example.com", "error": "Mail server error"}]

    async def test_unknown_event_is_404(self, client: AsyncClient):
        response = await client.post(
            f"/api/v1/events/{uuid4()}/invites",
            json={"attendees": [{"email": "a@example.com"}]},
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_empty_attendees_is_400(self, client: AsyncClient, demo_day):
        response = await client.post(f"/api/v1/events/{demo_day.id}/invites", json={"attendees": []})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.integration
class TestRsvp:
    async def test_link_then_change_of_mind(self, client: AsyncClient, db, demo_day, mailer):
        alumni = Alumni(id=uuid4(), first_name="Ana", last_name="Reyes", email="ana@example.com")
        db.add(alumni)
        await db.commit()
        await client.post(
            f"/api/v1/events/{demo_day.id}/invites",
            json={"attendees": [{"email": "ana@example.com", "alumniId": str(alumni.id)}]},
        )
        token = _rsvp_token(mailer.sent[0])

        going = await client.get("/api/v1/events/rsvp", params={"token": token, "status": "going"})
        declined = await client.post("/api/v1/events/rsvp", json={"token": token, "status": "not_going"})

        assert going.status_code == 200
        assert "text/html" in going.headers["content-type"]
        assert "re in!" in going.text
        assert declined.status_code == 200
        assert "Maybe next time" in declined.text
        status = (
            await db.execute(
                select(EventParticipant.rsvp_status).where(EventParticipant.alumni_id == alumni.id)
            )
        ).scalar_one()
        assert status == "not_going"

    async def test_unknown_token_renders_failure_page(self, client: AsyncClient):
        response = await client.get("/api/v1/events/rsvp", params={"token": "bogus", "status": "going"})

        assert response.status_code == 400
        assert "Link invalid or expired" in response.text

    async def test_missing_status_is_json_400(self, client: AsyncClient):
        response = await client.post("/api/v1/events/rsvp", params={"token": "bogus"})

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Missing token or status"


@pytest.mark.integration
class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
