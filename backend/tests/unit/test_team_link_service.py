"""Tests for sign-in linking and pre-authorization."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from app.core.errors import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from app.models.team import TeamMember
from app.services.team_link_service import TeamLinkService, find_active_team_member


@pytest.fixture
def service(identity):
    return TeamLinkService(identity)


async def _stored(db, member_id):
    result = await db.execute(
        select(TeamMember.user_id, TeamMember.has_access).where(TeamMember.id == member_id)
    )
    return tuple(result.one())


@pytest.mark.unit
class TestFindActiveTeamMember:
    async def test_case_insensitive(self, db, make_team_member):
        member = await make_team_member("Staff@MarianTBI.org")

        found = await find_active_team_member(db, "  staff@mariantbi.ORG ")

        assert found.id == member.id

    async def test_null_is_active_counts_as_active(self, db, make_team_member):
        member = await make_team_member("legacy@mariantbi.org", is_active=None)

        found = await find_active_team_member(db, "legacy@mariantbi.org")

        assert found.id == member.id

    async def test_inactive_rows_are_excluded(self, db, make_team_member):
        await make_team_member("gone@mariantbi.org", is_active=False)

        assert await find_active_team_member(db, "gone@mariantbi.org") is None

    async def test_duplicates_resolve_to_oldest(self, db, make_team_member):
        now = datetime(2025, 6, 1)
        await make_team_member("dup@mariantbi.org", created_at=now)
        oldest = await make_team_member("DUP@mariantbi.org", created_at=now - timedelta(days=30))

        found = await find_active_team_member(db, "dup@mariantbi.org")

        assert found.id == oldest.id


@pytest.mark.unit
class TestLink:
    async def test_links_identity_to_team_row(self, db, service, identity, make_team_member, bearer):
        user = identity.add_user("staff@mariantbi.org")
        member = await make_team_member("Staff@mariantbi.org", role="Manager")

        result = await service.link(db, bearer(user.id))

        assert result.linked is True
        assert result.already_linked is False
        assert result.role == "Manager"
        assert result.team_member_id == member.id
        assert await _stored(db, member.id) == (user.id, False)

    async def test_accepts_authorization_header_form(self, db, service, identity, make_team_member, bearer):
        user = identity.add_user("staff@mariantbi.org")
        await make_team_member("staff@mariantbi.org")

        result = await service.link(db, f"Bearer {bearer(user.id)}")

        assert result.linked is True

    async def test_second_call_is_already_linked(self, db, service, identity, make_team_member, bearer):
        user = identity.add_user("staff@mariantbi.org")
        member = await make_team_member("staff@mariantbi.org")
        await service.link(db, bearer(user.id))

        again = await service.link(db, bearer(user.id))

        assert again.already_linked is True
        assert again.team_member_id == member.id

    async def test_does_not_touch_has_access(self, db, service, identity, make_team_member, bearer):
        user = identity.add_user("staff@mariantbi.org")
        member = await make_team_member("staff@mariantbi.org", has_access=True, user_id="stale-id")

        await service.link(db, bearer(user.id))

        assert await _stored(db, member.id) == (user.id, True)

    async def test_missing_credential(self, db, service):
        with pytest.raises(UnauthorizedError):
            await service.link(db, None)

    async def test_malformed_credential(self, db, service):
        with pytest.raises(UnauthorizedError):
            await service.link(db, "not.a.jwt")

    async def test_unknown_subject_is_rejected(self, db, service, make_team_member, bearer):
        member = await make_team_member("staff@mariantbi.org")

        # Decodes fine, but the provider has never heard of this subject
        with pytest.raises(UnauthorizedError):
            await service.link(db, bearer(str(uuid4()), "staff@mariantbi.org"))

        assert await _stored(db, member.id) == (None, False)

    async def test_no_team_row(self, db, service, identity, bearer, roles):
        user = identity.add_user("stranger@example.com")

        with pytest.raises(NotFoundError):
            await service.link(db, bearer(user.id))

    async def test_inactive_team_row_is_not_linked(self, db, service, identity, make_team_member, bearer):
        user = identity.add_user("gone@mariantbi.org")
        member = await make_team_member("gone@mariantbi.org", is_active=False)

        with pytest.raises(NotFoundError):
            await service.link(db, bearer(user.id))

        assert await _stored(db, member.id) == (None, False)

    async def test_identity_without_email(self, db, service, identity, bearer):
        user = identity.add_user("")

        with pytest.raises(ValidationError):
            await service.link(db, bearer(user.id))


@pytest.mark.unit
class TestPreauthCheck:
    async def test_allowed(self, db, service, make_team_member):
        member = await make_team_member("staff@mariantbi.org")

        assert await service.preauth_check(db, "STAFF@mariantbi.org") == member.id

    async def test_forbidden(self, db, service, roles):
        with pytest.raises(ForbiddenError) as exc_info:
            await service.preauth_check(db, "stranger@example.com")

        assert exc_info.value.details == {"allowed": False}

    async def test_missing_email(self, db, service):
        with pytest.raises(ValidationError):
            await service.preauth_check(db, "   ")
