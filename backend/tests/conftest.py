"""Pytest configuration and shared fixtures."""

# IMPORTANT: Monkey-patch UUID support for SQLite BEFORE importing any models
from sqlalchemy import TypeDecorator, String, event
from sqlalchemy.engine import Engine
from sqlalchemy.dialects import postgresql as pg_dialect
import uuid as uuid_module

# Create SQLite-compatible UUID type
class SQLiteUUID(TypeDecorator):
    """Platform-independent UUID type for tests."""
    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'sqlite':
            return dialect.type_descriptor(String(36))
        return dialect.type_descriptor(pg_dialect.UUID(as_uuid=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid_module.UUID):
            return str(value) if dialect.name == 'sqlite' else value
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid_module.UUID):
            return value
        return uuid_module.UUID(value)

# Replace PostgreSQL UUID with our SQLite-compatible version
pg_dialect.UUID = SQLiteUUID

from datetime import datetime
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt as jose_jwt
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.dependencies import get_email, get_identity
from app.main import app
from app.models.team import Role, TeamMember
from app.services.email_service import DeliveryFailure, EmailDeliveryError, EmailService
from app.services.identity import IdentityAdminClient, IdentityUser

# Test database URL: use StaticPool so in-memory SQLite shares one connection
# (NullPool creates a new connection per call, losing all tables each time)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed clock for workflow tests
NOW = datetime(2025, 6, 1, 12, 0, 0)


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign keys for SQLite."""
    if hasattr(dbapi_conn, 'execute'):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# ---------------------------------------------------------------------------
# Provider fakes
# ---------------------------------------------------------------------------

class FakeIdentity(IdentityAdminClient):
    """In-memory identity provider admin API."""

    def __init__(self):
        self.users: dict[str, IdentityUser] = {}
        self.fail_link = False
        self.created: list[str] = []
        self.confirmed: list[str] = []
        self.links: list[tuple[str, str]] = []

    def add_user(self, email: str, confirmed: bool = True, user_id: Optional[str] = None) -> IdentityUser:
        user = IdentityUser(
            id=user_id or str(uuid4()),
            email=email,
            email_confirmed_at="2025-01-01T00:00:00Z" if confirmed else None,
        )
        self.users[user.id] = user
        return user

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def find_user_by_email(self, email):
        wanted = email.strip().lower()
        for user in self.users.values():
            if user.email.lower() == wanted:
                return user
        return None

    async def create_user(self, email, confirmed=True, metadata=None):
        user = self.add_user(email, confirmed=confirmed)
        user.user_metadata = dict(metadata or {})
        self.created.append(email)
        return user

    async def confirm_user(self, user_id):
        user = self.users[user_id]
        user.email_confirmed_at = "2025-01-01T00:00:00Z"
        self.confirmed.append(user_id)
        return user

    async def generate_sign_in_link(self, email, redirect_to):
        from app.core.errors import ProviderError

        if self.fail_link:
            raise ProviderError("Identity provider rejected generate_link", details={"provider_status": 500})
        self.links.append((email, redirect_to))
        return f"https://id.example.com/auth/v1/verify?type=magiclink&redirect_to={redirect_to}"


class FakeEmail(EmailService):
    """Records messages instead of sending them.

    Set ``failure`` to make every send raise, or ``fail_for`` to fail only
    the listed addresses with a transient error.
    """

    def __init__(self, configured: bool = True):
        super().__init__("noreply@mariantbi.org", "MARIAN TBI Connect", 1.0)
        self._configured = configured
        self.failure: Optional[DeliveryFailure] = None
        self.fail_for: set[str] = set()
        self.sent: list[dict] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def _deliver(self, to_email, subject, html_body, text_body):
        if self.failure is not None:
            raise EmailDeliveryError(self.failure, "Email provider rejected the message",
                                     {"provider_message": "simulated failure"})
        if to_email in self.fail_for:
            raise EmailDeliveryError(DeliveryFailure.TRANSIENT, "Mail server error")
        self.sent.append({"to": to_email, "subject": subject, "html": html_body, "text": text_body})
        return f"msg-{len(self.sent)}"


def make_bearer(sub: str, email: Optional[str] = None) -> str:
    """A well-formed JWT; the signature is never checked by the services."""
    claims = {"sub": sub, "aud": "authenticated"}
    if email:
        claims["email"] = email
    return jose_jwt.encode(claims, "not-the-real-secret", algorithm="HS256")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    # Import all models to ensure they're registered with Base.metadata
    from app.models import contact, event, team, verification  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def db(db_session: AsyncSession) -> AsyncSession:
    """Alias for db_session to match test function signatures."""
    return db_session


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def mailer() -> FakeEmail:
    return FakeEmail()


@pytest.fixture(scope="function")
def override_get_db(db_session: AsyncSession):
    """Override the get_db dependency."""

    async def _override_get_db():
        yield db_session

    return _override_get_db


@pytest_asyncio.fixture(scope="function")
async def client(override_get_db, identity, mailer) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and provider fakes.

    ASGITransport does not run the lifespan, so runtime configuration checks
    and the metrics server stay out of the tests.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity] = lambda: identity
    app.dependency_overrides[get_email] = lambda: mailer
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Team data
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def roles(db_session: AsyncSession) -> dict[str, Role]:
    """Seed the three portal roles."""
    seeded = {name: Role(name=name) for name in ("Admin", "Manager", "Member")}
    db_session.add_all(seeded.values())
    await db_session.commit()
    return seeded


@pytest.fixture
def make_team_member(db_session: AsyncSession, roles):
    """Factory for team rows."""

    async def _make(
        email: str,
        role: Optional[str] = "Member",
        first_name: str = "Ana",
        last_name: str = "Reyes",
        has_access: bool = False,
        user_id: Optional[str] = None,
        is_active: Optional[bool] = True,
        created_at: Optional[datetime] = None,
    ) -> TeamMember:
        member = TeamMember(
            id=uuid4(),
            first_name=first_name,
            last_name=last_name,
            email=email,
            role_id=roles[role].id if role else None,
            has_access=has_access,
            user_id=user_id,
            is_active=is_active,
            created_at=created_at or NOW,
        )
        db_session.add(member)
        await db_session.commit()
        await db_session.refresh(member)
        return member

    return _make


@pytest_asyncio.fixture
async def admin(make_team_member, identity):
    """An active Admin team member with a confirmed identity; returns (member, bearer)."""
    user = identity.add_user("admin@mariantbi.org")
    member = await make_team_member("admin@mariantbi.org", role="Admin", user_id=user.id, has_access=True)
    return member, make_bearer(user.id, user.email)


@pytest.fixture
def bearer():
    """Build a bearer credential: ``bearer(sub, email=None)``."""
    return make_bearer
