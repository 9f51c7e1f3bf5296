"""Single-use and RSVP token issuing and redemption.

Raw secrets leave this module exactly once, inside :class:`IssuedToken`, so
the caller can embed them in a link. Only the SHA-256 digest is stored, and
only the digest prefix is ever logged.

Verification tokens are strictly single-use: the ``used_at`` transition is a
single conditional UPDATE guarded by ``used_at IS NULL``, so two concurrent
redemptions cannot both succeed. RSVP tokens may be redeemed repeatedly until
they expire; each redemption overwrites the recorded answer.
"""

import enum
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import upsert_insert
from app.core.errors import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    ValidationError,
)
from app.core.logging_config import get_logger
from app.core.metrics import tokens_issued_total, tokens_redeemed_total
from app.models.event import EventInviteToken, RsvpStatus
from app.models.verification import EmailVerificationToken
from app.utils.datetime_utils import utc_now
from app.utils.logging_utils import redact_email, token_ref

logger = get_logger(__name__)


class TokenPurpose(str, enum.Enum):
    EMAIL_VERIFY = "email_verify"
    EVENT_RSVP = "event_rsvp"


@dataclass(frozen=True)
class IssuedToken:
    secret: str
    expires_at: datetime


@dataclass(frozen=True)
class RedeemedToken:
    """Subject a redeemed token was issued for. Never carries the secret."""

    purpose: TokenPurpose
    email: str
    event_id: Optional[UUID] = None
    alumni_id: Optional[UUID] = None
    status: Optional[RsvpStatus] = None


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a raw token string."""
    return hashlib.sha256(token.encode()).hexdigest()


def parse_rsvp_status(value: Union[str, RsvpStatus, None]) -> RsvpStatus:
    """Coerce an RSVP answer, raising ValidationError for anything unknown."""
    if isinstance(value, RsvpStatus):
        return value
    try:
        return RsvpStatus((value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            "Invalid status",
            details={"allowed": [s.value for s in RsvpStatus]},
        )


class TokenLedger:
    """Issues, persists and redeems hashed expiring tokens."""

    async def issue(
        self,
        db: AsyncSession,
        purpose: TokenPurpose,
        email: str,
        ttl: timedelta,
        *,
        event_id: Optional[UUID] = None,
        alumni_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> IssuedToken:
        """
        Generate a 256-bit URL-safe secret and persist its digest.

        For RSVP tokens an existing token for the same (event, email) pair is
        replaced and its answer reset to ``pending``, so only the newest
        invitation link works.

        Returns:
            IssuedToken carrying the raw secret for embedding in a link
        """
        now = now or utc_now()
        secret = secrets.token_urlsafe(32)
        token_hash = hash_token(secret)
        expires_at = now + ttl

        if purpose == TokenPurpose.EMAIL_VERIFY:
            db.add(
                EmailVerificationToken(
                    email=email,
                    token_hash=token_hash,
                    expires_at=expires_at,
                    created_at=now,
                )
            )
        elif purpose == TokenPurpose.EVENT_RSVP:
            if event_id is None:
                raise ValidationError("event_id is required for RSVP tokens")
            stmt = upsert_insert(db, EventInviteToken.__table__).values(
                event_id=event_id,
                email=email,
                alumni_id=alumni_id,
                token_hash=token_hash,
                expires_at=expires_at,
                status=RsvpStatus.PENDING.value,
                created_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["event_id", "email"],
                set_={
                    "token_hash": stmt.excluded.token_hash,
                    "expires_at": stmt.excluded.expires_at,
                    "alumni_id": stmt.excluded.alumni_id,
                    "status": RsvpStatus.PENDING.value,
                    "responded_at": None,
                    "created_at": stmt.excluded.created_at,
                },
            )
            await db.execute(stmt)
        else:
            raise ValidationError(f"Unknown token purpose: {purpose}")

        await db.commit()

        tokens_issued_total.labels(purpose=purpose.value).inc()
        logger.info(
            "token_issued",
            purpose=purpose.value,
            email=redact_email(email),
            token=token_ref(token_hash),
            expires_at=expires_at.isoformat(),
        )
        return IssuedToken(secret=secret, expires_at=expires_at)

    async def redeem(
        self,
        db: AsyncSession,
        purpose: TokenPurpose,
        secret: str,
        *,
        status: Union[str, RsvpStatus, None] = None,
        now: Optional[datetime] = None,
    ) -> RedeemedToken:
        """
        Redeem a presented secret.

        Args:
            purpose: which token table the secret belongs to
            secret: raw secret from the link
            status: the RSVP answer (RSVP tokens only)

        Raises:
            TokenNotFoundError: no token has this digest
            TokenAlreadyUsedError: verification token already redeemed
            TokenExpiredError: ``now`` is past ``expires_at``
        """
        if not secret:
            raise TokenNotFoundError()
        now = now or utc_now()
        token_hash = hash_token(secret)

        try:
            if purpose == TokenPurpose.EMAIL_VERIFY:
                redeemed = await self._redeem_verification(db, token_hash, now)
            elif purpose == TokenPurpose.EVENT_RSVP:
                redeemed = await self._redeem_rsvp(db, token_hash, parse_rsvp_status(status), now)
            else:
                raise ValidationError(f"Unknown token purpose: {purpose}")
        except TokenNotFoundError:
            self._record_failure(purpose, token_hash, "not_found")
            raise
        except TokenExpiredError:
            self._record_failure(purpose, token_hash, "expired")
            raise
        except TokenAlreadyUsedError:
            self._record_failure(purpose, token_hash, "already_used")
            raise

        tokens_redeemed_total.labels(purpose=purpose.value, outcome="ok").inc()
        logger.info(
            "token_redeemed",
            purpose=purpose.value,
            email=redact_email(redeemed.email),
            token=token_ref(token_hash),
            rsvp_status=redeemed.status.value if redeemed.status else None,
        )
        return redeemed

    async def _redeem_verification(
        self, db: AsyncSession, token_hash: str, now: datetime
    ) -> RedeemedToken:
        result = await db.execute(
            select(EmailVerificationToken).where(EmailVerificationToken.token_hash == token_hash)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise TokenNotFoundError()
        if record.used_at is not None:
            raise TokenAlreadyUsedError()
        if now > record.expires_at:
            raise TokenExpiredError()
        email = record.email

        # Compare-and-set: only one caller can move used_at off NULL
        result = await db.execute(
            update(EmailVerificationToken)
            .where(
                EmailVerificationToken.token_hash == token_hash,
                EmailVerificationToken.used_at.is_(None),
                EmailVerificationToken.expires_at >= now,
            )
            .values(used_at=now)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise TokenAlreadyUsedError()

        await db.commit()
        return RedeemedToken(purpose=TokenPurpose.EMAIL_VERIFY, email=email)

    async def _redeem_rsvp(
        self, db: AsyncSession, token_hash: str, status: RsvpStatus, now: datetime
    ) -> RedeemedToken:
        result = await db.execute(
            select(EventInviteToken).where(EventInviteToken.token_hash == token_hash)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise TokenNotFoundError()
        if now > record.expires_at:
            raise TokenExpiredError()
        redeemed = RedeemedToken(
            purpose=TokenPurpose.EVENT_RSVP,
            email=record.email,
            event_id=record.event_id,
            alumni_id=record.alumni_id,
            status=status,
        )

        # Last answer wins
        await db.execute(
            update(EventInviteToken)
            .where(EventInviteToken.id == record.id)
            .values(status=status.value, responded_at=now)
        )
        await db.commit()
        return redeemed

    def _record_failure(self, purpose: TokenPurpose, token_hash: str, outcome: str) -> None:
        tokens_redeemed_total.labels(purpose=purpose.value, outcome=outcome).inc()
        logger.info(
            "token_redemption_rejected",
            purpose=purpose.value,
            token=token_ref(token_hash),
            outcome=outcome,
        )

    async def purge_expired(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Delete expired verification tokens. Returns the number removed.

        Spent tokens stay until they expire so a replayed link still reports
        "already used" rather than "not found".
        """
        now = now or utc_now()
        result = await db.execute(
            delete(EmailVerificationToken).where(EmailVerificationToken.expires_at < now)
        )
        await db.commit()
        return result.rowcount


token_ledger = TokenLedger()
