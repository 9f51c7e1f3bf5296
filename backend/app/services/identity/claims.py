"""Structural (unverified) decoding of bearer credentials.

Decoding here is NOT authentication. Signature and expiry are deliberately
not checked so that clock drift between us and the identity provider cannot
lock users out; the extracted subject must be confirmed with
``IdentityAdminClient.get_user`` before anything is trusted.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt as jose_jwt

from app.core.errors import UnauthorizedError


@dataclass(frozen=True)
class ClaimedSubject:
    subject: str
    email: Optional[str] = None


def extract_claimed_subject(credential: Optional[str]) -> ClaimedSubject:
    """
    Read ``sub`` (and ``email`` when present) from a JWT without verifying it.

    Accepts the raw token or an ``Authorization`` header value.

    Raises:
        UnauthorizedError: missing credential, malformed token, or a ``sub``
            that is absent or not a UUID
    """
    if not credential:
        raise UnauthorizedError("Missing bearer token")

    token = credential.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()

    try:
        claims = jose_jwt.get_unverified_claims(token)
    except JWTError:
        raise UnauthorizedError("Malformed bearer token")

    subject = claims.get("sub")
    if not subject or not isinstance(subject, str):
        raise UnauthorizedError("Bearer token has no subject")
    try:
        uuid.UUID(subject)
    except ValueError:
        # The subject is interpolated into identity-provider URLs
        raise UnauthorizedError("Bearer token subject is not a user id")

    return ClaimedSubject(subject=subject, email=claims.get("email"))
