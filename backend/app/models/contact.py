"""Contact models owned by the CRUD screens.

Only the columns read or written by verification and RSVP handling are
mapped here.
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.utils.datetime_utils import utc_now_lambda


class EmailAddress(Base):
    """A contact email address and whether it has been verified."""

    __tablename__ = "email_address"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    # False = unverified; the re-verification sweep reads these rows
    status = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime, default=utc_now_lambda, onupdate=utc_now_lambda, nullable=False)

    def __repr__(self):
        return f"<EmailAddress verified={self.status}>"


class Alumni(Base):
    """Program alumnus."""

    __tablename__ = "alumni"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, index=True)
