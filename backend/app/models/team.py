"""Team, role and portal-access models."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.utils.datetime_utils import utc_now_lambda


GRANTABLE_ROLES = ("Admin", "Manager", "Member")


class Role(Base):
    """Portal role. Seeded with Admin, Manager and Member."""

    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)

    def __repr__(self):
        return f"<Role {self.name}>"


class TeamMember(Base):
    """Incubator staff member who may be granted a portal login.

    ``user_id`` is the identity provider's id for this person and is written
    only by the sign-in linking path and the access grant workflow.
    ``has_access`` is written only by the access grant workflow.
    """

    __tablename__ = "teams"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True)
    has_access = Column(Boolean, default=False, nullable=False)
    user_id = Column(String(64), nullable=True, index=True)
    # NULL is treated the same as True (legacy rows predate the column)
    is_active = Column(Boolean, default=True, nullable=True)
    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)

    role = relationship("Role", lazy="joined")

    def __repr__(self):
        return f"<TeamMember {self.id}>"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def role_name(self):
        return self.role.name if self.role else None


class AccessInvite(Base):
    """One access-grant attempt for a team member.

    The claim ``token`` rides inside the magic link's redirect URL. The magic
    link itself is the security boundary, so this row is not single-use at
    the row level; ``claimed_at`` records the first successful claim.
    """

    __tablename__ = "access_invites"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    team_member_id = Column(
        UUID(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email = Column(String(255), nullable=False)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    claimed_by_user_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)

    def __repr__(self):
        return f"<AccessInvite team_member={self.team_member_id}>"
