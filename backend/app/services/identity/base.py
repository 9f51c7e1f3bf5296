"""Identity provider admin interface.

The access workflows never trust a bearer token on its own. They decode it
without verification to learn *which* user it claims to be, then confirm that
user through a privileged admin lookup. :class:`IdentityAdminClient` is that
privileged surface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class IdentityUser:
    """User record as returned by the identity provider's admin API."""

    id: str
    email: str
    email_confirmed_at: Optional[str] = None
    user_metadata: dict = field(default_factory=dict)

    @property
    def confirmed(self) -> bool:
        return bool(self.email_confirmed_at)


class IdentityAdminClient(ABC):
    """Privileged operations against the identity provider.

    Implementations raise ``ProviderError`` on transport failures and
    unexpected responses. "Not found" is a normal result (``None``), not an
    error.
    """

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[IdentityUser]:
        """Return the live user with this id, or None."""

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        """Case-insensitive lookup by email."""

    @abstractmethod
    async def create_user(
        self, email: str, confirmed: bool = True, metadata: Optional[dict] = None
    ) -> IdentityUser:
        """Create a user, optionally pre-confirmed."""

    @abstractmethod
    async def confirm_user(self, user_id: str) -> IdentityUser:
        """Mark an existing user's email as confirmed."""

    @abstractmethod
    async def generate_sign_in_link(self, email: str, redirect_to: str) -> str:
        """Return a one-time magic sign-in URL that lands on *redirect_to*."""
