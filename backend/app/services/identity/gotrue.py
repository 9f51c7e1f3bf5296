"""GoTrue (Supabase Auth) admin API client."""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from app.core.errors import ProviderError
from app.services.identity.base import IdentityAdminClient, IdentityUser
from app.utils.logging_utils import redact_email

logger = logging.getLogger(__name__)

# Page size for the admin user listing used by find_user_by_email
_LIST_PAGE_SIZE = 200
_LIST_MAX_PAGES = 50


def _user_path(user_id: str) -> str:
    return f"/auth/v1/admin/users/{quote(user_id, safe='')}"


class GoTrueAdminClient(IdentityAdminClient):
    """Talks to ``{base_url}/auth/v1/admin/*`` with the service-role key.

    Every request is bounded by ``timeout``; timeouts and transport errors
    surface as ``ProviderError``.
    """

    def __init__(self, base_url: str, service_role_key: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._key = service_role_key
        self._timeout = timeout

    async def get_user(self, user_id: str) -> Optional[IdentityUser]:
        resp = await self._request("GET", _user_path(user_id))
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, "get_user")
        return self._to_user(resp.json())

    async def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        wanted = email.strip().lower()
        for page in range(1, _LIST_MAX_PAGES + 1):
            resp = await self._request(
                "GET",
                "/auth/v1/admin/users",
                params={"page": page, "per_page": _LIST_PAGE_SIZE},
            )
            self._raise_for_status(resp, "list_users")
            payload = resp.json()
            users = payload.get("users", []) if isinstance(payload, dict) else payload
            for raw in users:
                if (raw.get("email") or "").lower() == wanted:
                    return self._to_user(raw)
            if len(users) < _LIST_PAGE_SIZE:
                return None

        logger.warning("User listing exceeded %d pages looking for %s", _LIST_MAX_PAGES, redact_email(email))
        return None

    async def create_user(
        self, email: str, confirmed: bool = True, metadata: Optional[dict] = None
    ) -> IdentityUser:
        resp = await self._request(
            "POST",
            "/auth/v1/admin/users",
            json={
                "email": email,
                "email_confirm": confirmed,
                "user_metadata": metadata or {},
            },
        )
        self._raise_for_status(resp, "create_user")
        return self._to_user(resp.json())

    async def confirm_user(self, user_id: str) -> IdentityUser:
        resp = await self._request(
            "PUT", _user_path(user_id), json={"email_confirm": True}
        )
        self._raise_for_status(resp, "confirm_user")
        return self._to_user(resp.json())

    async def generate_sign_in_link(self, email: str, redirect_to: str) -> str:
        resp = await self._request(
            "POST",
            "/auth/v1/admin/generate_link",
            json={"type": "magiclink", "email": email, "redirect_to": redirect_to},
        )
        self._raise_for_status(resp, "generate_link")
        body = resp.json()
        link = body.get("action_link") or (body.get("properties") or {}).get("action_link")
        if not link:
            raise ProviderError("Identity provider returned no sign-in link")
        return link

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
        }
        try:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
                return await client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Identity provider request failed: %s %s (%s)", method, path.split("/")[-1], type(exc).__name__)
            raise ProviderError(
                "Identity provider unreachable", details={"operation": path}
            ) from exc

    @staticmethod
    def _raise_for_status(resp: httpx.Response, operation: str) -> None:
        if resp.is_success:
            return
        try:
            message = resp.json().get("msg") or resp.json().get("message") or ""
        except ValueError:
            message = ""
        logger.error("Identity provider %s failed: status=%s", operation, resp.status_code)
        raise ProviderError(
            f"Identity provider {operation} failed",
            details={"operation": operation, "status": resp.status_code, "message": message},
        )

    @staticmethod
    def _to_user(raw: dict) -> IdentityUser:
        # Some endpoints wrap the record in {"user": {...}}
        if "user" in raw and isinstance(raw["user"], dict):
            raw = raw["user"]
        return IdentityUser(
            id=str(raw["id"]),
            email=raw.get("email") or "",
            email_confirmed_at=raw.get("email_confirmed_at") or raw.get("confirmed_at"),
            user_metadata=raw.get("user_metadata") or {},
        )
