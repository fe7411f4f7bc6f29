"""
User store collaborator: paged listing of auth users from the hosted auth provider.

The engine only needs list_users(page, per_page); SupabaseUserDirectory calls the GoTrue admin API
(GET /auth/v1/admin/users) with the service role key. Tests pass an in-memory directory instead.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import httpx

from app.config import settings
from app.core.errors import UserDirectoryError
from app.services.email.clock import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class AuthUser:
    """Auth-provider view of one account (only the fields user facts need)."""

    id: str
    email: str | None
    created_at: datetime | None
    last_sign_in_at: datetime | None = None
    email_confirmed_at: datetime | None = None


class UserDirectory(Protocol):
    """Interface for the user store. Pages are 1-based; a page shorter than per_page is the last."""

    def list_users(self, page: int, per_page: int) -> list[AuthUser]:
        ...


def auth_user_from_payload(raw: dict[str, Any]) -> AuthUser:
    """GoTrue user JSON -> AuthUser."""
    return AuthUser(
        id=str(raw.get("id") or ""),
        email=(raw.get("email") or "").strip() or None,
        created_at=parse_timestamp(raw.get("created_at")),
        last_sign_in_at=parse_timestamp(raw.get("last_sign_in_at")),
        email_confirmed_at=parse_timestamp(raw.get("email_confirmed_at") or raw.get("confirmed_at")),
    )


class SupabaseUserDirectory:
    """Supabase auth admin client. Raises UserDirectoryError on any transport or API failure."""

    def __init__(
        self,
        base_url: str | None = None,
        service_role_key: str | None = None,
        *,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.supabase_url).rstrip("/")
        self._key = service_role_key or settings.supabase_service_role_key
        self._timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._base_url and self._key)

    def _headers(self) -> dict[str, str]:
        return {"apikey": self._key, "Authorization": f"Bearer {self._key}"}

    def list_users(self, page: int, per_page: int) -> list[AuthUser]:
        if not self.is_configured():
            raise UserDirectoryError("User directory not configured. Add SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY to .env.")
        url = f"{self._base_url}/auth/v1/admin/users"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as c:
                r = c.get(url, params={"page": page, "per_page": per_page}, headers=self._headers())
        except httpx.HTTPError as e:
            raise UserDirectoryError(f"Failed to list users: {e}") from e
        if not r.is_success:
            raise UserDirectoryError(f"Failed to list users: {r.status_code} {(r.text or '')[:200]}")
        try:
            data = r.json() if r.content else {}
        except ValueError as e:
            raise UserDirectoryError(f"Failed to list users: invalid JSON ({e})") from e
        users = data.get("users") if isinstance(data, dict) else data
        return [auth_user_from_payload(u) for u in (users or []) if isinstance(u, dict)]


def get_user_directory() -> UserDirectory:
    """Default directory for routes and scheduler (FastAPI dependency; override in tests)."""
    return SupabaseUserDirectory()
