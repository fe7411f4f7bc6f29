"""
Shared route dependencies: caller authorization and engine collaborators.

Collaborators are dependencies so tests can swap them with app.dependency_overrides.
"""
import secrets

from fastapi import Header, HTTPException

from app.config import settings
from app.core.constants import MIN_CRON_TOKEN_LENGTH
from app.core.errors import MSG_UNAUTHORIZED, STATUS_UNAUTHORIZED
from app.services.email.directory import UserDirectory, get_user_directory
from app.services.email.mailer import Mailer, get_mailer


def _token_matches(provided: str, expected: str) -> bool:
    return bool(expected) and secrets.compare_digest(provided.encode(), expected.encode())


def is_cron_authorized(authorization: str | None) -> bool:
    """Bearer token must equal CRON_KEY or CRON_SECRET; tokens shorter than 16 chars never authorize."""
    valid = [t for t in (settings.cron_key, settings.cron_secret) if len(t) >= MIN_CRON_TOKEN_LENGTH]
    if not valid or not authorization or not authorization.startswith("Bearer "):
        return False
    provided = authorization[len("Bearer "):].strip()
    return any(_token_matches(provided, t) for t in valid)


def require_cron(authorization: str | None = Header(None)) -> None:
    if not is_cron_authorized(authorization):
        raise HTTPException(status_code=STATUS_UNAUTHORIZED, detail=MSG_UNAUTHORIZED)


def require_admin(x_admin_token: str | None = Header(None, alias="X-Admin-Token")) -> None:
    if not _token_matches((x_admin_token or "").strip(), settings.admin_api_token):
        raise HTTPException(status_code=STATUS_UNAUTHORIZED, detail=MSG_UNAUTHORIZED)


def get_directory() -> UserDirectory:
    return get_user_directory()


def get_mail_sender() -> Mailer:
    return get_mailer()
