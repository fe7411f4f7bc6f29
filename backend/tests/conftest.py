"""Repository-wide pytest fixtures: in-memory database, fake collaborators, fixed clock."""

from __future__ import annotations

import os

# Settings are read at import time; pin a safe test environment before importing app code.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEND_INTERVAL_SECONDS", "0")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-test-token")
os.environ.setdefault("CRON_SECRET", "cron-secret-0123456789")
os.environ.setdefault("EMAIL_SCHEDULER_ENABLED", "false")

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.errors import MailSendError
from app.db.base import Base
from app.models.email_automation import EmailAutomation
from app.models.email_log import EmailLog
from app.models.email_template import EmailTemplate
from app.models.itinerary import Itinerary
from app.models.profile import Profile
from app.models.saved_item import SavedItem
from app.services.email.directory import AuthUser
from app.services.email.runner import SendOptions

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def hours_ago(hours: float, *, now: datetime = NOW) -> datetime:
    return now - timedelta(hours=hours)


class FakeDirectory:
    """In-memory user store; records every page request."""

    def __init__(self, users: list[AuthUser] | None = None, *, error: Exception | None = None):
        self.users: list[AuthUser] = list(users or [])
        self.error = error
        self.calls: list[tuple[int, int]] = []

    def list_users(self, page: int, per_page: int) -> list[AuthUser]:
        self.calls.append((page, per_page))
        if self.error is not None:
            raise self.error
        start = (page - 1) * per_page
        return self.users[start:start + per_page]


class FakeMailer:
    """Records sends; raises MailSendError for addresses in fail_for."""

    def __init__(self, fail_for: set[str] | None = None):
        self.fail_for = set(fail_for or ())
        self.sent: list[dict] = []
        self.attempts: list[str] = []

    def send(self, to: str, subject: str, html: str, from_email: str) -> str | None:
        self.attempts.append(to)
        if to in self.fail_for:
            raise MailSendError(f"mailbox unavailable for {to}")
        self.sent.append({"to": to, "subject": subject, "html": html, "from": from_email})
        return f"msg-{len(self.sent)}"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def options() -> SendOptions:
    """Fixed clock, no pacing, no time budget."""
    return SendOptions(send_interval=0, clock=lambda: NOW, lifecycle_cap=0)


@pytest.fixture
def add_user(db: Session, directory: FakeDirectory):
    """Create an auth user (+ profile, places, itineraries). Returns the user id."""

    def _add(
        user_id: str,
        *,
        email: str | None = "default",
        created_hours_ago: float = 24 * 30,
        confirmed: bool = True,
        opt_in: bool = True,
        places: int = 0,
        itineraries: int = 0,
        last_login_hours_ago: float | None = None,
        founding_followup_sent: bool = False,
        profile_verified_hours_ago: float | None = None,
    ) -> str:
        if email == "default":
            email = f"{user_id}@example.com"
        directory.users.append(
            AuthUser(
                id=user_id,
                email=email,
                created_at=hours_ago(created_hours_ago),
                last_sign_in_at=hours_ago(last_login_hours_ago) if last_login_hours_ago is not None else None,
                email_confirmed_at=hours_ago(created_hours_ago) if confirmed else None,
            )
        )
        db.add(
            Profile(
                id=user_id,
                marketing_opt_in=opt_in,
                founding_followup_sent=founding_followup_sent,
                email_verified_at=hours_ago(profile_verified_hours_ago) if profile_verified_hours_ago is not None else None,
            )
        )
        for i in range(places):
            db.add(SavedItem(user_id=user_id, title=f"place {i}"))
        for i in range(itineraries):
            db.add(Itinerary(user_id=user_id, name=f"trip {i}"))
        db.commit()
        return user_id

    return _add


@pytest.fixture
def add_template(db: Session):
    def _add(slug: str, *, subject: str | None = None, is_active: bool = True) -> EmailTemplate:
        row = EmailTemplate(
            slug=slug,
            name=slug.replace("-", " ").title(),
            subject=subject or f"Subject for {slug}",
            html_content=f"<p>{slug}</p>",
            is_active=is_active,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _add


@pytest.fixture
def add_automation(db: Session, add_template):
    """Create an automation; creates its template unless it already exists (or create_template=False)."""

    def _add(
        name: str,
        template_slug: str,
        *,
        trigger_type: str = "user_confirmed",
        conditions: dict | None = None,
        delay_hours: int = 0,
        is_active: bool = True,
        create_template: bool = True,
    ) -> EmailAutomation:
        if create_template and not db.query(EmailTemplate).filter(EmailTemplate.slug == template_slug).first():
            add_template(template_slug)
        row = EmailAutomation(
            name=name,
            template_slug=template_slug,
            trigger_type=trigger_type,
            conditions=conditions or {},
            delay_hours=delay_hours,
            is_active=is_active,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _add


@pytest.fixture
def add_log(db: Session):
    def _add(user_id: str, template_slug: str, *, sent_hours_ago: float, status: str = "sent") -> EmailLog:
        row = EmailLog(
            user_id=user_id,
            recipient_email=f"{user_id}@example.com",
            template_slug=template_slug,
            automation_id=None,
            sent_at=hours_ago(sent_hours_ago),
            status=status,
        )
        db.add(row)
        db.commit()
        return row

    return _add
