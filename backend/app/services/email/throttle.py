"""
Throttle/dedup guard, derived from the append-only email_logs table.

1. Global throttle: anyone with ANY logged attempt (sent or failed) in the last THROTTLE_HOURS.
2. Template dedup: anyone with an attempt for this template in the same window.
Both are time-windowed: once the window passes, a user who still matches may get the template again.

ThrottleState is passed explicitly through a run: the global set is loaded once, template sets
per automation, and successful sends are added so later automations in the same run skip them.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.constants import THROTTLE_HOURS
from app.models.email_log import EmailLog
from app.services.email.types import SendStatus

logger = logging.getLogger(__name__)


def throttle_cutoff(now: datetime, hours: int = THROTTLE_HOURS) -> datetime:
    return now - timedelta(hours=hours)


def recently_emailed_user_ids(db: Session, since: datetime) -> set[str]:
    """Users with any send attempt logged at or after since."""
    rows = db.query(EmailLog.user_id).filter(EmailLog.sent_at >= since).distinct().all()
    return {r[0] for r in rows}


def recent_template_user_ids(db: Session, template_slug: str, since: datetime) -> set[str]:
    """Users with a send attempt for template_slug logged at or after since."""
    rows = (
        db.query(EmailLog.user_id)
        .filter(EmailLog.template_slug == template_slug, EmailLog.sent_at >= since)
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def lifecycle_capped_user_ids(db: Session, limit: int) -> set[str]:
    """Users with at least `limit` successful sends, all time."""
    rows = (
        db.query(EmailLog.user_id)
        .filter(EmailLog.status == SendStatus.SENT.value)
        .group_by(EmailLog.user_id)
        .having(func.count(EmailLog.id) >= limit)
        .all()
    )
    return {r[0] for r in rows}


@dataclass
class ThrottleState:
    """Skip sets for one run. Mutated only by record_send; never shared across runs."""

    since: datetime
    recently_emailed: set[str] = field(default_factory=set)
    lifecycle_capped: set[str] = field(default_factory=set)
    template_recipients: dict[str, set[str]] = field(default_factory=dict)

    def load_template(self, db: Session, template_slug: str) -> set[str]:
        """Refresh the dedup set for template_slug from the log, keeping this run's sends."""
        from_log = recent_template_user_ids(db, template_slug, self.since)
        current = self.template_recipients.setdefault(template_slug, set())
        current |= from_log
        return current

    def should_skip(self, user_id: str, template_slug: str | None) -> bool:
        # Global throttle first; the template set is only consulted for users who pass it
        if user_id in self.recently_emailed:
            return True
        if user_id in self.lifecycle_capped:
            return True
        if template_slug is None:
            return False
        return user_id in self.template_recipients.get(template_slug, set())

    def record_send(self, user_id: str, template_slug: str) -> None:
        self.recently_emailed.add(user_id)
        self.template_recipients.setdefault(template_slug, set()).add(user_id)


def load_throttle_state(
    db: Session,
    now: datetime,
    *,
    lifecycle_cap: int | None = None,
    hours: int = THROTTLE_HOURS,
) -> ThrottleState:
    """Global throttle set for this run (plus the optional lifetime cap set)."""
    since = throttle_cutoff(now, hours)
    state = ThrottleState(since=since, recently_emailed=recently_emailed_user_ids(db, since))
    if lifecycle_cap:
        state.lifecycle_capped = lifecycle_capped_user_ids(db, lifecycle_cap)
    logger.debug(
        "Throttle state: since=%s recently_emailed=%s lifecycle_capped=%s",
        since.isoformat(), len(state.recently_emailed), len(state.lifecycle_capped),
    )
    return state
