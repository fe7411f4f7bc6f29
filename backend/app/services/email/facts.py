"""
User fact aggregator: one UserFacts per auth account, rebuilt from scratch every run (read-only).

Auth users come from the paged user directory; places/itineraries are counted per owner from the
child tables; opt-in, legacy founding flag, and fallback verification come from profiles.
Confirmation prefers the auth provider's timestamp over profiles.email_verified_at.
"""
import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.constants import USER_PAGE_SIZE
from app.models.itinerary import Itinerary
from app.models.profile import Profile
from app.models.saved_item import SavedItem
from app.services.email.clock import as_utc, utcnow
from app.services.email.directory import AuthUser, UserDirectory
from app.services.email.types import UserFacts

logger = logging.getLogger(__name__)


def list_all_users(directory: UserDirectory, per_page: int = USER_PAGE_SIZE) -> list[AuthUser]:
    """Page through the directory until a page comes back shorter than per_page."""
    users: list[AuthUser] = []
    page = 1
    while True:
        batch = directory.list_users(page, per_page)
        users.extend(batch)
        if len(batch) < per_page:
            break
        page += 1
    return users


def count_rows_by_owner(db: Session, model) -> dict[str, int]:
    """{owner user_id: row count} for a child table with a user_id column."""
    rows = db.query(model.user_id, func.count(model.id)).group_by(model.user_id).all()
    return {user_id: int(n) for user_id, n in rows}


def fetch_user_facts(
    db: Session,
    directory: UserDirectory,
    *,
    per_page: int = USER_PAGE_SIZE,
    now: datetime | None = None,
) -> list[UserFacts]:
    """Build facts for every account. Raises UserDirectoryError if the user store fails."""
    now = now or utcnow()
    users = list_all_users(directory, per_page)
    place_counts = count_rows_by_owner(db, SavedItem)
    itinerary_counts = count_rows_by_owner(db, Itinerary)
    profiles = {p.id: p for p in db.query(Profile).all()}

    facts: list[UserFacts] = []
    for u in users:
        profile = profiles.get(u.id)
        confirmed_at = u.email_confirmed_at or (as_utc(profile.email_verified_at) if profile else None)
        facts.append(
            UserFacts(
                id=u.id,
                email=u.email,
                created_at=as_utc(u.created_at) or now,
                last_sign_in_at=as_utc(u.last_sign_in_at),
                email_confirmed_at=as_utc(confirmed_at),
                places_count=place_counts.get(u.id, 0),
                itineraries_count=itinerary_counts.get(u.id, 0),
                founding_followup_sent=bool(profile.founding_followup_sent) if profile else False,
                marketing_opt_in=bool(profile.marketing_opt_in) if profile else False,
            )
        )
    logger.info(
        "Built user facts: users=%s with_places=%s with_itineraries=%s",
        len(facts), len(place_counts), len(itinerary_counts),
    )
    return facts
