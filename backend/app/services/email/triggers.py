"""
Trigger classifier: coarse per-trigger filter applied before conditions.

Unknown trigger values match everyone (no coarse filter). Rule writes reject unknown values,
so this fallback only fires for rows written outside the admin API; it is logged when it does.
"""
import logging
from datetime import datetime

from app.services.email.clock import days_since
from app.services.email.types import TriggerType, UserFacts

logger = logging.getLogger(__name__)


def matches_trigger(user: UserFacts, trigger_type: str, now: datetime) -> bool:
    if trigger_type == TriggerType.USER_CONFIRMED.value:
        return user.email_confirmed_at is not None
    if trigger_type == TriggerType.USER_INACTIVE.value:
        login_days = days_since(user.last_sign_in_at, now)
        return login_days is not None and login_days > 0
    if trigger_type == TriggerType.PLACE_ADDED.value:
        return (user.places_count or 0) > 0
    if trigger_type == TriggerType.ITINERARY_CREATED.value:
        return (user.itineraries_count or 0) > 0
    if trigger_type == TriggerType.MANUAL.value:
        return True
    return True


def warn_if_unknown_trigger(trigger_type: str, automation_id: int | None = None) -> None:
    """Log once per automation evaluation when a stored trigger falls back to 'everyone'."""
    if trigger_type not in TriggerType.values():
        logger.warning(
            "Automation %s has unknown trigger_type %r; treating as no coarse filter (matches all users)",
            automation_id,
            trigger_type,
        )
