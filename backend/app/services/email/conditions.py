"""
Condition evaluator: (user facts, rule conditions) -> bool. Pure; clauses ANDed, absent clause passes.
"""
from datetime import datetime

from app.services.email.clock import days_since
from app.services.email.types import Above, AutomationConditions, Bound, UserFacts


def _passes_bound(value: int, bound: Bound | Above | None) -> bool:
    if bound is None:
        return True
    if bound.gt is not None and not value > bound.gt:
        return False
    lt = getattr(bound, "lt", None)
    if lt is not None and not value < lt:
        return False
    return True


def evaluate_conditions(
    user: UserFacts,
    conditions: AutomationConditions | None,
    now: datetime,
) -> bool:
    """Whether the user matches every present clause of conditions (None = no filter)."""
    if conditions is None:
        return True

    if conditions.confirmed is not None:
        if conditions.confirmed != (user.email_confirmed_at is not None):
            return False

    if not _passes_bound(user.places_count or 0, conditions.places_count):
        return False

    if not _passes_bound(user.itineraries_count or 0, conditions.itineraries_count):
        return False

    if conditions.last_login_days is not None:
        login_days = days_since(user.last_sign_in_at, now)
        # Never signed in: no baseline for "inactive longer than N days"
        if login_days is None or not _passes_bound(login_days, conditions.last_login_days):
            return False

    if conditions.created_days is not None:
        age_days = days_since(user.created_at, now)
        if age_days is None or not _passes_bound(age_days, conditions.created_days):
            return False

    if conditions.founding_followup_sent is not None:
        if conditions.founding_followup_sent != user.founding_followup_sent:
            return False

    return True
