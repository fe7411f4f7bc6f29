"""
Eligibility selector: candidates for one automation (or one-off audience). Pure, no side effects.

Automation candidate = has email AND opted in AND trigger matches AND account age >= delay_hours
AND conditions match. Cheap checks run first. Throttle/dedup is the caller's job.
"""
from datetime import datetime, timedelta

from app.services.email.clock import as_utc
from app.services.email.conditions import evaluate_conditions
from app.services.email.triggers import matches_trigger
from app.services.email.types import AutomationConditions, UserFacts


def is_reachable(user: UserFacts) -> bool:
    """Hard gate for every lifecycle email: an address and marketing opt-in."""
    return bool(user.email) and user.marketing_opt_in


def passes_delay(user: UserFacts, delay_hours: int, now: datetime) -> bool:
    """Account created at least delay_hours ago."""
    if not delay_hours or delay_hours <= 0:
        return True
    return as_utc(user.created_at) <= now - timedelta(hours=delay_hours)


def select_candidates(
    users: list[UserFacts],
    trigger_type: str,
    conditions: AutomationConditions | None,
    delay_hours: int,
    now: datetime,
) -> list[UserFacts]:
    """Users eligible for one automation rule, in input order."""
    return [
        u
        for u in users
        if is_reachable(u)
        and matches_trigger(u, trigger_type, now)
        and passes_delay(u, delay_hours, now)
        and evaluate_conditions(u, conditions, now)
    ]


def select_one_off_recipients(
    users: list[UserFacts],
    filters: AutomationConditions | None,
    now: datetime,
) -> list[UserFacts]:
    """Ad-hoc audience: same opt-in gate and conditions, no trigger and no delay."""
    return [u for u in users if is_reachable(u) and evaluate_conditions(u, filters, now)]
