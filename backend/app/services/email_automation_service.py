"""
Audited entry points used by routes, the scheduler job, and the CLI script.

Each call opens an automation_runs record, runs the executor with the caller's time budget,
and closes the record in a finally block. RunInProgressError propagates (caller maps it to 409 / skip).
"""
import logging

from sqlalchemy.orm import Session

from app.core.constants import (
    ADMIN_RUN_TIME_BUDGET_SECONDS,
    CRON_RUN_TIME_BUDGET_SECONDS,
    MAX_ONE_OFF_PER_RUN,
    ONE_OFF_RUN_TIME_BUDGET_SECONDS,
)
from app.services.email.directory import UserDirectory
from app.services.email.mailer import Mailer
from app.services.email.run_audit import run_audited
from app.services.email.runner import (
    SendOptions,
    run_email_automations,
    run_one_off_send,
    run_single_automation,
)
from app.services.email.types import AutomationConditions, RunResult

logger = logging.getLogger(__name__)

TRIGGER_CRON = "cron"
TRIGGER_SCHEDULER = "scheduler"
TRIGGER_ADMIN = "admin"
TRIGGER_SINGLE = "single"
TRIGGER_ONE_OFF = "one_off"


def run_all_automations(
    db: Session,
    directory: UserDirectory,
    mailer: Mailer,
    *,
    trigger: str = TRIGGER_CRON,
    options: SendOptions | None = None,
) -> RunResult:
    """All active non-manual automations, audited."""
    budget = CRON_RUN_TIME_BUDGET_SECONDS if trigger in (TRIGGER_CRON, TRIGGER_SCHEDULER) else ADMIN_RUN_TIME_BUDGET_SECONDS
    options = options or SendOptions(time_budget_seconds=budget)
    return run_audited(
        db,
        trigger,
        lambda: run_email_automations(db, directory, mailer, options),
        clock=options.clock,
    )


def run_one_automation(
    db: Session,
    automation_id: int,
    directory: UserDirectory,
    mailer: Mailer,
    *,
    options: SendOptions | None = None,
) -> RunResult:
    """One automation regardless of trigger type, audited."""
    options = options or SendOptions(time_budget_seconds=ADMIN_RUN_TIME_BUDGET_SECONDS)
    return run_audited(
        db,
        TRIGGER_SINGLE,
        lambda: run_single_automation(db, automation_id, directory, mailer, options),
        clock=options.clock,
    )


def send_one_off(
    db: Session,
    template_slug: str,
    filters: AutomationConditions | None,
    directory: UserDirectory,
    mailer: Mailer,
    *,
    options: SendOptions | None = None,
) -> RunResult:
    """Template to an ad-hoc filtered audience, audited."""
    options = options or SendOptions(cap=MAX_ONE_OFF_PER_RUN, time_budget_seconds=ONE_OFF_RUN_TIME_BUDGET_SECONDS)
    return run_audited(
        db,
        TRIGGER_ONE_OFF,
        lambda: run_one_off_send(db, template_slug, filters, directory, mailer, options),
        clock=options.clock,
    )
