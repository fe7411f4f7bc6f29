"""
Run executor: automations x candidates -> sends, append-only log rows, aggregate counters.

Used by the cron endpoint, the scheduler job, and the admin "run all" / "run now" / one-off actions.
All iteration is sequential (one worker per run). Per candidate, in order:
  1. cap reached (attempts >= cap) -> limit_reached, stop the whole run (rest abandoned, not counted)
  2. in a throttle/dedup set -> skipped
  3. no email -> skipped
  4. send; success -> log 'sent', add to throttle sets, sent += 1
           failure -> log 'failed', failed += 1, error naming the user; continue
Infrastructure failures (user store, rule store) abort the run but still return a RunResult.
"""
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.constants import (
    FOUNDING_FOLLOWUP_TEMPLATE_SLUG,
    MAX_ONE_OFF_PER_RUN,
    MAX_SEND_PER_RUN,
)
from app.models.email_automation import EmailAutomation
from app.models.email_log import EmailLog
from app.models.email_template import EmailTemplate
from app.models.profile import Profile
from app.services.email.clock import utcnow
from app.services.email.directory import UserDirectory
from app.services.email.eligibility import select_candidates, select_one_off_recipients
from app.services.email.facts import fetch_user_facts
from app.services.email.mailer import Mailer
from app.services.email.throttle import ThrottleState, load_throttle_state
from app.services.email.triggers import warn_if_unknown_trigger
from app.services.email.types import (
    AutomationConditions,
    RunResult,
    SendStatus,
    TriggerType,
    UserFacts,
    conditions_error_text,
    parse_conditions,
)

logger = logging.getLogger(__name__)

MSG_AUTOMATION_NOT_FOUND = "Automation not found or inactive"


@dataclass
class SendOptions:
    """Per-run knobs. Defaults come from settings/constants; tests pin clock, sleep, and pacing."""

    cap: int = MAX_SEND_PER_RUN
    from_email: str | None = None
    send_interval: float | None = None
    time_budget_seconds: float | None = None
    clock: Callable[[], datetime] = utcnow
    sleep: Callable[[float], None] = time.sleep
    monotonic: Callable[[], float] = time.monotonic
    lifecycle_cap: int | None = None

    def __post_init__(self) -> None:
        if self.from_email is None:
            self.from_email = settings.email_from
        if self.send_interval is None:
            self.send_interval = settings.send_interval_seconds
        if self.lifecycle_cap is None:
            self.lifecycle_cap = settings.max_lifecycle_emails_per_user
        self._deadline = (
            self.monotonic() + self.time_budget_seconds if self.time_budget_seconds else None
        )

    def out_of_time(self) -> bool:
        return self._deadline is not None and self.monotonic() >= self._deadline


@dataclass
class Recipients:
    """One processing step: a template, who to try, and which rule (None for one-off)."""

    template: EmailTemplate
    candidates: list[UserFacts]
    automation_id: int | None = None
    dedup_by_template: bool = True


def _error_text(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


def _log_attempt(
    db: Session,
    user: UserFacts,
    template_slug: str,
    automation_id: int | None,
    status: SendStatus,
    sent_at: datetime,
    provider_message_id: str | None = None,
) -> None:
    db.add(
        EmailLog(
            user_id=user.id,
            recipient_email=user.email,
            template_slug=template_slug,
            automation_id=automation_id,
            sent_at=sent_at,
            status=status.value,
            provider_message_id=provider_message_id,
        )
    )
    db.commit()


def _mark_founding_followup_sent(db: Session, user_id: str) -> None:
    profile = db.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id, founding_followup_sent=True)
        db.add(profile)
    else:
        profile.founding_followup_sent = True
    db.commit()


def _send_one(
    db: Session,
    mailer: Mailer,
    user: UserFacts,
    batch: Recipients,
    throttle: ThrottleState,
    result: RunResult,
    options: SendOptions,
) -> None:
    """Attempt one send and record it. Never raises for per-recipient problems."""
    slug = batch.template.slug
    try:
        provider_id = mailer.send(user.email, batch.template.subject, batch.template.html_content, options.from_email)
    except Exception as e:  # any mailer error is a failed attempt for this user only
        result.failed += 1
        result.errors.append(f"User {user.email}: {_error_text(e)}")
        logger.warning("Send failed user=%s template=%s: %s", user.id, slug, e)
        try:
            _log_attempt(db, user, slug, batch.automation_id, SendStatus.FAILED, options.clock())
        except SQLAlchemyError as log_err:
            db.rollback()
            logger.error("Failed to log failed send for user %s: %s", user.id, log_err)
        return

    result.sent += 1
    throttle.record_send(user.id, slug)
    try:
        _log_attempt(db, user, slug, batch.automation_id, SendStatus.SENT, options.clock(), provider_id)
    except SQLAlchemyError as log_err:
        db.rollback()
        result.errors.append(f"User {user.email}: sent but not logged ({_error_text(log_err)})")
        logger.error("Failed to log send for user %s: %s", user.id, log_err)
    if slug == FOUNDING_FOLLOWUP_TEMPLATE_SLUG:
        try:
            _mark_founding_followup_sent(db, user.id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Could not set founding_followup_sent for %s: %s", user.id, e)


def process_recipients(
    db: Session,
    mailer: Mailer,
    batch: Recipients,
    throttle: ThrottleState,
    result: RunResult,
    options: SendOptions,
) -> tuple[ThrottleState, bool]:
    """
    Send one template to its candidates. Returns the (mutated) throttle state and whether the run
    may continue (False once the cap or time budget stops it).
    """
    slug = batch.template.slug if batch.dedup_by_template else None
    for user in batch.candidates:
        if result.attempted >= options.cap:
            result.limit_reached = True
            result.errors.append(f"Stopped: max {options.cap} emails per run reached")
            return throttle, False
        if options.out_of_time():
            result.errors.append(f"Stopped: time limit of {options.time_budget_seconds:g}s reached")
            return throttle, False
        if throttle.should_skip(user.id, slug):
            result.skipped += 1
            continue
        if not user.email:
            result.skipped += 1
            continue
        _send_one(db, mailer, user, batch, throttle, result, options)
        if options.send_interval:
            options.sleep(options.send_interval)
    return throttle, True


def _resolve_template(templates: dict[str, EmailTemplate], slug: str, result: RunResult) -> EmailTemplate | None:
    template = templates.get(slug)
    if template is None:
        result.errors.append(f"Template not found: {slug}")
        return None
    if not template.is_active:
        result.errors.append(f"Template inactive: {slug}")
        return None
    return template


def _invalid_conditions(automation: EmailAutomation, exc: Exception) -> str:
    return f"Automation {automation.id} ({automation.name}): invalid conditions: {conditions_error_text(exc)}"


def _run_automations(
    db: Session,
    automations: list[EmailAutomation],
    directory: UserDirectory,
    mailer: Mailer,
    result: RunResult,
    options: SendOptions,
) -> None:
    now = options.clock()
    slugs = {a.template_slug for a in automations}
    templates = {
        t.slug: t for t in db.query(EmailTemplate).filter(EmailTemplate.slug.in_(slugs)).all()
    }
    users: list[UserFacts] | None = None
    throttle: ThrottleState | None = None

    for automation in automations:
        template = _resolve_template(templates, automation.template_slug, result)
        if template is None:
            continue
        try:
            conditions = parse_conditions(automation.conditions)
        except ValueError as e:
            result.errors.append(_invalid_conditions(automation, e))
            continue
        if users is None:
            users = fetch_user_facts(db, directory, now=now)
            throttle = load_throttle_state(db, now, lifecycle_cap=options.lifecycle_cap)

        warn_if_unknown_trigger(automation.trigger_type, automation.id)
        candidates = select_candidates(
            users, automation.trigger_type, conditions, automation.delay_hours or 0, now
        )
        throttle.load_template(db, template.slug)
        before = (result.sent, result.skipped, result.failed)
        throttle, keep_going = process_recipients(
            db,
            mailer,
            Recipients(template=template, candidates=candidates, automation_id=automation.id),
            throttle,
            result,
            options,
        )
        logger.info(
            "Automation %s (%s): candidates=%s sent=%s skipped=%s failed=%s",
            automation.id,
            automation.name,
            len(candidates),
            result.sent - before[0],
            result.skipped - before[1],
            result.failed - before[2],
        )
        if not keep_going:
            break


def _abort(db: Session, result: RunResult, label: str, exc: Exception) -> RunResult:
    db.rollback()
    result.aborted = True
    result.errors.append(f"{label}: {_error_text(exc)}")
    logger.exception("%s: %s", label, exc)
    return result


def run_email_automations(
    db: Session,
    directory: UserDirectory,
    mailer: Mailer,
    options: SendOptions | None = None,
) -> RunResult:
    """Scheduled path: every active, non-manual automation in id order."""
    options = options or SendOptions()
    result = RunResult()
    try:
        automations = (
            db.query(EmailAutomation)
            .filter(
                EmailAutomation.is_active.is_(True),
                EmailAutomation.trigger_type != TriggerType.MANUAL.value,
            )
            .order_by(EmailAutomation.id.asc())
            .all()
        )
        if not automations:
            logger.info("No active automations; nothing to run")
            return result
        _run_automations(db, automations, directory, mailer, result, options)
    except Exception as e:
        return _abort(db, result, "Run aborted", e)
    logger.info("Email automations run: %s", result.summary())
    return result


def run_single_automation(
    db: Session,
    automation_id: int,
    directory: UserDirectory,
    mailer: Mailer,
    options: SendOptions | None = None,
) -> RunResult:
    """Manual "run now": one automation regardless of trigger type (must exist and be active)."""
    options = options or SendOptions()
    result = RunResult()
    try:
        automation = db.get(EmailAutomation, automation_id)
        if automation is None or not automation.is_active:
            result.errors.append(MSG_AUTOMATION_NOT_FOUND)
            return result
        _run_automations(db, [automation], directory, mailer, result, options)
    except Exception as e:
        return _abort(db, result, "Run aborted", e)
    logger.info("Single automation %s run: %s", automation_id, result.summary())
    return result


def run_one_off_send(
    db: Session,
    template_slug: str,
    filters: AutomationConditions | None,
    directory: UserDirectory,
    mailer: Mailer,
    options: SendOptions | None = None,
) -> RunResult:
    """
    Send one template to an ad-hoc audience outside the rule system. Same opt-in gate,
    global throttle applies, no per-template dedup (no rule id); logged with automation_id NULL.
    """
    options = options or SendOptions(cap=MAX_ONE_OFF_PER_RUN)
    result = RunResult()
    try:
        template = db.query(EmailTemplate).filter(EmailTemplate.slug == template_slug).first()
        if template is None:
            result.errors.append(f"Template not found: {template_slug}")
            return result
        now = options.clock()
        users = fetch_user_facts(db, directory, now=now)
        recipients = select_one_off_recipients(users, filters, now)
        throttle = load_throttle_state(db, now, lifecycle_cap=options.lifecycle_cap)
        process_recipients(
            db,
            mailer,
            Recipients(template=template, candidates=recipients, dedup_by_template=False),
            throttle,
            result,
            options,
        )
    except Exception as e:
        return _abort(db, result, "One-off send aborted", e)
    logger.info("One-off send %s: recipients=%s %s", template_slug, len(recipients), result.summary())
    return result


def preview_automations(
    db: Session,
    directory: UserDirectory,
    *,
    automation_id: int | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """
    Dry run: candidates and throttled counts per automation, without sending or logging.
    Automations the real run would skip (missing/inactive template, invalid conditions)
    get a row with an "error" field instead of counts.
    """
    now = now or utcnow()
    q = db.query(EmailAutomation)
    if automation_id is not None:
        q = q.filter(EmailAutomation.id == automation_id)
    else:
        q = q.filter(
            EmailAutomation.is_active.is_(True),
            EmailAutomation.trigger_type != TriggerType.MANUAL.value,
        )
    automations = q.order_by(EmailAutomation.id.asc()).all()
    if not automations:
        return []
    slugs = {a.template_slug for a in automations}
    templates = {
        t.slug: t for t in db.query(EmailTemplate).filter(EmailTemplate.slug.in_(slugs)).all()
    }
    users: list[UserFacts] | None = None
    throttle: ThrottleState | None = None
    out = []
    for a in automations:
        row = {"automation_id": a.id, "name": a.name, "template_slug": a.template_slug}
        problems = RunResult()
        if _resolve_template(templates, a.template_slug, problems) is None:
            out.append({**row, "error": problems.errors[0]})
            continue
        try:
            conditions = parse_conditions(a.conditions)
        except ValueError as e:
            out.append({**row, "error": _invalid_conditions(a, e)})
            continue
        if users is None:
            users = fetch_user_facts(db, directory, now=now)
            throttle = load_throttle_state(db, now, lifecycle_cap=settings.max_lifecycle_emails_per_user)
        candidates = select_candidates(users, a.trigger_type, conditions, a.delay_hours or 0, now)
        throttle.load_template(db, a.template_slug)
        blocked = sum(1 for u in candidates if throttle.should_skip(u.id, a.template_slug))
        out.append({
            **row,
            "candidates": len(candidates),
            "throttled": blocked,
            "would_send": len(candidates) - blocked,
        })
    return out
