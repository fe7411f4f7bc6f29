"""Runs daily (APScheduler cron): all active non-manual email automations, audited like the cron endpoint."""
import logging

from app.core.errors import RunInProgressError
from app.db.session import SessionLocal
from app.services.email.directory import get_user_directory
from app.services.email.mailer import get_mailer
from app.services.email_automation_service import TRIGGER_SCHEDULER, run_all_automations

logger = logging.getLogger(__name__)


def run_email_automations_job() -> None:
    db = SessionLocal()
    try:
        result = run_all_automations(db, get_user_directory(), get_mailer(), trigger=TRIGGER_SCHEDULER)
        logger.info("Email automations job: %s", result.summary())
        for err in result.errors:
            logger.warning("Email automations job: %s", err)
    except RunInProgressError as e:
        logger.info("Email automations job skipped: %s", e)
    except Exception as e:
        logger.exception("Email automations job failed: %s", e)
    finally:
        db.close()
