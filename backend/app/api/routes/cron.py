"""
Cron endpoint for the daily email automation run.

Authorization: Bearer <CRON_KEY or CRON_SECRET>. Responds with counters and errorCount
(full error strings go to the log and the automation_runs record).
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_directory, get_mail_sender, require_cron
from app.core.errors import MSG_INTERNAL_ERROR, STATUS_INTERNAL_ERROR, RunInProgressError, domain_error_to_http
from app.db.session import get_db
from app.services.email.directory import UserDirectory
from app.services.email.mailer import Mailer
from app.services.email_automation_service import TRIGGER_CRON, run_all_automations

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/email-automations", dependencies=[Depends(require_cron)])
def cron_email_automations(
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
    mailer: Mailer = Depends(get_mail_sender),
) -> Any:
    try:
        result = run_all_automations(db, directory, mailer, trigger=TRIGGER_CRON)
    except RunInProgressError as e:
        raise domain_error_to_http(e)
    except Exception as e:
        logger.exception("[cron/email-automations] %s", e)
        return JSONResponse(status_code=STATUS_INTERNAL_ERROR, content={"error": MSG_INTERNAL_ERROR, "detail": str(e)})
    summary = result.summary()
    logger.info("[cron/email-automations] %s", summary)
    for err in result.errors:
        logger.error("[cron/email-automations] %s", err)
    return summary
