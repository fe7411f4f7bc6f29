"""
Admin email API: run automations, run one now, one-off sends, rules, templates (+ test send), log, status.

Every route requires X-Admin-Token. Run endpoints return {sent, skipped, failed, limitReached, errors}.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from app.api.deps import get_directory, get_mail_sender, require_admin
from app.config import settings
from app.core.constants import EMAIL_LOG_DEFAULT_LIMIT
from app.core.errors import (
    MSG_INTERNAL_ERROR,
    STATUS_INTERNAL_ERROR,
    AutomationValidationError,
    EmailAutomationError,
    domain_error_to_http,
)
from app.db.session import get_db
from app.services.email import admin as email_admin
from app.services.email.directory import UserDirectory
from app.services.email.mailer import Mailer
from app.services.email.run_audit import get_last_run
from app.services.email.types import AutomationConditions, conditions_error_text, parse_conditions
from app.services.email_automation_service import (
    TRIGGER_ADMIN,
    run_all_automations,
    run_one_automation,
    send_one_off,
)

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)

# Flat filter keys accepted on the recipients query string
RECIPIENT_FILTER_KEYS = (
    "confirmed",
    "places_count_gt",
    "places_count_lt",
    "itineraries_count_gt",
    "last_login_days_gt",
    "created_days_gt",
    "created_days_lt",
    "founding_followup_sent",
)


def _internal_error(label: str, exc: Exception) -> JSONResponse:
    logger.exception("[admin/emails/%s] %s", label, exc)
    return JSONResponse(status_code=STATUS_INTERNAL_ERROR, content={"error": MSG_INTERNAL_ERROR, "detail": str(exc)})


def _parse_filters(raw: dict[str, Any] | None) -> AutomationConditions | None:
    if not raw:
        return None
    try:
        return parse_conditions(raw)
    except ValidationError as e:
        raise domain_error_to_http(AutomationValidationError(f"Invalid filters: {conditions_error_text(e)}"))


# --- Runs ---


@router.post("/run-automations")
def run_automations(
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
    mailer: Mailer = Depends(get_mail_sender),
) -> Any:
    """Manual trigger: same logic as the cron endpoint, full error list in the response."""
    try:
        result = run_all_automations(db, directory, mailer, trigger=TRIGGER_ADMIN)
    except EmailAutomationError as e:
        raise domain_error_to_http(e)
    except Exception as e:
        return _internal_error("run-automations", e)
    return result.to_dict()


@router.post("/automations/{automation_id}/run")
def run_automation_now(
    automation_id: int,
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
    mailer: Mailer = Depends(get_mail_sender),
) -> Any:
    """Run one automation now, regardless of trigger type (manual rules included)."""
    try:
        result = run_one_automation(db, automation_id, directory, mailer)
    except EmailAutomationError as e:
        raise domain_error_to_http(e)
    except Exception as e:
        return _internal_error("automations/run", e)
    return result.to_dict()


class OneOffRequest(BaseModel):
    template_slug: str = Field(..., min_length=1, max_length=128)
    filters: dict[str, Any] | None = None


@router.post("/send-one-off")
def send_one_off_email(
    body: OneOffRequest,
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
    mailer: Mailer = Depends(get_mail_sender),
) -> Any:
    """Send a template to every opted-in user matching filters (global throttle applies)."""
    slug = body.template_slug.strip()
    if not slug:
        raise domain_error_to_http(AutomationValidationError("template_slug is required"))
    filters = _parse_filters(body.filters)
    try:
        result = send_one_off(db, slug, filters, directory, mailer)
    except EmailAutomationError as e:
        raise domain_error_to_http(e)
    except Exception as e:
        return _internal_error("send-one-off", e)
    return result.to_dict()


@router.get("/automation-status")
def automation_status(db: Session = Depends(get_db)) -> dict[str, Any]:
    """Last automation run for the dashboard (null when there has never been one)."""
    return {"lastRun": get_last_run(db)}


# --- Automations ---


class AutomationCreate(BaseModel):
    name: str = Field(..., max_length=256)
    template_slug: str = Field(..., max_length=128)
    trigger_type: str = Field(..., max_length=32)
    conditions: dict[str, Any] | None = None
    delay_hours: int = Field(0, ge=0)
    is_active: bool = False


class AutomationUpdate(BaseModel):
    name: str | None = Field(None, max_length=256)
    template_slug: str | None = Field(None, max_length=128)
    trigger_type: str | None = Field(None, max_length=32)
    conditions: dict[str, Any] | None = None
    delay_hours: int | None = Field(None, ge=0)
    is_active: bool | None = None


@router.get("/automations")
def list_automations(db: Session = Depends(get_db)) -> dict[str, Any]:
    return {"automations": email_admin.list_automations(db)}


@router.post("/automations")
def create_automation(body: AutomationCreate, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return email_admin.create_automation(db, body.model_dump())
    except EmailAutomationError as e:
        raise domain_error_to_http(e)


@router.patch("/automations/{automation_id}")
def update_automation(automation_id: int, body: AutomationUpdate, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return email_admin.update_automation(db, automation_id, body.model_dump(exclude_unset=True))
    except EmailAutomationError as e:
        raise domain_error_to_http(e)


# --- Templates ---


class TemplateCreate(BaseModel):
    slug: str = Field(..., max_length=128, pattern=r"^[a-z0-9][a-z0-9-]*$")
    name: str | None = Field(None, max_length=256)
    subject: str = Field(..., max_length=512)
    html_content: str
    is_active: bool = True


class TemplateUpdate(BaseModel):
    name: str | None = Field(None, max_length=256)
    subject: str | None = Field(None, max_length=512)
    html_content: str | None = None
    is_active: bool | None = None


@router.get("/templates")
def list_templates(db: Session = Depends(get_db)) -> dict[str, Any]:
    return {"templates": email_admin.list_templates(db)}


@router.get("/templates/{slug}")
def get_template(slug: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return email_admin.get_template(db, slug)
    except EmailAutomationError as e:
        raise domain_error_to_http(e)


@router.post("/templates")
def create_template(body: TemplateCreate, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return email_admin.create_template(db, body.model_dump())
    except EmailAutomationError as e:
        raise domain_error_to_http(e)


@router.patch("/templates/{slug}")
def update_template(slug: str, body: TemplateUpdate, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        return email_admin.update_template(db, slug, body.model_dump(exclude_unset=True))
    except EmailAutomationError as e:
        raise domain_error_to_http(e)


class TemplateTestSend(BaseModel):
    to: str = Field("", max_length=320)


@router.post("/templates/{slug}/send-test")
def send_test_email(
    slug: str,
    body: TemplateTestSend,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mail_sender),
) -> dict[str, Any]:
    """Send "[Test] subject" to body.to. Not written to the send log."""
    try:
        return email_admin.send_test_email(db, mailer, slug, body.to, settings.email_from)
    except EmailAutomationError as e:
        raise domain_error_to_http(e)


# --- Log + recipients ---


@router.get("/log")
def email_log(
    db: Session = Depends(get_db),
    template_slug: str | None = Query(None),
    limit: int = Query(EMAIL_LOG_DEFAULT_LIMIT),
    offset: int = Query(0),
) -> dict[str, Any]:
    """Send log, newest first. limit is clamped to 1..500."""
    slug = (template_slug or "").strip() or None
    return email_admin.list_email_log(db, template_slug=slug, limit=limit, offset=offset)


@router.get("/recipients")
def recipients(
    request: Request,
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
) -> Any:
    """Count and sample of opted-in users matching flat filters (?confirmed=1&places_count_gt=0...)."""
    raw = {
        k: v for k, v in request.query_params.items()
        if k in RECIPIENT_FILTER_KEYS and v != ""
    }
    filters = _parse_filters(raw)
    try:
        return email_admin.preview_recipients(db, directory, filters)
    except EmailAutomationError as e:
        raise domain_error_to_http(e)
    except Exception as e:
        return _internal_error("recipients", e)
