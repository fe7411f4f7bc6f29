"""
Admin management for the email engine: automation rules, templates, send log, recipients preview.

Validation happens here at write time: unknown trigger types, unknown condition keys, negative
delays, and missing templates are rejected (AutomationValidationError) so the runtime fallbacks
in the classifier are never exercised by rules written through the API.
"""
import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.constants import (
    EMAIL_LOG_DEFAULT_LIMIT,
    EMAIL_LOG_MAX_LIMIT,
    RECIPIENTS_SAMPLE_SIZE,
)
from app.core.errors import AutomationValidationError, NotFoundError
from app.models.email_automation import EmailAutomation
from app.models.email_log import EmailLog
from app.models.email_template import EmailTemplate
from app.services.email.clock import as_utc, utcnow
from app.services.email.directory import UserDirectory
from app.services.email.eligibility import select_one_off_recipients
from app.services.email.facts import fetch_user_facts
from app.services.email.mailer import Mailer
from app.services.email.types import (
    AutomationConditions,
    TriggerType,
    conditions_error_text,
    parse_conditions,
)

logger = logging.getLogger(__name__)

AUTOMATION_FIELDS = ("name", "template_slug", "trigger_type", "conditions", "delay_hours", "is_active")
TEMPLATE_FIELDS = ("name", "subject", "html_content", "is_active")


def _iso(value) -> str | None:
    return as_utc(value).isoformat() if value else None


# --- Automations ---


def automation_to_dict(a: EmailAutomation) -> dict[str, Any]:
    return {
        "id": a.id,
        "name": a.name,
        "template_slug": a.template_slug,
        "trigger_type": a.trigger_type,
        "conditions": a.conditions or {},
        "delay_hours": a.delay_hours,
        "is_active": a.is_active,
        "created_at": _iso(a.created_at),
        "updated_at": _iso(a.updated_at),
    }


def validate_trigger_type(value: str) -> str:
    value = (value or "").strip()
    if value not in TriggerType.values():
        raise AutomationValidationError(f"trigger_type must be one of: {', '.join(TriggerType.values())}")
    return value


def validate_conditions(raw: Any) -> dict[str, Any]:
    """Raw payload -> structured storage form. Unknown keys and wrong types are rejected."""
    try:
        return parse_conditions(raw).to_storage()
    except ValidationError as e:
        raise AutomationValidationError(f"Invalid conditions: {conditions_error_text(e)}") from e


def _require_template(db: Session, slug: str) -> None:
    if not db.query(EmailTemplate.id).filter(EmailTemplate.slug == slug).first():
        raise AutomationValidationError("Template not found")


def list_automations(db: Session) -> list[dict[str, Any]]:
    rows = db.query(EmailAutomation).order_by(EmailAutomation.name.asc()).all()
    return [automation_to_dict(a) for a in rows]


def create_automation(db: Session, data: dict[str, Any]) -> dict[str, Any]:
    name = (data.get("name") or "").strip()
    template_slug = (data.get("template_slug") or "").strip()
    trigger_type = (data.get("trigger_type") or "").strip()
    if not name or not template_slug or not trigger_type:
        raise AutomationValidationError("name, template_slug, and trigger_type are required")
    delay_hours = data.get("delay_hours") or 0
    if delay_hours < 0:
        raise AutomationValidationError("delay_hours must be >= 0")
    row = EmailAutomation(
        name=name,
        template_slug=template_slug,
        trigger_type=validate_trigger_type(trigger_type),
        conditions=validate_conditions(data.get("conditions")),
        delay_hours=delay_hours,
        is_active=data.get("is_active") is True,
    )
    _require_template(db, template_slug)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Created automation %s (%s) trigger=%s", row.id, row.name, row.trigger_type)
    return automation_to_dict(row)


def update_automation(db: Session, automation_id: int, data: dict[str, Any]) -> dict[str, Any]:
    updates = {k: v for k, v in data.items() if k in AUTOMATION_FIELDS and v is not None}
    if not updates:
        raise AutomationValidationError("No fields to update")
    row = db.get(EmailAutomation, automation_id)
    if row is None:
        raise NotFoundError("Automation not found")
    if "name" in updates:
        name = updates["name"].strip()
        if not name:
            raise AutomationValidationError("name cannot be empty")
        row.name = name
    if "template_slug" in updates:
        slug = updates["template_slug"].strip()
        _require_template(db, slug)
        row.template_slug = slug
    if "trigger_type" in updates:
        row.trigger_type = validate_trigger_type(updates["trigger_type"])
    if "conditions" in updates:
        row.conditions = validate_conditions(updates["conditions"])
    if "delay_hours" in updates:
        if updates["delay_hours"] < 0:
            raise AutomationValidationError("delay_hours must be >= 0")
        row.delay_hours = updates["delay_hours"]
    if "is_active" in updates:
        row.is_active = bool(updates["is_active"])
    db.commit()
    db.refresh(row)
    return automation_to_dict(row)


# --- Templates ---


def template_to_dict(t: EmailTemplate) -> dict[str, Any]:
    return {
        "id": t.id,
        "slug": t.slug,
        "name": t.name,
        "subject": t.subject,
        "html_content": t.html_content,
        "is_active": t.is_active,
        "updated_at": _iso(t.updated_at),
    }


def list_templates(db: Session) -> list[dict[str, Any]]:
    return [template_to_dict(t) for t in db.query(EmailTemplate).order_by(EmailTemplate.slug.asc()).all()]


def get_template(db: Session, slug: str) -> dict[str, Any]:
    row = db.query(EmailTemplate).filter(EmailTemplate.slug == slug).first()
    if row is None:
        raise NotFoundError("Template not found")
    return template_to_dict(row)


def create_template(db: Session, data: dict[str, Any]) -> dict[str, Any]:
    slug = (data.get("slug") or "").strip()
    subject = (data.get("subject") or "").strip()
    html = data.get("html_content") or ""
    if not slug or not subject or not html.strip():
        raise AutomationValidationError("slug, subject, and html_content are required")
    if db.query(EmailTemplate.id).filter(EmailTemplate.slug == slug).first():
        raise AutomationValidationError(f"Template already exists: {slug}")
    row = EmailTemplate(
        slug=slug,
        name=(data.get("name") or "").strip() or None,
        subject=subject,
        html_content=html,
        is_active=data.get("is_active") is not False,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return template_to_dict(row)


def update_template(db: Session, slug: str, data: dict[str, Any]) -> dict[str, Any]:
    updates = {k: v for k, v in data.items() if k in TEMPLATE_FIELDS and v is not None}
    if not updates:
        raise AutomationValidationError("No fields to update")
    row = db.query(EmailTemplate).filter(EmailTemplate.slug == slug).first()
    if row is None:
        raise NotFoundError("Template not found")
    if "subject" in updates:
        if not updates["subject"].strip():
            raise AutomationValidationError("subject cannot be empty")
        row.subject = updates["subject"].strip()
    if "html_content" in updates:
        row.html_content = updates["html_content"]
    if "name" in updates:
        row.name = updates["name"].strip() or None
    if "is_active" in updates:
        row.is_active = bool(updates["is_active"])
    db.commit()
    db.refresh(row)
    return template_to_dict(row)


def send_test_email(db: Session, mailer: Mailer, slug: str, to: str, from_email: str) -> dict[str, Any]:
    """Send "[Test] subject" to one address. Not logged: test sends never feed the throttle."""
    to = (to or "").strip()
    if not to or "@" not in to:
        raise AutomationValidationError("Valid email address required in body.to")
    row = db.query(EmailTemplate).filter(EmailTemplate.slug == slug).first()
    if row is None:
        raise NotFoundError("Template not found")
    mailer.send(to, f"[Test] {row.subject}", row.html_content, from_email)
    logger.info("Test email for template %s sent to %s", slug, to)
    return {"success": True, "message": f"Test email sent to {to}"}


# --- Send log ---


def list_email_log(
    db: Session,
    *,
    template_slug: str | None = None,
    limit: int = EMAIL_LOG_DEFAULT_LIMIT,
    offset: int = 0,
) -> dict[str, Any]:
    """Newest first. limit is clamped to 1..EMAIL_LOG_MAX_LIMIT."""
    limit = min(EMAIL_LOG_MAX_LIMIT, max(1, limit))
    offset = max(0, offset)
    q = db.query(EmailLog)
    if template_slug:
        q = q.filter(EmailLog.template_slug == template_slug)
    total = q.count()
    rows = q.order_by(EmailLog.sent_at.desc(), EmailLog.id.desc()).offset(offset).limit(limit).all()
    return {
        "logs": [
            {
                "id": r.id,
                "user_id": r.user_id,
                "recipient_email": r.recipient_email,
                "template_slug": r.template_slug,
                "automation_id": r.automation_id,
                "sent_at": _iso(r.sent_at),
                "status": r.status,
                "provider_message_id": r.provider_message_id,
            }
            for r in rows
        ],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


# --- Recipients preview ---


def preview_recipients(
    db: Session,
    directory: UserDirectory,
    filters: AutomationConditions | None,
) -> dict[str, Any]:
    """Count (and small sample) of opted-in users matching filters."""
    now = utcnow()
    users = select_one_off_recipients(fetch_user_facts(db, directory, now=now), filters, now)
    sample = [
        {
            "id": u.id,
            "email": u.email,
            "email_confirmed_at": _iso(u.email_confirmed_at),
            "places_count": u.places_count,
            "itineraries_count": u.itineraries_count,
        }
        for u in users[:RECIPIENTS_SAMPLE_SIZE]
    ]
    return {"count": len(users), "sample": sample}
