from app.services.email.run_audit import close_run, get_last_run, open_run, run_audited
from app.services.email.runner import (
    SendOptions,
    preview_automations,
    run_email_automations,
    run_one_off_send,
    run_single_automation,
)
from app.services.email.types import AutomationConditions, RunResult, TriggerType, UserFacts

__all__ = [
    "AutomationConditions",
    "RunResult",
    "SendOptions",
    "TriggerType",
    "UserFacts",
    "close_run",
    "get_last_run",
    "open_run",
    "preview_automations",
    "run_audited",
    "run_email_automations",
    "run_one_off_send",
    "run_single_automation",
]
