"""
Types shared by the email automation engine.

UserFacts is the flat per-user snapshot rules are evaluated against (rebuilt every run).
AutomationConditions is the typed rule predicate: every clause optional, clauses ANDed,
the comparison operator carried by the field type (Above = strict >, Bound = strict > and/or <).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator


class TriggerType(str, Enum):
    USER_CONFIRMED = "user_confirmed"
    USER_INACTIVE = "user_inactive"
    PLACE_ADDED = "place_added"
    ITINERARY_CREATED = "itinerary_created"
    MANUAL = "manual"

    @classmethod
    def values(cls) -> list[str]:
        return [t.value for t in cls]


class SendStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class UserFacts:
    """Derived facts for one user. Users without email are never eligible."""

    id: str
    email: str | None
    created_at: datetime
    last_sign_in_at: datetime | None = None
    email_confirmed_at: datetime | None = None
    places_count: int = 0
    itineraries_count: int = 0
    founding_followup_sent: bool = False
    marketing_opt_in: bool = False


class Above(BaseModel):
    """Strict lower bound: value > gt."""

    model_config = ConfigDict(extra="forbid")

    gt: int | float


class Bound(BaseModel):
    """Strict bounds: value > gt and/or value < lt (either may be omitted)."""

    model_config = ConfigDict(extra="forbid")

    gt: int | float | None = None
    lt: int | float | None = None


# Flat keys accepted from stored legacy rows and query strings: key -> (field, operator)
_FLAT_KEYS: dict[str, tuple[str, str]] = {
    "places_count_gt": ("places_count", "gt"),
    "places_count_lt": ("places_count", "lt"),
    "itineraries_count_gt": ("itineraries_count", "gt"),
    "last_login_days_gt": ("last_login_days", "gt"),
    "created_days_gt": ("created_days", "gt"),
    "created_days_lt": ("created_days", "lt"),
}


def _copy_clause(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True)
    if isinstance(value, dict):
        return {k: v for k, v in value.items() if v is not None}
    return value


class AutomationConditions(BaseModel):
    """
    Fine-grained rule predicate. Absent clause = passes.

    confirmed: must equal (email_confirmed_at is not None).
    places_count / created_days: strict bounds; itineraries_count / last_login_days: strict >.
    Day counts are whole days: floor((now - ts) / 24h).
    last_login_days fails for users who never signed in.
    founding_followup_sent: exact match on the legacy profile flag.
    """

    model_config = ConfigDict(extra="forbid")

    confirmed: bool | None = None
    places_count: Bound | None = None
    itineraries_count: Above | None = None
    last_login_days: Above | None = None
    created_days: Bound | None = None
    founding_followup_sent: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def fold_flat_keys(cls, data: Any) -> Any:
        """
        Accept places_count_gt=1 style keys alongside the structured form, in any key order.
        Flat and structured operators for the same field are merged; giving one operator
        both ways is rejected. The input is never mutated.
        """
        if not isinstance(data, dict):
            return data
        out: dict[str, Any] = {}
        flat: list[tuple[str, str, str, Any]] = []
        for key, value in data.items():
            if value is None:
                continue
            if key in _FLAT_KEYS:
                field_name, op = _FLAT_KEYS[key]
                flat.append((key, field_name, op, value))
            else:
                out[key] = _copy_clause(value)
        for key, field_name, op, value in flat:
            clause = out.setdefault(field_name, {})
            if not isinstance(clause, dict):
                raise ValueError(f"{key} conflicts with {field_name}")
            if clause.get(op) is not None:
                raise ValueError(f"{key} conflicts with {field_name}.{op}")
            clause[op] = value
        return out

    def to_storage(self) -> dict[str, Any]:
        """Structured JSON for email_automations.conditions (omits absent clauses)."""
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.to_storage()


def parse_conditions(raw: Any) -> AutomationConditions:
    """Stored/raw conditions (dict, None, or model) -> AutomationConditions. Raises pydantic.ValidationError."""
    if isinstance(raw, AutomationConditions):
        return raw
    return AutomationConditions.model_validate(raw or {})


def conditions_error_text(exc: Exception) -> str:
    """First validation message only (no pydantic URL or multi-line dump)."""
    if isinstance(exc, ValidationError):
        errors = exc.errors()
        if errors:
            return errors[0].get("msg") or str(exc)
    return str(exc) or type(exc).__name__


@dataclass
class RunResult:
    """Outcome of one executor run. Same shape for cron, admin, single-rule, and one-off runs."""

    sent: int = 0
    skipped: int = 0
    failed: int = 0
    limit_reached: bool = False
    errors: list[str] = field(default_factory=list)
    # Infrastructure failure stopped the run (not part of the response shape)
    aborted: bool = False

    @property
    def attempted(self) -> int:
        return self.sent + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "limitReached": self.limit_reached,
            "errors": list(self.errors),
        }

    def summary(self) -> dict[str, Any]:
        """Cron response: counters plus errorCount instead of the list."""
        return {
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "limitReached": self.limit_reached,
            "errorCount": len(self.errors),
        }
