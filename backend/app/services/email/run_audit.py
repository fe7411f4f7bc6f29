"""
Run audit recorder: automation_runs rows for the admin dashboard.

Two-phase contract:
  open_run()  -> run id, or None if the record could not be written (best effort; sending proceeds)
  close_run() -> sets finished_at, counters, status, errors; no-op when given None
open_run is also the single-flight guard: a fresh 'running' row blocks a second run
(RunInProgressError); a running row older than STALE_RUN_MINUTES is closed as abandoned first.
run_audited() wraps an executor call so the record is closed even when the executor raises.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.constants import STALE_RUN_MINUTES
from app.core.errors import RunInProgressError
from app.models.automation_run import AutomationRun
from app.services.email.clock import as_utc, utcnow
from app.services.email.types import RunResult, RunStatus

logger = logging.getLogger(__name__)

MSG_ABANDONED = "Run abandoned: process stopped before the run finished"


def _reclaim_stale_runs(db: Session, now: datetime) -> int:
    cutoff = now - timedelta(minutes=STALE_RUN_MINUTES)
    stale = (
        db.query(AutomationRun)
        .filter(AutomationRun.status == RunStatus.RUNNING.value, AutomationRun.started_at < cutoff)
        .all()
    )
    for row in stale:
        row.status = RunStatus.FAILURE.value
        row.finished_at = now
        row.errors = list(row.errors or []) + [MSG_ABANDONED]
        logger.warning("Reclaimed stale automation run %s (started %s)", row.id, row.started_at)
    if stale:
        db.commit()
    return len(stale)


def _running_run(db: Session) -> AutomationRun | None:
    return db.query(AutomationRun).filter(AutomationRun.status == RunStatus.RUNNING.value).first()


def open_run(db: Session, trigger: str, *, now: datetime | None = None) -> int | None:
    """
    Insert a running record. Raises RunInProgressError if another run is open;
    any other database failure is logged and returns None.
    """
    now = now or utcnow()
    try:
        _reclaim_stale_runs(db, now)
        current = _running_run(db)
        if current is not None:
            raise RunInProgressError(f"Automation run {current.id} started at {current.started_at} is still running")
        row = AutomationRun(
            trigger=trigger,
            started_at=now,
            status=RunStatus.RUNNING.value,
            sent=0,
            skipped=0,
            failed=0,
            errors=[],
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row.id
    except IntegrityError as e:
        # Lost the race against a concurrent open: the unique running index fired
        db.rollback()
        raise RunInProgressError("Another automation run is in progress") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Could not open automation run record (continuing without audit): %s", e)
        return None


def resolve_status(result: RunResult | None, error: BaseException | None) -> RunStatus:
    if error is not None or result is None:
        return RunStatus.FAILURE
    if result.failed > 0 or result.aborted:
        return RunStatus.FAILURE
    return RunStatus.SUCCESS


def close_run(
    db: Session,
    run_id: int | None,
    result: RunResult | None,
    *,
    error: BaseException | None = None,
    now: datetime | None = None,
) -> None:
    """Close the record opened by open_run. Never raises; no-op without a handle."""
    if run_id is None:
        return
    now = now or utcnow()
    try:
        db.rollback()
        row = db.get(AutomationRun, run_id)
        if row is None:
            logger.warning("Automation run %s vanished before close", run_id)
            return
        row.finished_at = now
        row.status = resolve_status(result, error).value
        if result is not None:
            row.sent = result.sent
            row.skipped = result.skipped
            row.failed = result.failed
            row.errors = list(result.errors)
        else:
            row.errors = [f"Run crashed: {error}" if error is not None else "Run crashed"]
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not close automation run record %s: %s", run_id, e)


def run_audited(
    db: Session,
    trigger: str,
    execute: Callable[[], RunResult],
    *,
    clock: Callable[[], datetime] = utcnow,
) -> RunResult:
    """open_run -> execute -> close_run (in finally). Re-raises executor exceptions after closing."""
    run_id = open_run(db, trigger, now=clock())
    result: RunResult | None = None
    error: BaseException | None = None
    try:
        result = execute()
        return result
    except BaseException as e:
        error = e
        raise
    finally:
        close_run(db, run_id, result, error=error, now=clock())


def get_last_run(db: Session) -> dict | None:
    """Most recent run for the dashboard, or None."""
    row = db.query(AutomationRun).order_by(AutomationRun.started_at.desc(), AutomationRun.id.desc()).first()
    if row is None:
        return None
    return {
        "id": row.id,
        "trigger": row.trigger,
        "started_at": as_utc(row.started_at).isoformat() if row.started_at else None,
        "finished_at": as_utc(row.finished_at).isoformat() if row.finished_at else None,
        "sent": row.sent or 0,
        "skipped": row.skipped or 0,
        "failed": row.failed or 0,
        "status": row.status,
        "errors": list(row.errors) if isinstance(row.errors, list) else [],
    }
