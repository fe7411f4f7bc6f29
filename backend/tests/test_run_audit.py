"""automation_runs audit records and the single-flight guard."""
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.errors import RunInProgressError
from app.models.automation_run import AutomationRun
from app.services.email.run_audit import (
    MSG_ABANDONED,
    close_run,
    get_last_run,
    open_run,
    resolve_status,
    run_audited,
)
from app.services.email.types import RunResult
from app.services.email_automation_service import TRIGGER_CRON, run_all_automations

from conftest import NOW


def _running(db, started_minutes_ago: int) -> AutomationRun:
    row = AutomationRun(
        trigger="cron",
        started_at=NOW - timedelta(minutes=started_minutes_ago),
        status="running",
        errors=[],
    )
    db.add(row)
    db.commit()
    return row


def test_open_and_close_success(db):
    run_id = open_run(db, "admin", now=NOW)
    close_run(db, run_id, RunResult(sent=3, skipped=1), now=NOW + timedelta(seconds=5))

    row = db.get(AutomationRun, run_id)
    assert row.trigger == "admin"
    assert row.status == "success"
    assert (row.sent, row.skipped, row.failed) == (3, 1, 0)
    assert row.errors == []
    assert row.finished_at is not None


@pytest.mark.parametrize(
    "result,status",
    [
        (RunResult(sent=2), "success"),
        (RunResult(sent=2, limit_reached=True, errors=["Stopped: max 200 emails per run reached"]), "success"),
        (RunResult(sent=2, failed=1, errors=["User x: boom"]), "failure"),
        (RunResult(aborted=True, errors=["Run aborted: auth down"]), "failure"),
    ],
)
def test_resolve_status(result, status):
    assert resolve_status(result, None).value == status


def test_crash_is_recorded_and_reraised(db):
    def explode() -> RunResult:
        raise RuntimeError("database went away")

    with pytest.raises(RuntimeError):
        run_audited(db, "cron", explode, clock=lambda: NOW)

    row = db.query(AutomationRun).one()
    assert row.status == "failure"
    assert row.errors == ["Run crashed: database went away"]


def test_close_without_handle_is_a_noop(db):
    close_run(db, None, RunResult(sent=1))
    assert db.query(AutomationRun).count() == 0


def test_fresh_running_row_blocks_a_second_run(db):
    _running(db, started_minutes_ago=5)
    with pytest.raises(RunInProgressError):
        open_run(db, "cron", now=NOW)


def test_stale_running_row_is_reclaimed(db):
    stale = _running(db, started_minutes_ago=20)

    run_id = open_run(db, "cron", now=NOW)

    db.refresh(stale)
    assert run_id != stale.id
    assert stale.status == "failure"
    assert stale.errors == [MSG_ABANDONED]


def test_database_allows_one_running_row(db):
    _running(db, started_minutes_ago=1)
    db.add(AutomationRun(trigger="admin", started_at=NOW, status="running", errors=[]))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_last_run(db):
    assert get_last_run(db) is None
    first = open_run(db, "cron", now=NOW - timedelta(days=1))
    close_run(db, first, RunResult(sent=1), now=NOW - timedelta(days=1))
    second = open_run(db, "admin", now=NOW)
    close_run(db, second, RunResult(failed=1, errors=["User x: boom"]), now=NOW)

    last = get_last_run(db)
    assert last["id"] == second
    assert last["trigger"] == "admin"
    assert last["status"] == "failure"
    assert last["errors"] == ["User x: boom"]
    assert last["started_at"] == NOW.isoformat()


def test_audited_run_records_counters(db, directory, mailer, options, add_user, add_automation):
    add_user("a")
    add_automation("Welcome", "welcome")

    result = run_all_automations(db, directory, mailer, trigger=TRIGGER_CRON, options=options)

    row = db.query(AutomationRun).one()
    assert result.sent == 1
    assert (row.trigger, row.status, row.sent) == ("cron", "success", 1)


def test_audited_run_refuses_to_overlap(db, directory, mailer, options, add_user, add_automation):
    add_user("a")
    add_automation("Welcome", "welcome")
    _running(db, started_minutes_ago=1)

    with pytest.raises(RunInProgressError):
        run_all_automations(db, directory, mailer, options=options)
    assert mailer.attempts == []
