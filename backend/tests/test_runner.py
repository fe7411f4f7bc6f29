"""Run executor: selection, throttle, caps, failure isolation, and the one-off path."""
import logging

from app.core.constants import FOUNDING_FOLLOWUP_TEMPLATE_SLUG
from app.core.errors import UserDirectoryError
from app.models.email_log import EmailLog
from app.models.profile import Profile
from app.services.email.runner import (
    MSG_AUTOMATION_NOT_FOUND,
    SendOptions,
    preview_automations,
    run_email_automations,
    run_one_off_send,
    run_single_automation,
)
from app.services.email.types import parse_conditions

from conftest import NOW, FakeDirectory, FakeMailer


def _sent_to(mailer: FakeMailer) -> list[str]:
    return [m["to"] for m in mailer.sent]


def test_end_to_end_only_matching_opted_in_user_is_emailed(db, directory, mailer, options, add_user, add_automation):
    add_user("a", places=2)
    add_user("b", places=0)
    add_user("c", places=2, opt_in=False)
    add_automation("Welcome plus", "welcome-plus", conditions={"places_count": {"gt": 0}})

    result = run_email_automations(db, directory, mailer, options)

    assert result.to_dict() == {"sent": 1, "skipped": 0, "failed": 0, "limitReached": False, "errors": []}
    assert _sent_to(mailer) == ["a@example.com"]
    assert mailer.sent[0]["subject"] == "Subject for welcome-plus"
    log = db.query(EmailLog).one()
    assert (log.user_id, log.template_slug, log.status) == ("a", "welcome-plus", "sent")
    assert log.provider_message_id == "msg-1"


def test_cap_stops_the_whole_run(db, directory, mailer, options, add_user, add_automation):
    for i in range(125):
        add_user(f"p{i:03d}", places=1)
    for i in range(125):
        add_user(f"i{i:03d}", itineraries=1)
    add_automation("Places", "places-tips", trigger_type="place_added")
    add_automation("Trips", "trip-tips", trigger_type="itinerary_created")

    result = run_email_automations(db, directory, mailer, options)

    assert result.sent == 200
    assert result.skipped == 0
    assert result.failed == 0
    assert result.limit_reached is True
    assert result.errors == ["Stopped: max 200 emails per run reached"]
    assert len(mailer.attempts) == 200
    assert db.query(EmailLog).count() == 200


def test_failed_attempts_count_toward_the_cap(db, directory, options, add_user, add_automation):
    for i in range(5):
        add_user(f"u{i}")
    add_automation("Welcome", "welcome")
    mailer = FakeMailer(fail_for={"u0@example.com", "u1@example.com"})
    options.cap = 3

    result = run_email_automations(db, directory, mailer, options)

    assert (result.sent, result.failed, result.limit_reached) == (1, 2, True)
    assert mailer.attempts == ["u0@example.com", "u1@example.com", "u2@example.com"]


def test_one_failure_does_not_stop_other_recipients(db, directory, options, add_user, add_automation):
    for i in range(1, 6):
        add_user(f"u{i}")
    add_automation("Welcome", "welcome")
    mailer = FakeMailer(fail_for={"u2@example.com"})

    result = run_email_automations(db, directory, mailer, options)

    assert (result.sent, result.skipped, result.failed) == (4, 0, 1)
    assert _sent_to(mailer) == ["u1@example.com", "u3@example.com", "u4@example.com", "u5@example.com"]
    assert result.errors == ["User u2@example.com: mailbox unavailable for u2@example.com"]
    failed = db.query(EmailLog).filter(EmailLog.status == "failed").one()
    assert failed.user_id == "u2"
    assert failed.provider_message_id is None


def test_immediate_rerun_sends_nothing_new(db, directory, mailer, options, add_user, add_automation):
    add_user("a")
    add_user("b")
    add_automation("Welcome", "welcome")

    first = run_email_automations(db, directory, mailer, options)
    second = run_email_automations(db, directory, mailer, options)

    assert (first.sent, first.skipped) == (2, 0)
    assert (second.sent, second.skipped) == (0, 2)
    assert sorted(_sent_to(mailer)) == ["a@example.com", "b@example.com"]


def test_user_emailed_by_first_automation_is_skipped_by_second(db, directory, mailer, options, add_user, add_automation):
    add_user("d", places=1)
    add_automation("Confirmed", "welcome")
    add_automation("Places", "places-tips", trigger_type="place_added")

    result = run_email_automations(db, directory, mailer, options)

    assert (result.sent, result.skipped) == (1, 1)
    assert mailer.sent[0]["subject"] == "Subject for welcome"


def test_recent_template_send_is_skipped_but_old_one_is_not(db, directory, mailer, options, add_user, add_automation, add_log):
    add_user("recent")
    add_user("old")
    add_log("recent", "welcome", sent_hours_ago=47)
    add_log("old", "welcome", sent_hours_ago=24 * 7)
    add_automation("Welcome", "welcome")

    result = run_email_automations(db, directory, mailer, options)

    assert (result.sent, result.skipped) == (1, 1)
    assert _sent_to(mailer) == ["old@example.com"]


def test_missing_or_inactive_template_skips_only_that_automation(db, directory, mailer, options, add_user, add_template, add_automation):
    add_user("a")
    add_user("b", places=1)
    add_automation("Broken", "does-not-exist", create_template=False)
    add_template("paused", is_active=False)
    add_automation("Paused", "paused")
    add_automation("Places", "places-tips", trigger_type="place_added")

    result = run_email_automations(db, directory, mailer, options)

    assert result.errors == ["Template not found: does-not-exist", "Template inactive: paused"]
    assert _sent_to(mailer) == ["b@example.com"]
    assert result.aborted is False


def test_invalid_stored_conditions_skip_the_automation(db, directory, mailer, options, add_user, add_automation):
    add_user("a")
    bad = add_automation("Bad", "welcome", conditions={"shoe_size_gt": 9})
    add_automation("Good", "hello")

    result = run_email_automations(db, directory, mailer, options)

    assert result.sent == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith(f"Automation {bad.id} (Bad): invalid conditions")
    assert "\n" not in result.errors[0]
    assert "pydantic.dev" not in result.errors[0]
    assert "Extra inputs are not permitted" in result.errors[0]


def test_manual_and_inactive_automations_are_not_scheduled(db, directory, mailer, options, add_user, add_automation):
    add_user("a")
    add_automation("Manual", "announce", trigger_type="manual")
    add_automation("Off", "welcome", is_active=False)

    result = run_email_automations(db, directory, mailer, options)

    assert result.to_dict()["sent"] == 0
    assert directory.calls == []


def test_single_run_includes_manual_rules(db, directory, mailer, options, add_user, add_automation):
    add_user("a")
    manual = add_automation("Manual", "announce", trigger_type="manual")

    result = run_single_automation(db, manual.id, directory, mailer, options)

    assert result.sent == 1
    assert db.query(EmailLog).one().automation_id == manual.id


def test_single_run_rejects_missing_or_inactive(db, directory, mailer, options, add_automation):
    off = add_automation("Off", "welcome", is_active=False)
    assert run_single_automation(db, off.id, directory, mailer, options).errors == [MSG_AUTOMATION_NOT_FOUND]
    assert run_single_automation(db, 9999, directory, mailer, options).errors == [MSG_AUTOMATION_NOT_FOUND]
    assert mailer.attempts == []


def test_unknown_trigger_matches_everyone_with_warning(db, directory, mailer, options, add_user, add_automation, caplog):
    add_user("a", confirmed=False)
    add_automation("Legacy", "legacy", trigger_type="signup_anniversary")

    with caplog.at_level(logging.WARNING):
        result = run_email_automations(db, directory, mailer, options)

    assert result.sent == 1
    assert "signup_anniversary" in caplog.text


def test_user_store_failure_aborts_the_run(db, mailer, options, add_automation):
    add_automation("Welcome", "welcome")
    directory = FakeDirectory(error=UserDirectoryError("auth down"))

    result = run_email_automations(db, directory, mailer, options)

    assert result.aborted is True
    assert result.errors == ["Run aborted: auth down"]
    assert mailer.attempts == []


def test_founding_followup_send_sets_profile_flag(db, directory, mailer, options, add_user, add_automation):
    add_user("a")
    add_user("b")
    add_automation(
        "Founding follow-up",
        FOUNDING_FOLLOWUP_TEMPLATE_SLUG,
        conditions={"founding_followup_sent": False},
    )
    failing = FakeMailer(fail_for={"b@example.com"})

    run_email_automations(db, directory, failing, options)

    db.expire_all()
    assert db.get(Profile, "a").founding_followup_sent is True
    assert db.get(Profile, "b").founding_followup_sent is False


def test_lifecycle_cap_skips_users_at_the_limit(db, directory, mailer, add_user, add_automation, add_log):
    add_user("busy")
    add_user("fresh")
    add_log("busy", "old-1", sent_hours_ago=24 * 10)
    add_log("busy", "old-2", sent_hours_ago=24 * 20)
    add_automation("Welcome", "welcome")
    options = SendOptions(send_interval=0, clock=lambda: NOW, lifecycle_cap=2)

    result = run_email_automations(db, directory, mailer, options)

    assert (result.sent, result.skipped) == (1, 1)
    assert _sent_to(mailer) == ["fresh@example.com"]


def test_pacing_sleeps_after_each_attempt(db, directory, add_user, add_automation):
    add_user("a")
    add_user("b")
    add_automation("Welcome", "welcome")
    sleeps: list[float] = []
    options = SendOptions(send_interval=0.5, clock=lambda: NOW, sleep=sleeps.append, lifecycle_cap=0)

    run_email_automations(db, directory, FakeMailer(fail_for={"b@example.com"}), options)

    assert sleeps == [0.5, 0.5]


def test_time_budget_stops_cooperatively(db, directory, mailer, add_user, add_automation):
    for i in range(5):
        add_user(f"u{i}")
    add_automation("Welcome", "welcome")
    ticks = iter(range(0, 1000, 4))
    options = SendOptions(
        send_interval=0,
        clock=lambda: NOW,
        monotonic=lambda: next(ticks),
        time_budget_seconds=10,
        lifecycle_cap=0,
    )

    result = run_email_automations(db, directory, mailer, options)

    assert result.sent == 2
    assert result.limit_reached is False
    assert result.errors == ["Stopped: time limit of 10s reached"]


def test_one_off_send_uses_global_throttle_only(db, directory, mailer, options, add_user, add_log, add_template):
    add_user("a", places=1)
    add_user("b", places=1)
    add_user("c", places=0)
    add_user("d", places=1, opt_in=False)
    add_user("e", places=1)
    add_template("announce")
    add_log("b", "welcome", sent_hours_ago=5)
    add_log("e", "announce", sent_hours_ago=24 * 5)

    result = run_one_off_send(db, "announce", parse_conditions({"places_count_gt": 0}), directory, mailer, options)

    assert (result.sent, result.skipped, result.failed) == (2, 1, 0)
    assert sorted(_sent_to(mailer)) == ["a@example.com", "e@example.com"]
    new_logs = db.query(EmailLog).filter(EmailLog.template_slug == "announce", EmailLog.user_id == "a").all()
    assert [r.automation_id for r in new_logs] == [None]


def test_one_off_unknown_template(db, directory, mailer, options):
    result = run_one_off_send(db, "nope", None, directory, mailer, options)
    assert result.errors == ["Template not found: nope"]
    assert directory.calls == []


def test_preview_counts_without_sending(db, directory, add_user, add_automation, add_log):
    add_user("a", places=1)
    add_user("b", places=1)
    add_user("c")
    add_log("b", "welcome", sent_hours_ago=2)
    automation = add_automation("Places", "places-tips", trigger_type="place_added")

    [row] = preview_automations(db, directory, now=NOW)

    assert row == {
        "automation_id": automation.id,
        "name": "Places",
        "template_slug": "places-tips",
        "candidates": 2,
        "throttled": 1,
        "would_send": 1,
    }
    assert db.query(EmailLog).count() == 1


def test_preview_reports_automations_the_run_would_skip(db, directory, add_user, add_template, add_automation):
    add_user("a")
    bad = add_automation("Bad", "welcome", conditions={"bogus_key": 1})
    missing = add_automation("Missing", "gone", create_template=False)
    add_template("paused", is_active=False)
    paused = add_automation("Paused", "paused")
    good = add_automation("Good", "hello")

    rows = {row["automation_id"]: row for row in preview_automations(db, directory, now=NOW)}

    assert rows[bad.id]["error"].startswith(f"Automation {bad.id} (Bad): invalid conditions")
    assert "candidates" not in rows[bad.id]
    assert rows[missing.id]["error"] == "Template not found: gone"
    assert rows[paused.id]["error"] == "Template inactive: paused"
    assert rows[good.id]["would_send"] == 1
    assert "error" not in rows[good.id]


def test_preview_with_only_broken_automations_skips_the_user_store(db, directory, add_automation):
    add_automation("Bad", "welcome", conditions={"bogus_key": 1})

    [row] = preview_automations(db, directory, now=NOW)

    assert "error" in row
    assert directory.calls == []
