"""Trigger classifier."""
import logging
from datetime import timedelta

from app.services.email.triggers import matches_trigger, warn_if_unknown_trigger
from app.services.email.types import UserFacts

from conftest import NOW, hours_ago


def _user(**kw) -> UserFacts:
    base = dict(id="u1", email="u1@example.com", created_at=hours_ago(24 * 30), marketing_opt_in=True)
    base.update(kw)
    return UserFacts(**base)


def test_user_confirmed():
    assert matches_trigger(_user(email_confirmed_at=hours_ago(2)), "user_confirmed", NOW)
    assert not matches_trigger(_user(), "user_confirmed", NOW)


def test_user_inactive_needs_a_full_day_since_login():
    assert not matches_trigger(_user(last_sign_in_at=NOW - timedelta(hours=23, minutes=59)), "user_inactive", NOW)
    assert matches_trigger(_user(last_sign_in_at=NOW - timedelta(days=1)), "user_inactive", NOW)
    assert not matches_trigger(_user(last_sign_in_at=None), "user_inactive", NOW)


def test_place_added_and_itinerary_created():
    assert matches_trigger(_user(places_count=1), "place_added", NOW)
    assert not matches_trigger(_user(places_count=0), "place_added", NOW)
    assert matches_trigger(_user(itineraries_count=1), "itinerary_created", NOW)
    assert not matches_trigger(_user(itineraries_count=0), "itinerary_created", NOW)


def test_manual_matches_everyone():
    assert matches_trigger(_user(), "manual", NOW)


def test_unknown_trigger_matches_everyone_and_warns(caplog):
    assert matches_trigger(_user(), "someday_maybe", NOW)
    with caplog.at_level(logging.WARNING, logger="app.services.email.triggers"):
        warn_if_unknown_trigger("someday_maybe", 7)
    assert "unknown trigger_type" in caplog.text
    assert "someday_maybe" in caplog.text


def test_known_trigger_does_not_warn(caplog):
    with caplog.at_level(logging.WARNING, logger="app.services.email.triggers"):
        warn_if_unknown_trigger("place_added", 1)
    assert caplog.text == ""
