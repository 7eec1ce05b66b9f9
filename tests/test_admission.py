from datetime import date, time

import pytest

from nightlife.services.admission import AdmissionKind, AdmissionRules
from nightlife.services.schedule import EventOverride, OpenInterval, VenueClock, VenueSchedule

from tests.conftest import FRIDAY_NIGHT_HOURS, local

FRIDAY_NIGHT = VenueSchedule.from_raw(["Friday"], FRIDAY_NIGHT_HOURS)
ALWAYS_OPEN = VenueSchedule(always_open=True)


@pytest.fixture
def rules():
    return AdmissionRules(clock=VenueClock(-5), grace_hours=1, cutoff_hour=6)


def test_overnight_friday_open_late_evening(rules):
    decision = rules.is_admissible(date(2024, 5, 31), FRIDAY_NIGHT, None, local(2024, 5, 31, 23, 30))
    assert decision.admissible


def test_overnight_friday_wraps_into_saturday(rules):
    decision = rules.is_admissible(date(2024, 6, 1), FRIDAY_NIGHT, None, local(2024, 6, 1, 1, 30))
    assert decision.admissible


def test_overnight_friday_closed_after_close_is_outside_hours(rules):
    decision = rules.is_admissible(date(2024, 6, 1), FRIDAY_NIGHT, None, local(2024, 6, 1, 3, 0))
    assert not decision.admissible
    assert decision.kind is AdmissionKind.OUTSIDE_HOURS


def test_friday_before_opening_is_outside_hours(rules):
    decision = rules.is_admissible(date(2024, 5, 31), FRIDAY_NIGHT, None, local(2024, 5, 31, 20, 0))
    assert decision.kind is AdmissionKind.OUTSIDE_HOURS
    assert "currently closed" in decision.reason


def test_closed_weekday_reports_wrong_weekday(rules):
    decision = rules.is_admissible(date(2024, 6, 4), FRIDAY_NIGHT, None, local(2024, 6, 4, 23, 0))
    assert decision.kind is AdmissionKind.WRONG_WEEKDAY
    assert "Tuesday" in decision.reason


@pytest.mark.parametrize(
    "moment, admissible, kind",
    [
        (local(2024, 6, 1, 0, 5), True, None),
        (local(2024, 6, 2, 0, 45), True, None),
        (local(2024, 6, 2, 1, 0), True, None),
        (local(2024, 6, 2, 1, 15), False, AdmissionKind.EXPIRED),
        (local(2024, 5, 31, 23, 59), False, AdmissionKind.FUTURE_EVENT),
    ],
)
def test_purchase_date_bound(rules, moment, admissible, kind):
    decision = rules.is_admissible(date(2024, 6, 1), ALWAYS_OPEN, None, moment)
    assert decision.admissible is admissible
    assert decision.kind is kind


def test_expired_message_mentions_cutoff(rules):
    decision = rules.is_admissible(date(2024, 6, 1), ALWAYS_OPEN, None, local(2024, 6, 2, 1, 15))
    assert "expired at 01:00 the next day" in decision.reason


def test_utc_instants_are_converted_to_venue_time(rules):
    # 2024-06-02 05:45 UTC is 00:45 in the venue
    decision = rules.is_admissible(date(2024, 6, 1), ALWAYS_OPEN, None, local(2024, 6, 2, 0, 45).astimezone(VenueClock(0).tz))
    assert decision.admissible


def test_event_hours_replace_weekly_schedule(rules):
    override = EventOverride(date=date(2024, 6, 4), open=time(20, 0), close=time(23, 0))

    inside = rules.is_admissible(date(2024, 6, 4), FRIDAY_NIGHT, override, local(2024, 6, 4, 21, 0), is_event_ticket=True)
    outside = rules.is_admissible(date(2024, 6, 4), FRIDAY_NIGHT, override, local(2024, 6, 4, 23, 30), is_event_ticket=True)

    assert inside.admissible
    assert outside.kind is AdmissionKind.OUTSIDE_HOURS
    assert "20:00 - 23:00" in outside.reason


def test_event_ticket_without_override_skips_open_day_check(rules):
    decision = rules.is_admissible(date(2024, 6, 4), FRIDAY_NIGHT, None, local(2024, 6, 4, 23, 0), is_event_ticket=True)
    assert decision.admissible


def test_open_day_without_configured_hours_admits(rules):
    schedule = VenueSchedule.from_raw(["Tuesday"], [])
    assert rules.is_admissible(date(2024, 6, 4), schedule, None, local(2024, 6, 4, 15, 0)).admissible


def test_preview_bypasses_rules_and_flags_future(rules):
    future = rules.is_admissible(date(2024, 6, 8), FRIDAY_NIGHT, None, local(2024, 6, 4, 12, 0), preview=True)
    past = rules.is_admissible(date(2024, 6, 1), FRIDAY_NIGHT, None, local(2024, 6, 4, 12, 0), preview=True)

    assert future.admissible and future.is_future_event
    assert past.admissible and not past.is_future_event


def test_menu_noun_changes_messages(rules):
    decision = rules.check_schedule(FRIDAY_NIGHT, local(2024, 6, 4, 23, 0), noun="menu")
    assert decision.reason.startswith("This club is not open on Tuesday. Menu items")


def test_overnight_interval_contains_wraps():
    slot = OpenInterval(open=time(22, 0), close=time(2, 0))
    assert slot.overnight
    assert slot.contains(time(23, 0))
    assert slot.contains(time(1, 59))
    assert not slot.contains(time(3, 0))


def test_string_hours_mean_always_open():
    schedule = VenueSchedule.from_raw(["Monday"], "24/7")
    assert schedule.always_open


def test_malformed_slots_are_skipped():
    schedule = VenueSchedule.from_raw(["Friday"], [{"day": "Friday", "open": "late"}, FRIDAY_NIGHT_HOURS[0]])
    assert len(schedule.intervals) == 1


def test_long_overnight_spill_runs_until_its_own_close(rules):
    till_seven = VenueSchedule.from_raw(["Friday"], [{"day": "Friday", "open": "22:00", "close": "07:00"}])

    still_open = rules.check_schedule(till_seven, local(2024, 6, 1, 6, 30))
    closed = rules.check_schedule(till_seven, local(2024, 6, 1, 7, 30))

    assert still_open.admissible
    assert closed.kind is AdmissionKind.WRONG_WEEKDAY


def test_saturday_afternoon_after_friday_night_is_wrong_weekday(rules):
    decision = rules.check_schedule(FRIDAY_NIGHT, local(2024, 6, 1, 15, 0))
    assert decision.kind is AdmissionKind.WRONG_WEEKDAY
    assert "Saturday" in decision.reason
