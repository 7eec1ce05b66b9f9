from datetime import date, time

import pytest

from nightlife.models import TicketCategory
from nightlife.services.pricing import Available, DynamicPricing, Unavailable, display_price
from nightlife.services.schedule import EventOverride, VenueClock, VenueSchedule

from tests.conftest import FRIDAY_NIGHT_HOURS, local

FRIDAY_NIGHT = VenueSchedule.from_raw(["Friday"], FRIDAY_NIGHT_HOURS)
FRIDAY = date(2024, 5, 31)
LAUNCH = EventOverride(date=date(2024, 6, 8), open=time(21, 0), close=time(3, 0))


@pytest.fixture
def pricing():
    return DynamicPricing(clock=VenueClock(-5), event_grace_hours=3)


@pytest.mark.parametrize(
    "moment, price, reason",
    [
        (local(2024, 5, 31, 23, 0), 50000, "covers_open_hours_base"),
        (local(2024, 5, 31, 18, 0), 35000, "covers_preopen_3h_plus_30_off"),
        (local(2024, 5, 31, 19, 30), 45000, "covers_preopen_2_3h_10_off"),
        (local(2024, 5, 31, 21, 0), 50000, "covers_preopen_lt2h_base"),
    ],
)
def test_cover_price_follows_time_to_opening(pricing, moment, price, reason):
    quote = pricing.cover_price(50000, FRIDAY_NIGHT, FRIDAY, moment)
    assert quote == Available(price, reason, 50000)


def test_cover_price_on_closed_day_is_discounted(pricing):
    quote = pricing.cover_price(50000, FRIDAY_NIGHT, date(2024, 6, 4), local(2024, 6, 4, 12, 0))
    assert quote.price == 35000
    assert quote.reason == "covers_closed_next_open_30_off"


def test_non_positive_base_is_free(pricing):
    assert pricing.cover_price(0, FRIDAY_NIGHT, FRIDAY, local(2024, 5, 31, 18, 0)) == Available(0.0, None, 0.0)


@pytest.mark.parametrize(
    "moment, price, reason",
    [
        (local(2024, 6, 5, 21, 0), 35000, "event_48_plus"),
        (local(2024, 6, 7, 12, 0), 50000, "event_24_48"),
        (local(2024, 6, 8, 10, 0), 60000, "event_less_24"),
        (local(2024, 6, 8, 22, 30), 65000, "event_grace_period"),
    ],
)
def test_event_ticket_price_curve(pricing, moment, price, reason):
    quote = pricing.event_ticket_price(50000, LAUNCH, moment)
    assert isinstance(quote, Available)
    assert quote.price == price
    assert quote.reason == reason


def test_event_ticket_unavailable_after_grace_maps_to_disabled_display(pricing):
    quote = pricing.event_ticket_price(50000, LAUNCH, local(2024, 6, 9, 1, 0))

    assert quote == Unavailable("event_expired")
    assert display_price(quote) == {"price": 0, "purchasable": False, "reason": "event_expired"}


def test_free_event_ticket_expires_with_grace(pricing):
    assert pricing.event_ticket_price(0, LAUNCH, local(2024, 6, 8, 10, 0), is_free=True) == Available(0.0, "free_ticket_no_dp", 0.0)
    assert isinstance(pricing.event_ticket_price(0, LAUNCH, local(2024, 6, 9, 1, 0), is_free=True), Unavailable)


def test_event_ticket_without_dynamic_pricing(pricing):
    before = pricing.event_ticket_price(50000, LAUNCH, local(2024, 6, 5, 21, 0), dynamic_enabled=False)
    grace = pricing.event_ticket_price(50000, LAUNCH, local(2024, 6, 8, 22, 30), dynamic_enabled=False)
    after = pricing.event_ticket_price(50000, LAUNCH, local(2024, 6, 9, 1, 0), dynamic_enabled=False)

    assert before == Available(50000, "ticket_dp_disabled_base", 50000)
    assert grace.price == 65000
    assert after == Unavailable("event_expired")


@pytest.mark.parametrize(
    "moment, price, reason",
    [
        (local(2024, 5, 31, 23, 0), 20000, "menu_open_hours_base"),
        (local(2024, 5, 31, 18, 0), 14000, "menu_preopen_3h_plus_30_off"),
        (local(2024, 5, 31, 21, 0), 18000, "menu_preopen_lt3h_10_off"),
        (local(2024, 6, 4, 21, 0), 14000, "menu_closed_day_30_off"),
    ],
)
def test_menu_price_on_regular_days(pricing, moment, price, reason):
    quote = pricing.menu_price(20000, FRIDAY_NIGHT, None, moment)
    assert (quote.price, quote.reason) == (price, reason)


def test_menu_after_hours_counts_as_closed(pricing):
    schedule = VenueSchedule.from_raw(["Tuesday"], [{"day": "Tuesday", "open": "18:00", "close": "22:00"}])
    quote = pricing.menu_price(20000, schedule, None, local(2024, 6, 4, 23, 0))
    assert (quote.price, quote.reason) == (14000, "menu_closed_day_30_off")


def test_menu_variant_policies(pricing):
    moment = local(2024, 5, 31, 18, 0)
    parent = pricing.menu_price(20000, FRIDAY_NIGHT, None, moment, parent_has_variants=True)
    variant = pricing.menu_price(90000, FRIDAY_NIGHT, None, moment, is_variant=True, dynamic_enabled=False)

    assert parent == Available(20000, "menu_parent_has_variants_no_dp", 20000)
    assert variant == Available(90000, "menu_variant_dp_disabled", 90000)


@pytest.mark.parametrize(
    "moment, price, reason",
    [
        (local(2024, 6, 8, 22, 0), 20000, "event_menu_open_hours_base"),
        (local(2024, 6, 5, 12, 0), 14000, "event_menu_48_plus_30_off"),
        (local(2024, 6, 7, 12, 0), 18000, "event_menu_24_48_10_off"),
        (local(2024, 6, 8, 10, 0), 20000, "event_menu_lt24_base"),
        (local(2024, 6, 9, 4, 0), 20000, "event_menu_passed_base"),
    ],
)
def test_event_menu_price(pricing, moment, price, reason):
    quote = pricing.menu_event_price(20000, LAUNCH, moment)
    assert (quote.price, quote.reason) == (price, reason)
    assert quote.price <= 20000


def test_generic_price_dispatches_on_override(pricing):
    assert pricing.price(50000, FRIDAY_NIGHT, LAUNCH, local(2024, 6, 5, 21, 0)).reason == "event_48_plus"
    assert pricing.price(50000, FRIDAY_NIGHT, FRIDAY, local(2024, 5, 31, 23, 0)).reason == "covers_open_hours_base"


def test_quotes_are_pure(pricing):
    moment = local(2024, 6, 7, 12, 0)
    assert pricing.event_ticket_price(50000, LAUNCH, moment) == pricing.event_ticket_price(50000, LAUNCH, moment)


def test_price_for_ticket_uses_event_for_event_tickets(factory, pricing):
    club = factory.club()
    event = factory.event(club, date(2024, 6, 8), open_time="21:00", close_time="03:00")
    ticket = factory.ticket(club, category=TicketCategory.EVENT.value, event=event)
    schedule = VenueSchedule.from_club(club)

    quote = pricing.price_for_ticket(ticket, schedule, None, local(2024, 6, 9, 1, 0))
    assert quote == Unavailable("event_expired")


def test_price_for_ticket_general_and_free(factory, pricing):
    club = factory.club()
    schedule = VenueSchedule.from_club(club)
    general = factory.ticket(club)
    free = factory.ticket(club, price=0, category=TicketCategory.FREE.value, name="Guest list")

    assert pricing.price_for_ticket(general, schedule, FRIDAY, local(2024, 5, 31, 18, 0)).price == 35000
    assert pricing.price_for_ticket(free, schedule, FRIDAY, local(2024, 5, 31, 18, 0)) == Available(0.0, "free_ticket_no_dp", 0.0)


def test_display_price_for_available_quote():
    shown = display_price(Available(35000, "event_48_plus", 50000))
    assert shown["purchasable"] is True
    assert shown["price"] == 35000
    assert shown["dynamic_pricing_applied"] is True
