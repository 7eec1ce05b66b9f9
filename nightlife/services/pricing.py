from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional, Union

from nightlife.config import Config
from nightlife.services.schedule import (
    EventOverride,
    VenueClock,
    VenueSchedule,
    coerce_date,
    weekday_name,
)

logger = logging.getLogger(__name__)


class PricingRules:
    """Multipliers applied by the dynamic pricing calculator."""

    COVERS_HOURS_3_PLUS = 0.7
    COVERS_HOURS_2_3 = 0.9

    MENU_CLOSED_DAY = 0.7
    MENU_HOURS_3_PLUS = 0.7
    MENU_HOURS_LESS_3 = 0.9

    EVENT_MENU_HOURS_48_PLUS = 0.7
    EVENT_MENU_HOURS_24_48 = 0.9

    EVENT_TICKET_HOURS_48_PLUS = 0.7
    EVENT_TICKET_HOURS_24_48 = 1.0
    EVENT_TICKET_HOURS_LESS_24 = 1.2
    EVENT_TICKET_GRACE_PERIOD = 1.3


@dataclass(frozen=True)
class Available:
    price: float
    reason: Optional[str] = None
    base_price: float = 0.0

    purchasable = True

    @property
    def was_adjusted(self) -> bool:
        return self.price != self.base_price


@dataclass(frozen=True)
class Unavailable:
    reason: str

    purchasable = False


PriceQuote = Union[Available, Unavailable]


def display_price(quote: PriceQuote) -> Dict[str, Any]:
    """Shape a quote for listings: unavailable items show as zero and cannot be bought."""
    if isinstance(quote, Unavailable):
        return {"price": 0, "purchasable": False, "reason": quote.reason}
    return {
        "price": quote.price,
        "base_price": quote.base_price,
        "purchasable": True,
        "reason": quote.reason,
        "dynamic_pricing_applied": quote.was_adjusted,
    }


def _apply(base_price: float, multiplier: float) -> float:
    return round(base_price * multiplier, 2)


def _capped(base_price: float, multiplier: float) -> float:
    return max(0.0, min(_apply(base_price, multiplier), base_price))


class DynamicPricing:
    """
    Schedule-aware price adjustments.

    Every method is a pure function of its arguments: ``now`` is always passed
    in, so the same inputs give the same quote.
    """

    def __init__(self, clock: Optional[VenueClock] = None, event_grace_hours: int = Config.EVENT_GRACE_HOURS):
        self.clock = clock or VenueClock.from_config()
        self.event_grace_hours = event_grace_hours

    # -- generic contract -------------------------------------------------

    def price(
        self,
        base_price: float,
        schedule: VenueSchedule,
        event_override_or_date: Union[EventOverride, date, None],
        now: datetime,
    ) -> PriceQuote:
        if isinstance(event_override_or_date, EventOverride):
            return self.event_ticket_price(base_price, event_override_or_date, now)
        return self.cover_price(base_price, schedule, event_override_or_date, now)

    # -- covers (non-event tickets) ----------------------------------------

    def cover_price(
        self,
        base_price: float,
        schedule: VenueSchedule,
        target_date: Optional[date],
        now: datetime,
    ) -> PriceQuote:
        base = float(base_price or 0)
        if base <= 0:
            return Available(0.0, base_price=0.0)
        if schedule.always_open:
            return Available(base, "covers_open_hours_base", base)

        local_now = self.clock.localize(now)
        day = coerce_date(target_date) if target_date is not None else local_now.date()
        day_name = weekday_name(day)
        hours = schedule.hours_for(day_name)

        if not schedule.is_open_day(day_name) or hours is None:
            return Available(_capped(base, PricingRules.COVERS_HOURS_3_PLUS), "covers_closed_next_open_30_off", base)

        opens, closes = hours.window_on(self.clock, day)
        if opens <= local_now < closes:
            return Available(base, "covers_open_hours_base", base)

        minutes_until_open = round((opens - local_now).total_seconds() / 60)
        if minutes_until_open > 180:
            return Available(_capped(base, PricingRules.COVERS_HOURS_3_PLUS), "covers_preopen_3h_plus_30_off", base)
        if minutes_until_open > 120:
            return Available(_capped(base, PricingRules.COVERS_HOURS_2_3), "covers_preopen_2_3h_10_off", base)
        if minutes_until_open >= 0:
            return Available(base, "covers_preopen_lt2h_base", base)
        return Available(base, "covers_open_hours_base", base)

    # -- menu --------------------------------------------------------------

    def menu_price(
        self,
        base_price: float,
        schedule: VenueSchedule,
        target_date: Optional[date],
        now: datetime,
        *,
        is_variant: bool = False,
        parent_has_variants: bool = False,
        dynamic_enabled: bool = True,
    ) -> PriceQuote:
        base = float(base_price or 0)
        if base <= 0:
            return Available(0.0, base_price=0.0)
        policy = self._menu_policy(base, is_variant, parent_has_variants, dynamic_enabled)
        if policy is not None:
            return policy

        local_now = self.clock.localize(now)
        day = coerce_date(target_date) if target_date is not None else local_now.date()
        day_name = weekday_name(day)
        hours = schedule.hours_for(day_name)

        if schedule.always_open:
            return Available(base, "menu_open_hours_base", base)
        if not schedule.is_open_day(day_name) or hours is None:
            return Available(_apply(base, PricingRules.MENU_CLOSED_DAY), "menu_closed_day_30_off", base)

        opens, closes = hours.window_on(self.clock, day)
        if opens <= local_now < closes:
            return Available(base, "menu_open_hours_base", base)

        minutes_until_open = round((opens - local_now).total_seconds() / 60)
        if minutes_until_open > 180:
            return Available(_apply(base, PricingRules.MENU_HOURS_3_PLUS), "menu_preopen_3h_plus_30_off", base)
        if minutes_until_open > 0:
            return Available(_apply(base, PricingRules.MENU_HOURS_LESS_3), "menu_preopen_lt3h_10_off", base)
        # After hours count as a closed day
        return Available(_apply(base, PricingRules.MENU_CLOSED_DAY), "menu_closed_day_30_off", base)

    def menu_event_price(
        self,
        base_price: float,
        override: EventOverride,
        now: datetime,
        *,
        is_variant: bool = False,
        parent_has_variants: bool = False,
        dynamic_enabled: bool = True,
    ) -> PriceQuote:
        base = float(base_price or 0)
        if base <= 0:
            return Available(0.0, base_price=0.0)
        policy = self._menu_policy(base, is_variant, parent_has_variants, dynamic_enabled)
        if policy is not None:
            return policy

        local_now = self.clock.localize(now)
        interval = override.interval
        if interval is not None:
            opens, closes = interval.window_on(self.clock, override.date)
            if opens <= local_now < closes:
                return Available(base, "event_menu_open_hours_base", base)
            if local_now >= closes:
                return Available(base, "event_menu_passed_base", base)

        hours_until = self._hours_until(override.start(self.clock), local_now)
        if hours_until >= 48:
            return Available(_capped(base, PricingRules.EVENT_MENU_HOURS_48_PLUS), "event_menu_48_plus_30_off", base)
        if hours_until >= 24:
            return Available(_capped(base, PricingRules.EVENT_MENU_HOURS_24_48), "event_menu_24_48_10_off", base)
        if hours_until >= 0:
            return Available(base, "event_menu_lt24_base", base)
        return Available(base, "event_menu_passed_base", base)

    # -- event tickets -----------------------------------------------------

    def event_ticket_price(
        self,
        base_price: float,
        override: EventOverride,
        now: datetime,
        *,
        dynamic_enabled: bool = True,
        is_free: bool = False,
    ) -> PriceQuote:
        base = float(base_price or 0)
        hours_until = self._hours_until(override.start(self.clock), self.clock.localize(now))
        in_grace = hours_until >= -self.event_grace_hours

        if is_free or base <= 0:
            if hours_until < 0 and not in_grace:
                return Unavailable("event_expired")
            return Available(0.0, "free_ticket_no_dp", base)

        if not dynamic_enabled:
            if hours_until >= 0:
                return Available(base, "ticket_dp_disabled_base", base)
            if in_grace:
                return Available(_apply(base, PricingRules.EVENT_TICKET_GRACE_PERIOD), "event_grace_period", base)
            return Unavailable("event_expired")

        if hours_until >= 48:
            return Available(_apply(base, PricingRules.EVENT_TICKET_HOURS_48_PLUS), "event_48_plus", base)
        if hours_until >= 24:
            return Available(_apply(base, PricingRules.EVENT_TICKET_HOURS_24_48), "event_24_48", base)
        if hours_until >= 0:
            return Available(_apply(base, PricingRules.EVENT_TICKET_HOURS_LESS_24), "event_less_24", base)
        if in_grace:
            return Available(_apply(base, PricingRules.EVENT_TICKET_GRACE_PERIOD), "event_grace_period", base)

        logger.info("Event ticket blocked after grace period", extra={"event_date": override.date.isoformat()})
        return Unavailable("event_expired")

    # -- catalogue dispatchers ---------------------------------------------

    def price_for_ticket(self, ticket: Any, schedule: VenueSchedule, target_date: Optional[date], now: datetime) -> PriceQuote:
        base = float(ticket.price or 0)
        if ticket.is_event_ticket and ticket.event is not None:
            return self.event_ticket_price(
                base,
                EventOverride.from_event(ticket.event),
                now,
                dynamic_enabled=bool(ticket.dynamic_pricing_enabled),
                is_free=ticket.is_free,
            )
        if ticket.is_free:
            return Available(0.0, "free_ticket_no_dp", base)
        if not ticket.dynamic_pricing_enabled:
            return Available(base, "ticket_dp_disabled_base", base)
        return self.cover_price(base, schedule, target_date or ticket.available_date, now)

    def price_for_menu_item(
        self,
        item: Any,
        variant: Any,
        schedule: VenueSchedule,
        event_override: Optional[EventOverride],
        target_date: Optional[date],
        now: datetime,
    ) -> PriceQuote:
        base = float((variant.price if variant is not None else item.price) or 0)
        options = {
            "is_variant": variant is not None,
            "parent_has_variants": bool(item.has_variants),
            "dynamic_enabled": bool(variant.dynamic_pricing_enabled if variant is not None else item.dynamic_pricing_enabled),
        }
        if event_override is not None:
            return self.menu_event_price(base, event_override, now, **options)
        return self.menu_price(base, schedule, target_date, now, **options)

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _menu_policy(base: float, is_variant: bool, parent_has_variants: bool, dynamic_enabled: bool) -> Optional[PriceQuote]:
        if parent_has_variants and not is_variant:
            return Available(base, "menu_parent_has_variants_no_dp", base)
        if is_variant and not dynamic_enabled:
            return Available(base, "menu_variant_dp_disabled", base)
        if not dynamic_enabled:
            return Available(base, "menu_dp_disabled_base", base)
        return None

    @staticmethod
    def _hours_until(start: datetime, local_now: datetime) -> int:
        delta: timedelta = start - local_now
        return math.floor(delta.total_seconds() / 3600)
