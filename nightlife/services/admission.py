from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

from nightlife.config import Config
from nightlife.services.schedule import (
    WEEKDAYS,
    EventOverride,
    VenueClock,
    VenueSchedule,
    coerce_date,
)

logger = logging.getLogger(__name__)


class AdmissionKind(str, Enum):
    WRONG_WEEKDAY = "WRONG_WEEKDAY"
    OUTSIDE_HOURS = "OUTSIDE_HOURS"
    FUTURE_EVENT = "FUTURE_EVENT"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class AdmissionDecision:
    admissible: bool
    kind: Optional[AdmissionKind] = None
    reason: Optional[str] = None
    is_future_event: bool = False

    @classmethod
    def admit(cls, is_future_event: bool = False) -> "AdmissionDecision":
        return cls(admissible=True, is_future_event=is_future_event)

    @classmethod
    def reject(cls, kind: AdmissionKind, reason: str) -> "AdmissionDecision":
        return cls(admissible=False, kind=kind, reason=reason)


class AdmissionRules:
    """
    Decides whether a purchase can be redeemed at a given instant.

    Order of checks: purchase date bound (midnight through the grace hour of the
    next day), then the event override hours when present, then the weekly
    schedule. Preview skips everything and only reports whether the date is ahead.
    """

    def __init__(
        self,
        clock: Optional[VenueClock] = None,
        grace_hours: int = Config.REDEMPTION_GRACE_HOURS,
        cutoff_hour: int = Config.BUSINESS_DAY_CUTOFF_HOUR,
    ) -> None:
        self.clock = clock or VenueClock.from_config()
        self.grace = timedelta(hours=grace_hours)
        self.cutoff_hour = cutoff_hour

    def date_bound(self, purchase_date: date) -> Tuple[datetime, datetime]:
        start = self.clock.at(purchase_date)
        end = self.clock.at(purchase_date + timedelta(days=1)) + self.grace
        return start, end

    def is_future(self, purchase_date: date, now: datetime) -> bool:
        start, _ = self.date_bound(coerce_date(purchase_date))
        return self.clock.localize(now) < start

    def is_admissible(
        self,
        purchase_date: Optional[date],
        schedule: VenueSchedule,
        event_override: Optional[EventOverride],
        now: datetime,
        *,
        is_event_ticket: bool = False,
        preview: bool = False,
        noun: str = "ticket",
    ) -> AdmissionDecision:
        local_now = self.clock.localize(now)
        purchase_day = coerce_date(purchase_date) if purchase_date is not None else None

        if preview:
            return AdmissionDecision.admit(
                is_future_event=purchase_day is not None and self.is_future(purchase_day, now)
            )

        if purchase_day is not None:
            rejection = self._check_date_bound(purchase_day, local_now, noun)
            if rejection is not None:
                return rejection

        if event_override is not None:
            return self._check_event_hours(event_override, local_now, noun)

        if is_event_ticket:
            # Event tickets ignore the weekly open days
            return AdmissionDecision.admit()

        return self.check_schedule(schedule, local_now, noun)

    def check_schedule(self, schedule: VenueSchedule, local_now: datetime, noun: str = "ticket") -> AdmissionDecision:
        if schedule.always_open:
            return AdmissionDecision.admit()

        plural = _plural(noun)
        today = WEEKDAYS[local_now.weekday()]
        yesterday = WEEKDAYS[(local_now.weekday() - 1) % 7]
        moment = local_now.time()

        today_open = schedule.is_open_day(today)
        # Last night's interval counts until its own close; the cutoff only keeps
        # the early morning reported as closed hours rather than a closed day
        spill = [
            slot
            for slot in schedule.overnight_spill(yesterday)
            if moment <= slot.close or local_now.hour < self.cutoff_hour
        ]

        if not today_open and not spill:
            return AdmissionDecision.reject(
                AdmissionKind.WRONG_WEEKDAY,
                f"This club is not open on {today}. {plural} can only be redeemed when the club is operating.",
            )

        today_slots = schedule.intervals_for(today) if today_open else []
        if today_open and not today_slots:
            # No hours configured for the day: the open-day check is enough
            return AdmissionDecision.admit()
        if any(slot.contains(moment) for slot in today_slots):
            return AdmissionDecision.admit()
        if any(moment <= slot.close for slot in spill):
            return AdmissionDecision.admit()

        return AdmissionDecision.reject(
            AdmissionKind.OUTSIDE_HOURS,
            f"This club is currently closed. {plural} can only be redeemed during operating hours.",
        )

    def _check_date_bound(self, purchase_day: date, local_now: datetime, noun: str) -> Optional[AdmissionDecision]:
        start, end = self.date_bound(purchase_day)
        if start <= local_now <= end:
            return None

        display = purchase_day.isoformat()
        if local_now < start:
            return AdmissionDecision.reject(
                AdmissionKind.FUTURE_EVENT,
                f"This {noun} is for a future event ({display}). Valid only on event date.",
            )
        return AdmissionDecision.reject(
            AdmissionKind.EXPIRED,
            f"This {noun} was for {display} and is no longer valid "
            f"(expired at {end.strftime('%H:%M')} the next day).",
        )

    def _check_event_hours(self, override: EventOverride, local_now: datetime, noun: str) -> AdmissionDecision:
        interval = override.interval
        if interval is None or interval.contains(local_now.time()):
            return AdmissionDecision.admit()
        hours = f"{interval.open.strftime('%H:%M')} - {interval.close.strftime('%H:%M')}"
        return AdmissionDecision.reject(
            AdmissionKind.OUTSIDE_HOURS,
            f"This event {noun} is only valid during event hours ({hours}).",
        )


def _plural(noun: str) -> str:
    if noun.startswith("menu"):
        return "Menu items"
    return noun[:1].upper() + noun[1:] + "s"
