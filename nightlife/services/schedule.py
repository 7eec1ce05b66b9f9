"""Venue clock and opening-hours value objects shared by admission and pricing."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nightlife.config import Config

logger = logging.getLogger(__name__)

WEEKDAYS: Tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def parse_hhmm(value: str) -> time:
    """Parse ``"HH:MM"``; raises ValueError on anything else."""
    hours, _, minutes = str(value).strip().partition(":")
    return time(int(hours), int(minutes or 0))


def coerce_date(value: Any) -> date:
    """Accept a date, a datetime or an ISO string and keep only the calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).split("T")[0])


class VenueClock:
    """Converts instants to venue wall-clock time.

    A fixed UTC offset is used unless an IANA timezone name is configured.
    """

    def __init__(self, utc_offset_hours: int = -5, tz_name: Optional[str] = None) -> None:
        self.tz: tzinfo = timezone(timedelta(hours=utc_offset_hours))
        if tz_name:
            try:
                self.tz = ZoneInfo(tz_name)
            except ZoneInfoNotFoundError:
                logger.warning("Unknown VENUE_TIMEZONE %s, using fixed UTC%+d", tz_name, utc_offset_hours)

    @classmethod
    def from_config(cls) -> "VenueClock":
        return cls(Config.VENUE_UTC_OFFSET_HOURS, Config.VENUE_TIMEZONE)

    def localize(self, moment: datetime) -> datetime:
        # Naive datetimes are treated as UTC, which is how they are persisted
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(self.tz)

    def at(self, day: date, clock_time: time = time(0, 0)) -> datetime:
        return datetime.combine(day, clock_time, tzinfo=self.tz)


@dataclass(frozen=True)
class OpenInterval:
    open: time
    close: time
    day: Optional[str] = None

    @property
    def overnight(self) -> bool:
        return self.close < self.open

    def contains(self, moment: time) -> bool:
        if self.overnight:
            return moment >= self.open or moment <= self.close
        return self.open <= moment <= self.close

    def window_on(self, clock: VenueClock, day: date) -> Tuple[datetime, datetime]:
        """Concrete open/close instants for ``day``; overnight closes land on the next day."""
        opens = clock.at(day, self.open)
        closes = clock.at(day, self.close)
        if closes <= opens:
            closes += timedelta(days=1)
        return opens, closes


@dataclass(frozen=True)
class VenueSchedule:
    open_days: FrozenSet[str] = frozenset()
    intervals: Tuple[OpenInterval, ...] = ()
    always_open: bool = False

    @classmethod
    def from_raw(cls, open_days: Optional[Iterable[str]], open_hours: Any) -> "VenueSchedule":
        if isinstance(open_hours, str):
            # Free-text hours ("24/7") mean the venue never closes
            return cls(open_days=frozenset(open_days or WEEKDAYS), always_open=True)

        intervals: List[OpenInterval] = []
        for slot in open_hours or []:
            try:
                intervals.append(
                    OpenInterval(
                        open=parse_hhmm(slot["open"]),
                        close=parse_hhmm(slot["close"]),
                        day=slot.get("day"),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed opening-hours slot %r", slot)
        return cls(open_days=frozenset(open_days or ()), intervals=tuple(intervals))

    @classmethod
    def from_club(cls, club: Any) -> "VenueSchedule":
        return cls.from_raw(club.open_days, club.open_hours)

    def is_open_day(self, day_name: str) -> bool:
        return day_name in self.open_days

    def intervals_for(self, day_name: str) -> List[OpenInterval]:
        return [i for i in self.intervals if i.day is None or i.day == day_name]

    def hours_for(self, day_name: str) -> Optional[OpenInterval]:
        slots = self.intervals_for(day_name)
        return slots[0] if slots else None

    def overnight_spill(self, previous_day: str) -> List[OpenInterval]:
        """Overnight intervals of ``previous_day`` that reach into the following morning."""
        if not self.is_open_day(previous_day):
            return []
        return [i for i in self.intervals_for(previous_day) if i.overnight]


@dataclass(frozen=True)
class EventOverride:
    date: date
    open: Optional[time] = None
    close: Optional[time] = None
    name: str = field(default="", compare=False)

    @classmethod
    def from_event(cls, event: Any) -> "EventOverride":
        return cls(
            date=coerce_date(event.date),
            open=parse_hhmm(event.open_time) if event.open_time else None,
            close=parse_hhmm(event.close_time) if event.close_time else None,
            name=event.name or "",
        )

    @property
    def has_hours(self) -> bool:
        return self.open is not None and self.close is not None

    @property
    def interval(self) -> Optional[OpenInterval]:
        if not self.has_hours:
            return None
        return OpenInterval(open=self.open, close=self.close)

    def start(self, clock: VenueClock) -> datetime:
        return clock.at(self.date, self.open or time(0, 0))
