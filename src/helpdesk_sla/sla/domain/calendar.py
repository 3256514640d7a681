"""
Business Calendar
=================

Deadline arithmetic over business hours.

Business hours default to 09:00-17:00, Monday to Friday, in the server's
local time zone. All calculations walk local wall-clock time so that a
daylight-saving change never shifts opening or closing times.
"""

from datetime import datetime, timedelta, tzinfo
from typing import FrozenSet, Iterable, Optional

MONDAY_TO_FRIDAY: FrozenSet[int] = frozenset({0, 1, 2, 3, 4})

ONE_DAY = timedelta(days=1)
ZERO = timedelta(0)


class BusinessCalendar:
    """
    Converts a duration in minutes into an absolute deadline.

    Pure and deterministic: nothing here reads the current time.

    Args:
        start_hour: Opening hour of a business day
        end_hour: Closing hour of a business day (24 means midnight)
        workdays: Weekday numbers (Monday=0) that are business days
        tz: Zone the business hours are expressed in; None means the
            server's local time zone
    """

    def __init__(
        self,
        start_hour: int = 9,
        end_hour: int = 17,
        workdays: Iterable[int] = MONDAY_TO_FRIDAY,
        tz: Optional[tzinfo] = None,
    ):
        if not 0 <= start_hour < end_hour <= 24:
            raise ValueError(f"invalid business hours {start_hour}-{end_hour}")
        workdays = frozenset(workdays)
        if not workdays or not workdays <= set(range(7)):
            raise ValueError(f"invalid workdays {sorted(workdays)}")

        self.start_hour = start_hour
        self.end_hour = end_hour
        self.workdays = workdays
        self.tz = tz

    def add_duration(
        self,
        start: datetime,
        minutes: int,
        business_hours_only: bool,
    ) -> datetime:
        """
        Add ``minutes`` to ``start``.

        Wall-clock mode is plain addition. In business-hours mode the clock
        first moves to the next open instant, then consumes minutes one
        business day at a time; reaching closing time jumps to the next
        business day's opening, even when that exhausts the duration.
        """
        if not business_hours_only:
            return start + timedelta(minutes=minutes)

        current = self._roll_forward(self._to_local(start))
        remaining = timedelta(minutes=minutes)

        while remaining > ZERO:
            day = self._midnight(current)
            closing = self._closing(current)
            step = min(remaining, closing - current)
            current += step
            remaining -= step

            if current >= closing:
                current = self._roll_forward(self._opening(day + ONE_DAY))

        return self._from_local(current, start)

    def is_open(self, instant: datetime) -> bool:
        """Check if ``instant`` falls inside business hours."""
        local = self._to_local(instant)
        return (
            local.weekday() in self.workdays
            and self._opening(local) <= local < self._closing(local)
        )

    def next_open(self, instant: datetime) -> datetime:
        """Return ``instant`` itself if open, else the next opening instant."""
        return self._from_local(self._roll_forward(self._to_local(instant)), instant)

    # ========== Local wall-clock helpers ==========

    def _roll_forward(self, moment: datetime) -> datetime:
        while True:
            if moment.weekday() not in self.workdays:
                moment = self._opening(self._midnight(moment) + ONE_DAY)
                continue
            if moment < self._opening(moment):
                return self._opening(moment)
            if moment >= self._closing(moment):
                moment = self._opening(self._midnight(moment) + ONE_DAY)
                continue
            return moment

    @staticmethod
    def _midnight(moment: datetime) -> datetime:
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)

    def _opening(self, moment: datetime) -> datetime:
        return self._midnight(moment) + timedelta(hours=self.start_hour)

    def _closing(self, moment: datetime) -> datetime:
        return self._midnight(moment) + timedelta(hours=self.end_hour)

    def _to_local(self, instant: datetime) -> datetime:
        """Naive wall-clock time in the calendar's zone."""
        if instant.tzinfo is None:
            return instant
        if self.tz is None:
            return instant.astimezone().replace(tzinfo=None)
        return instant.astimezone(self.tz).replace(tzinfo=None)

    def _from_local(self, local: datetime, original: datetime) -> datetime:
        """Re-attach a zone when the caller passed an aware datetime."""
        if original.tzinfo is None:
            return local
        if self.tz is None:
            return local.astimezone()
        return local.replace(tzinfo=self.tz)
