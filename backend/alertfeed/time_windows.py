# Alert Feed - Time Windows
# Live = [start of today, start of tomorrow) and history = [cutoff, start of today), in the reference zone.

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from alertfeed.errors import MalformedTimeString

UTC = timezone.utc

_WALL_CLOCK_RE = re.compile(
    r"^\s*(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?\s*(?P<meridiem>[AaPp][Mm])\s*$"
)


def utc_now() -> datetime:
    return datetime.now(UTC)


class TimeWindows:
    """
    Window arithmetic anchored to one IANA zone, independent of the host's local zone.
    Every call reads the clock again, so "today" rolls over at local midnight.
    """

    def __init__(
        self,
        timezone_name: str,
        retention_days: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.tz = ZoneInfo(timezone_name)
        self.retention_days = retention_days
        self._clock = clock

    def now(self) -> datetime:
        return self._clock().astimezone(UTC)

    def local_date(self) -> date:
        return self._clock().astimezone(self.tz).date()

    def _local_midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(UTC)

    def day_bounds(self) -> tuple[datetime, datetime]:
        """(start_of_today, end_of_today) as UTC instants; end is exclusive."""
        today = self.local_date()
        return self._local_midnight(today), self._local_midnight(today + timedelta(days=1))

    def partition_bounds(self) -> tuple[datetime, datetime, datetime]:
        """(retention_cutoff, start_of_today, end_of_today) from a single clock read."""
        today = self.local_date()
        return (
            self._local_midnight(today - timedelta(days=self.retention_days)),
            self._local_midnight(today),
            self._local_midnight(today + timedelta(days=1)),
        )

    def retention_cutoff(self) -> datetime:
        """Midnight of (today - retention_days) in the reference zone, as a UTC instant."""
        return self._local_midnight(self.local_date() - timedelta(days=self.retention_days))

    def resolve_wall_clock_time_today(self, time_string: str) -> datetime:
        """
        Parse "h:mm AM" / "h:mm:ss PM" as a time on today's date in the reference zone.
        Raises MalformedTimeString on bad grammar or out-of-range fields.
        """
        match = _WALL_CLOCK_RE.match(time_string or "")
        if match is None:
            raise MalformedTimeString(f"Unrecognised trigger time: {time_string!r}")
        hour = int(match.group("hour"))
        minute = int(match.group("minute"))
        second = int(match.group("second") or 0)
        if not 1 <= hour <= 12:
            raise MalformedTimeString(f"Hour out of range in trigger time: {time_string!r}")
        if not 0 <= minute <= 59 or not 0 <= second <= 59:
            raise MalformedTimeString(f"Minute/second out of range in trigger time: {time_string!r}")

        hour %= 12
        if match.group("meridiem").upper() == "PM":
            hour += 12
        local = datetime.combine(self.local_date(), time(hour, minute, second), tzinfo=self.tz)
        return local.astimezone(UTC)

    def format_local_time(self, instant: datetime) -> str:
        """12-hour wall-clock form in the reference zone, e.g. '3:45 PM'."""
        local = instant.astimezone(self.tz)
        hour = local.hour % 12 or 12
        meridiem = "PM" if local.hour >= 12 else "AM"
        return f"{hour}:{local.minute:02d} {meridiem}"

    def format_sortable(self, instant: datetime) -> str:
        return instant.astimezone(self.tz).strftime("%Y-%m-%dT%H:%M:%S")
