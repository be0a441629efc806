"""
Business-hours calendar for SLA clocks.

Working days are ISO weekday numbers (1 = Monday ... 7 = Sunday) and
working hours are local "HH:MM" strings in the calendar's timezone.
"""
import re
from datetime import datetime, time, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from conductor.core.config import settings


TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time(value: str) -> time:
    """Parse a local "HH:MM" string; ValueError otherwise."""
    match = TIME_PATTERN.match(value) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


class BusinessCalendar:
    def __init__(
        self,
        working_days: Iterable[int] = (1, 2, 3, 4, 5),
        start: str = "08:00",
        end: str = "18:00",
        tz: Optional[str] = None,
    ):
        self.working_days = set(working_days)
        self.start = parse_time(start)
        self.end = parse_time(end)
        self.tz = ZoneInfo(tz or settings.default_timezone)

    @classmethod
    def from_definition(cls, definition) -> "BusinessCalendar":
        hours = definition.working_hours or {}
        return cls(
            working_days=definition.working_days or (1, 2, 3, 4, 5),
            start=hours.get("start", "08:00"),
            end=hours.get("end", "18:00"),
            tz=definition.timezone,
        )

    def working_seconds_between(self, start: datetime, end: datetime) -> float:
        """Seconds of working time inside [start, end]."""
        if end <= start:
            return 0.0

        local_start = start.astimezone(self.tz)
        local_end = end.astimezone(self.tz)

        total = 0.0
        day = local_start.date()
        while day <= local_end.date():
            if day.isoweekday() in self.working_days:
                window_start = datetime.combine(day, self.start, tzinfo=self.tz)
                window_end = datetime.combine(day, self.end, tzinfo=self.tz)
                overlap_start = max(window_start, local_start)
                overlap_end = min(window_end, local_end)
                if overlap_end > overlap_start:
                    total += (overlap_end - overlap_start).total_seconds()
            day += timedelta(days=1)
        return total

    def working_minutes_between(self, start: datetime, end: datetime) -> int:
        return int(self.working_seconds_between(_aware(start), _aware(end)) // 60)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
