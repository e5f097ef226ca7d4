from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    @property
    def weeks(self) -> int:
        """Whole weeks covered, never less than one."""
        return max(1, (self.end - self.start).days // 7)


def parse_iso8601(dt_str: str) -> datetime:
    # ATS exports use e.g. 2024-01-01T00:00:00Z
    if dt_str.endswith("Z"):
        dt_str = dt_str[:-1] + "+00:00"
    parsed = datetime.fromisoformat(dt_str)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def as_datetime(day: date | datetime) -> datetime:
    if isinstance(day, datetime):
        return day if day.tzinfo is not None else day.replace(tzinfo=timezone.utc)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def add_days(start: date, days: int) -> date:
    return start + timedelta(days=int(days))


def lookback_window(end: date | datetime, weeks: int = 12) -> DateRange:
    """Window of `weeks` weeks ending at `end` (inclusive)."""
    end_dt = as_datetime(end)
    return DateRange(start=end_dt - timedelta(weeks=weeks), end=end_dt)
