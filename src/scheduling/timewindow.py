"""Time-window value types and interval algebra.

Pure Python, no I/O. Intervals are half-open ``[start, end)`` measured in
minutes from local midnight, so a full day is ``[0, 1440)``. All values are
wall-clock in the owning schedule's timezone.

Operations:
- normalize: sort and merge overlapping/adjacent intervals (union)
- subtract: interval difference, possibly splitting an interval in two
- enumerate_starts: fixed-granularity slot starts inside free intervals
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from src.scheduling.errors import InvalidWindowError

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open interval of minutes within one day.

    An end of ``00:00`` read through from_times means the following
    midnight, so a window or appointment may end exactly at 1440.
    """

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: Interval) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: Interval) -> bool:
        return self.start <= other.start and other.end <= self.end

    @classmethod
    def from_times(cls, start: time, end: time) -> Interval:
        return cls(to_minutes(start), end_minutes(end))

    def __str__(self) -> str:
        return f"{format_minutes(self.start)}-{format_minutes(self.end)}"


WHOLE_DAY = Interval(0, MINUTES_PER_DAY)


# ── Conversions ──────────────────────────────────────────────────────


def to_minutes(value: time) -> int:
    """Minutes since midnight of a whole-minute wall-clock time."""
    return value.hour * 60 + value.minute


def end_minutes(value: time) -> int:
    """Minutes for an end bound; ``00:00`` is the midnight closing the day."""
    minutes = to_minutes(value)
    return minutes or MINUTES_PER_DAY


def to_time(minutes: int) -> time:
    """Inverse of to_minutes; 1440 maps back to the closing ``00:00``."""
    if minutes == MINUTES_PER_DAY:
        return time(0)
    if not 0 <= minutes < MINUTES_PER_DAY:
        msg = f"{minutes} minutes is outside a single day"
        raise ValueError(msg)
    return time(minutes // 60, minutes % 60)


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_of_week(day: date) -> int:
    """Day index with 0 = Sunday … 6 = Saturday."""
    return (day.weekday() + 1) % 7


def iter_dates(start: date, end: date) -> Iterable[date]:
    """Every date from start to end, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


# ── Validation ───────────────────────────────────────────────────────


def validate_wall_clock(value: time, field: str) -> time:
    """Reject times with seconds, microseconds or a UTC offset.

    Bounds are whole minutes of schedule-local wall-clock time; anything
    finer would be dropped by to_minutes.
    """
    if value.tzinfo is not None:
        raise InvalidWindowError(
            f"{field} {value.isoformat()} must be a local wall-clock time without an offset",
            {field: value.isoformat()},
        )
    if value.second or value.microsecond:
        raise InvalidWindowError(
            f"{field} {value.isoformat()} must be on a whole minute",
            {field: value.isoformat()},
        )
    return value


def validate_window(start: time, end: time) -> Interval:
    """Validate wall-clock bounds and return them as an Interval.

    An end of ``00:00`` closes the window at midnight.

    Raises:
        InvalidWindowError: If a bound is not a whole local minute, or
            start is not strictly before end.
    """
    validate_wall_clock(start, "start_time")
    validate_wall_clock(end, "end_time")
    interval = Interval.from_times(start, end)
    if interval.start >= interval.end:
        raise InvalidWindowError(
            f"Window start {start.isoformat()} must be before end {end.isoformat()}",
            {"start_time": start.isoformat(), "end_time": end.isoformat()},
        )
    return interval


def validate_day_of_week(value: int) -> int:
    if not 0 <= value <= 6:
        raise InvalidWindowError(
            f"day_of_week must be between 0 (Sunday) and 6 (Saturday), got {value}",
            {"day_of_week": value},
        )
    return value


# ── Algebra ──────────────────────────────────────────────────────────


def normalize(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort by start and merge overlapping or touching intervals."""
    merged: list[Interval] = []
    for interval in sorted(intervals):
        if interval.length <= 0:
            continue
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def subtract(base: Iterable[Interval], removals: Iterable[Interval]) -> list[Interval]:
    """Remove every removal interval from the base set.

    Both inputs may be unsorted and overlapping; the result is normalized.
    """
    remaining = normalize(base)
    for cut in normalize(removals):
        result: list[Interval] = []
        for piece in remaining:
            if not piece.overlaps(cut):
                result.append(piece)
                continue
            if piece.start < cut.start:
                result.append(Interval(piece.start, cut.start))
            if cut.end < piece.end:
                result.append(Interval(cut.end, piece.end))
        remaining = result
    return remaining


def enumerate_starts(free: Iterable[Interval], duration: int) -> list[int]:
    """Slot start minutes at ``duration`` granularity from each interval start."""
    if duration <= 0:
        msg = f"Slot duration must be positive, got {duration}"
        raise ValueError(msg)
    starts: list[int] = []
    for interval in normalize(free):
        cursor = interval.start
        while cursor + duration <= interval.end:
            starts.append(cursor)
            cursor += duration
    return starts


# ── Timezone helpers ─────────────────────────────────────────────────


def localize(day: date, minutes: int, tz: ZoneInfo) -> datetime:
    """Aware datetime for a wall-clock minute on a date in ``tz``."""
    return datetime.combine(day, to_time(minutes), tzinfo=tz)


def exists_in_zone(day: date, minutes: int, tz: ZoneInfo) -> bool:
    """False for wall-clock times skipped by a DST jump forward."""
    local = localize(day, minutes, tz)
    round_trip = local.astimezone(timezone.utc).astimezone(tz)
    return round_trip.replace(tzinfo=None) == local.replace(tzinfo=None)
