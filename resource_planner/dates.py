from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Iterable, List, Mapping, Optional, Tuple

from dateutil import parser as dateparser
from dateutil.relativedelta import MO, relativedelta
from dateutil.rrule import DAILY, FR, SA, SU, TH, TU, WE, rrule

from .errors import DateParseError

DATE_FMT = "%Y-%m-%d"
WEEK_FMT = "{year:04d}-{week:02d}"

_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)


def parse_date(value: object, field_name: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise DateParseError(value, field_name)
    try:
        return dateparser.isoparse(value.strip()).date()
    except (ValueError, TypeError, OverflowError) as exc:
        raise DateParseError(value, field_name) from exc


def format_date(value: date) -> str:
    return value.strftime(DATE_FMT)


def week_start(value: date) -> date:
    """Monday of the ISO week containing ``value``."""
    return value + relativedelta(weekday=MO(-1))


def week_id(value: date) -> str:
    iso_year, iso_week, _ = value.isocalendar()
    return WEEK_FMT.format(year=iso_year, week=iso_week)


def iter_week_starts(start: date, end: date) -> List[date]:
    if start > end:
        return []
    weeks: List[date] = []
    current = week_start(start)
    while current <= end:
        weeks.append(current)
        current += timedelta(days=7)
    return weeks


def days_between(start: date, end: date) -> int:
    return (end - start).days


def working_weekday_count(days_per_week: float) -> int:
    """Whole weekdays worked per week, clamped to 1..7.

    A partial day counts as a working day, so 4.5 days per week works Mon-Fri.
    """
    return max(1, min(7, math.ceil(days_per_week)))


def _working_weekdays(days_per_week: float) -> Tuple[object, ...]:
    return _WEEKDAYS[: working_weekday_count(days_per_week)]


def count_working_days(start: date, end: date, days_per_week: float = 5) -> int:
    """Working days in ``[start, end]``; the first ``days_per_week`` weekdays of each week count."""
    if start > end:
        return 0
    return rrule(DAILY, dtstart=start, until=end, byweekday=_working_weekdays(days_per_week)).count()


def calendar_duration(start: object, end: object) -> int:
    start_date = parse_date(start, "start_date")
    end_date = parse_date(end, "end_date")
    return abs(days_between(start_date, end_date)) + 1


def allocations_duration(allocations: Iterable[Mapping[str, object]]) -> Optional[int]:
    """Calendar days between the earliest start and the latest end of dated allocations."""
    spans = [
        (parse_date(item["start_date"], "start_date"), parse_date(item["end_date"], "end_date"))
        for item in allocations
        if item.get("start_date") and item.get("end_date")
    ]
    if not spans:
        return None
    earliest = min(start for start, _ in spans)
    latest = max(end for _, end in spans)
    return abs(days_between(earliest, latest))


def end_date_from_duration(start: object, duration_days: float, days_per_week: float = 5) -> date:
    start_date = parse_date(start, "start_date")
    calendar_days = math.ceil(duration_days * (7 / days_per_week))
    return start_date + timedelta(days=calendar_days)


def periods_overlap(start_a: object, end_a: object, start_b: object, end_b: object) -> bool:
    first_start = parse_date(start_a, "start_date")
    first_end = parse_date(end_a, "end_date")
    second_start = parse_date(start_b, "start_date")
    second_end = parse_date(end_b, "end_date")
    return not (first_start > second_end or second_start > first_end)


def default_timeframe(
    season: Optional[Mapping[str, object]], today: Optional[date] = None
) -> Tuple[str, str]:
    if season and isinstance(season.get("start_date"), str) and isinstance(season.get("end_date"), str):
        return str(season["start_date"]), str(season["end_date"])
    base = today or date.today()
    return format_date(base), format_date(base + timedelta(days=30))
