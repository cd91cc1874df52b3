from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Sequence, Tuple

import pandas as pd

from .capacity import member_effective_weekly_capacity, member_weekly_capacity
from .dates import (
    count_working_days,
    days_between,
    format_date,
    iter_week_starts,
    parse_date,
    periods_overlap,
    week_id,
    working_weekday_count,
)
from .errors import ValidationError
from .models import (
    DEFAULT_DAYS_PER_WEEK,
    AllocationFailure,
    MemberAllocationReport,
    TeamMember,
    TimeAllocation,
    WeeklyAllocation,
    WeeklyAvailability,
    WeekShare,
    WorkNode,
)

logger = logging.getLogger(__name__)

AVAILABILITY_COLUMNS = [
    "member_id",
    "name",
    "week_id",
    "start_date",
    "end_date",
    "available_hours",
    "allocated_hours",
    "over_allocated",
    "over_allocated_by",
    "nodes",
]


def _week_length(days_per_week: float) -> float:
    return min(7.0, max(1.0, float(days_per_week or DEFAULT_DAYS_PER_WEEK)))


def _week_spans(start: date, end: date, days_per_week: float) -> List[Tuple[date, date, date, float]]:
    """``(monday, effective_start, effective_end, proportion)`` per intersecting week."""
    week_length = _week_length(days_per_week)
    spans = []
    for monday in iter_week_starts(start, end):
        effective_start = max(start, monday)
        effective_end = min(end, monday + timedelta(days=6))
        days_in_week = max(1, days_between(effective_start, effective_end) + 1)
        spans.append((monday, effective_start, effective_end, min(1.0, days_in_week / week_length)))
    return spans


def weekly_buckets(start: object, end: object) -> List[str]:
    start_date = parse_date(start, "start_date")
    end_date = parse_date(end, "end_date")
    return [week_id(monday) for monday in iter_week_starts(start_date, end_date)]


def bucketize_allocation(
    allocation: TimeAllocation,
    node_id: str,
    node_name: str,
    days_per_week: float = DEFAULT_DAYS_PER_WEEK,
) -> List[WeeklyAllocation]:
    """Split a weekly-rate allocation into ISO-week buckets.

    ``weekly_hours`` is a per-week rate. A week receives
    ``min(1, days_in_week / days_per_week)`` of that rate, where
    ``days_in_week`` counts the calendar days the allocation covers in it
    (at least one). Any ``days_per_week`` days of a week carry the full rate,
    and every week in range gets a non-zero share.
    """
    start = parse_date(allocation.start_date, "start_date")
    end = parse_date(allocation.end_date, "end_date")
    if start > end:
        raise ValidationError(
            f"start_date {format_date(start)} is later than end_date {format_date(end)}"
        )
    if allocation.weekly_hours < 0:
        raise ValidationError(f"weekly_hours must be non-negative, got {allocation.weekly_hours}")
    buckets: List[WeeklyAllocation] = []
    for monday, effective_start, effective_end, week_proportion in _week_spans(start, end, days_per_week):
        buckets.append(
            WeeklyAllocation(
                week_id=week_id(monday),
                start_date=format_date(effective_start),
                end_date=format_date(effective_end),
                hours=allocation.weekly_hours * week_proportion,
                node_id=node_id,
                node_name=node_name,
            )
        )
    return buckets


def calculate_weekly_hours(
    total_hours: float,
    start: object,
    end: object,
    days_per_week: float = DEFAULT_DAYS_PER_WEEK,
) -> float:
    """Weekly rate at which ``bucketize_allocation`` returns ``total_hours`` in total."""
    start_date = parse_date(start, "start_date")
    end_date = parse_date(end, "end_date")
    if start_date > end_date:
        raise ValidationError(
            f"start_date {format_date(start_date)} is later than end_date {format_date(end_date)}"
        )
    weeks = sum(proportion for *_, proportion in _week_spans(start_date, end_date, days_per_week))
    return total_hours / weeks


def compute_weekly_availability(
    allocations: Iterable[WeeklyAllocation], member_capacity: float
) -> List[WeeklyAvailability]:
    groups: Dict[str, Dict[str, object]] = {}
    for bucket in allocations:
        group = groups.get(bucket.week_id)
        if group is None:
            group = {
                "start_date": bucket.start_date,
                "end_date": bucket.end_date,
                "allocated": 0.0,
                "shares": [],
            }
            groups[bucket.week_id] = group
        group["allocated"] += bucket.hours  # type: ignore[operator]
        group["shares"].append(WeekShare(bucket.node_id, bucket.node_name, bucket.hours))  # type: ignore[union-attr]
    result: List[WeeklyAvailability] = []
    for week, group in groups.items():
        allocated = float(group["allocated"])  # type: ignore[arg-type]
        over_allocated = allocated > member_capacity
        result.append(
            WeeklyAvailability(
                week_id=week,
                start_date=str(group["start_date"]),
                end_date=str(group["end_date"]),
                available_hours=member_capacity,
                allocated_hours=allocated,
                over_allocated=over_allocated,
                over_allocated_by=allocated - member_capacity if over_allocated else 0.0,
                allocations=tuple(group["shares"]),  # type: ignore[arg-type]
            )
        )
    return result


def collect_member_buckets(
    member_id: str,
    nodes: Iterable[WorkNode],
    days_per_week: float = DEFAULT_DAYS_PER_WEEK,
) -> Tuple[List[WeeklyAllocation], List[AllocationFailure]]:
    """Bucketize every allocation of ``member_id`` across ``nodes``.

    Allocations that cannot be bucketized contribute zero hours and are
    returned as failures instead of being dropped.
    """
    buckets: List[WeeklyAllocation] = []
    failures: List[AllocationFailure] = []
    for node in nodes:
        for team_allocation in node.team_allocations:
            for member_allocation in team_allocation.allocated_members:
                if member_allocation.member_id != member_id or not member_allocation.hours:
                    continue
                start = member_allocation.start_date or team_allocation.start_date or node.start_date
                end = member_allocation.end_date or team_allocation.end_date or node.end_date
                if not start or not end:
                    failures.append(AllocationFailure(node.id, member_id, "allocation has no timeframe"))
                    logger.warning("Allocation of %s on %s has no timeframe", member_id, node.id)
                    continue
                try:
                    rate = calculate_weekly_hours(member_allocation.hours, start, end, days_per_week)
                    node_buckets = bucketize_allocation(
                        TimeAllocation(start, end, rate), node.id, node.title, days_per_week
                    )
                except ValidationError as exc:
                    logger.warning("Cannot bucketize allocation of %s on %s: %s", member_id, node.id, exc)
                    failures.append(AllocationFailure(node.id, member_id, str(exc)))
                    continue
                if sum(bucket.hours for bucket in node_buckets) <= 0:
                    logger.warning(
                        "Allocation of %s on %s spread %s hours into no week", member_id, node.id, member_allocation.hours
                    )
                    failures.append(AllocationFailure(node.id, member_id, "allocation produced no weekly hours"))
                    continue
                buckets.extend(node_buckets)
    return buckets, failures


def member_conflicts(member: TeamMember, nodes: Sequence[WorkNode]) -> MemberAllocationReport:
    days_per_week = member.days_per_week or DEFAULT_DAYS_PER_WEEK
    effective_capacity = member_effective_weekly_capacity(member)
    buckets, failures = collect_member_buckets(member.id, nodes, days_per_week)
    weeks = compute_weekly_availability(buckets, effective_capacity)
    return MemberAllocationReport(
        member_id=member.id,
        name=member.name,
        weekly_capacity=member_weekly_capacity(member),
        effective_capacity=effective_capacity,
        weeks=tuple(weeks),
        buckets=tuple(buckets),
        failures=tuple(failures),
    )


def check_member_availability(
    report: MemberAllocationReport,
    start: object,
    end: object,
    exclude_hours: float = 0.0,
    days_per_week: float = DEFAULT_DAYS_PER_WEEK,
) -> Tuple[bool, float, float]:
    """Return ``(available, available_hours, over_allocated_by)`` for a window."""
    window_start = parse_date(start, "start_date")
    window_end = parse_date(end, "end_date")
    work_days = working_weekday_count(days_per_week)
    total_capacity = report.effective_capacity * (
        count_working_days(window_start, window_end, work_days) / work_days
    )
    allocated = 0.0
    for bucket in report.buckets:
        if not periods_overlap(bucket.start_date, bucket.end_date, window_start, window_end):
            continue
        allocated += bucket.hours
    allocated -= exclude_hours
    return (
        allocated <= total_capacity,
        max(0.0, total_capacity - allocated),
        max(0.0, allocated - total_capacity),
    )


def availability_frame(reports: Iterable[MemberAllocationReport]) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []
    for report in reports:
        for week in report.weeks:
            rows.append(
                {
                    "member_id": report.member_id,
                    "name": report.name,
                    "week_id": week.week_id,
                    "start_date": week.start_date,
                    "end_date": week.end_date,
                    "available_hours": round(week.available_hours, 4),
                    "allocated_hours": round(week.allocated_hours, 4),
                    "over_allocated": week.over_allocated,
                    "over_allocated_by": round(week.over_allocated_by, 4),
                    "nodes": ";".join(sorted({share.node_id for share in week.allocations})),
                }
            )
    return pd.DataFrame(rows, columns=AVAILABILITY_COLUMNS)
