from __future__ import annotations

import logging
import math
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .capacity import member_capacity
from .dates import (
    allocations_duration,
    calendar_duration,
    count_working_days,
    end_date_from_duration,
    format_date,
    parse_date,
)
from .models import (
    DEFAULT_HOURS_PER_DAY,
    AllocationDetails,
    AvailableMember,
    CostLine,
    CostSummary,
    TeamAllocation,
    TeamMember,
    WorkNode,
)

logger = logging.getLogger(__name__)

COST_COLUMNS = [
    "member_id",
    "name",
    "daily_rate",
    "hours",
    "hours_per_day",
    "allocated_days",
    "allocation_percent",
    "cost",
    "start_date",
    "end_date",
]


def _allocation_percent(hours: float, available: float) -> float:
    if available == 0:
        return math.nan if hours == 0 else math.copysign(math.inf, hours)
    return (hours / available) * 100


def compute_cost_summary(
    team_allocations: Iterable[TeamAllocation],
    members: Mapping[str, AvailableMember],
) -> CostSummary:
    """Price every member allocation and total the results.

    Allocations naming a member absent from ``members`` are skipped. A member
    with no available hours gets an infinite allocation percentage.
    """
    lines: List[CostLine] = []
    total_cost = 0.0
    total_hours = 0.0
    total_days = 0.0
    dated: List[Dict[str, object]] = []
    for allocation in team_allocations or ():
        for member_allocation in allocation.allocated_members:
            member = members.get(member_allocation.member_id)
            if member is None:
                logger.debug(
                    "Skipping allocation for unknown member %s on team %s",
                    member_allocation.member_id,
                    allocation.team_id,
                )
                continue
            hours_per_day = (
                member.hours_per_day or member_allocation.hours_per_day or DEFAULT_HOURS_PER_DAY
            )
            allocated_days = member_allocation.hours / hours_per_day
            cost = allocated_days * member.daily_rate
            lines.append(
                CostLine(
                    member_id=member_allocation.member_id,
                    name=member.name,
                    daily_rate=member.daily_rate,
                    allocation_percent=_allocation_percent(member_allocation.hours, member.available_hours),
                    allocated_days=allocated_days,
                    hours=member_allocation.hours,
                    hours_per_day=hours_per_day,
                    cost=cost,
                    start_date=member_allocation.start_date,
                    end_date=member_allocation.end_date,
                )
            )
            total_cost += cost
            total_hours += member_allocation.hours
            total_days += allocated_days
            if member_allocation.start_date and member_allocation.end_date:
                dated.append(
                    {"start_date": member_allocation.start_date, "end_date": member_allocation.end_date}
                )
    return CostSummary(
        daily_cost=total_cost / total_days if total_days > 0 else 0.0,
        total_cost=total_cost,
        total_hours=total_hours,
        total_days=total_days,
        allocations=tuple(lines),
        calendar_duration=allocations_duration(dated),
    )


def node_duration_days(node: WorkNode, default_days: float = 0.0) -> float:
    if node.duration_days is not None:
        return float(node.duration_days)
    timeframe = node.timeframe()
    if timeframe:
        return float(calendar_duration(*timeframe))
    return float(default_days)


def available_members_for(
    node: WorkNode, roster: Mapping[str, TeamMember], default_duration_days: float = 0.0
) -> Dict[str, AvailableMember]:
    """Members referenced by ``node`` with hours available over its duration."""
    duration = node_duration_days(node, default_duration_days)
    available: Dict[str, AvailableMember] = {}
    for allocation in node.team_allocations:
        for member_allocation in allocation.allocated_members:
            member = roster.get(member_allocation.member_id)
            if member is None or member.id in available:
                continue
            available[member.id] = AvailableMember(
                member_id=member.id,
                name=member.name,
                available_hours=member_capacity(member, duration),
                daily_rate=member.effective_daily_rate(),
                hours_per_day=member.hours_per_day,
                days_per_week=member.days_per_week,
                weekly_capacity=member.weekly_capacity,
                allocation=member.allocation,
            )
    return available


def node_cost_summary(
    node: WorkNode, roster: Mapping[str, TeamMember], default_duration_days: float = 0.0
) -> CostSummary:
    return compute_cost_summary(
        node.team_allocations, available_members_for(node, roster, default_duration_days)
    )


def member_allocation_details(
    start: Optional[str],
    end: Optional[str],
    duration_days: Optional[float],
    member: TeamMember,
    hours: float,
    today: Optional[date] = None,
) -> AllocationDetails:
    """Working days, daily load and cost of ``hours`` for one member on a feature.

    Missing dates fall back to today and a 10 working-day duration.
    """
    days_per_week = member.days_per_week or 5
    hours_per_day = member.hours_per_day or DEFAULT_HOURS_PER_DAY
    start_date = parse_date(start, "start_date") if start else (today or date.today())
    if end:
        end_date = parse_date(end, "end_date")
    else:
        end_date = end_date_from_duration(start_date, duration_days or 10, days_per_week)
    working_days = count_working_days(start_date, end_date, days_per_week)
    daily_hours = hours / working_days if working_days else 0.0
    return AllocationDetails(
        percentage=min(100.0, (daily_hours / hours_per_day) * 100),
        start_date=format_date(start_date),
        end_date=format_date(end_date),
        working_days=working_days,
        daily_hours=daily_hours,
        cost=(hours / hours_per_day) * member.effective_daily_rate(),
    )


def cost_frame(summary: CostSummary) -> pd.DataFrame:
    rows = [
        {
            "member_id": line.member_id,
            "name": line.name,
            "daily_rate": line.daily_rate,
            "hours": round(line.hours, 4),
            "hours_per_day": line.hours_per_day,
            "allocated_days": round(line.allocated_days, 4),
            "allocation_percent": line.allocation_percent,
            "cost": round(line.cost, 2),
            "start_date": line.start_date,
            "end_date": line.end_date,
        }
        for line in summary.allocations
    ]
    return pd.DataFrame(rows, columns=COST_COLUMNS)
