"""Capacity arithmetic for team members.

Every function here is pure. Percentages above 100 are passed through
unclamped: an over-allocated member is reported downstream, not rejected here.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Iterable, List, Optional, Union

from .models import (
    DEFAULT_DAYS_PER_WEEK,
    DEFAULT_HOURS_PER_DAY,
    AllocationResult,
    AvailableMember,
    MemberAllocation,
    PlanningConfig,
    RosterMember,
    TeamMember,
)

Member = Union[TeamMember, AvailableMember]


def compute_effective_capacity(
    weekly_capacity_hours: float,
    allocation_percent: float,
    duration_days: Optional[float] = None,
    work_days_per_week: float = DEFAULT_DAYS_PER_WEEK,
) -> float:
    """Hours a member can give at ``allocation_percent`` over ``duration_days``.

    Without a duration the weekly effective capacity is returned.
    """
    daily_capacity = weekly_capacity_hours / work_days_per_week
    effective_daily = daily_capacity * (allocation_percent / 100)
    if duration_days is None:
        return effective_daily * work_days_per_week
    return effective_daily * duration_days


def weekly_capacity(
    hours_per_day: Optional[float] = None,
    days_per_week: Optional[float] = None,
    weekly_override: Optional[float] = None,
) -> float:
    if weekly_override:
        return float(weekly_override)
    return float(hours_per_day or DEFAULT_HOURS_PER_DAY) * float(days_per_week or DEFAULT_DAYS_PER_WEEK)


def member_weekly_capacity(member: Member) -> float:
    return weekly_capacity(member.hours_per_day, member.days_per_week, member.weekly_capacity)


def team_allocation_percent(member: Member) -> float:
    return float(member.allocation) if isinstance(member.allocation, (int, float)) else 100.0


def member_capacity(member: Member, duration_days: float) -> float:
    """Available hours for ``member`` on a node lasting ``duration_days``."""
    return compute_effective_capacity(
        member_weekly_capacity(member),
        team_allocation_percent(member),
        duration_days,
        member.days_per_week or DEFAULT_DAYS_PER_WEEK,
    )


def member_effective_weekly_capacity(member: Member) -> float:
    return compute_effective_capacity(
        member_weekly_capacity(member),
        team_allocation_percent(member),
        None,
        member.days_per_week or DEFAULT_DAYS_PER_WEEK,
    )


def hours_to_percentage(hours: float, capacity: float) -> float:
    if capacity <= 0:
        return 0.0
    return min(100.0, (hours / capacity) * 100)


def percentage_to_hours(percentage: float, capacity: float) -> float:
    return (min(100.0, max(0.0, percentage)) / 100) * capacity


def available_hours(duration_days: float, member: Member, existing_hours: float = 0.0) -> float:
    hours_per_day = member.hours_per_day or DEFAULT_HOURS_PER_DAY
    return max(0.0, hours_per_day * duration_days - existing_hours)


def minimum_duration(requested_hours: float, member: Member, existing_hours: float = 0.0) -> float:
    """Days needed to deliver ``requested_hours``; ``math.inf`` when the member has no room."""
    hours_per_day = member.hours_per_day or DEFAULT_HOURS_PER_DAY
    available_per_day = max(0.0, hours_per_day - existing_hours / hours_per_day)
    if available_per_day <= 0:
        return math.inf
    return float(math.ceil(requested_hours / available_per_day))


def feature_allocation(
    hours: float,
    duration_days: float,
    member: Member,
    existing_hours: float = 0.0,
) -> AllocationResult:
    hours_per_day = member.hours_per_day or DEFAULT_HOURS_PER_DAY
    duration_hours = hours_per_day * duration_days
    available = available_hours(duration_days, member, existing_hours)
    return AllocationResult(
        hours=hours,
        percentage=hours_to_percentage(hours, duration_hours),
        days_equivalent=hours / hours_per_day,
        is_over_allocated=hours > available,
        available_hours=available,
        minimum_duration_needed=minimum_duration(hours, member, existing_hours),
    )


def team_bandwidth(members: Iterable[Member]) -> float:
    """Total weekly hours a team can offer after each member's team allocation."""
    return sum(member_effective_weekly_capacity(member) for member in members)


def member_allocations_from_roster(
    roster: Iterable[RosterMember], requested_hours: float
) -> List[MemberAllocation]:
    return [
        MemberAllocation(
            member_id=entry.member_id,
            hours=((entry.allocation or 0.0) / 100) * requested_hours,
        )
        for entry in roster
    ]


def with_defaults(member: TeamMember, config: PlanningConfig) -> TeamMember:
    """Fill a member's missing working pattern from the planning configuration."""
    return replace(
        member,
        hours_per_day=member.hours_per_day or config.hours_per_day,
        days_per_week=member.days_per_week or config.days_per_week,
    )
