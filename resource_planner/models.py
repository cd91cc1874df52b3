from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


DEFAULT_HOURS_PER_DAY = 8.0
DEFAULT_DAYS_PER_WEEK = 5.0

PARENT_CHILD_EDGE_TYPE = "PARENT_CHILD"


@dataclass(frozen=True)
class MemberAllocation:
    """Hours assigned to one member inside a team allocation."""

    member_id: str
    hours: float
    name: Optional[str] = None
    hours_per_day: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    cost: Optional[float] = None


@dataclass(frozen=True)
class TeamAllocation:
    team_id: str
    requested_hours: float = 0.0
    allocated_members: Tuple[MemberAllocation, ...] = ()
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    def total_hours(self) -> float:
        return sum(member.hours for member in self.allocated_members)


@dataclass(frozen=True)
class WorkNode:
    """Feature, option, provider or milestone as seen by the rollup engine."""

    id: str
    type: str
    title: str
    direct_estimate: Optional[float] = None
    rollup_estimate: Optional[float] = None
    rollup_cost: Optional[float] = None
    rollup_hours: Optional[float] = None
    duration_days: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    team_allocations: Tuple[TeamAllocation, ...] = ()
    version: int = 0

    def timeframe(self) -> Optional[Tuple[str, str]]:
        if self.start_date and self.end_date:
            return self.start_date, self.end_date
        return None

    def allocated_hours(self) -> float:
        return sum(allocation.total_hours() for allocation in self.team_allocations)


@dataclass(frozen=True)
class ChildSummary:
    """Child record returned by ``GraphStore.get_children``."""

    id: str
    title: str
    direct_estimate: Optional[float] = None
    rollup_estimate: Optional[float] = None
    rollup_contribution: bool = True
    rollup_cost: Optional[float] = None
    rollup_hours: Optional[float] = None

    def estimate_value(self) -> float:
        if self.rollup_estimate is not None:
            return float(self.rollup_estimate)
        if self.direct_estimate is not None:
            return float(self.direct_estimate)
        return 0.0


@dataclass(frozen=True)
class ParentRef:
    id: str
    type: str


@dataclass(frozen=True)
class GraphEdge:
    id: str
    source: str
    target: str
    type: str
    properties: Dict[str, object] = field(default_factory=dict)

    @property
    def rollup_contribution(self) -> bool:
        return self.properties.get("rollupContribution") is not False


@dataclass(frozen=True)
class TeamMember:
    """Roster entry with rate and capacity settings.

    ``weekly_capacity`` overrides ``hours_per_day * days_per_week`` when set.
    ``allocation`` is the percentage of the member's time given to the team
    and may exceed 100.
    """

    id: str
    name: str
    hours_per_day: Optional[float] = None
    days_per_week: Optional[float] = None
    weekly_capacity: Optional[float] = None
    daily_rate: float = 0.0
    hourly_rate: Optional[float] = None
    allocation: Optional[float] = None

    def effective_daily_rate(self) -> float:
        if self.daily_rate:
            return float(self.daily_rate)
        if self.hourly_rate:
            return float(self.hourly_rate) * (self.hours_per_day or DEFAULT_HOURS_PER_DAY)
        return 0.0


@dataclass(frozen=True)
class AvailableMember:
    """Member view used by the cost aggregator; ``available_hours`` is precomputed."""

    member_id: str
    name: str
    available_hours: float
    daily_rate: float
    hours_per_day: Optional[float] = None
    days_per_week: Optional[float] = None
    weekly_capacity: Optional[float] = None
    allocation: Optional[float] = None


@dataclass(frozen=True)
class RosterMember:
    member_id: str
    allocation: float


@dataclass(frozen=True)
class TimeAllocation:
    start_date: str
    end_date: str
    weekly_hours: float


@dataclass(frozen=True)
class WeeklyAllocation:
    week_id: str
    start_date: str
    end_date: str
    hours: float
    node_id: str
    node_name: str


@dataclass(frozen=True)
class WeekShare:
    node_id: str
    node_name: str
    hours: float


@dataclass(frozen=True)
class WeeklyAvailability:
    week_id: str
    start_date: str
    end_date: str
    available_hours: float
    allocated_hours: float
    over_allocated: bool
    over_allocated_by: float
    allocations: Tuple[WeekShare, ...] = ()


@dataclass(frozen=True)
class AllocationResult:
    hours: float
    percentage: float
    days_equivalent: float
    is_over_allocated: bool
    available_hours: float
    minimum_duration_needed: float


@dataclass(frozen=True)
class CostLine:
    member_id: str
    name: str
    daily_rate: float
    allocation_percent: float
    allocated_days: float
    hours: float
    hours_per_day: float
    cost: float
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass(frozen=True)
class CostSummary:
    daily_cost: float
    total_cost: float
    total_hours: float
    total_days: float
    allocations: Tuple[CostLine, ...] = ()
    calendar_duration: Optional[int] = None


@dataclass(frozen=True)
class AllocationDetails:
    percentage: float
    start_date: str
    end_date: str
    working_days: int
    daily_hours: float
    cost: float


@dataclass(frozen=True)
class AllocationFailure:
    node_id: str
    member_id: str
    reason: str


@dataclass(frozen=True)
class MemberAllocationReport:
    member_id: str
    name: str
    weekly_capacity: float
    effective_capacity: float
    weeks: Tuple[WeeklyAvailability, ...]
    buckets: Tuple[WeeklyAllocation, ...]
    failures: Tuple[AllocationFailure, ...] = ()

    @property
    def is_over_allocated(self) -> bool:
        return any(week.over_allocated for week in self.weeks)


class RollupStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    PARTIALLY_FAILED = "PartiallyFailed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class RollupResult:
    status: RollupStatus
    failed_at_id: Optional[str] = None
    updated_ids: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is RollupStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "status": self.status.value,
            "updatedIds": list(self.updated_ids),
        }
        if self.failed_at_id is not None:
            payload["failedAtId"] = self.failed_at_id
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class PlanningConfig:
    hours_per_day: float = DEFAULT_HOURS_PER_DAY
    days_per_week: float = DEFAULT_DAYS_PER_WEEK
    default_duration_days: int = 10
    logging_level: str = "INFO"
    recalculation_timeout_seconds: Optional[float] = None
