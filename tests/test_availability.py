import pytest

from resource_planner import weekly
from resource_planner.models import (
    MemberAllocation,
    TeamAllocation,
    TeamMember,
    WeeklyAllocation,
    WorkNode,
)
from resource_planner.weekly import (
    AVAILABILITY_COLUMNS,
    availability_frame,
    check_member_availability,
    collect_member_buckets,
    compute_weekly_availability,
    member_conflicts,
)


def _bucket(week, hours, node_id="n1", start="2024-01-01", end="2024-01-07"):
    return WeeklyAllocation(week, start, end, hours, node_id, f"Node {node_id}")


def test_two_buckets_in_one_week_over_capacity():
    result = compute_weekly_availability([_bucket("2024-01", 20, "a"), _bucket("2024-01", 25, "b")], 40)
    assert len(result) == 1
    week = result[0]
    assert week.allocated_hours == 45
    assert week.available_hours == 40
    assert week.over_allocated is True
    assert week.over_allocated_by == pytest.approx(5)
    assert [(share.node_id, share.hours) for share in week.allocations] == [("a", 20), ("b", 25)]


def test_within_capacity_has_no_overage():
    week = compute_weekly_availability([_bucket("2024-01", 40)], 40)[0]
    assert week.over_allocated is False
    assert week.over_allocated_by == 0


def test_weeks_keep_first_seen_order():
    buckets = [_bucket("2024-03", 1), _bucket("2024-01", 1), _bucket("2024-03", 1)]
    result = compute_weekly_availability(buckets, 40)
    assert [week.week_id for week in result] == ["2024-03", "2024-01"]
    assert result[0].allocated_hours == 2


def test_empty_input_yields_empty_result():
    assert compute_weekly_availability([], 40) == []


def test_member_conflicts_flags_overlapping_features(staffed_store):
    member = staffed_store.get_member("m1")
    report = member_conflicts(member, staffed_store.list_nodes())
    assert report.effective_capacity == pytest.approx(40)
    assert [week.week_id for week in report.weeks] == ["2024-02", "2024-03"]
    for week in report.weeks:
        assert week.allocated_hours == pytest.approx(60)
        assert week.over_allocated_by == pytest.approx(20)
    assert report.is_over_allocated
    assert report.failures == ()


def test_member_conflicts_respects_team_allocation():
    member = TeamMember("m1", "Ada", hours_per_day=8, days_per_week=5, allocation=50)
    node = WorkNode(
        "f1",
        "feature",
        "Feature",
        start_date="2024-01-08",
        end_date="2024-01-12",
        team_allocations=(TeamAllocation("t1", allocated_members=(MemberAllocation("m1", 25),)),),
    )
    report = member_conflicts(member, [node])
    assert report.effective_capacity == pytest.approx(20)
    assert report.weeks[0].over_allocated_by == pytest.approx(5)


def test_unparseable_allocations_are_reported_not_dropped():
    nodes = [
        WorkNode(
            "bad",
            "feature",
            "Bad dates",
            team_allocations=(
                TeamAllocation(
                    "t1",
                    allocated_members=(MemberAllocation("m1", 10, start_date="soon", end_date="2024-01-12"),),
                ),
            ),
        ),
        WorkNode(
            "undated",
            "feature",
            "No dates",
            team_allocations=(TeamAllocation("t1", allocated_members=(MemberAllocation("m1", 10),)),),
        ),
    ]
    buckets, failures = collect_member_buckets("m1", nodes)
    assert buckets == []
    assert [failure.node_id for failure in failures] == ["bad", "undated"]


def test_allocation_dates_override_node_timeframe():
    node = WorkNode(
        "f1",
        "feature",
        "Feature",
        start_date="2024-01-01",
        end_date="2024-03-01",
        team_allocations=(
            TeamAllocation(
                "t1",
                allocated_members=(MemberAllocation("m1", 16, start_date="2024-01-08", end_date="2024-01-12"),),
            ),
        ),
    )
    buckets, _ = collect_member_buckets("m1", [node])
    assert [(b.week_id, b.hours) for b in buckets] == [("2024-02", pytest.approx(16))]


def test_check_member_availability_window(staffed_store):
    report = member_conflicts(staffed_store.get_member("m1"), staffed_store.list_nodes())
    available, hours, over_by = check_member_availability(report, "2024-01-08", "2024-01-12")
    assert not available
    assert hours == 0
    assert over_by == pytest.approx(20)
    available, hours, _ = check_member_availability(report, "2024-01-22", "2024-01-26")
    assert available
    assert hours == pytest.approx(40)


def test_check_member_availability_excludes_current_hours(staffed_store):
    report = member_conflicts(staffed_store.get_member("m1"), staffed_store.list_nodes())
    available, hours, _ = check_member_availability(report, "2024-01-08", "2024-01-12", exclude_hours=30)
    assert available
    assert hours == pytest.approx(10)


def test_availability_frame(staffed_store):
    report = member_conflicts(staffed_store.get_member("m1"), staffed_store.list_nodes())
    frame = availability_frame([report])
    assert list(frame.columns) == AVAILABILITY_COLUMNS
    assert len(frame) == 2
    assert frame["over_allocated"].all()
    assert frame.loc[0, "nodes"] == "f1;f2"


def test_weekend_only_allocation_counts_toward_availability():
    member = TeamMember("m1", "Ada", hours_per_day=8, days_per_week=5, allocation=100)
    node = WorkNode(
        "f1",
        "feature",
        "Weekend push",
        start_date="2024-01-06",
        end_date="2024-01-07",
        team_allocations=(TeamAllocation("t1", allocated_members=(MemberAllocation("m1", 60),)),),
    )
    report = member_conflicts(member, [node])
    assert [week.week_id for week in report.weeks] == ["2024-01"]
    assert report.weeks[0].allocated_hours == pytest.approx(60)
    assert report.weeks[0].over_allocated_by == pytest.approx(20)
    assert report.is_over_allocated
    assert report.failures == ()


def test_allocation_without_weekly_hours_is_reported(monkeypatch):
    def empty_buckets(allocation, node_id, node_name, days_per_week):
        return [WeeklyAllocation("2024-02", allocation.start_date, allocation.end_date, 0.0, node_id, node_name)]

    monkeypatch.setattr(weekly, "bucketize_allocation", empty_buckets)
    node = WorkNode(
        "f1",
        "feature",
        "Feature",
        start_date="2024-01-08",
        end_date="2024-01-12",
        team_allocations=(TeamAllocation("t1", allocated_members=(MemberAllocation("m1", 10),)),),
    )
    buckets, failures = collect_member_buckets("m1", [node])
    assert buckets == []
    assert [(failure.node_id, failure.member_id) for failure in failures] == [("f1", "m1")]
