from datetime import date

import pytest

from resource_planner.dates import (
    allocations_duration,
    calendar_duration,
    count_working_days,
    default_timeframe,
    end_date_from_duration,
    periods_overlap,
    week_id,
    week_start,
    working_weekday_count,
)
from resource_planner.errors import DateParseError, ValidationError
from resource_planner.models import TimeAllocation
from resource_planner.weekly import bucketize_allocation, calculate_weekly_hours, weekly_buckets


def _bucketize(start, end, weekly_hours):
    return bucketize_allocation(TimeAllocation(start, end, weekly_hours), "n1", "Node 1")


def test_week_keys_follow_iso_weeks():
    assert week_id(date(2024, 1, 1)) == "2024-01"
    assert week_id(date(2024, 12, 30)) == "2025-01"
    assert week_id(date(2021, 1, 1)) == "2020-53"
    assert week_start(date(2024, 1, 4)) == date(2024, 1, 1)
    assert week_start(date(2024, 1, 1)) == date(2024, 1, 1)


def test_whole_weeks_sum_to_rate_times_weeks():
    buckets = _bucketize("2024-01-01", "2024-01-21", 30)
    assert [bucket.week_id for bucket in buckets] == ["2024-01", "2024-02", "2024-03"]
    assert sum(bucket.hours for bucket in buckets) == pytest.approx(90, abs=1e-6)


def test_working_week_ranges_also_count_as_whole_weeks():
    buckets = _bucketize("2024-01-01", "2024-01-19", 12.5)
    assert sum(bucket.hours for bucket in buckets) == pytest.approx(37.5, abs=1e-6)


def test_five_days_inside_one_week_produce_one_full_bucket():
    buckets = _bucketize("2024-01-08", "2024-01-12", 32)
    assert len(buckets) == 1
    bucket = buckets[0]
    assert bucket.hours == pytest.approx(32)
    assert (bucket.week_id, bucket.start_date, bucket.end_date) == ("2024-02", "2024-01-08", "2024-01-12")
    assert (bucket.node_id, bucket.node_name) == ("n1", "Node 1")


def test_partial_weeks_split_by_calendar_days():
    buckets = _bucketize("2024-01-03", "2024-01-09", 40)
    assert [(b.start_date, b.end_date) for b in buckets] == [
        ("2024-01-03", "2024-01-07"),
        ("2024-01-08", "2024-01-09"),
    ]
    assert [b.hours for b in buckets] == pytest.approx([40, 16])


def test_any_five_days_inside_one_week_carry_the_full_rate():
    buckets = _bucketize("2024-01-10", "2024-01-14", 40)
    assert len(buckets) == 1
    assert (buckets[0].start_date, buckets[0].end_date) == ("2024-01-10", "2024-01-14")
    assert buckets[0].hours == pytest.approx(40)


def test_weekend_only_week_gets_a_share():
    buckets = _bucketize("2024-01-06", "2024-01-07", 40)
    assert len(buckets) == 1
    assert buckets[0].hours == pytest.approx(16)


def test_every_week_in_range_gets_hours():
    buckets = _bucketize("2024-01-07", "2024-01-08", 35)
    assert [b.week_id for b in buckets] == ["2024-01", "2024-02"]
    assert [b.hours for b in buckets] == pytest.approx([7, 7])


def test_shorter_working_week_fills_sooner():
    buckets = bucketize_allocation(
        TimeAllocation("2024-01-08", "2024-01-10", 24), "n1", "Node 1", days_per_week=3
    )
    assert buckets[0].hours == pytest.approx(24)


def test_single_day_allocation():
    buckets = _bucketize("2024-01-10", "2024-01-10", 40)
    assert len(buckets) == 1
    assert buckets[0].hours == pytest.approx(8)


def test_invalid_allocations_are_rejected():
    with pytest.raises(ValidationError):
        _bucketize("2024-01-10", "2024-01-01", 10)
    with pytest.raises(ValidationError):
        _bucketize("2024-01-01", "2024-01-10", -1)
    with pytest.raises(DateParseError):
        _bucketize("next tuesday", "2024-01-10", 10)


def test_date_parse_error_is_a_validation_error():
    with pytest.raises(ValidationError) as excinfo:
        _bucketize("2024-13-45", "2024-01-10", 10)
    assert excinfo.value.value == "2024-13-45"


def test_weekly_rate_from_total_hours_round_trips():
    rate = calculate_weekly_hours(100, "2024-01-03", "2024-01-16")
    assert rate == pytest.approx(100 / 2.4)
    buckets = _bucketize("2024-01-03", "2024-01-16", rate)
    assert [b.hours for b in buckets] == pytest.approx([100 / 2.4, 100 / 2.4, 40 / 2.4])
    assert sum(b.hours for b in buckets) == pytest.approx(100)


def test_weekly_rate_over_a_weekend_is_not_zero():
    assert calculate_weekly_hours(10, "2024-01-06", "2024-01-07") == pytest.approx(25)


def test_weekly_rate_rejects_reversed_range():
    with pytest.raises(ValidationError):
        calculate_weekly_hours(10, "2024-01-09", "2024-01-01")


def test_partial_working_days_round_up():
    assert working_weekday_count(4.5) == 5
    assert working_weekday_count(4.0) == 4
    assert working_weekday_count(0.5) == 1
    assert working_weekday_count(9) == 7
    assert count_working_days(date(2024, 1, 1), date(2024, 1, 7), days_per_week=4.5) == 5


def test_weekly_buckets_lists_intersecting_weeks():
    assert weekly_buckets("2024-01-07", "2024-01-08") == ["2024-01", "2024-02"]


def test_count_working_days():
    assert count_working_days(date(2024, 1, 1), date(2024, 1, 7)) == 5
    assert count_working_days(date(2024, 1, 1), date(2024, 1, 7), days_per_week=6) == 6
    assert count_working_days(date(2024, 1, 8), date(2024, 1, 1)) == 0


def test_duration_helpers():
    assert calendar_duration("2024-01-01", "2024-01-10") == 10
    assert end_date_from_duration("2024-01-01", 10) == date(2024, 1, 15)
    spans = [
        {"start_date": "2024-01-01", "end_date": "2024-01-05"},
        {"start_date": "2024-01-03", "end_date": "2024-01-10"},
        {"start_date": None, "end_date": "2024-02-01"},
    ]
    assert allocations_duration(spans) == 9
    assert allocations_duration([]) is None


def test_periods_overlap():
    assert periods_overlap("2024-01-01", "2024-01-05", "2024-01-05", "2024-01-09")
    assert not periods_overlap("2024-01-01", "2024-01-04", "2024-01-05", "2024-01-09")


def test_default_timeframe():
    assert default_timeframe(None, today=date(2024, 1, 1)) == ("2024-01-01", "2024-01-31")
    season = {"start_date": "2024-03-01", "end_date": "2024-05-31"}
    assert default_timeframe(season) == ("2024-03-01", "2024-05-31")
