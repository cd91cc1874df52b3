from __future__ import annotations

import pytest

from resource_planner.models import MemberAllocation, TeamAllocation, TeamMember, WorkNode
from resource_planner.store import InMemoryGraphStore


@pytest.fixture
def estimate_tree() -> InMemoryGraphStore:
    """Parent P (direct 1) with children c1 (rollup 3) and c2 (rollup 4)."""
    store = InMemoryGraphStore()
    store.add_node(WorkNode("P", "feature", "Parent", direct_estimate=1))
    store.add_node(WorkNode("c1", "feature", "Child 1", direct_estimate=3, rollup_estimate=3))
    store.add_node(WorkNode("c2", "feature", "Child 2", direct_estimate=4, rollup_estimate=4))
    store.link("P", "c1", edge_id="e-c1")
    store.link("P", "c2", edge_id="e-c2")
    return store


@pytest.fixture
def chain_store() -> InMemoryGraphStore:
    """N -> A1 -> A2 -> A3, each with direct estimate 1."""
    store = InMemoryGraphStore()
    for node_id in ("N", "A1", "A2", "A3"):
        store.add_node(WorkNode(node_id, "milestone", node_id, direct_estimate=1))
    store.link("A1", "N")
    store.link("A2", "A1")
    store.link("A3", "A2")
    return store


@pytest.fixture
def staffed_store() -> InMemoryGraphStore:
    """One member allocated to two overlapping features for two weeks."""
    store = InMemoryGraphStore()
    store.add_member(TeamMember("m1", "Ada", hours_per_day=8, days_per_week=5, daily_rate=800, allocation=100))
    for node_id in ("f1", "f2"):
        store.add_node(
            WorkNode(
                node_id,
                "feature",
                f"Feature {node_id}",
                direct_estimate=60,
                start_date="2024-01-08",
                end_date="2024-01-19",
                team_allocations=(
                    TeamAllocation(
                        "t1",
                        requested_hours=60,
                        allocated_members=(MemberAllocation("m1", 60),),
                    ),
                ),
            )
        )
    return store
