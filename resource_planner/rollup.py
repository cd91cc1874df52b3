"""Upward recomputation of rollup aggregates.

``recalculate_rollup`` recomputes the named node and then every ancestor on
its parent chain, one node at a time. Children are read after the previous
write so each ancestor sees the values its child just published. Nodes that
were written stay written when a later step fails or the walk is cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .cost import node_cost_summary
from .errors import CycleDetectedError, NotFoundError, StoreError, ValidationError
from .models import ChildSummary, RollupResult, RollupStatus, TeamMember
from .store import GraphStore

logger = logging.getLogger(__name__)

METRIC_FIELDS = frozenset(
    {
        "duration",
        "duration_days",
        "cost",
        "originalEstimate",
        "direct_estimate",
        "rollupEstimate",
        "rollup_estimate",
        "team_allocations",
    }
)
HIERARCHY_FIELDS = frozenset(
    {"parentId", "childIds", "isRollup", "originalEstimate", "direct_estimate", "rollupEstimate", "rollup_estimate"}
)


def contains_metric_fields(fields: Iterable[str]) -> bool:
    return any(field in METRIC_FIELDS for field in fields)


def contains_hierarchy_fields(fields: Iterable[str]) -> bool:
    return any(field in HIERARCHY_FIELDS or field.startswith("hierarchy.") for field in fields)


def rollup_estimate(direct_estimate: Optional[float], children: Sequence[ChildSummary]) -> float:
    total = float(direct_estimate or 0.0)
    for child in children:
        if child.rollup_contribution:
            total += child.estimate_value()
    return total


def _children_totals(
    store: GraphStore, children: Sequence[ChildSummary], roster: Mapping[str, TeamMember]
) -> Tuple[float, float]:
    """Summed cost and hours of contributing children.

    A child that has never been rolled up contributes its own allocations.
    """
    cost = 0.0
    hours = 0.0
    for child in children:
        if not child.rollup_contribution:
            continue
        child_cost = child.rollup_cost
        child_hours = child.rollup_hours
        if child_cost is None or child_hours is None:
            node = store.get_node("", child.id)
            if child_cost is None:
                child_cost = node_cost_summary(node, roster).total_cost
            if child_hours is None:
                child_hours = node.allocated_hours()
        cost += child_cost
        hours += child_hours
    return cost, hours


def _cancelled(cancel_event: Optional[threading.Event], deadline: Optional[float]) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return True
    return deadline is not None and time.monotonic() >= deadline


def _recompute_node(
    store: GraphStore, node_type: str, node_id: str, roster: Mapping[str, TeamMember]
) -> None:
    node = store.get_node(node_type, node_id)
    children = store.get_children(node_type, node_id)
    own_cost = node_cost_summary(node, roster).total_cost
    child_cost, child_hours = _children_totals(store, children, roster)
    patch = {
        "rollup_estimate": rollup_estimate(node.direct_estimate, children),
        "rollup_cost": own_cost + child_cost,
        "rollup_hours": node.allocated_hours() + child_hours,
    }
    store.update_node(node_id, patch, expected_version=node.version)
    logger.info(
        "Updated %s %s: estimate=%.2f cost=%.2f hours=%.2f",
        node_type,
        node_id,
        patch["rollup_estimate"],
        patch["rollup_cost"],
        patch["rollup_hours"],
    )


def recalculate_rollup(
    store: GraphStore,
    node_type: str,
    node_id: str,
    *,
    members: Optional[Mapping[str, TeamMember]] = None,
    cancel_event: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
) -> RollupResult:
    """Recompute ``node_id`` and each of its ancestors, root-ward.

    Store failures and malformed node data end the walk: ``Failed`` when
    nothing was written, ``PartiallyFailed`` otherwise, with ``failed_at_id``
    naming the node that could not be processed. ``cancel_event`` and
    ``deadline`` (a ``time.monotonic()`` value) are checked before every step
    and end the walk as ``Cancelled``. A node reached twice raises ``CycleDetectedError``.
    """
    roster = dict(members) if members is not None else None
    visited: Set[str] = set()
    path: List[str] = []
    updated: List[str] = []
    current_type, current_id = node_type, node_id

    while True:
        if current_id in visited:
            path.append(current_id)
            logger.error("Cycle detected while propagating from %s: %s", node_id, " -> ".join(path))
            raise CycleDetectedError(path)
        visited.add(current_id)
        path.append(current_id)

        if _cancelled(cancel_event, deadline):
            logger.warning("Rollup from %s cancelled before %s", node_id, current_id)
            return RollupResult(RollupStatus.CANCELLED, current_id, tuple(updated))

        try:
            if roster is None:
                roster = store.roster()
            _recompute_node(store, current_type, current_id, roster)
            updated.append(current_id)
            parent = store.get_parent(current_id)
        except (NotFoundError, StoreError, ValidationError) as exc:
            status = RollupStatus.PARTIALLY_FAILED if updated else RollupStatus.FAILED
            failed_at = current_id
            # a dangling parent edge fails after the current node was written
            if isinstance(exc, NotFoundError) and updated and updated[-1] == current_id:
                failed_at = exc.ident
            logger.warning("Rollup from %s stopped at %s (%s): %s", node_id, failed_at, status.value, exc)
            return RollupResult(status, failed_at, tuple(updated), str(exc))

        if parent is None:
            break
        current_type, current_id = parent.type, parent.id

    logger.info("Rollup from %s succeeded; updated %s", node_id, ", ".join(updated))
    return RollupResult(RollupStatus.SUCCEEDED, None, tuple(updated))


def notify_parent_of_changes(
    store: GraphStore, node_type: str, node_id: str, changed_fields: Iterable[str], **kwargs
) -> Optional[RollupResult]:
    """Propagate to the parent of ``node_id`` when a metric field changed."""
    if not contains_metric_fields(changed_fields):
        return None
    parent = store.get_parent(node_id)
    if parent is None:
        return None
    return recalculate_rollup(store, parent.type, parent.id, **kwargs)


def propagate_edge_removal(store: GraphStore, edge_id: str, **kwargs) -> RollupResult:
    """Delete a parent-child edge and bring the former parent's chain up to date."""
    edge = store.delete_edge(edge_id)
    parent = store.get_node("", edge.source)
    logger.info("Removed edge %s; re-propagating from %s", edge_id, parent.id)
    return recalculate_rollup(store, parent.type, parent.id, **kwargs)


def set_rollup_contribution(store: GraphStore, edge_id: str, flag: bool, **kwargs) -> RollupResult:
    edge = store.update_edge(edge_id, {"rollupContribution": bool(flag)})
    parent = store.get_node("", edge.source)
    return recalculate_rollup(store, parent.type, parent.id, **kwargs)
