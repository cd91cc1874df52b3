from __future__ import annotations

import json
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, fields, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import ConcurrentUpdateError, NotFoundError, ValidationError
from .models import (
    PARENT_CHILD_EDGE_TYPE,
    ChildSummary,
    GraphEdge,
    MemberAllocation,
    ParentRef,
    TeamAllocation,
    TeamMember,
    WorkNode,
)

_NODE_FIELDS = {f.name for f in fields(WorkNode)}
_PATCHABLE_FIELDS = _NODE_FIELDS - {"id", "type", "version"}


class GraphStore(ABC):
    """
    Persistence contract consumed by the rollup engine.

    Implementors may back this with a property-graph database; reads return
    immutable records and writes go through ``update_node``/``update_edge``.
    """

    @abstractmethod
    def get_node(self, node_type: str, node_id: str) -> WorkNode:
        """Fetch one node; an empty ``node_type`` matches any type."""

    @abstractmethod
    def get_children(self, parent_type: str, parent_id: str) -> List[ChildSummary]:
        ...

    @abstractmethod
    def get_parent(self, node_id: str) -> Optional[ParentRef]:
        ...

    @abstractmethod
    def update_node(
        self, node_id: str, patch: Mapping[str, object], expected_version: Optional[int] = None
    ) -> WorkNode:
        ...

    @abstractmethod
    def get_member(self, member_id: str) -> TeamMember:
        ...

    @abstractmethod
    def get_edge(self, edge_id: str) -> GraphEdge:
        ...

    @abstractmethod
    def update_edge(self, edge_id: str, properties: Mapping[str, object]) -> GraphEdge:
        ...

    @abstractmethod
    def delete_edge(self, edge_id: str) -> GraphEdge:
        ...

    @abstractmethod
    def list_nodes(self, node_type: Optional[str] = None) -> List[WorkNode]:
        ...

    @abstractmethod
    def list_members(self) -> List[TeamMember]:
        ...

    def roster(self) -> Dict[str, TeamMember]:
        return {member.id: member for member in self.list_members()}


class InMemoryGraphStore(GraphStore):
    """Thread-safe in-process store; suitable for tests, the CLI and a single web worker."""

    def __init__(self) -> None:
        self._nodes: Dict[str, WorkNode] = {}
        self._members: Dict[str, TeamMember] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._lock = threading.Lock()

    # Nodes

    def add_node(self, node: WorkNode) -> WorkNode:
        with self._lock:
            self._nodes[node.id] = node
        return node

    def get_node(self, node_type: str, node_id: str) -> WorkNode:
        with self._lock:
            node = self._nodes.get(node_id)
        if node is None or (node_type and node.type != node_type):
            raise NotFoundError(node_type or "node", node_id)
        return node

    def update_node(
        self, node_id: str, patch: Mapping[str, object], expected_version: Optional[int] = None
    ) -> WorkNode:
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot update fields: {', '.join(sorted(unknown))}")
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFoundError("node", node_id)
            if expected_version is not None and node.version != expected_version:
                raise ConcurrentUpdateError(node_id, expected_version, node.version)
            updated = replace(node, version=node.version + 1, **patch)
            self._nodes[node_id] = updated
        return updated

    def list_nodes(self, node_type: Optional[str] = None) -> List[WorkNode]:
        with self._lock:
            nodes = list(self._nodes.values())
        if node_type:
            nodes = [node for node in nodes if node.type == node_type]
        return nodes

    # Members

    def add_member(self, member: TeamMember) -> TeamMember:
        with self._lock:
            self._members[member.id] = member
        return member

    def get_member(self, member_id: str) -> TeamMember:
        with self._lock:
            member = self._members.get(member_id)
        if member is None:
            raise NotFoundError("member", member_id)
        return member

    def list_members(self) -> List[TeamMember]:
        with self._lock:
            return list(self._members.values())

    # Edges

    def add_edge(self, edge: GraphEdge) -> GraphEdge:
        with self._lock:
            self._edges[edge.id] = edge
        return edge

    def link(
        self,
        parent_id: str,
        child_id: str,
        rollup_contribution: bool = True,
        edge_id: Optional[str] = None,
    ) -> GraphEdge:
        edge = GraphEdge(
            id=edge_id or f"hierarchical-edge-{uuid.uuid4()}",
            source=parent_id,
            target=child_id,
            type=PARENT_CHILD_EDGE_TYPE,
            properties={"rollupContribution": rollup_contribution, "weight": 1},
        )
        return self.add_edge(edge)

    def get_edge(self, edge_id: str) -> GraphEdge:
        with self._lock:
            edge = self._edges.get(edge_id)
        if edge is None:
            raise NotFoundError("edge", edge_id)
        return edge

    def update_edge(self, edge_id: str, properties: Mapping[str, object]) -> GraphEdge:
        with self._lock:
            edge = self._edges.get(edge_id)
            if edge is None:
                raise NotFoundError("edge", edge_id)
            updated = replace(edge, properties={**edge.properties, **properties})
            self._edges[edge_id] = updated
        return updated

    def delete_edge(self, edge_id: str) -> GraphEdge:
        with self._lock:
            edge = self._edges.pop(edge_id, None)
        if edge is None:
            raise NotFoundError("edge", edge_id)
        return edge

    def list_edges(self) -> List[GraphEdge]:
        with self._lock:
            return list(self._edges.values())

    # Hierarchy

    def get_children(self, parent_type: str, parent_id: str) -> List[ChildSummary]:
        self.get_node(parent_type, parent_id)
        with self._lock:
            pairs = [
                (edge, self._nodes.get(edge.target))
                for edge in self._edges.values()
                if edge.type == PARENT_CHILD_EDGE_TYPE and edge.source == parent_id
            ]
        return [
            ChildSummary(
                id=child.id,
                title=child.title,
                direct_estimate=child.direct_estimate,
                rollup_estimate=child.rollup_estimate,
                rollup_contribution=edge.rollup_contribution,
                rollup_cost=child.rollup_cost,
                rollup_hours=child.rollup_hours,
            )
            for edge, child in pairs
            if child is not None
        ]

    def get_parent(self, node_id: str) -> Optional[ParentRef]:
        with self._lock:
            for edge in self._edges.values():
                if edge.type == PARENT_CHILD_EDGE_TYPE and edge.target == node_id:
                    parent = self._nodes.get(edge.source)
                    if parent is None:
                        raise NotFoundError("node", edge.source)
                    return ParentRef(id=parent.id, type=parent.type)
        return None


def parse_json_field(value: object, field_name: str) -> List[object]:
    """Accept a list or a JSON-encoded list; ``None`` and blanks become an empty list."""
    if value is None:
        return []
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        try:
            value = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"invalid JSON in '{field_name}'") from exc
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ValidationError(f"expected array for '{field_name}'")
    return list(value)


def _pick(record: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _optional_float(value: object, field_name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid number in '{field_name}': {value!r}") from exc


def member_allocation_from_record(record: Mapping[str, object]) -> MemberAllocation:
    member_id = _pick(record, "member_id", "memberId")
    if not member_id:
        raise ValidationError("member allocation requires a member id")
    return MemberAllocation(
        member_id=str(member_id),
        hours=_optional_float(_pick(record, "hours"), "hours") or 0.0,
        name=_pick(record, "name"),  # type: ignore[arg-type]
        hours_per_day=_optional_float(_pick(record, "hours_per_day", "hoursPerDay"), "hours_per_day"),
        start_date=_pick(record, "start_date", "startDate"),  # type: ignore[arg-type]
        end_date=_pick(record, "end_date", "endDate"),  # type: ignore[arg-type]
        cost=_optional_float(_pick(record, "cost"), "cost"),
    )


def team_allocation_from_record(record: Mapping[str, object]) -> TeamAllocation:
    team_id = _pick(record, "team_id", "teamId")
    if not team_id:
        raise ValidationError("team allocation requires a team id")
    members = parse_json_field(_pick(record, "allocated_members", "allocatedMembers"), "allocated_members")
    return TeamAllocation(
        team_id=str(team_id),
        requested_hours=_optional_float(_pick(record, "requested_hours", "requestedHours"), "requested_hours")
        or 0.0,
        allocated_members=tuple(member_allocation_from_record(item) for item in members),  # type: ignore[arg-type]
        start_date=_pick(record, "start_date", "startDate"),  # type: ignore[arg-type]
        end_date=_pick(record, "end_date", "endDate"),  # type: ignore[arg-type]
    )


def node_from_record(record: Mapping[str, object]) -> WorkNode:
    node_id = _pick(record, "id")
    node_type = _pick(record, "type")
    if not node_id or not node_type:
        raise ValidationError("nodes require 'id' and 'type'")
    allocations = parse_json_field(_pick(record, "team_allocations", "teamAllocations"), "team_allocations")
    return WorkNode(
        id=str(node_id),
        type=str(node_type),
        title=str(_pick(record, "title", "name") or node_id),
        direct_estimate=_optional_float(
            _pick(record, "direct_estimate", "directEstimate", "originalEstimate"), "direct_estimate"
        ),
        rollup_estimate=_optional_float(_pick(record, "rollup_estimate", "rollupEstimate"), "rollup_estimate"),
        rollup_cost=_optional_float(_pick(record, "rollup_cost", "rollupCost"), "rollup_cost"),
        rollup_hours=_optional_float(_pick(record, "rollup_hours", "rollupHours"), "rollup_hours"),
        duration_days=_optional_float(_pick(record, "duration_days", "duration"), "duration_days"),
        start_date=_pick(record, "start_date", "startDate"),  # type: ignore[arg-type]
        end_date=_pick(record, "end_date", "endDate"),  # type: ignore[arg-type]
        team_allocations=tuple(team_allocation_from_record(item) for item in allocations),  # type: ignore[arg-type]
    )


def member_from_record(record: Mapping[str, object]) -> TeamMember:
    member_id = _pick(record, "id", "member_id", "memberId")
    if not member_id:
        raise ValidationError("members require an 'id'")
    return TeamMember(
        id=str(member_id),
        name=str(_pick(record, "name", "title") or member_id),
        hours_per_day=_optional_float(_pick(record, "hours_per_day", "hoursPerDay"), "hours_per_day"),
        days_per_week=_optional_float(_pick(record, "days_per_week", "daysPerWeek"), "days_per_week"),
        weekly_capacity=_optional_float(_pick(record, "weekly_capacity", "weeklyCapacity"), "weekly_capacity"),
        daily_rate=_optional_float(_pick(record, "daily_rate", "dailyRate"), "daily_rate") or 0.0,
        hourly_rate=_optional_float(_pick(record, "hourly_rate", "hourlyRate", "rate"), "hourly_rate"),
        allocation=_optional_float(_pick(record, "allocation"), "allocation"),
    )


def edge_from_record(record: Mapping[str, object]) -> GraphEdge:
    source = _pick(record, "source", "from")
    target = _pick(record, "target", "to")
    if not source or not target:
        raise ValidationError("edges require 'source' and 'target'")
    properties = _pick(record, "properties") or {}
    if not isinstance(properties, Mapping):
        raise ValidationError("edge properties must be an object")
    return GraphEdge(
        id=str(_pick(record, "id") or f"edge-{uuid.uuid4()}"),
        source=str(source),
        target=str(target),
        type=str(_pick(record, "type") or PARENT_CHILD_EDGE_TYPE),
        properties=dict(properties),
    )


def node_to_record(node: WorkNode) -> Dict[str, object]:
    record = asdict(node)
    record.pop("version", None)
    return {key: value for key, value in record.items() if value not in (None, [], ())}


def member_to_record(member: TeamMember) -> Dict[str, object]:
    return {key: value for key, value in asdict(member).items() if value is not None}


def edge_to_record(edge: GraphEdge) -> Dict[str, object]:
    return asdict(edge)


def build_store(
    nodes: Iterable[Mapping[str, object]],
    members: Iterable[Mapping[str, object]] = (),
    edges: Iterable[Mapping[str, object]] = (),
) -> InMemoryGraphStore:
    store = InMemoryGraphStore()
    for record in nodes:
        store.add_node(node_from_record(record))
    for record in members:
        store.add_member(member_from_record(record))
    for record in edges:
        store.add_edge(edge_from_record(record))
    return store
