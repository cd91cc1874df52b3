from __future__ import annotations

from typing import Optional, Sequence


class PlannerError(Exception):
    """Base class for resource planner failures."""


class ValidationError(PlannerError, ValueError):
    pass


class DateParseError(ValidationError):
    def __init__(self, value: object, field_name: str = "date") -> None:
        super().__init__(f"invalid date in '{field_name}': {value!r}")
        self.value = value
        self.field_name = field_name


class NotFoundError(PlannerError, LookupError):
    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = ident


class CycleDetectedError(PlannerError):
    def __init__(self, path: Sequence[str]) -> None:
        joined = " -> ".join(path)
        super().__init__(f"cycle detected in parent chain: {joined}")
        self.path = tuple(path)


class StoreError(PlannerError):
    def __init__(self, message: str, node_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.node_id = node_id


class ConcurrentUpdateError(StoreError):
    def __init__(self, node_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"node {node_id} changed concurrently (expected version {expected}, found {actual})",
            node_id=node_id,
        )
        self.expected = expected
        self.actual = actual
