from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

import pandas as pd

from .models import PlanningConfig
from .store import (
    InMemoryGraphStore,
    build_store,
    edge_to_record,
    member_to_record,
    node_to_record,
)


def _require_list(data: Dict[str, object], key: str) -> List[Dict[str, object]]:
    value = data.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a JSON array")
    for entry in value:
        if not isinstance(entry, dict):
            raise ValueError(f"'{key}' entries must be objects")
    return value


def _positive_number(data: Dict[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    if value <= 0:
        raise ValueError(f"{key} must be positive")
    return float(value)


def load_config(path: str | Path) -> PlanningConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    hours_per_day = _positive_number(data, "hours_per_day", 8)
    days_per_week = _positive_number(data, "days_per_week", 5)
    if days_per_week > 7:
        raise ValueError("days_per_week must be in (0, 7]")
    default_duration_days = data.get("default_duration_days", 10)
    if isinstance(default_duration_days, bool) or not isinstance(default_duration_days, int):
        raise ValueError("default_duration_days must be an integer")
    if default_duration_days <= 0:
        raise ValueError("default_duration_days must be positive")
    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")
    timeout = data.get("recalculation_timeout_seconds")
    if timeout is not None:
        timeout = _positive_number(data, "recalculation_timeout_seconds", 0)
    return PlanningConfig(
        hours_per_day=hours_per_day,
        days_per_week=days_per_week,
        default_duration_days=default_duration_days,
        logging_level=logging_level,
        recalculation_timeout_seconds=timeout,
    )


def load_graph(path: str | Path) -> InMemoryGraphStore:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("graph file must be a JSON object with nodes, members and edges")
    nodes = _require_list(data, "nodes")
    if not nodes:
        raise ValueError("graph file has no nodes")
    return build_store(nodes, _require_list(data, "members"), _require_list(data, "edges"))


def save_graph(store: InMemoryGraphStore, path: str | Path) -> None:
    payload = {
        "nodes": [node_to_record(node) for node in store.list_nodes()],
        "members": [member_to_record(member) for member in store.list_members()],
        "edges": [edge_to_record(edge) for edge in store.list_edges()],
    }
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload, indent=2) + "\n")


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
