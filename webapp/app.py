from __future__ import annotations

import math
import os
import threading
import time
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Mapping, Optional

from flask import Flask, jsonify, request, url_for

from resource_planner.capacity import compute_effective_capacity, weekly_capacity, with_defaults
from resource_planner.cost import member_allocation_details, node_cost_summary
from resource_planner.errors import CycleDetectedError, NotFoundError, ValidationError
from resource_planner.io_utils import load_config, load_graph
from resource_planner.models import CostSummary, MemberAllocationReport, PlanningConfig, TeamMember
from resource_planner.rollup import recalculate_rollup
from resource_planner.store import GraphStore, InMemoryGraphStore
from resource_planner.weekly import check_member_availability, member_conflicts

from .jobs import Job, JobStore


def _resolve_store() -> GraphStore:
    env_value = os.getenv("GRAPH_PATH")
    if env_value:
        return load_graph(Path(env_value).expanduser().resolve())
    return InMemoryGraphStore()


def _resolve_config() -> PlanningConfig:
    env_value = os.getenv("PLANNER_CONFIG")
    if env_value:
        return load_config(Path(env_value).expanduser().resolve())
    return PlanningConfig()


def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def _cost_to_dict(summary: CostSummary) -> Dict[str, object]:
    lines = []
    for line in summary.allocations:
        payload = asdict(line)
        payload["allocation_percent"] = _finite_or_none(line.allocation_percent)
        lines.append(payload)
    return {
        "daily_cost": summary.daily_cost,
        "total_cost": summary.total_cost,
        "total_hours": summary.total_hours,
        "total_days": summary.total_days,
        "calendar_duration": summary.calendar_duration,
        "allocations": lines,
    }


def _report_to_dict(report: MemberAllocationReport) -> Dict[str, object]:
    return {
        "member_id": report.member_id,
        "name": report.name,
        "weekly_capacity": report.weekly_capacity,
        "effective_capacity": report.effective_capacity,
        "over_allocated": report.is_over_allocated,
        "weeks": [asdict(week) for week in report.weeks],
        "failures": [asdict(failure) for failure in report.failures],
    }


def _number(data: Mapping[str, object], key: str, default: Optional[float] = None) -> Optional[float]:
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key} must be a number")
    if value < 0:
        raise ValidationError(f"{key} must not be negative")
    return float(value)


def _job_to_dict(job: Job) -> Dict[str, object]:
    payload = job.to_dict()
    payload["status_url"] = url_for("status_job", job_id=job.id)
    return payload


def create_app(store: Optional[GraphStore] = None, config: Optional[PlanningConfig] = None) -> Flask:
    app = Flask(__name__)
    graph_store = store if store is not None else _resolve_store()
    cfg = config if config is not None else _resolve_config()
    job_store = JobStore()
    app.config["GRAPH_STORE"] = graph_store
    app.config["PLANNING_CONFIG"] = cfg
    app.config["JOB_STORE"] = job_store

    def _roster() -> Dict[str, TeamMember]:
        return {member.id: with_defaults(member, cfg) for member in graph_store.list_members()}

    def _recalculate(node_type: str, node_id: str, cancel_event: Optional[threading.Event] = None):
        deadline = (
            time.monotonic() + cfg.recalculation_timeout_seconds
            if cfg.recalculation_timeout_seconds
            else None
        )
        return recalculate_rollup(
            graph_store,
            node_type,
            node_id,
            members=_roster(),
            cancel_event=cancel_event,
            deadline=deadline,
        )

    @app.post("/api/graph/<node_type>/<node_id>/recalculate")
    def recalculate(node_type: str, node_id: str):
        try:
            graph_store.get_node(node_type, node_id)
        except NotFoundError as exc:
            return jsonify({"success": False, "error": str(exc)}), 404
        try:
            result = _recalculate(node_type, node_id)
        except CycleDetectedError as exc:
            return jsonify({"success": False, "error": str(exc), "path": list(exc.path)}), 409
        except ValidationError as exc:
            return jsonify({"success": False, "error": str(exc)}), 400
        payload = result.to_dict()
        payload["success"] = result.ok
        if result.updated_ids:
            payload["upToDateThrough"] = result.updated_ids[-1]
        return jsonify(payload), 200 if result.ok else 500

    @app.post("/api/graph/<node_type>/<node_id>/recalculate/async")
    def recalculate_async(node_type: str, node_id: str):
        job = job_store.create_job(
            node_type, node_id, lambda event: _recalculate(node_type, node_id, event)
        )
        job_store.start_job(job)
        status_url = url_for("status_job", job_id=job.id)
        return jsonify({"job_id": job.id, "status_url": status_url}), 202

    @app.get("/api/jobs")
    def list_jobs():
        return jsonify({"jobs": [_job_to_dict(job) for job in job_store.list_jobs()]})

    @app.get("/api/jobs/<job_id>")
    def status_job(job_id: str):
        job = job_store.get_job(job_id)
        if not job:
            return jsonify({"error": "job not found"}), 404
        return jsonify(_job_to_dict(job))

    @app.post("/api/jobs/<job_id>/cancel")
    def cancel_job(job_id: str):
        job = job_store.cancel_job(job_id)
        if not job:
            return jsonify({"error": "job not found"}), 404
        return jsonify(_job_to_dict(job))

    @app.get("/api/members/<member_id>/availability")
    def member_availability(member_id: str):
        try:
            member = with_defaults(graph_store.get_member(member_id), cfg)
        except NotFoundError as exc:
            return jsonify({"error": str(exc)}), 404
        report = member_conflicts(member, graph_store.list_nodes())
        payload = _report_to_dict(report)
        start = request.args.get("start")
        end = request.args.get("end")
        if start and end:
            try:
                available, hours, over_by = check_member_availability(
                    report, start, end, days_per_week=member.days_per_week or cfg.days_per_week
                )
            except ValidationError as exc:
                return jsonify({"error": str(exc)}), 400
            payload["window"] = {
                "start": start,
                "end": end,
                "available": available,
                "available_hours": hours,
                "over_allocated_by": over_by,
            }
        return jsonify(payload)

    @app.post("/api/members/<member_id>/allocation")
    def member_allocation(member_id: str):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "request body must be a JSON object"}), 400
        try:
            member = with_defaults(graph_store.get_member(member_id), cfg)
        except NotFoundError as exc:
            return jsonify({"error": str(exc)}), 404
        try:
            hours = _number(data, "hours")
            if hours is None:
                raise ValidationError("hours is required")
            details = member_allocation_details(
                data.get("start_date"),
                data.get("end_date"),
                _number(data, "duration_days", cfg.default_duration_days),
                member,
                hours,
            )
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"member_id": member.id, **asdict(details)})

    @app.get("/api/graph/<node_type>/<node_id>/cost")
    def node_cost(node_type: str, node_id: str):
        try:
            node = graph_store.get_node(node_type, node_id)
        except NotFoundError as exc:
            return jsonify({"error": str(exc)}), 404
        try:
            summary = node_cost_summary(node, _roster(), cfg.default_duration_days)
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"node_id": node.id, **_cost_to_dict(summary)})

    @app.post("/api/capacity")
    def capacity():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "request body must be a JSON object"}), 400
        try:
            weekly = weekly_capacity(
                _number(data, "hours_per_day"),
                _number(data, "days_per_week"),
                _number(data, "weekly_capacity_hours"),
            )
            allocation = _number(data, "allocation_percent", 100)
            duration = _number(data, "duration_days")
            work_days = _number(data, "work_days_per_week", cfg.days_per_week)
            if not work_days or work_days > 7:
                raise ValidationError("work_days_per_week must be in (0, 7]")
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        hours = compute_effective_capacity(weekly, allocation, duration, work_days)
        return jsonify(
            {
                "weekly_capacity_hours": weekly,
                "allocation_percent": allocation,
                "duration_days": duration,
                "work_days_per_week": work_days,
                "effective_capacity_hours": hours,
            }
        )

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
