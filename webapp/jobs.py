from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional

from resource_planner.errors import PlannerError
from resource_planner.models import RollupResult, RollupStatus

JobState = Literal["queued", "running", "done", "failed", "cancelled"]
MAX_MESSAGE_LENGTH = 2000

Runner = Callable[[threading.Event], RollupResult]

logger = logging.getLogger(__name__)

_FINAL_STATES = {
    RollupStatus.SUCCEEDED: "done",
    RollupStatus.CANCELLED: "cancelled",
    RollupStatus.FAILED: "failed",
    RollupStatus.PARTIALLY_FAILED: "failed",
}


def _now_iso() -> str:
    """Return current UTC timestamp as ISO string with second precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _trim_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Clamp message length to avoid unbounded memory growth."""
    if len(text) <= limit:
        return text
    return text[-limit:]


def _final_message(result: RollupResult) -> str:
    if result.ok:
        return f"Updated {len(result.updated_ids)} node(s)"
    base = f"{result.status.value} at {result.failed_at_id}"
    return _trim_message(f"{base}: {result.error}" if result.error else base)


@dataclass
class Job:
    id: str
    node_type: str
    node_id: str
    state: JobState = "queued"
    created_at: str = field(default_factory=_now_iso)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    result: Optional[Dict[str, object]] = None
    message: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "node_type": self.node_type,
            "node_id": self.node_id,
            "state": self.state,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": copy.deepcopy(self.result),
            "message": self.message,
        }


class JobStore:
    """In-memory registry of rollup recalculations running on background threads."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._runners: Dict[str, Runner] = {}
        self._events: Dict[str, threading.Event] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def create_job(self, node_type: str, node_id: str, runner: Runner) -> Job:
        job = Job(id=str(uuid.uuid4()), node_type=node_type, node_id=node_id)
        with self._lock:
            self._jobs[job.id] = job
            self._runners[job.id] = runner
            self._events[job.id] = threading.Event()
        return job

    def start_job(self, job: Job) -> None:
        thread = threading.Thread(target=self._run_job, args=(job.id,), daemon=True)
        with self._lock:
            self._threads[job.id] = thread
        thread.start()

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_jobs(self) -> List[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [copy.deepcopy(job) for job in jobs]

    def cancel_job(self, job_id: str) -> Optional[Job]:
        """Signal a queued or running job to stop before its next node."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.state in ("queued", "running"):
                self._events[job_id].set()
        return self.get_job(job_id)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[Job]:
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
        return self.get_job(job_id)

    def _update_job(self, job_id: str, **changes: object) -> None:
        with self._lock:
            job = self._jobs[job_id]
            for key, value in changes.items():
                if key == "message" and isinstance(value, str):
                    value = _trim_message(value)
                setattr(job, key, value)

    def _run_job(self, job_id: str) -> None:
        with self._lock:
            runner = self._runners[job_id]
            event = self._events[job_id]
        self._update_job(job_id, state="running", started_at=_now_iso())
        try:
            result = runner(event)
        except PlannerError as exc:
            logger.warning("Job %s failed: %s", job_id, exc)
            self._update_job(
                job_id,
                state="failed",
                finished_at=_now_iso(),
                message=_trim_message(str(exc)),
            )
            return
        self._update_job(
            job_id,
            state=_FINAL_STATES[result.status],
            finished_at=_now_iso(),
            result=result.to_dict(),
            message=_final_message(result),
        )
