"""In-process run status tracking for the job-ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from threading import RLock
from time import monotonic
from typing import Any, Callable

STAGE_SCRAPING = "scraping"
STAGE_MATCHING = "matching"
STAGE_PERSISTING = "persisting"
STAGE_COMPLETED = "completed"
STAGE_ERROR = "error"

RUNNING_STAGES = frozenset({STAGE_SCRAPING, STAGE_MATCHING, STAGE_PERSISTING})
TERMINAL_STAGES = frozenset({STAGE_COMPLETED, STAGE_ERROR})
ALL_STAGES = RUNNING_STAGES | TERMINAL_STAGES

IDLE_MESSAGE = "No jobs running"


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class JobStatus:
    """Live state of one pipeline run."""

    is_running: bool
    progress: int
    stage: str
    message: str
    jobs_found: int = 0
    jobs_matched: int = 0
    error: str | None = None
    run_id: str | None = None
    updated_at: str = field(default_factory=_utc_now_iso)

    def __post_init__(self) -> None:
        if self.stage not in ALL_STAGES:
            raise ValueError(f"Unknown stage: {self.stage}")
        if self.is_running and self.stage in TERMINAL_STAGES:
            raise ValueError(f"A running status cannot be in terminal stage '{self.stage}'")
        self.progress = max(0, min(100, int(self.progress)))

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "isRunning": self.is_running,
            "progress": self.progress,
            "stage": self.stage,
            "message": self.message,
            "jobsFound": self.jobs_found,
            "jobsMatched": self.jobs_matched,
            "updatedAt": self.updated_at,
        }
        if self.error is not None:
            out["error"] = self.error
        if self.run_id is not None:
            out["runId"] = self.run_id
        return out


def idle_status() -> JobStatus:
    return JobStatus(is_running=False, progress=0, stage=STAGE_COMPLETED, message=IDLE_MESSAGE)


class JobStatusStore:
    """Transient run-id -> status map with retention expiry.

    Entries are purged lazily on every operation once their deadline passes, so
    a fake `clock` is enough to exercise expiry.
    """

    def __init__(self, *, retention_sec: float = 3600.0, clock: Callable[[], float] = monotonic) -> None:
        if retention_sec <= 0:
            raise ValueError("retention_sec must be > 0")
        self._retention_sec = float(retention_sec)
        self._clock = clock
        self._lock = RLock()
        self._statuses: dict[str, JobStatus] = {}
        self._deadlines: dict[str, float] = {}
        self._current_run_id: str | None = None

    @property
    def retention_sec(self) -> float:
        return self._retention_sec

    @property
    def current_run_id(self) -> str | None:
        with self._lock:
            self._purge_expired()
            return self._current_run_id

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [run_id for run_id, deadline in self._deadlines.items() if deadline <= now]
        for run_id in expired:
            self._deadlines.pop(run_id, None)
            self._statuses.pop(run_id, None)
            if self._current_run_id == run_id:
                self._current_run_id = None

    def set(self, run_id: str, status: JobStatus) -> None:
        if not isinstance(status, JobStatus):
            raise TypeError("status must be a JobStatus")
        with self._lock:
            self._purge_expired()
            self._statuses[run_id] = replace(status, run_id=run_id)

    def get(self, run_id: str) -> JobStatus | None:
        with self._lock:
            self._purge_expired()
            return self._statuses.get(run_id)

    def latest(self) -> JobStatus:
        with self._lock:
            self._purge_expired()
            if self._current_run_id is not None and self._current_run_id in self._statuses:
                return self._statuses[self._current_run_id]
            if self._statuses:
                return next(reversed(self._statuses.values()))
            return idle_status()

    def any_running(self) -> bool:
        with self._lock:
            self._purge_expired()
            return any(status.is_running for status in self._statuses.values())

    def try_begin(self, run_id: str, status: JobStatus) -> bool:
        """Insert `status` as the current run unless another run is in flight."""
        if not status.is_running:
            raise ValueError("try_begin requires a running status")
        with self._lock:
            if self.any_running():
                return False
            self._statuses.pop(run_id, None)
            self._deadlines.pop(run_id, None)
            self.set(run_id, status)
            self._current_run_id = run_id
            return True

    def finish(self, run_id: str, status: JobStatus) -> None:
        if not status.is_terminal:
            raise ValueError("finish requires a terminal status")
        with self._lock:
            self.set(run_id, status)
            if self._current_run_id == run_id:
                self._current_run_id = None
            self.expire(run_id)

    def expire(self, run_id: str, after_sec: float | None = None) -> None:
        delay = self._retention_sec if after_sec is None else max(0.0, float(after_sec))
        with self._lock:
            if run_id in self._statuses:
                self._deadlines[run_id] = self._clock() + delay

    def clear(self) -> None:
        """Drop finished runs; an in-flight run keeps its entry and the current pointer."""
        with self._lock:
            for run_id in [run_id for run_id, status in self._statuses.items() if not status.is_running]:
                self._statuses.pop(run_id, None)
                self._deadlines.pop(run_id, None)
            if self._current_run_id not in self._statuses:
                self._current_run_id = None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            self._purge_expired()
            return {run_id: status.to_dict() for run_id, status in self._statuses.items()}
