"""Background execution of pipeline runs with a per-task error boundary."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Event, RLock, Thread
from typing import Any, Callable

from .log import get_logger

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class TaskRecord:
    """Runtime state for one background task."""

    task_id: str
    status: str = "running"
    started_at: str | None = None
    finished_at: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }


class RunExecutor:
    """Run callables on daemon threads and track them until they finish.

    A task body is expected to record its own outcome. Anything that still
    escapes is logged and kept on the task record; it never reaches the
    thread's default excepthook.
    """

    def __init__(self, *, name: str = "jobsync-run", history_limit: int = 50) -> None:
        self._name = name
        self._history_limit = max(1, int(history_limit))
        self._tasks: dict[str, TaskRecord] = {}
        self._threads: dict[str, Thread] = {}
        self._lock = RLock()
        self._idle_event = Event()
        self._idle_event.set()

    def submit(self, task_id: str, fn: Callable[[], Any]) -> TaskRecord:
        with self._lock:
            if task_id in self._threads:
                raise ValueError(f"Task already running: {task_id}")
            record = TaskRecord(task_id=task_id, started_at=_utc_now_iso())
            self._tasks[task_id] = record
            self._trim_history_locked()
            thread = Thread(target=self._run_task, args=(task_id, fn), name=f"{self._name}:{task_id}", daemon=True)
            self._threads[task_id] = thread
            self._idle_event.clear()
            try:
                thread.start()
            except RuntimeError:
                self._threads.pop(task_id, None)
                self._tasks.pop(task_id, None)
                if not self._threads:
                    self._idle_event.set()
                raise
            return record

    def _run_task(self, task_id: str, fn: Callable[[], Any]) -> None:
        error: str | None = None
        try:
            fn()
        except Exception as exc:
            logger.exception("Background task %s failed outside its own error handling", task_id)
            error = str(exc) or exc.__class__.__name__

        with self._lock:
            record = self._tasks.get(task_id)
            if record is not None:
                record.status = "failed" if error else "done"
                record.error = error
                record.finished_at = _utc_now_iso()
            self._threads.pop(task_id, None)
            if not self._threads:
                self._idle_event.set()

    def _trim_history_locked(self) -> None:
        finished = [task_id for task_id, record in self._tasks.items() if record.status != "running"]
        overflow = len(self._tasks) - self._history_limit
        for task_id in finished[: max(0, overflow)]:
            self._tasks.pop(task_id, None)

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._tasks.get(task_id)
            return record.to_dict() if record is not None else None

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "running_count": len(self._threads),
                "tracked_count": len(self._tasks),
                "running": sorted(self._threads),
            }

    def wait_for_idle(self, timeout_sec: float = 5.0) -> bool:
        """Block until no background tasks remain."""
        return self._idle_event.wait(timeout=timeout_sec)
