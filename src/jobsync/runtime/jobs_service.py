"""Admin-facing job-ingestion operations shared by the app and the CLI."""

from __future__ import annotations

from threading import RLock
from time import time
from typing import Any, Callable, Protocol
from uuid import uuid4

from src.jobsync.core.auth import Caller, require_admin
from src.jobsync.core.config_loader import get_pipeline_config
from src.jobsync.core.errors import ConflictError, InternalError
from src.jobsync.core.job_schema import JobRecord
from src.jobsync.core.job_status import STAGE_COMPLETED, STAGE_ERROR, STAGE_SCRAPING, JobStatus, JobStatusStore
from src.jobsync.core.log import get_logger
from src.jobsync.core.pipeline import PipelineOrchestrator, PipelineRunRequest, ProgressCallback
from src.jobsync.core.run_executor import RunExecutor
from src.jobsync.tools.kernel.apify_linkedin import SUPPORTED_SOURCES, default_search_url, scrape_linkedin_jobs
from src.jobsync.tools.kernel.google_sheets_jobs import SheetStore
from src.jobsync.tools.kernel.job_matcher import evaluate_job

logger = get_logger(__name__)


class JobStore(Protocol):
    def validate_connection(self) -> None: ...

    def initialize_headers(self) -> bool: ...

    def read_all(self) -> Any: ...

    def append_records(self, records: list[JobRecord], *, skip_duplicates: bool = False) -> list[JobRecord]: ...


class Orchestrator(Protocol):
    def run(self, request: PipelineRunRequest, on_progress: ProgressCallback | None = None) -> list[JobRecord]: ...


class JobsService:
    """Authorize callers and drive pipeline runs in the background."""

    def __init__(
        self,
        *,
        store_factory: Callable[[], JobStore],
        orchestrator_factory: Callable[[JobStore], Orchestrator],
        status_store: JobStatusStore | None = None,
        executor: RunExecutor | None = None,
        clock: Callable[[], float] = time,
        default_search_url: str = "",
        max_jobs_per_run: int = 200,
        supported_sources: list[str] | None = None,
    ) -> None:
        self._store_factory = store_factory
        self._orchestrator_factory = orchestrator_factory
        self._status_store = status_store or JobStatusStore()
        self._executor = executor or RunExecutor()
        self._clock = clock
        self._default_search_url = default_search_url
        self._max_jobs_per_run = max_jobs_per_run
        self._supported_sources = list(supported_sources or SUPPORTED_SOURCES)
        self._start_lock = RLock()

    @property
    def status_store(self) -> JobStatusStore:
        return self._status_store

    def list_jobs(self, caller: Caller) -> dict[str, Any]:
        require_admin(caller)
        try:
            jobs = [record.to_dict() for record in self._store_factory().read_all()]
        except Exception as exc:
            logger.error("Error fetching jobs: %s", exc)
            raise InternalError("Failed to fetch jobs from Google Sheets") from exc
        return {"ok": True, "jobs": jobs, "count": len(jobs)}

    def start_run(self, caller: Caller, request: PipelineRunRequest) -> dict[str, Any]:
        require_admin(caller)
        if request.max_jobs > self._max_jobs_per_run:
            raise ValueError(f"max_jobs must be <= {self._max_jobs_per_run}")

        with self._start_lock:
            run_id = f"job_{caller.user_id}_{int(self._clock() * 1000)}_{uuid4().hex[:8]}"
            initial = JobStatus(
                is_running=True,
                progress=0,
                stage=STAGE_SCRAPING,
                message="Initializing job scraping...",
            )
            if self._executor.stats()["running_count"] > 0:
                raise ConflictError("Job scraping is already in progress")
            if not self._status_store.try_begin(run_id, initial):
                raise ConflictError("Job scraping is already in progress")

            try:
                self._executor.submit(run_id, lambda: self._execute_run(run_id, request))
            except Exception as exc:
                self._status_store.finish(run_id, self._error_status(initial, exc))
                raise InternalError("Failed to start job scraping") from exc

        logger.info("Started run %s for %s (%s)", run_id, caller.user_id, request.to_dict())
        return {"ok": True, "run_id": run_id, "message": "Job scraping started successfully"}

    @staticmethod
    def _error_status(last: JobStatus, exc: BaseException) -> JobStatus:
        return JobStatus(
            is_running=False,
            progress=last.progress,
            stage=STAGE_ERROR,
            message="Job processing failed",
            jobs_found=last.jobs_found,
            jobs_matched=last.jobs_matched,
            error=str(exc) or exc.__class__.__name__,
        )

    def _execute_run(self, run_id: str, request: PipelineRunRequest) -> None:
        last = self._status_store.get(run_id) or JobStatus(
            is_running=True, progress=0, stage=STAGE_SCRAPING, message="Initializing job scraping..."
        )

        def on_progress(status: JobStatus) -> None:
            nonlocal last
            last = status
            self._status_store.set(run_id, status)

        try:
            orchestrator = self._orchestrator_factory(self._store_factory())
            saved = orchestrator.run(request, on_progress)
        except Exception as exc:
            logger.error("Run %s failed: %s", run_id, exc, exc_info=True)
            self._status_store.finish(run_id, self._error_status(last, exc))
            return

        self._status_store.finish(
            run_id,
            JobStatus(
                is_running=False,
                progress=100,
                stage=STAGE_COMPLETED,
                message=f"Successfully found {len(saved)} matching jobs!",
                jobs_found=last.jobs_found,
                jobs_matched=last.jobs_matched,
            ),
        )
        logger.info("Run %s completed: %d jobs saved", run_id, len(saved))

    def get_status(self, caller: Caller) -> dict[str, Any]:
        require_admin(caller)
        return {"ok": True, "status": self._status_store.latest().to_dict()}

    def validate_connections(self, caller: Caller) -> dict[str, Any]:
        require_admin(caller)
        results: dict[str, Any] = {"google_sheets": False, "sheets_initialized": False, "errors": []}
        try:
            store = self._store_factory()
            store.validate_connection()
            results["google_sheets"] = True
            store.initialize_headers()
            results["sheets_initialized"] = True
        except Exception as exc:
            results["errors"].append(f"Google Sheets: {exc}")
        return {"ok": not results["errors"], "validation_results": results}

    def get_config(self, caller: Caller) -> dict[str, Any]:
        require_admin(caller)
        return {
            "ok": True,
            "config": {
                "default_search_url": self._default_search_url,
                "max_jobs_per_run": self._max_jobs_per_run,
                "supported_sources": list(self._supported_sources),
            },
        }

    def clear_status(self, caller: Caller) -> dict[str, Any]:
        require_admin(caller)
        self._status_store.clear()
        return {"ok": True, "message": "Job status cleared"}

    def health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "source": "jobs_service",
            "executor": self._executor.stats(),
            "current_run_id": self._status_store.current_run_id,
            "status": self._status_store.latest().to_dict(),
        }

    def wait_for_idle(self, timeout_sec: float = 5.0) -> bool:
        return self._executor.wait_for_idle(timeout_sec=timeout_sec)


def build_jobs_service(config: dict[str, Any] | None = None) -> JobsService:
    """Wire the service to Google Sheets, Apify and the LLM matcher from config."""
    pipeline_cfg = get_pipeline_config(config)

    def store_factory() -> JobStore:
        return SheetStore.from_config(config)

    def orchestrator_factory(store: JobStore) -> Orchestrator:
        return PipelineOrchestrator(
            store=store,
            scraper=scrape_linkedin_jobs,
            matcher=evaluate_job,
            scrape_timeout_sec=pipeline_cfg["scrape_timeout_sec"],
            match_timeout_sec=pipeline_cfg["match_timeout_sec"],
            persist_timeout_sec=pipeline_cfg["persist_timeout_sec"],
            match_delay_sec=pipeline_cfg["match_delay_sec"],
        )

    return JobsService(
        store_factory=store_factory,
        orchestrator_factory=orchestrator_factory,
        status_store=JobStatusStore(retention_sec=pipeline_cfg["retention_sec"]),
        default_search_url=default_search_url(config),
        max_jobs_per_run=pipeline_cfg["max_jobs_per_run"],
    )


_JOBS_SERVICE: JobsService | None = None


def get_jobs_service() -> JobsService:
    global _JOBS_SERVICE
    if _JOBS_SERVICE is None:
        _JOBS_SERVICE = build_jobs_service()
    return _JOBS_SERVICE
