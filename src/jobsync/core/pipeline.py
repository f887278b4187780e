"""Scrape -> match -> persist pipeline for one job-ingestion run."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from time import sleep
from typing import Any, Callable, Protocol, TypeVar

from .errors import StageTimeoutError
from .job_schema import JobRecord
from .job_status import STAGE_MATCHING, STAGE_PERSISTING, STAGE_SCRAPING, JobStatus
from .log import get_logger

MIN_MAX_JOBS = 1
MAX_MAX_JOBS = 200

SCRAPE_START_PERCENT = 10
SCRAPE_DONE_PERCENT = 40
MATCH_DONE_PERCENT = 80
PERSIST_START_PERCENT = 85

JobScraper = Callable[[int], list[JobRecord]]
JobMatcher = Callable[[JobRecord], JobRecord | None]
ProgressCallback = Callable[[JobStatus], None]

T = TypeVar("T")

logger = get_logger(__name__)


class JobSink(Protocol):
    """Persistence target; an optional `existing_keys()` lets runs skip stored postings early."""

    def initialize_headers(self) -> bool: ...

    def append_records(self, records: list[JobRecord], *, skip_duplicates: bool = False) -> list[JobRecord]: ...


@dataclass(frozen=True, slots=True)
class PipelineRunRequest:
    max_jobs: int = 100
    skip_duplicates: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.max_jobs, bool) or not isinstance(self.max_jobs, int):
            raise ValueError("max_jobs must be an integer")
        if not MIN_MAX_JOBS <= self.max_jobs <= MAX_MAX_JOBS:
            raise ValueError(f"max_jobs must be between {MIN_MAX_JOBS} and {MAX_MAX_JOBS}")

    def to_dict(self) -> dict[str, Any]:
        return {"maxJobs": self.max_jobs, "skipDuplicates": self.skip_duplicates}


def call_with_timeout(stage: str, timeout_sec: float | None, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run `fn` on a helper thread; a hung call fails the stage instead of the run hanging."""
    if timeout_sec is None:
        return fn(*args, **kwargs)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"jobsync-{stage}")
    try:
        future = executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout_sec)
        except FutureTimeoutError as exc:
            future.cancel()
            raise StageTimeoutError(stage, timeout_sec) from exc
    finally:
        executor.shutdown(wait=False)


class _ProgressEmitter:
    """Forward statuses to the callback, never letting `progress` go backwards."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._last_progress = 0
        self.jobs_found = 0
        self.jobs_matched = 0

    def emit(self, *, stage: str, progress: float, message: str) -> None:
        value = max(self._last_progress, min(100, int(progress)))
        self._last_progress = value
        if self._callback is None:
            return
        self._callback(
            JobStatus(
                is_running=True,
                progress=value,
                stage=stage,
                message=message,
                jobs_found=self.jobs_found,
                jobs_matched=self.jobs_matched,
            )
        )


class PipelineOrchestrator:
    """Run one end-to-end ingestion cycle.

    The orchestrator does not lock anything; callers must make sure only one
    run is in flight.
    """

    def __init__(
        self,
        *,
        store: JobSink,
        scraper: JobScraper,
        matcher: JobMatcher,
        scrape_timeout_sec: float | None = 600.0,
        match_timeout_sec: float | None = 60.0,
        persist_timeout_sec: float | None = 120.0,
        match_delay_sec: float = 0.0,
    ) -> None:
        self._store = store
        self._scraper = scraper
        self._matcher = matcher
        self._scrape_timeout_sec = scrape_timeout_sec
        self._match_timeout_sec = match_timeout_sec
        self._persist_timeout_sec = persist_timeout_sec
        self._match_delay_sec = max(0.0, float(match_delay_sec))

    def run(self, request: PipelineRunRequest, on_progress: ProgressCallback | None = None) -> list[JobRecord]:
        progress = _ProgressEmitter(on_progress)
        scraped = self._scrape(request, progress)
        fresh = self._drop_known(scraped) if request.skip_duplicates else scraped
        matched = self._match(fresh, progress)
        return self._persist(matched, request, progress)

    def _drop_known(self, scraped: list[JobRecord]) -> list[JobRecord]:
        """Skip postings already in the store so they are not sent to the matcher."""
        existing_keys = getattr(self._store, "existing_keys", None)
        if existing_keys is None or not scraped:
            return scraped
        known = call_with_timeout(STAGE_MATCHING, self._persist_timeout_sec, existing_keys)
        fresh = [record for record in scraped if record.job_key not in known]
        if len(fresh) < len(scraped):
            logger.info("Skipping %d already stored jobs before matching", len(scraped) - len(fresh))
        return fresh

    def _scrape(self, request: PipelineRunRequest, progress: _ProgressEmitter) -> list[JobRecord]:
        progress.emit(stage=STAGE_SCRAPING, progress=SCRAPE_START_PERCENT, message="Scraping jobs from LinkedIn...")
        raw = call_with_timeout(STAGE_SCRAPING, self._scrape_timeout_sec, self._scraper, request.max_jobs)
        scraped = list(raw or [])[: request.max_jobs]
        progress.jobs_found = len(scraped)
        logger.info("Scrape stage found %d jobs (limit %d)", len(scraped), request.max_jobs)
        progress.emit(
            stage=STAGE_SCRAPING,
            progress=SCRAPE_DONE_PERCENT,
            message=f"Found {len(scraped)} jobs, evaluating matches...",
        )
        return scraped

    def _match(self, scraped: list[JobRecord], progress: _ProgressEmitter) -> list[JobRecord]:
        matches: list[JobRecord] = []
        total = len(scraped)
        span = MATCH_DONE_PERCENT - SCRAPE_DONE_PERCENT
        for index, record in enumerate(scraped, start=1):
            evaluated = call_with_timeout(STAGE_MATCHING, self._match_timeout_sec, self._matcher, record)
            if evaluated is not None and evaluated.matched:
                matches.append(evaluated)
            progress.jobs_matched = len(matches)
            progress.emit(
                stage=STAGE_MATCHING,
                progress=SCRAPE_DONE_PERCENT + span * index / total,
                message=f"Evaluated {index}/{total} jobs...",
            )
            if self._match_delay_sec and index < total:
                sleep(self._match_delay_sec)
        if not scraped:
            progress.emit(stage=STAGE_MATCHING, progress=MATCH_DONE_PERCENT, message="No jobs to evaluate.")
        logger.info("Match stage kept %d of %d jobs", len(matches), total)
        return matches

    def _persist(
        self,
        matches: list[JobRecord],
        request: PipelineRunRequest,
        progress: _ProgressEmitter,
    ) -> list[JobRecord]:
        progress.emit(
            stage=STAGE_PERSISTING,
            progress=PERSIST_START_PERCENT,
            message="Saving matching jobs to Google Sheets...",
        )

        def _write() -> list[JobRecord]:
            self._store.initialize_headers()
            return self._store.append_records(matches, skip_duplicates=request.skip_duplicates)

        saved = call_with_timeout(STAGE_PERSISTING, self._persist_timeout_sec, _write) if matches else []
        logger.info("Persist stage saved %d of %d matching jobs", len(saved), len(matches))
        progress.emit(stage=STAGE_PERSISTING, progress=100, message=f"Saved {len(saved)} jobs.")
        return saved
