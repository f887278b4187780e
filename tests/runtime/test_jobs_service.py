import threading

import pytest

from src.jobsync.core.auth import Caller
from src.jobsync.core.errors import ConflictError, ForbiddenError, InternalError, ServiceConnectionError
from src.jobsync.core.job_schema import JobRecord
from src.jobsync.core.job_status import (
    IDLE_MESSAGE,
    STAGE_COMPLETED,
    STAGE_ERROR,
    STAGE_MATCHING,
    JobStatus,
    JobStatusStore,
)
from src.jobsync.core.pipeline import PipelineOrchestrator, PipelineRunRequest
from src.jobsync.core.run_executor import RunExecutor
from src.jobsync.runtime.jobs_service import JobsService

ADMIN = Caller(user_id="alice", is_admin=True)
GUEST = Caller(user_id="bob", is_admin=False)


def _job(idx: int) -> JobRecord:
    return JobRecord(job_key=f"k{idx}", title=f"Role {idx}", company="Acme", location="Remote")


class FakeStore:
    def __init__(self, rows: list[JobRecord] | None = None, *, broken: Exception | None = None) -> None:
        self.rows = list(rows or [])
        self.broken = broken
        self.calls: list[str] = []

    def validate_connection(self) -> None:
        self.calls.append("validate_connection")
        if self.broken:
            raise self.broken

    def initialize_headers(self) -> bool:
        self.calls.append("initialize_headers")
        return True

    def read_all(self):
        self.calls.append("read_all")
        if self.broken:
            raise self.broken
        return list(self.rows)

    def append_records(self, records, *, skip_duplicates=False):
        self.calls.append("append_records")
        self.rows.extend(records)
        return list(records)


class BlockingOrchestrator:
    """Holds the run in the matching stage until released."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()

    def run(self, request, on_progress=None):
        on_progress(JobStatus(is_running=True, progress=40, stage=STAGE_MATCHING, message="Evaluating", jobs_found=3))
        self.entered.set()
        self.release.wait(5)
        return []


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        self.now += 1
        return self.now


def _service(store: FakeStore, orchestrator_factory, **kwargs) -> JobsService:
    return JobsService(
        store_factory=lambda: store,
        orchestrator_factory=orchestrator_factory,
        clock=FakeClock(),
        default_search_url="https://www.linkedin.com/jobs/search/?keywords=python",
        **kwargs,
    )


def _pipeline_factory(matcher, scraper=None):
    def factory(store):
        return PipelineOrchestrator(
            store=store,
            scraper=scraper or (lambda n: [_job(i) for i in range(10)]),
            matcher=matcher,
            scrape_timeout_sec=5,
            match_timeout_sec=5,
            persist_timeout_sec=5,
        )

    return factory


@pytest.mark.parametrize(
    "call",
    [
        lambda svc: svc.list_jobs(GUEST),
        lambda svc: svc.start_run(GUEST, PipelineRunRequest()),
        lambda svc: svc.get_status(GUEST),
        lambda svc: svc.validate_connections(GUEST),
        lambda svc: svc.get_config(GUEST),
        lambda svc: svc.clear_status(GUEST),
    ],
)
def test_non_admin_is_forbidden_without_side_effects(call):
    store = FakeStore()
    service = _service(store, _pipeline_factory(lambda r: r))
    with pytest.raises(ForbiddenError):
        call(service)
    assert store.calls == []
    assert service.status_store.snapshot() == {}


def test_list_jobs_returns_all_rows():
    service = _service(FakeStore([_job(1), _job(2)]), _pipeline_factory(lambda r: r))
    out = service.list_jobs(ADMIN)
    assert out["ok"] is True
    assert out["count"] == 2
    assert [job["jobKey"] for job in out["jobs"]] == ["k1", "k2"]


def test_list_jobs_wraps_store_failure():
    service = _service(FakeStore(broken=ServiceConnectionError("offline")), _pipeline_factory(lambda r: r))
    with pytest.raises(InternalError, match="Failed to fetch jobs from Google Sheets"):
        service.list_jobs(ADMIN)


def test_completed_run_reports_counts():
    store = FakeStore()

    def matcher(record: JobRecord):
        return record.with_match(matched=int(record.job_key[1:]) < 6, rating=8.0)

    service = _service(store, _pipeline_factory(matcher))
    started = service.start_run(ADMIN, PipelineRunRequest(max_jobs=10))
    assert started["ok"] is True
    assert started["run_id"].startswith("job_alice_")

    assert service.wait_for_idle(timeout_sec=5) is True
    status = service.get_status(ADMIN)["status"]
    assert status["isRunning"] is False
    assert status["stage"] == STAGE_COMPLETED
    assert status["progress"] == 100
    assert status["jobsFound"] == 10
    assert status["jobsMatched"] == 6
    assert status["message"] == "Successfully found 6 matching jobs!"
    assert len(store.rows) == 6


def test_failed_run_reports_error_status():
    def scraper(limit: int):
        raise ServiceConnectionError("Apify actor run failed with HTTP 500")

    service = _service(FakeStore(), _pipeline_factory(lambda r: r, scraper=scraper))
    service.start_run(ADMIN, PipelineRunRequest())
    assert service.wait_for_idle(timeout_sec=5) is True

    status = service.get_status(ADMIN)["status"]
    assert status["isRunning"] is False
    assert status["stage"] == STAGE_ERROR
    assert status["message"] == "Job processing failed"
    assert "HTTP 500" in status["error"]
    assert status["progress"] == 10
    assert service.status_store.any_running() is False


def test_orchestrator_factory_failure_is_contained():
    def factory(store):
        raise RuntimeError("bad wiring")

    service = _service(FakeStore(), factory)
    service.start_run(ADMIN, PipelineRunRequest())
    assert service.wait_for_idle(timeout_sec=5) is True
    status = service.get_status(ADMIN)["status"]
    assert status["stage"] == STAGE_ERROR
    assert status["error"] == "bad wiring"


def test_second_run_conflicts_while_first_is_running():
    orchestrator = BlockingOrchestrator()
    service = _service(FakeStore(), lambda store: orchestrator)
    first = service.start_run(ADMIN, PipelineRunRequest())
    assert orchestrator.entered.wait(5)
    try:
        before = service.status_store.snapshot()
        with pytest.raises(ConflictError, match="Job scraping is already in progress"):
            service.start_run(ADMIN, PipelineRunRequest())
        assert service.status_store.snapshot() == before
        status = service.get_status(ADMIN)["status"]
        assert status["isRunning"] is True
        assert status["runId"] == first["run_id"]
        assert status["jobsFound"] == 3
    finally:
        orchestrator.release.set()
    assert service.wait_for_idle(timeout_sec=5) is True
    assert service.start_run(ADMIN, PipelineRunRequest())["ok"] is True
    assert service.wait_for_idle(timeout_sec=5) is True


def test_clear_during_run_does_not_allow_second_run():
    orchestrator = BlockingOrchestrator()
    service = _service(FakeStore(), lambda store: orchestrator)
    first = service.start_run(ADMIN, PipelineRunRequest())
    assert orchestrator.entered.wait(5)
    try:
        service.clear_status(ADMIN)
        with pytest.raises(ConflictError):
            service.start_run(ADMIN, PipelineRunRequest())
        assert service.get_status(ADMIN)["status"]["runId"] == first["run_id"]
    finally:
        orchestrator.release.set()
    assert service.wait_for_idle(timeout_sec=5) is True
    assert list(service.status_store.snapshot()) == [first["run_id"]]
    assert service.health()["executor"]["tracked_count"] == 1


def test_conflict_when_executor_still_busy():
    release = threading.Event()
    executor = RunExecutor(name="test")
    executor.submit("leftover", lambda: release.wait(5))
    service = _service(FakeStore(), _pipeline_factory(lambda r: r), executor=executor)
    try:
        with pytest.raises(ConflictError):
            service.start_run(ADMIN, PipelineRunRequest())
        assert service.status_store.snapshot() == {}
    finally:
        release.set()
    assert executor.wait_for_idle(timeout_sec=5) is True


def test_run_ids_are_unique_within_one_millisecond():
    service = JobsService(
        store_factory=lambda: FakeStore(),
        orchestrator_factory=_pipeline_factory(lambda r: r),
        clock=lambda: 1_700_000_000.0,
    )
    first = service.start_run(ADMIN, PipelineRunRequest(max_jobs=1))["run_id"]
    assert service.wait_for_idle(timeout_sec=5) is True
    second = service.start_run(ADMIN, PipelineRunRequest(max_jobs=1))["run_id"]
    assert service.wait_for_idle(timeout_sec=5) is True
    assert first != second
    assert first.startswith("job_alice_1700000000000_")
    assert second.startswith("job_alice_1700000000000_")


def test_start_run_respects_configured_ceiling():
    service = _service(FakeStore(), _pipeline_factory(lambda r: r), max_jobs_per_run=20)
    with pytest.raises(ValueError):
        service.start_run(ADMIN, PipelineRunRequest(max_jobs=50))
    assert service.status_store.snapshot() == {}


def test_validate_connections_reports_failures_as_data():
    service = _service(FakeStore(broken=ServiceConnectionError("Sheet tab not found: Job boards")), _pipeline_factory(lambda r: r))
    out = service.validate_connections(ADMIN)
    assert out["ok"] is False
    assert out["validation_results"]["google_sheets"] is False
    assert out["validation_results"]["sheets_initialized"] is False
    assert out["validation_results"]["errors"] == ["Google Sheets: Sheet tab not found: Job boards"]


def test_validate_connections_success():
    store = FakeStore()
    out = _service(store, _pipeline_factory(lambda r: r)).validate_connections(ADMIN)
    assert out == {
        "ok": True,
        "validation_results": {"google_sheets": True, "sheets_initialized": True, "errors": []},
    }
    assert store.calls == ["validate_connection", "initialize_headers"]


def test_get_config():
    out = _service(FakeStore(), _pipeline_factory(lambda r: r)).get_config(ADMIN)
    assert out["config"] == {
        "default_search_url": "https://www.linkedin.com/jobs/search/?keywords=python",
        "max_jobs_per_run": 200,
        "supported_sources": ["LinkedIn"],
    }


def test_clear_status_resets_to_idle():
    service = _service(FakeStore(), _pipeline_factory(lambda r: r))
    service.start_run(ADMIN, PipelineRunRequest(max_jobs=5))
    assert service.wait_for_idle(timeout_sec=5) is True

    assert service.clear_status(ADMIN) == {"ok": True, "message": "Job status cleared"}
    status = service.get_status(ADMIN)["status"]
    assert status["message"] == IDLE_MESSAGE
    assert status["isRunning"] is False


def test_finished_status_expires_after_retention():
    now = {"t": 0.0}
    status_store = JobStatusStore(retention_sec=60, clock=lambda: now["t"])
    service = _service(FakeStore(), _pipeline_factory(lambda r: r), status_store=status_store)
    service.start_run(ADMIN, PipelineRunRequest(max_jobs=2))
    assert service.wait_for_idle(timeout_sec=5) is True
    assert service.get_status(ADMIN)["status"]["stage"] == STAGE_COMPLETED

    now["t"] = 61.0
    assert service.get_status(ADMIN)["status"]["message"] == IDLE_MESSAGE


def test_health_exposes_executor_stats():
    out = _service(FakeStore(), _pipeline_factory(lambda r: r)).health()
    assert out["ok"] is True
    assert out["executor"]["running_count"] == 0
    assert out["current_run_id"] is None
