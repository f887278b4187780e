"""HTTP surface for the job-ingestion service."""

from __future__ import annotations

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.jobsync.core.auth import Caller, caller_from_authorization
from src.jobsync.core.config_loader import get_admin_tokens
from src.jobsync.core.errors import JobsError
from src.jobsync.core.log import get_logger
from src.jobsync.core.pipeline import MAX_MAX_JOBS, MIN_MAX_JOBS, PipelineRunRequest
from src.jobsync.runtime.jobs_service import get_jobs_service

logger = get_logger(__name__)

app = FastAPI(title="jobsync")


class StartRunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_jobs: int = Field(default=100, ge=MIN_MAX_JOBS, le=MAX_MAX_JOBS, alias="maxJobs")
    skip_duplicates: bool = Field(default=True, alias="skipDuplicates")


def get_caller(authorization: str | None = Header(default=None)) -> Caller:
    return caller_from_authorization(authorization, get_admin_tokens())


@app.exception_handler(JobsError)
async def _jobs_error_handler(_request: Request, exc: JobsError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("Request failed: %s", exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(ValueError)
async def _value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"ok": False, "error": "invalid_request", "message": str(exc)})


@app.get("/health")
def health() -> dict:
    return get_jobs_service().health()


@app.get("/api/jobs")
def list_jobs(caller: Caller = Depends(get_caller)) -> dict:
    return get_jobs_service().list_jobs(caller)


@app.post("/api/jobs/runs")
def start_run(req: StartRunRequest, caller: Caller = Depends(get_caller)) -> dict:
    request = PipelineRunRequest(max_jobs=req.max_jobs, skip_duplicates=req.skip_duplicates)
    return get_jobs_service().start_run(caller, request)


@app.get("/api/jobs/status")
def job_status(caller: Caller = Depends(get_caller)) -> dict:
    return get_jobs_service().get_status(caller)


@app.get("/api/jobs/validate")
def validate_connections(caller: Caller = Depends(get_caller)) -> dict:
    return get_jobs_service().validate_connections(caller)


@app.get("/api/jobs/config")
def job_config(caller: Caller = Depends(get_caller)) -> dict:
    return get_jobs_service().get_config(caller)


@app.post("/api/jobs/status/clear")
def clear_job_status(caller: Caller = Depends(get_caller)) -> dict:
    return get_jobs_service().clear_status(caller)
