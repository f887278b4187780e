"""Core pipeline, status tracking and configuration for jobsync."""

from .auth import Caller, caller_from_authorization, require_admin
from .config_loader import (
    clear_config_cache,
    get_admin_tokens,
    get_apify_config,
    get_google_oauth_config,
    get_matcher_config,
    get_pipeline_config,
    get_sheets_config,
    load_config,
    resolve_config_path,
)
from .errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    JobsError,
    ServiceConnectionError,
    StageTimeoutError,
)
from .job_schema import SHEET_COLUMNS, JobRecord, derive_job_key, record_from_raw
from .job_status import JobStatus, JobStatusStore, idle_status
from .pipeline import PipelineOrchestrator, PipelineRunRequest
from .run_executor import RunExecutor

__all__ = [
    "Caller",
    "ConflictError",
    "ForbiddenError",
    "InternalError",
    "JobRecord",
    "JobStatus",
    "JobStatusStore",
    "JobsError",
    "PipelineOrchestrator",
    "PipelineRunRequest",
    "RunExecutor",
    "SHEET_COLUMNS",
    "ServiceConnectionError",
    "StageTimeoutError",
    "caller_from_authorization",
    "clear_config_cache",
    "derive_job_key",
    "get_admin_tokens",
    "get_apify_config",
    "get_google_oauth_config",
    "get_matcher_config",
    "get_pipeline_config",
    "get_sheets_config",
    "idle_status",
    "load_config",
    "record_from_raw",
    "require_admin",
    "resolve_config_path",
]
