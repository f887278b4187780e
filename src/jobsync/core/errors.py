"""Error taxonomy shared by the service, the pipeline and the HTTP surface."""

from __future__ import annotations


class JobsError(Exception):
    code = "jobs_error"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"ok": False, "error": self.code, "message": self.message}


class ForbiddenError(JobsError):
    """Caller lacks the admin role."""

    code = "forbidden"
    http_status = 403


class ConflictError(JobsError):
    """A run is already in flight."""

    code = "conflict"
    http_status = 409


class ServiceConnectionError(JobsError, ConnectionError):
    """Sheets, Apify or the matcher endpoint could not be reached or refused credentials."""

    code = "connection_error"
    http_status = 502


class InternalError(JobsError):
    code = "internal_error"
    http_status = 500


class StageTimeoutError(InternalError):
    def __init__(self, stage: str, timeout_sec: float) -> None:
        super().__init__(f"Stage '{stage}' timed out after {timeout_sec:g}s")
        self.stage = stage
        self.timeout_sec = timeout_sec
