"""Runtime facade for app/CLI integration."""

from .jobs_service import JobsService, build_jobs_service, get_jobs_service

__all__ = [
    "JobsService",
    "build_jobs_service",
    "get_jobs_service",
]
