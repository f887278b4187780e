"""Kernel-level integrations."""

from .apify_linkedin import default_search_url, parse_dataset_items, scrape_linkedin_jobs
from .google_auth import get_google_access_token
from .google_sheets_jobs import SheetRecords, SheetStore
from .job_matcher import evaluate_job, parse_verdict

__all__ = [
    "SheetRecords",
    "SheetStore",
    "default_search_url",
    "evaluate_job",
    "get_google_access_token",
    "parse_dataset_items",
    "parse_verdict",
    "scrape_linkedin_jobs",
]
