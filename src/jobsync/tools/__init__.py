"""External collaborators: Google Sheets storage, Apify scraping, LLM matching."""

from .kernel import SheetStore, evaluate_job, get_google_access_token, scrape_linkedin_jobs

__all__ = [
    "SheetStore",
    "evaluate_job",
    "get_google_access_token",
    "scrape_linkedin_jobs",
]
