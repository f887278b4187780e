"""Apify-backed LinkedIn job scraping."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from src.jobsync.core.config_loader import get_apify_config
from src.jobsync.core.errors import ServiceConnectionError
from src.jobsync.core.job_schema import JobRecord, record_from_raw, today_iso
from src.jobsync.core.log import get_logger

APIFY_API_BASE = "https://api.apify.com/v2"
DEFAULT_ACTOR_ID = "hKByXkMQaC5Qt9UMN"
DEFAULT_SEARCH_URL = (
    "https://www.linkedin.com/jobs/search/?f_E=3%2C4&f_TPR=r86400&f_WT=1%2C2%2C3"
    "&geoId=105080838&keywords=software%20engineer&origin=JOB_SEARCH_PAGE_SEARCH_BUTTON&refresh=true"
)
SUPPORTED_SOURCES = ["LinkedIn"]

logger = get_logger(__name__)


def default_search_url(config: dict[str, Any] | None = None) -> str:
    urls = get_apify_config(config)["search_urls"]
    return urls[0] if urls else DEFAULT_SEARCH_URL


def _build_run_sync_url(actor_id: str, api_token: str, limit: int) -> str:
    encoded_actor = quote(actor_id.replace("/", "~"), safe="~")
    query = urlencode({"token": api_token, "format": "json", "clean": "true", "limit": limit})
    return f"{APIFY_API_BASE}/acts/{encoded_actor}/run-sync-get-dataset-items?{query}"


def _post_json_list(url: str, payload: dict[str, Any], timeout_sec: int) -> list[Any]:
    request = Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        method="POST",
    )
    with urlopen(request, timeout=timeout_sec) as response:
        body = response.read().decode("utf-8")
    parsed = json.loads(body)
    if not isinstance(parsed, list):
        raise ValueError("Apify dataset response must be a JSON array.")
    return parsed


def parse_dataset_items(items: list[Any], *, date_found: str | None = None) -> list[JobRecord]:
    """Convert actor output to records, skipping items without a title or company."""
    found_on = date_found or today_iso()
    records: list[JobRecord] = []
    for item in items:
        record = record_from_raw(item, date_found=found_on) if isinstance(item, dict) else None
        if record is None:
            logger.warning("Skipping invalid job item from Apify: %.120s", json.dumps(item, default=str))
            continue
        records.append(record)
    return records


def scrape_linkedin_jobs(max_jobs: int) -> list[JobRecord]:
    """Run the LinkedIn jobs actor synchronously and return at most `max_jobs` records."""
    settings = get_apify_config()
    if not settings["api_token"]:
        raise ServiceConnectionError("Missing apify.api_token (or APIFY_API_TOKEN).")

    actor_id = settings["actor_id"] or DEFAULT_ACTOR_ID
    limit = max(1, int(max_jobs))
    actor_input = {
        "count": limit,
        "countryCode": settings["country_code"],
        "scrapeCompany": settings["scrape_company"],
        "urls": settings["search_urls"] or [DEFAULT_SEARCH_URL],
    }
    url = _build_run_sync_url(actor_id, settings["api_token"], limit)

    logger.info("Starting Apify actor %s for up to %d jobs", actor_id, limit)
    try:
        items = _post_json_list(url, actor_input, settings["timeout_sec"])
    except HTTPError as exc:
        raise ServiceConnectionError(f"Apify actor run failed with HTTP {exc.code}") from exc
    except (URLError, TimeoutError, OSError) as exc:
        raise ServiceConnectionError(f"Apify actor run failed: {exc}") from exc
    except ValueError as exc:
        raise ServiceConnectionError(f"Apify returned an unexpected payload: {exc}") from exc

    records = parse_dataset_items(items)
    logger.info("Scraped %d jobs from LinkedIn (%d raw items)", len(records), len(items))
    return records[:limit]
