"""LLM relevance check for scraped job postings."""

from __future__ import annotations

import json
import re
from time import sleep
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from src.jobsync.core.config_loader import MATCHER_RETRY_BACKOFF_SEC, get_matcher_config
from src.jobsync.core.errors import ServiceConnectionError
from src.jobsync.core.job_schema import JobRecord
from src.jobsync.core.log import get_logger

RETRYABLE_HTTP_CODES = {408, 425, 429, 500, 502, 503, 504}
RETRY_BACKOFF_SCHEDULE_SEC = MATCHER_RETRY_BACKOFF_SEC

SYSTEM_PROMPT = "You're a helpful, intelligent job filtering assistant."
RESPONSE_INSTRUCTIONS = """Respond in this JSON format:
{"verdict": "true or false", "reason": "", "companyName": "", "rating": 1-10, "skills": ""}
If I'm a fit return true. If I'm not a fit return false (both strings).
Give a short two sentence reasoning on the verdict either way.
Return a rating 1-10 of how good of a fit I am for the job.
Return the primary skills that they are looking for in the job description."""

_JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)

logger = get_logger(__name__)


def _post_json(url: str, headers: dict[str, str], payload: dict[str, Any], timeout_sec: int) -> dict[str, Any]:
    request = Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers, method="POST")
    with urlopen(request, timeout=timeout_sec) as response:
        body = response.read().decode("utf-8")
    parsed = json.loads(body)
    if not isinstance(parsed, dict):
        raise ValueError("Chat completion response must be a JSON object.")
    return parsed


def build_messages(record: JobRecord, profile_context: str) -> list[dict[str, str]]:
    job_payload = json.dumps(
        {
            "title": record.title,
            "companyName": record.company,
            "location": record.location,
            "description": record.description,
            "applyUrl": record.job_link,
        },
        ensure_ascii=True,
    )
    user_prompt = "\n\n".join(
        part
        for part in (
            profile_context.strip(),
            f"Here is the job description:\n{job_payload}",
            "--",
            RESPONSE_INSTRUCTIONS,
        )
        if part
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def parse_verdict(text: str | None) -> dict[str, Any] | None:
    """Return the normalized verdict object, or `None` when the reply is unusable."""
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_PATTERN.search(text)
        if not match:
            return None
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    if not isinstance(payload, dict):
        return None

    verdict = str(payload.get("verdict", "")).strip().lower()
    if verdict not in {"true", "false"}:
        return None
    rating = payload.get("rating")
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        try:
            rating = float(str(rating))
        except ValueError:
            return None
    if not 1 <= float(rating) <= 10:
        return None
    return {
        "matched": verdict == "true",
        "rating": float(rating),
        "reason": str(payload.get("reason") or "").strip(),
        "skills": str(payload.get("skills") or "").strip(),
    }


def _post_with_retry(settings: dict[str, Any], headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
    attempts = len(RETRY_BACKOFF_SCHEDULE_SEC) + 1
    for attempt in range(1, attempts + 1):
        try:
            return _post_json(settings["base_url"], headers, payload, settings["timeout_sec"])
        except HTTPError as exc:
            if exc.code not in RETRYABLE_HTTP_CODES or attempt >= attempts:
                raise ServiceConnectionError(f"Matcher request failed with HTTP {exc.code}") from exc
            logger.warning("Matcher HTTP %s, retrying (attempt %d/%d)", exc.code, attempt, attempts)
        except (URLError, TimeoutError, OSError) as exc:
            if attempt >= attempts:
                raise ServiceConnectionError(f"Matcher request failed: {exc}") from exc
            logger.warning("Matcher network error %s, retrying (attempt %d/%d)", exc, attempt, attempts)
        except ValueError as exc:
            raise ServiceConnectionError(f"Matcher returned a malformed response: {exc}") from exc
        sleep(RETRY_BACKOFF_SCHEDULE_SEC[attempt - 1])
    raise RuntimeError("Matcher retry loop exited unexpectedly.")


def _complete(settings: dict[str, Any], messages: list[dict[str, str]]) -> str | None:
    headers = {
        "Authorization": f"Bearer {settings['api_key']}",
        "Content-Type": "application/json",
    }
    payload = {
        "model": settings["model"],
        "messages": messages,
        "temperature": settings["temperature"],
        "response_format": {"type": "json_object"},
    }
    raw = _post_with_retry(settings, headers, payload)
    choices = raw.get("choices")
    first = choices[0] if isinstance(choices, list) and choices and isinstance(choices[0], dict) else {}
    message = first.get("message") if isinstance(first.get("message"), dict) else {}
    content = message.get("content")
    return content if isinstance(content, str) else None


def evaluate_job(record: JobRecord) -> JobRecord | None:
    """Ask the model whether `record` fits the configured profile.

    Returns the record annotated with the verdict, or `None` when the request
    failed after retries or the reply could not be parsed. A missing API key
    raises `ServiceConnectionError` since no record could ever be evaluated.
    """
    settings = get_matcher_config()
    if not settings["api_key"]:
        raise ServiceConnectionError("Missing matcher.api_key (or OPENAI_API_KEY).")

    try:
        text = _complete(settings, build_messages(record, settings["profile_context"]))
    except ServiceConnectionError as exc:
        logger.warning("Skipping %s at %s: %s", record.title, record.company, exc.message)
        return None
    verdict = parse_verdict(text)
    if verdict is None:
        logger.warning("Unusable matcher reply for %s at %s", record.title, record.company)
        return None
    return record.with_match(**verdict)
