"""Canonical schema contract for job postings stored in the Job boards sheet."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Mapping
from urllib.parse import parse_qs, urlparse

DEFAULT_REVIEW_STATUS = "To Review"
DESCRIPTION_MAX_CHARS = 500

SHEET_COLUMNS = (
    "JobKey",
    "Status",
    "Role",
    "Company",
    "Location",
    "Rating",
    "Reason for match",
    "Company Website",
    "Job-Link",
    "Skills",
    "Description",
    "Date Found",
    "Matched",
)

SHEET_TO_FIELD = {
    "JobKey": "job_key",
    "Status": "review_status",
    "Role": "title",
    "Company": "company",
    "Location": "location",
    "Rating": "rating",
    "Reason for match": "reason",
    "Company Website": "company_website",
    "Job-Link": "job_link",
    "Skills": "skills",
    "Description": "description",
    "Date Found": "date_found",
    "Matched": "matched",
}


@dataclass(frozen=True, slots=True)
class JobRecord:
    """One external job posting."""

    job_key: str
    title: str
    company: str
    location: str
    description: str = ""
    job_link: str = ""
    company_website: str = ""
    date_found: str = ""
    matched: bool = False
    rating: float = 0.0
    reason: str = ""
    skills: str = ""
    review_status: str = DEFAULT_REVIEW_STATUS

    def with_match(self, *, matched: bool, rating: float = 0.0, reason: str = "", skills: str = "") -> JobRecord:
        return replace(self, matched=matched, rating=rating, reason=reason, skills=skills)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobKey": self.job_key,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "description": self.description,
            "jobLink": self.job_link,
            "companyWebsite": self.company_website,
            "dateFound": self.date_found,
            "matched": self.matched,
            "rating": self.rating,
            "reason": self.reason,
            "skills": self.skills,
            "status": self.review_status,
        }


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _extract_from_dict(payload: Mapping[str, Any], keys: list[str]) -> str:
    for key in keys:
        text = _coerce_text(payload.get(key))
        if text:
            return text
    return ""


def _extract_company(item: Mapping[str, Any]) -> str:
    company = item.get("company")
    if isinstance(company, Mapping):
        nested = _extract_from_dict(company, ["name", "companyName"])
        if nested:
            return nested
    elif _coerce_text(company):
        return _coerce_text(company)
    return _extract_from_dict(item, ["companyName", "company_name", "employer"])


def today_iso() -> str:
    return datetime.now(tz=UTC).date().isoformat()


def canonical_job_url(url: str) -> str:
    """Drop query and fragment so tracking parameters do not defeat deduplication."""
    text = _coerce_text(url)
    if not text:
        return ""
    parsed = urlparse(text)
    if not parsed.scheme or not parsed.netloc:
        return text
    path = parsed.path.rstrip("/") or "/"
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}"


def derive_job_key(
    *,
    explicit_id: str = "",
    url: str = "",
    title: str = "",
    company: str = "",
    location: str = "",
) -> str:
    explicit = _coerce_text(explicit_id)
    if explicit:
        return explicit
    raw_url = _coerce_text(url)
    if raw_url:
        query = parse_qs(urlparse(raw_url).query)
        current = query.get("currentJobId")
        if current and _coerce_text(current[0]):
            return f"linkedin:{_coerce_text(current[0])}"
        return canonical_job_url(raw_url)
    material = "|".join([_coerce_text(title), _coerce_text(company), _coerce_text(location)])
    return hashlib.sha1(material.encode("utf-8")).hexdigest()[:20]


def record_from_raw(item: Mapping[str, Any], *, date_found: str | None = None) -> JobRecord | None:
    """Build a record from a scraper item; `None` when title or company is missing."""
    title = _extract_from_dict(item, ["title", "jobTitle", "position"])
    company = _extract_company(item)
    if not title or not company:
        return None

    location = _extract_from_dict(item, ["location", "jobLocation", "formattedLocation"])
    link = _extract_from_dict(item, ["applyUrl", "jobUrl", "url", "link", "jobLink"])
    description = _extract_from_dict(item, ["description", "descriptionText", "snippet"])
    return JobRecord(
        job_key=derive_job_key(
            explicit_id=_extract_from_dict(item, ["jobKey", "job_key", "jobId", "id"]),
            url=link,
            title=title,
            company=company,
            location=location,
        ),
        title=title,
        company=company,
        location=location,
        description=description[:DESCRIPTION_MAX_CHARS],
        job_link=link,
        company_website=_extract_from_dict(item, ["companyWebsite", "company_website", "companyUrl"]),
        date_found=date_found or today_iso(),
    )


def _parse_rating(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        return 0.0


def record_to_sheet_values(record: JobRecord) -> list[str]:
    """Return cell values in `SHEET_COLUMNS` order."""
    out: list[str] = []
    for column in SHEET_COLUMNS:
        value = getattr(record, SHEET_TO_FIELD[column])
        if isinstance(value, bool):
            out.append("TRUE" if value else "FALSE")
        elif isinstance(value, float):
            out.append(f"{value:g}")
        else:
            out.append(str(value) if value is not None else "")
    return out


def sheet_values_to_record(row_values: list[Any]) -> JobRecord | None:
    """Map one sheet row to a record; blank rows map to `None`."""
    cells: dict[str, str] = {}
    for index, column in enumerate(SHEET_COLUMNS):
        value = row_values[index] if index < len(row_values) else ""
        cells[column] = str(value).strip() if value is not None else ""

    if not cells["JobKey"] and not cells["Role"]:
        return None

    job_key = cells["JobKey"] or derive_job_key(
        url=cells["Job-Link"],
        title=cells["Role"],
        company=cells["Company"],
        location=cells["Location"],
    )
    return JobRecord(
        job_key=job_key,
        title=cells["Role"],
        company=cells["Company"],
        location=cells["Location"],
        description=cells["Description"],
        job_link=cells["Job-Link"],
        company_website=cells["Company Website"],
        date_found=cells["Date Found"],
        matched=cells["Matched"].upper() == "TRUE",
        rating=_parse_rating(cells["Rating"]),
        reason=cells["Reason for match"],
        skills=cells["Skills"],
        review_status=cells["Status"] or DEFAULT_REVIEW_STATUS,
    )
