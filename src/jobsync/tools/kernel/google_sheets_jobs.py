"""Google Sheets store for scraped job postings."""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Iterator
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from src.jobsync.core.config_loader import get_sheets_config
from src.jobsync.core.errors import ServiceConnectionError
from src.jobsync.core.job_schema import (
    SHEET_COLUMNS,
    JobRecord,
    record_to_sheet_values,
    sheet_values_to_record,
)
from src.jobsync.core.log import get_logger
from src.jobsync.tools.kernel.google_auth import get_google_access_token

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
COLUMNS = list(SHEET_COLUMNS)

logger = get_logger(__name__)


def _column_letters(one_based_index: int) -> str:
    if one_based_index <= 0:
        raise ValueError("one_based_index must be >= 1")
    out: list[str] = []
    value = one_based_index
    while value > 0:
        value, remainder = divmod(value - 1, 26)
        out.append(chr(ord("A") + remainder))
    return "".join(reversed(out))


LAST_COLUMN = _column_letters(len(COLUMNS))


def _authorized_headers(access_token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
    }


def _values_url(spreadsheet_id: str, range_name: str, suffix: str = "") -> str:
    encoded_sheet = quote(spreadsheet_id, safe="")
    encoded_range = quote(range_name, safe="!:$")
    return f"{SHEETS_API_BASE}/{encoded_sheet}/values/{encoded_range}{suffix}"


def _build_values_get_url(spreadsheet_id: str, range_name: str) -> str:
    return _values_url(spreadsheet_id, range_name)


def _build_values_append_url(spreadsheet_id: str, range_name: str) -> str:
    return _values_url(spreadsheet_id, range_name, ":append?valueInputOption=RAW&insertDataOption=INSERT_ROWS")


def _build_values_update_url(spreadsheet_id: str, range_name: str) -> str:
    return _values_url(spreadsheet_id, range_name, "?valueInputOption=RAW")


def _build_sheet_metadata_url(spreadsheet_id: str) -> str:
    encoded_sheet = quote(spreadsheet_id, safe="")
    return f"{SHEETS_API_BASE}/{encoded_sheet}?fields=spreadsheetId,sheets(properties(sheetId,title))"


def _send_json(
    url: str,
    headers: dict[str, str],
    *,
    method: str,
    payload: dict[str, Any] | None,
    timeout_sec: int,
) -> dict[str, Any]:
    request_headers = dict(headers)
    data = None
    if payload is not None:
        request_headers["Content-Type"] = "application/json"
        data = json.dumps(payload).encode("utf-8")
    request = Request(url, data=data, headers=request_headers, method=method)
    with urlopen(request, timeout=timeout_sec) as response:
        body = response.read().decode("utf-8")
    parsed = json.loads(body) if body.strip() else {}
    if not isinstance(parsed, dict):
        raise ValueError("Google Sheets response must be a JSON object.")
    return parsed


def _fetch_json(url: str, headers: dict[str, str], timeout_sec: int) -> dict[str, Any]:
    return _send_json(url, headers, method="GET", payload=None, timeout_sec=timeout_sec)


def _post_json(url: str, headers: dict[str, str], payload: dict[str, Any], timeout_sec: int) -> dict[str, Any]:
    return _send_json(url, headers, method="POST", payload=payload, timeout_sec=timeout_sec)


def _put_json(url: str, headers: dict[str, str], payload: dict[str, Any], timeout_sec: int) -> dict[str, Any]:
    return _send_json(url, headers, method="PUT", payload=payload, timeout_sec=timeout_sec)


def _describe_transport_error(exc: Exception) -> str:
    if isinstance(exc, HTTPError):
        if exc.code in {401, 403}:
            return f"HTTP {exc.code}: credentials were rejected or lack access to the spreadsheet"
        if exc.code == 404:
            return "HTTP 404: spreadsheet or range not found"
        return f"HTTP {exc.code}: {exc.reason}"
    if isinstance(exc, URLError):
        return f"network error: {exc.reason}"
    return str(exc) or exc.__class__.__name__


class SheetRecords:
    """Restartable view over the sheet; every iteration re-reads the rows."""

    def __init__(self, fetch_rows: Callable[[], list[list[Any]]]) -> None:
        self._fetch_rows = fetch_rows

    def __iter__(self) -> Iterator[JobRecord]:
        for row in self._fetch_rows():
            record = sheet_values_to_record(row if isinstance(row, list) else [])
            if record is not None:
                yield record


class SheetStore:
    """Append-oriented job storage on one tab of a Google spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str | None,
        *,
        sheet_name: str = "Job boards",
        timeout_sec: int = 15,
        token_provider: Callable[[], str] | None = None,
    ) -> None:
        self._spreadsheet_id = spreadsheet_id.strip() if isinstance(spreadsheet_id, str) else ""
        self._sheet_name = sheet_name
        self._timeout_sec = int(timeout_sec)
        self._token_provider = token_provider

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> SheetStore:
        settings = get_sheets_config(config)
        return cls(
            settings["spreadsheet_id"],
            sheet_name=settings["sheet_name"],
            timeout_sec=settings["timeout_sec"],
        )

    @property
    def sheet_name(self) -> str:
        return self._sheet_name

    def _range(self, start_row: int, end_row: int | None = None) -> str:
        end = f"{LAST_COLUMN}{end_row}" if end_row is not None else LAST_COLUMN
        return f"{self._sheet_name}!A{start_row}:{end}"

    def _headers(self) -> dict[str, str]:
        if not self._spreadsheet_id:
            raise ServiceConnectionError("Missing sheets.spreadsheet_id (or JOBSYNC_SPREADSHEET_ID).")
        provider = self._token_provider or get_google_access_token
        return _authorized_headers(provider())

    def _call(self, action: str, fn: Callable[..., dict[str, Any]], *args: Any) -> dict[str, Any]:
        try:
            return fn(*args, self._timeout_sec)
        except (HTTPError, URLError, TimeoutError, OSError, ValueError) as exc:
            raise ServiceConnectionError(f"Failed to {action}: {_describe_transport_error(exc)}") from exc

    def validate_connection(self) -> None:
        headers = self._headers()
        payload = self._call(
            "read spreadsheet metadata",
            _fetch_json,
            _build_sheet_metadata_url(self._spreadsheet_id),
            headers,
        )
        sheets = payload.get("sheets")
        titles = {
            item["properties"].get("title")
            for item in (sheets if isinstance(sheets, list) else [])
            if isinstance(item, dict) and isinstance(item.get("properties"), dict)
        }
        if self._sheet_name not in titles:
            raise ServiceConnectionError(f"Sheet tab not found: {self._sheet_name}")
        logger.info("Google Sheets connection validated for tab %r", self._sheet_name)

    def read_headers(self) -> list[str]:
        headers = self._headers()
        payload = self._call(
            "read sheet headers",
            _fetch_json,
            _build_values_get_url(self._spreadsheet_id, self._range(1, 1)),
            headers,
        )
        values = payload.get("values")
        first = values[0] if isinstance(values, list) and values and isinstance(values[0], list) else []
        return [str(cell).strip() for cell in first]

    def initialize_headers(self) -> bool:
        """Write the header row unless it already matches; returns whether a write happened."""
        if self.read_headers() == COLUMNS:
            return False
        headers = self._headers()
        self._call(
            "write sheet headers",
            _put_json,
            _build_values_update_url(self._spreadsheet_id, self._range(1, 1)),
            headers,
            {"values": [COLUMNS]},
        )
        logger.info("Initialized header row on tab %r", self._sheet_name)
        return True

    def _fetch_rows(self) -> list[list[Any]]:
        headers = self._headers()
        payload = self._call(
            "read sheet rows",
            _fetch_json,
            _build_values_get_url(self._spreadsheet_id, self._range(2)),
            headers,
        )
        values = payload.get("values")
        return values if isinstance(values, list) else []

    def read_all(self) -> SheetRecords:
        return SheetRecords(self._fetch_rows)

    def existing_keys(self) -> set[str]:
        return {record.job_key for record in self.read_all()}

    def append_records(self, records: Iterable[JobRecord], *, skip_duplicates: bool = False) -> list[JobRecord]:
        """Append rows; with `skip_duplicates`, keys already stored or repeated in the batch are omitted."""
        pending = list(records)
        if skip_duplicates and pending:
            seen = self.existing_keys()
            survivors: list[JobRecord] = []
            for record in pending:
                if record.job_key in seen:
                    logger.info("Skipping duplicate job %s (%s at %s)", record.job_key, record.title, record.company)
                    continue
                seen.add(record.job_key)
                survivors.append(record)
            pending = survivors

        if not pending:
            return []

        headers = self._headers()
        self._call(
            "append sheet rows",
            _post_json,
            _build_values_append_url(self._spreadsheet_id, f"{self._sheet_name}!A:{LAST_COLUMN}"),
            headers,
            {"values": [record_to_sheet_values(record) for record in pending]},
        )
        logger.info("Appended %d job rows to tab %r", len(pending), self._sheet_name)
        return pending
