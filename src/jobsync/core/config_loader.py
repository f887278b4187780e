"""Load and query jobsync JSON config files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("config/config.json")
_CONFIG_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}

DEFAULT_SHEET_NAME = "Job boards"
DEFAULT_TIMEOUT_SEC = 15
DEFAULT_MAX_JOBS_PER_RUN = 200
DEFAULT_RETENTION_SEC = 60 * 60
MATCHER_RETRY_BACKOFF_SEC = (1.0, 3.0)
MATCH_TIMEOUT_SLACK_SEC = 5.0


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Resolve config path against repo root.

    Priority:
    1. explicit function argument
    2. `JOBSYNC_CONFIG_PATH` environment variable
    3. default `config/config.json`
    """
    raw_path: str | Path | None = config_path or os.getenv("JOBSYNC_CONFIG_PATH")
    candidate = Path(raw_path) if raw_path else DEFAULT_CONFIG_PATH
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def load_config(config_path: str | Path | None = None, *, use_cache: bool = True) -> dict[str, Any]:
    """Load config JSON as a dictionary."""
    resolved = resolve_config_path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {resolved}")

    mtime_ns = resolved.stat().st_mtime_ns
    if use_cache and resolved in _CONFIG_CACHE:
        cached_mtime_ns, cached_payload = _CONFIG_CACHE[resolved]
        if cached_mtime_ns == mtime_ns:
            return cached_payload

    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {resolved}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {resolved}")

    _CONFIG_CACHE[resolved] = (mtime_ns, payload)
    return payload


def clear_config_cache() -> None:
    """Clear in-memory config cache."""
    _CONFIG_CACHE.clear()


def _load_or_empty(config: dict[str, Any] | None) -> dict[str, Any]:
    if config is not None:
        return config
    try:
        return load_config()
    except (FileNotFoundError, ValueError):
        return {}


def _section(payload: dict[str, Any], name: str) -> dict[str, Any]:
    block = payload.get(name)
    return block if isinstance(block, dict) else {}


def _env_or(name: str, value: Any) -> str | None:
    env_value = os.getenv(name)
    if isinstance(env_value, str) and env_value.strip():
        return env_value.strip()
    return value if isinstance(value, str) and value.strip() else None


def _positive_number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if value > 0 else default


def get_sheets_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return normalized `sheets` settings; `JOBSYNC_SPREADSHEET_ID` overrides the id."""
    block = _section(_load_or_empty(config), "sheets")
    sheet_name = block.get("sheet_name")
    return {
        "spreadsheet_id": _env_or("JOBSYNC_SPREADSHEET_ID", block.get("spreadsheet_id")),
        "sheet_name": sheet_name if isinstance(sheet_name, str) and sheet_name.strip() else DEFAULT_SHEET_NAME,
        "timeout_sec": int(_positive_number(block.get("timeout_sec"), DEFAULT_TIMEOUT_SEC)),
    }


def get_google_oauth_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    return _section(_load_or_empty(config), "google_oauth")


def get_apify_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return normalized `apify` settings; `APIFY_API_TOKEN` overrides the token."""
    block = _section(_load_or_empty(config), "apify")
    urls = block.get("search_urls")
    country_code = block.get("country_code", 10)
    return {
        "api_token": _env_or("APIFY_API_TOKEN", block.get("api_token")),
        "actor_id": block.get("actor_id") if isinstance(block.get("actor_id"), str) else None,
        "search_urls": [url for url in urls if isinstance(url, str) and url.strip()] if isinstance(urls, list) else [],
        "country_code": country_code if isinstance(country_code, int) else 10,
        "scrape_company": bool(block.get("scrape_company", True)),
        "timeout_sec": int(_positive_number(block.get("timeout_sec"), 300)),
    }


def get_matcher_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return normalized `matcher` settings; `OPENAI_API_KEY` overrides the key."""
    block = _section(_load_or_empty(config), "matcher")
    profile_context = block.get("profile_context")
    temperature = block.get("temperature")
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)) or temperature < 0:
        temperature = 0.1
    return {
        "api_key": _env_or("OPENAI_API_KEY", block.get("api_key")),
        "base_url": str(block.get("base_url") or "https://api.openai.com/v1/chat/completions"),
        "model": str(block.get("model") or "gpt-4o-mini"),
        "temperature": float(temperature),
        "profile_context": profile_context if isinstance(profile_context, str) else "",
        "timeout_sec": int(_positive_number(block.get("timeout_sec"), 30)),
    }


def default_match_timeout_sec(matcher_timeout_sec: float) -> float:
    """Worst case of one matcher call: every attempt times out, plus the backoff sleeps and some slack."""
    attempts = len(MATCHER_RETRY_BACKOFF_SEC) + 1
    return attempts * matcher_timeout_sec + sum(MATCHER_RETRY_BACKOFF_SEC) + MATCH_TIMEOUT_SLACK_SEC


def get_pipeline_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return `pipeline` settings; the match timeout defaults to the matcher's full retry budget."""
    payload = _load_or_empty(config)
    block = _section(payload, "pipeline")
    max_jobs = block.get("max_jobs_per_run")
    match_default = default_match_timeout_sec(get_matcher_config(payload)["timeout_sec"])
    return {
        "scrape_timeout_sec": _positive_number(block.get("scrape_timeout_sec"), 600.0),
        "match_timeout_sec": _positive_number(block.get("match_timeout_sec"), match_default),
        "persist_timeout_sec": _positive_number(block.get("persist_timeout_sec"), 120.0),
        "match_delay_sec": _positive_number(block.get("match_delay_sec"), 0.0),
        "retention_sec": _positive_number(block.get("retention_sec"), float(DEFAULT_RETENTION_SEC)),
        "max_jobs_per_run": max_jobs if isinstance(max_jobs, int) and 0 < max_jobs <= 200 else DEFAULT_MAX_JOBS_PER_RUN,
    }


def get_admin_tokens(config: dict[str, Any] | None = None) -> dict[str, str]:
    """Return `{bearer_token: user_id}` for callers with the admin role."""
    block = _section(_load_or_empty(config), "auth")
    tokens = block.get("admin_tokens")
    if not isinstance(tokens, dict):
        return {}
    return {
        str(token): str(user_id)
        for token, user_id in tokens.items()
        if isinstance(token, str) and token.strip() and isinstance(user_id, str) and user_id.strip()
    }
