"""Bearer tokens for the Google Sheets API.

Access tokens come from a refresh-token grant. The latest one is cached on disk
together with the scope it was granted for, so a restart reuses it until it is
about to expire and a scope change forces a new grant.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from src.jobsync.core.config_loader import get_google_oauth_config
from src.jobsync.core.errors import ServiceConnectionError
from src.jobsync.core.log import get_logger

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
CACHE_PATH = "config/google_token.json"
REFRESH_MARGIN_SEC = 60

logger = get_logger(__name__)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass(frozen=True, slots=True)
class OAuthClient:
    client_id: str
    client_secret: str
    refresh_token: str
    token_uri: str
    scopes: tuple[str, ...]
    cache_path: Path
    timeout_sec: int

    @property
    def scope(self) -> str:
        return " ".join(sorted(self.scopes))

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> OAuthClient:
        block = get_google_oauth_config(config)
        missing = [f"google_oauth.{name}" for name in ("client_id", "client_secret") if not _text(block.get(name))]
        if missing:
            raise ServiceConnectionError("Google auth failed: missing " + ", ".join(missing))

        scopes = block.get("scopes")
        cache_path = Path(_text(block.get("token_path")) or CACHE_PATH)
        if not cache_path.is_absolute():
            cache_path = Path(__file__).resolve().parents[4] / cache_path
        timeout = block.get("timeout_sec")
        return cls(
            client_id=_text(block["client_id"]),
            client_secret=_text(block["client_secret"]),
            refresh_token=_text(block.get("refresh_token")),
            token_uri=_text(block.get("token_uri")) or TOKEN_ENDPOINT,
            scopes=tuple(s for s in scopes if _text(s)) if isinstance(scopes, list) and scopes else (SHEETS_SCOPE,),
            cache_path=cache_path,
            timeout_sec=timeout if isinstance(timeout, int) and timeout > 0 else 15,
        )


def _read_cache(path: Path) -> dict[str, Any]:
    try:
        cached = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable Google token cache at %s", path)
        return {}
    return cached if isinstance(cached, dict) else {}


def _write_cache(path: Path, entry: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(path.name + ".tmp")
    staging.write_text(json.dumps(entry, indent=2), encoding="utf-8")
    staging.replace(path)


def _cached_access_token(cached: dict[str, Any], scope: str, now: float) -> str | None:
    if cached.get("scope") != scope:
        return None
    token = _text(cached.get("access_token"))
    expires_at = cached.get("expires_at")
    if not token or isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        return None
    return token if expires_at - REFRESH_MARGIN_SEC > now else None


def _grant(client: OAuthClient, refresh_token: str) -> dict[str, Any]:
    form = urlencode(
        {
            "grant_type": "refresh_token",
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "refresh_token": refresh_token,
            "scope": client.scope,
        }
    ).encode("utf-8")
    request = Request(
        client.token_uri,
        data=form,
        headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
        method="POST",
    )
    with urlopen(request, timeout=client.timeout_sec) as response:
        payload = json.loads(response.read().decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("token response must be a JSON object")
    return payload


def _describe_grant_error(exc: HTTPError) -> str:
    try:
        body = json.loads(exc.read().decode("utf-8"))
    except (OSError, ValueError, AttributeError):
        body = None
    detail = ""
    if isinstance(body, dict):
        detail = _text(body.get("error_description")) or _text(body.get("error"))
    return f"token endpoint returned HTTP {exc.code}: {detail or exc.reason}"


def get_google_access_token(*, force_refresh: bool = False, config: dict[str, Any] | None = None) -> str:
    """Return a Sheets bearer token, refreshing it when the cached one is stale.

    Raises `ServiceConnectionError` when credentials are missing or the grant fails.
    """
    client = OAuthClient.from_config(config)
    now = time.time()
    cached = _read_cache(client.cache_path)
    if not force_refresh:
        token = _cached_access_token(cached, client.scope, now)
        if token:
            return token

    refresh_token = _text(cached.get("refresh_token")) or client.refresh_token
    if not refresh_token:
        raise ServiceConnectionError("Google auth failed: no refresh token; set google_oauth.refresh_token")

    try:
        granted = _grant(client, refresh_token)
    except HTTPError as exc:
        raise ServiceConnectionError(f"Google auth failed: {_describe_grant_error(exc)}") from exc
    except (URLError, TimeoutError, OSError, ValueError) as exc:
        raise ServiceConnectionError(f"Google auth failed: {exc}") from exc

    access_token = _text(granted.get("access_token"))
    expires_in = granted.get("expires_in")
    if not access_token or isinstance(expires_in, bool) or not isinstance(expires_in, int) or expires_in <= 0:
        raise ServiceConnectionError("Google auth failed: token response lacks access_token or expires_in")

    entry = {
        "scope": client.scope,
        "access_token": access_token,
        "expires_at": int(now) + expires_in,
        "refresh_token": _text(granted.get("refresh_token")) or refresh_token,
    }
    try:
        _write_cache(client.cache_path, entry)
    except OSError:
        logger.warning("Could not write Google token cache at %s", client.cache_path)
    logger.info("Refreshed Google access token for scope %s", client.scope)
    return access_token
