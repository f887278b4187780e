import importlib
import io
import json
import time
from pathlib import Path
from urllib.error import HTTPError, URLError

import pytest

from src.jobsync.core.errors import ServiceConnectionError
from src.jobsync.tools.kernel.google_auth import SHEETS_SCOPE, OAuthClient, get_google_access_token

module = importlib.import_module("src.jobsync.tools.kernel.google_auth")


@pytest.fixture()
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "token.json"


@pytest.fixture()
def oauth_config(cache_path: Path) -> dict:
    return {
        "google_oauth": {
            "client_id": "client-id",
            "client_secret": "client-secret",
            "refresh_token": "configured-refresh",
            "token_path": str(cache_path),
        }
    }


class _TokenEndpoint:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.refresh_tokens: list[str] = []
        self.scopes: list[str] = []

    def __call__(self, client: OAuthClient, refresh_token: str):
        self.refresh_tokens.append(refresh_token)
        self.scopes.append(client.scope)
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_client_defaults_to_sheets_scope(oauth_config: dict, cache_path: Path):
    client = OAuthClient.from_config(oauth_config)
    assert client.scopes == (SHEETS_SCOPE,)
    assert client.cache_path == cache_path
    assert client.token_uri == "https://oauth2.googleapis.com/token"


def test_missing_client_credentials_raise():
    with pytest.raises(ServiceConnectionError, match="google_oauth.client_id, google_oauth.client_secret"):
        get_google_access_token(config={"google_oauth": {"refresh_token": "r"}})


def test_grant_writes_scoped_cache(oauth_config: dict, cache_path: Path, monkeypatch: pytest.MonkeyPatch):
    endpoint = _TokenEndpoint({"access_token": "fresh", "expires_in": 3600})
    monkeypatch.setattr(module, "_grant", endpoint)

    assert get_google_access_token(config=oauth_config) == "fresh"
    assert endpoint.refresh_tokens == ["configured-refresh"]

    cached = json.loads(cache_path.read_text(encoding="utf-8"))
    assert cached["scope"] == SHEETS_SCOPE
    assert cached["access_token"] == "fresh"
    assert cached["refresh_token"] == "configured-refresh"
    assert cached["expires_at"] > time.time() + 3000


def test_valid_cache_skips_grant(oauth_config: dict, cache_path: Path, monkeypatch: pytest.MonkeyPatch):
    cache_path.write_text(
        json.dumps({"scope": SHEETS_SCOPE, "access_token": "cached", "expires_at": time.time() + 600}),
        encoding="utf-8",
    )
    monkeypatch.setattr(module, "_grant", _TokenEndpoint())
    assert get_google_access_token(config=oauth_config) == "cached"


def test_cache_for_other_scope_is_not_reused(oauth_config: dict, cache_path: Path, monkeypatch: pytest.MonkeyPatch):
    cache_path.write_text(
        json.dumps(
            {
                "scope": "https://www.googleapis.com/auth/drive",
                "access_token": "drive-token",
                "expires_at": time.time() + 600,
                "refresh_token": "rotated-refresh",
            }
        ),
        encoding="utf-8",
    )
    endpoint = _TokenEndpoint({"access_token": "sheets-token", "expires_in": 3600})
    monkeypatch.setattr(module, "_grant", endpoint)

    assert get_google_access_token(config=oauth_config) == "sheets-token"
    assert endpoint.refresh_tokens == ["rotated-refresh"]
    assert endpoint.scopes == [SHEETS_SCOPE]


def test_token_near_expiry_is_refreshed(oauth_config: dict, cache_path: Path, monkeypatch: pytest.MonkeyPatch):
    cache_path.write_text(
        json.dumps({"scope": SHEETS_SCOPE, "access_token": "stale", "expires_at": time.time() + 30}),
        encoding="utf-8",
    )
    monkeypatch.setattr(
        module,
        "_grant",
        _TokenEndpoint({"access_token": "renewed", "expires_in": 3600, "refresh_token": "next-refresh"}),
    )
    assert get_google_access_token(config=oauth_config) == "renewed"
    assert json.loads(cache_path.read_text(encoding="utf-8"))["refresh_token"] == "next-refresh"


def test_force_refresh_ignores_cache(oauth_config: dict, cache_path: Path, monkeypatch: pytest.MonkeyPatch):
    cache_path.write_text(
        json.dumps({"scope": SHEETS_SCOPE, "access_token": "cached", "expires_at": time.time() + 600}),
        encoding="utf-8",
    )
    monkeypatch.setattr(module, "_grant", _TokenEndpoint({"access_token": "forced", "expires_in": 60}))
    assert get_google_access_token(force_refresh=True, config=oauth_config) == "forced"


def test_revoked_refresh_token_reports_provider_reason(oauth_config: dict, monkeypatch: pytest.MonkeyPatch):
    body = io.BytesIO(b'{"error": "invalid_grant", "error_description": "Token has been expired or revoked."}')
    rejected = HTTPError("https://oauth2.googleapis.com/token", 400, "Bad Request", hdrs=None, fp=body)
    monkeypatch.setattr(module, "_grant", _TokenEndpoint(rejected))

    with pytest.raises(ServiceConnectionError, match="HTTP 400: Token has been expired or revoked"):
        get_google_access_token(config=oauth_config)


def test_network_failure_and_bad_response_raise(oauth_config: dict, cache_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(module, "_grant", _TokenEndpoint(URLError("dns"), {"access_token": "x"}))
    with pytest.raises(ServiceConnectionError, match="Google auth failed"):
        get_google_access_token(config=oauth_config)
    with pytest.raises(ServiceConnectionError, match="expires_in"):
        get_google_access_token(config=oauth_config)
    assert not cache_path.exists()


def test_no_refresh_token_anywhere(cache_path: Path):
    config = {"google_oauth": {"client_id": "a", "client_secret": "b", "token_path": str(cache_path)}}
    with pytest.raises(ServiceConnectionError, match="no refresh token"):
        get_google_access_token(config=config)
