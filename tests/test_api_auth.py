"""Integration tests for the auth endpoints against a production-mode app.

Covers:
- POST /api/v1/auth/telegram: 200 with token + user, Cache-Control: no-store
- Returning user keeps the same durable id; changed names are stored
- Bad hash, missing hash -> 401 unauthenticated with WWW-Authenticate
- Empty, missing or pathologically nested init_data -> 400 malformed_input
- GET /api/v1/user/profile: bearer required; expired, forged and garbage
  tokens all get the identical 401 body
- Legacy test endpoint is 404 outside test mode
- Deadline expiry -> 504 timeout; signing fault -> 500 without detail
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

from conftest import build_init_data
from fastapi.testclient import TestClient
from jose.exceptions import JWSError

from auth.tokens import TokenService

LOGIN = "/api/v1/auth/telegram"
PROFILE = "/api/v1/user/profile"


def _login(client: TestClient, user: dict, **kwargs):
    return client.post(LOGIN, json={"init_data": build_init_data(user, **kwargs)})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestTelegramLogin:
    def test_login_returns_token_and_user(self, api_client: TestClient) -> None:
        resp = _login(api_client, {"id": 1001, "first_name": "Ann", "username": "ann"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 24 * 3600
        assert data["user"]["telegram_id"] == 1001
        assert data["user"]["first_name"] == "Ann"
        assert isinstance(data["user"]["id"], int)

    def test_returning_user_keeps_id_and_updates_names(self, api_client: TestClient) -> None:
        first = _login(api_client, {"id": 1002, "first_name": "Bo"}).json()
        second = _login(api_client, {"id": 1002, "first_name": "Bob", "last_name": "Stone"}).json()
        assert second["user"]["id"] == first["user"]["id"]
        assert second["user"]["first_name"] == "Bob"
        assert second["user"]["last_name"] == "Stone"

    def test_token_opens_profile(self, api_client: TestClient) -> None:
        data = _login(api_client, {"id": 1003, "first_name": "Cy"}).json()
        resp = api_client.get(PROFILE, headers=_bearer(data["token"]))
        assert resp.status_code == 200
        assert resp.json()["id"] == data["user"]["id"]
        assert resp.json()["telegram_id"] == 1003

    def test_wrong_bot_token_is_401(self, api_client: TestClient) -> None:
        resp = _login(api_client, {"id": 1004}, bot_token="42:not-our-bot")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_missing_hash_is_401(self, api_client: TestClient) -> None:
        resp = _login(api_client, {"id": 1005}, signed=False)
        assert resp.status_code == 401

    def test_empty_init_data_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post(LOGIN, json={"init_data": ""})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "malformed_input"

    def test_missing_init_data_field_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post(LOGIN, json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "malformed_input"

    def test_invalid_user_json_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post(LOGIN, json={"init_data": "user=%7Bbroken&hash=00"})
        assert resp.status_code == 400

    def test_deeply_nested_user_json_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post(LOGIN, json={"init_data": "auth_date=1&user=" + "[" * 8000 + "&hash=00"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "malformed_input"

    def test_legacy_endpoint_hidden_in_production(self, api_client: TestClient) -> None:
        resp = api_client.post(f"{LOGIN}/test", json={"init_data": "user_id=5"})
        assert resp.status_code == 404


class TestProfileAccess:
    def test_no_header_is_401(self, api_client: TestClient) -> None:
        resp = api_client.get(PROFILE)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_non_bearer_scheme_is_401(self, api_client: TestClient) -> None:
        resp = api_client.get(PROFILE, headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert resp.status_code == 401

    def test_failures_share_one_error_shape(self, api_client: TestClient) -> None:
        config = api_client.app.state.auth_config
        data = _login(api_client, {"id": 1006}).json()
        past = datetime.now(timezone.utc) - timedelta(days=2)
        expired = TokenService(config, clock=lambda: past).issue(api_client.app.state.identity_store.get_by_id(data["user"]["id"]))
        forged = data["token"][:-4] + ("AAAA" if not data["token"].endswith("AAAA") else "BBBB")

        bodies = []
        for token in (expired, forged, "garbage"):
            resp = api_client.get(PROFILE, headers=_bearer(token))
            assert resp.status_code == 401
            bodies.append(resp.json())
        unsigned = _login(api_client, {"id": 1006}, signed=False)
        bodies.append(unsigned.json())

        assert all(body == bodies[0] for body in bodies)


class TestServerErrors:
    def test_deadline_exceeded_is_504(self, api_client: TestClient, monkeypatch) -> None:
        class SlowAuthenticator:
            def authenticate(self, init_data):
                time.sleep(0.5)

        monkeypatch.setattr(api_client.app.state, "authenticator", SlowAuthenticator())
        monkeypatch.setattr(api_client.app.state, "request_timeout_seconds", 0.05)
        resp = api_client.post(LOGIN, json={"init_data": "user=%7B%7D"})
        assert resp.status_code == 504
        assert resp.json()["error"]["code"] == "timeout"
        assert "retry-after" in resp.headers

    def test_signing_fault_is_generic_500(self, api_client: TestClient, monkeypatch) -> None:
        def broken_encode(*args, **kwargs):
            raise JWSError("HSM unreachable at 10.0.0.7")

        monkeypatch.setattr("auth.tokens.jwt.encode", broken_encode)
        resp = _login(api_client, {"id": 1007})
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"]["code"] == "internal_error"
        assert "HSM" not in resp.text
        assert body["error"].get("detail") is None
