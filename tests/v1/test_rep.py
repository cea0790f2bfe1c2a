# tests/v1/test_rep.py
"""End-to-end tests for the representative authentication endpoints."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import status

import rahnavard.api.v1.endpoints.rep as rep_endpoints
from rahnavard.api.v1.guard import GuardResult
from rahnavard.api.v1.routing import REQUEST_ID_HEADER, SECURITY_HEADERS, SESSION_TOKEN_HEADER
from rahnavard.core.errors import AuthenticationFailure
from rahnavard.core.messages import message
from rahnavard.core.security import verify_password
from rahnavard.services.csrf import CSRF_HEADER
from rahnavard.services.event_log import EventFilter, SecurityEventType, Severity

LOGIN_URL = "/api/v1/rep/login"
TEST_CLIENT_IDENTITY = "testclient"
TEST_PASSWORD = "Str0ng!Passphrase"
CREDENTIALS = {"username": "field.rep", "password": TEST_PASSWORD}


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def events_of(container, event_type: SecurityEventType):
    return container.event_log.query(EventFilter(event_type=event_type))


class TestLogin:
    def test_successful_login(self, client, container, rep, login):
        data = login()

        assert data["token"]
        assert data["csrf_token"]
        assert data["mfa_required"] is False
        assert data["rep"]["id"] == rep.id
        assert data["rep"]["username"] == "field.rep"
        assert "password_hash" not in data["rep"]
        assert len(events_of(container, SecurityEventType.AUTH_SUCCESS)) == 1
        hashed = container.event_log.hash_identity(TEST_CLIENT_IDENTITY)
        assert container.activity.for_subject(rep.id) == [("login", hashed)]

    def test_wrong_password(self, client, container, rep):
        response = client.post(LOGIN_URL, json={"username": "field.rep", "password": "wrong"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"] == message("AUTH_FAILED")
        assert container.blocks.failed_attempts(TEST_CLIENT_IDENTITY) == 1
        events = events_of(container, SecurityEventType.AUTH_FAILURE)
        assert events[0].details == {"username": "field.rep", "reason": "invalid credentials"}

    def test_unknown_user_looks_like_wrong_password(self, client, rep):
        unknown = client.post(LOGIN_URL, json={"username": "nobody", "password": TEST_PASSWORD})
        wrong = client.post(LOGIN_URL, json={"username": "field.rep", "password": "nope"})

        assert unknown.status_code == wrong.status_code == status.HTTP_401_UNAUTHORIZED
        assert unknown.json()["error"] == wrong.json()["error"]

    def test_success_clears_failed_attempts(self, client, container, rep, login):
        client.post(LOGIN_URL, json={"username": "field.rep", "password": "wrong"})
        login()
        assert container.blocks.failed_attempts(TEST_CLIENT_IDENTITY) == 0

    def test_invalid_payload(self, client):
        response = client.post(LOGIN_URL, json={"username": "field.rep"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == message("INVALID_INPUT")

    def test_invalid_username_format(self, client):
        response = client.post(LOGIN_URL, json={"username": "a", "password": TEST_PASSWORD})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_sql_injection_blocks_caller(self, client, container, rep):
        response = client.post(
            LOGIN_URL, json={"username": "admin' OR '1'='1", "password": "x"}
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"] == message("SUSPICIOUS_INPUT")
        events = events_of(container, SecurityEventType.SQL_INJECTION_ATTEMPT)
        assert len(events) == 1
        assert events[0].severity is Severity.CRITICAL
        assert container.blocks.is_blocked(TEST_CLIENT_IDENTITY).blocked

        follow_up = client.post(LOGIN_URL, json=CREDENTIALS)
        assert follow_up.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert follow_up.json()["error"] == message("IP_BLOCKED")

    def test_wrong_method(self, client):
        response = client.get(LOGIN_URL)

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        body = response.json()
        assert body["success"] is False
        assert body["error"] == message("METHOD_NOT_ALLOWED")
        assert "POST" in response.headers["Allow"]
        assert response.headers[REQUEST_ID_HEADER] == body["metadata"]["requestId"]
        for header, value in SECURITY_HEADERS.items():
            assert response.headers[header] == value

    def test_password_check_runs_in_worker_thread(self, client, rep, mocker):
        spy = mocker.spy(asyncio, "to_thread")

        response = client.post(LOGIN_URL, json=CREDENTIALS)

        assert response.status_code == status.HTTP_200_OK
        assert any(call.args[0] is verify_password for call in spy.call_args_list)

    def test_login_does_not_need_csrf(self, client, rep):
        response = client.post(LOGIN_URL, json=CREDENTIALS)
        assert response.status_code == status.HTTP_200_OK


class TestBruteForce:
    @pytest.fixture
    def test_settings(self, make_settings):
        return make_settings(ip_max_failed_attempts=6)

    def test_lockout_sequence(self, client, container, rep):
        wrong = {"username": "field.rep", "password": "wrong-password"}

        for _ in range(5):
            assert client.post(LOGIN_URL, json=wrong).status_code == 401

        limited = client.post(LOGIN_URL, json=wrong)
        assert limited.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert limited.json()["error"] == message("RATE_LIMIT_EXCEEDED")
        assert limited.headers["Retry-After"] == "900"

        blocked = client.post(LOGIN_URL, json=CREDENTIALS)
        assert blocked.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert blocked.json()["error"] == message("IP_BLOCKED")
        assert blocked.json()["data"]["reason"] == "Too many failed attempts"

    def test_other_identities_are_unaffected(self, client, rep):
        wrong = {"username": "field.rep", "password": "wrong-password"}
        for _ in range(7):
            client.post(LOGIN_URL, json=wrong)

        response = client.post(
            LOGIN_URL,
            json=CREDENTIALS,
            headers={"X-Forwarded-For": "198.51.100.23"},
        )
        assert response.status_code == status.HTTP_200_OK


class TestMFA:
    def test_admin_login_requires_mfa(self, client, container, admin, login):
        data = login("security.admin")

        assert data["mfa_required"] is True
        assert container.sessions.mfa_store.get(admin.id) is not None

    def test_verify_code(self, client, container, admin, login):
        data = login("security.admin")
        code = container.sessions.mfa_store.get(admin.id).code

        response = client.post(
            "/api/v1/rep/mfa/verify",
            json={"code": code},
            headers={**bearer(data["token"]), CSRF_HEADER: data["csrf_token"]},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == {"mfa_verified": True}
        assert container.sessions.verify_code(admin.id, code).valid is False

    def test_wrong_code(self, client, container, admin, login):
        data = login("security.admin")

        response = client.post(
            "/api/v1/rep/mfa/verify",
            json={"code": "ZZZZZZ"},
            headers={**bearer(data["token"]), CSRF_HEADER: data["csrf_token"]},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"] == message("MFA_FAILED")
        assert len(events_of(container, SecurityEventType.MFA_FAILURE)) == 1

    def test_persian_digits_are_accepted(self, client, container, admin, login):
        data = login("security.admin")
        container.sessions.store_code(admin.id, "123456")

        response = client.post(
            "/api/v1/rep/mfa/verify",
            json={"code": "۱۲۳۴۵۶"},
            headers={**bearer(data["token"]), CSRF_HEADER: data["csrf_token"]},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == {"mfa_verified": True}

    def test_non_ascii_code_is_a_plain_mismatch(self, client, container, admin, login):
        data = login("security.admin")

        response = client.post(
            "/api/v1/rep/mfa/verify",
            json={"code": "کدنادرست"},
            headers={**bearer(data["token"]), CSRF_HEADER: data["csrf_token"]},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"] == message("MFA_FAILED")
        assert container.sessions.mfa_store.get(admin.id).attempts == 1
        assert len(events_of(container, SecurityEventType.MFA_FAILURE)) == 1

    def test_verify_requires_session(self, client):
        response = client.post("/api/v1/rep/mfa/verify", json={"code": "123456"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_rep_login_without_mfa_requirement(self, client, rep, login):
        assert login()["mfa_required"] is False


class TestMFARequiredForAll:
    @pytest.fixture
    def test_settings(self, make_settings):
        return make_settings(mfa_required=True)

    def test_rep_must_verify(self, client, rep, login):
        assert login()["mfa_required"] is True


class TestCSRFToken:
    def test_anonymous_token(self, client, container):
        response = client.get("/api/v1/rep/csrf-token")

        assert response.status_code == status.HTTP_200_OK
        token = response.json()["data"]["csrf_token"]
        assert container.csrf.validate(f"anon:{TEST_CLIENT_IDENTITY}", token).valid

    def test_session_bound_token(self, client, rep, login):
        data = login()
        headers = bearer(data["token"])

        response = client.get("/api/v1/rep/csrf-token", headers=headers)

        assert response.status_code == status.HTTP_200_OK
        token = response.json()["data"]["csrf_token"]
        # An unused token for the session is handed out again.
        assert token == data["csrf_token"]
        logout = client.post("/api/v1/rep/logout", headers={**headers, CSRF_HEADER: token})
        assert logout.status_code == status.HTTP_200_OK

    def test_invalid_session(self, client):
        response = client.get("/api/v1/rep/csrf-token", headers=bearer("garbage"))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestSession:
    def test_me(self, client, rep, login):
        data = login()

        response = client.get("/api/v1/rep/me", headers=bearer(data["token"]))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["username"] == "field.rep"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_me_requires_token(self, client):
        assert client.get("/api/v1/rep/me").status_code == status.HTTP_401_UNAUTHORIZED

    def test_rotation(self, client, clock, rep, login):
        data = login()
        clock.advance(60 * 60 + 1)

        response = client.get("/api/v1/rep/me", headers=bearer(data["token"]))

        assert response.status_code == status.HTTP_200_OK
        rotated = response.headers[SESSION_TOKEN_HEADER]
        assert client.get("/api/v1/rep/me", headers=bearer(data["token"])).status_code == 401
        assert client.get("/api/v1/rep/me", headers=bearer(rotated)).status_code == 200

    def test_hijacked_token_is_rejected(self, client, container, rep, login):
        data = login()

        response = client.get(
            "/api/v1/rep/me", headers={**bearer(data["token"]), "User-Agent": "evil-bot/1.0"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert len(events_of(container, SecurityEventType.SESSION_HIJACK_ATTEMPT)) == 1
        assert client.get("/api/v1/rep/me", headers=bearer(data["token"])).status_code == 401

    def test_logout(self, client, container, rep, login):
        data = login()
        headers = bearer(data["token"])

        response = client.post(
            "/api/v1/rep/logout", headers={**headers, CSRF_HEADER: data["csrf_token"]}
        )

        assert response.status_code == status.HTTP_200_OK
        assert client.get("/api/v1/rep/me", headers=headers).status_code == 401
        actions = [action for action, _ in container.activity.for_subject(rep.id)]
        assert actions == ["login", "logout"]

    def test_logout_requires_csrf(self, client, rep, login):
        data = login()
        response = client.post("/api/v1/rep/logout", headers=bearer(data["token"]))
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestMissingGuardState:
    """Handlers refuse to run when the guard produced no session."""

    @pytest.mark.asyncio
    async def test_me_without_subject(self):
        with pytest.raises(AuthenticationFailure):
            await rep_endpoints.me(GuardResult(identity=TEST_CLIENT_IDENTITY))

    @pytest.mark.asyncio
    async def test_logout_without_session(self, container):
        with pytest.raises(AuthenticationFailure):
            await rep_endpoints.logout(GuardResult(identity=TEST_CLIENT_IDENTITY), container)

    @pytest.mark.asyncio
    async def test_mfa_verify_without_session(self, container):
        guard = GuardResult(identity=TEST_CLIENT_IDENTITY, body={"code": "123456"})
        with pytest.raises(AuthenticationFailure):
            await rep_endpoints.verify_mfa(guard, container)
