"""Tests for the authentication HTTP routes."""

from __future__ import annotations

import threading
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from sessiongate.app import app
from sessiongate.auth import config, routes
from sessiongate.auth.deps import client_address
from sessiongate.auth.errors import OAuthFailure
from sessiongate.auth.oauth import OAuthAssertion, ProviderSettings
from sessiongate.auth.service import get_auth_service

GOOGLE = ProviderSettings(
    name="google",
    issuer="https://accounts.google.com",
    client_id="client-id",
    client_secret="client-secret",
    label="Google",
)


@pytest.fixture
def client(auth_service):
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _register(client, email="newuser@example.com", password="password123", confirmation=None):
    return client.post(
        "/api/auth/registration",
        json={
            "email": email,
            "password": password,
            "password_confirmation": password if confirmation is None else confirmation,
        },
    )


def _alert(response) -> str:
    location = urlparse(response.headers["location"])
    assert location.path == config.SIGN_IN_PATH
    return parse_qs(location.query)["alert"][0]


def test_registration_signs_user_in(client, auth_service):
    response = _register(client, email="  NeWuSeR@ExAmPlE.cOm  ")

    assert response.status_code == 201
    payload = response.json()
    assert payload["user"]["email"] == "newuser@example.com"
    assert response.cookies.get(config.SESSION_COOKIE_NAME) == payload["session"]["session_id"]
    assert auth_service.count_users() == 1
    assert auth_service.count_sessions() == 1


def test_registration_reports_field_errors(client, auth_service):
    response = _register(client, email="", confirmation="different_password")

    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert errors["email"] == ["can't be blank"]
    assert errors["password_confirmation"] == ["doesn't match Password"]
    assert auth_service.count_users() == 0
    assert auth_service.count_sessions() == 0


def test_registration_rejects_duplicate_email(client, auth_service):
    assert _register(client, email="existing@example.com").status_code == 201

    response = _register(client, email="existing@example.com")

    assert response.status_code == 422
    assert response.json()["detail"]["errors"]["email"] == ["has already been taken"]
    assert auth_service.count_users() == 1


def test_login_session_lookup_and_logout(client):
    _register(client, email="user@example.com")
    client.cookies.clear()

    assert client.get("/api/auth/session").status_code == 401

    response = client.post("/api/auth/session", json={"email": "USER@EXAMPLE.COM ", "password": "password123"})
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    assert response.cookies.get(config.SESSION_COOKIE_NAME)

    current = client.get("/api/auth/session")
    assert current.status_code == 200
    assert current.json()["email"] == "user@example.com"

    assert client.delete("/api/auth/session").status_code == 204
    assert client.get("/api/auth/session").status_code == 401
    assert client.delete("/api/auth/session").status_code == 204


def test_login_rejects_bad_credentials_generically(client):
    _register(client, email="user@example.com")

    wrong = client.post("/api/auth/session", json={"email": "user@example.com", "password": "nope"})
    unknown = client.post("/api/auth/session", json={"email": "nobody@example.com", "password": "nope"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"detail": "Try another email address or password."}


def test_eleventh_login_is_throttled(client, clock):
    _register(client, email="user@example.com")
    headers = {"x-forwarded-for": "203.0.113.9, 10.0.0.1"}

    for _ in range(10):
        response = client.post(
            "/api/auth/session",
            json={"email": "user@example.com", "password": "password123"},
            headers=headers,
        )
        assert response.status_code == 200

    throttled = client.post(
        "/api/auth/session",
        json={"email": "user@example.com", "password": "password123"},
        headers=headers,
    )
    assert throttled.status_code == 429
    assert throttled.json() == {"detail": "Try again later."}
    assert int(throttled.headers["retry-after"]) >= 1

    clock.advance(180)
    again = client.post(
        "/api/auth/session",
        json={"email": "user@example.com", "password": "password123"},
        headers=headers,
    )
    assert again.status_code == 200


def test_forwarded_for_from_untrusted_peer_does_not_evade_throttle(client):
    _register(client, email="user@example.com")

    statuses = [
        client.post(
            "/api/auth/session",
            json={"email": "user@example.com", "password": "wrong-password"},
            headers={"x-forwarded-for": f"198.51.100.{attempt}"},
        ).status_code
        for attempt in range(11)
    ]

    assert statuses == [401] * 10 + [429]


@pytest.mark.parametrize(
    "trusted_hosts, expected",
    [
        ("*", "203.0.113.9"),
        ("10.0.0.1", "testclient"),
    ],
)
def test_client_address_honours_forwarded_for_only_from_trusted_proxies(trusted_hosts, expected):
    edge = FastAPI()

    @edge.get("/address")
    def address(request: Request) -> dict:
        return {"address": client_address(request)}

    with TestClient(ProxyHeadersMiddleware(edge, trusted_hosts=trusted_hosts)) as test_client:
        response = test_client.get("/address", headers={"x-forwarded-for": "203.0.113.9"})

    assert response.json() == {"address": expected}


def test_oauth_routes_hidden_when_provider_not_configured(client, monkeypatch):
    monkeypatch.setattr(routes, "get_provider", lambda name: None)

    assert client.get("/api/auth/oauth/google/login", follow_redirects=False).status_code == 404
    assert client.get("/api/auth/oauth/google/callback", follow_redirects=False).status_code == 404


def test_oauth_login_redirects_to_provider(client, monkeypatch):
    async def _fake_build(provider, response, *, callback_url=None):
        response.set_cookie(config.PKCE_COOKIE_NAME, "verifier")
        return "https://accounts.google.com/o/oauth2/v2/auth?response_type=code&client_id=client-id"

    monkeypatch.setattr(routes, "get_provider", lambda name: GOOGLE)
    monkeypatch.setattr(routes, "build_authorization_url", _fake_build)

    response = client.get("/api/auth/oauth/google/login", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://accounts.google.com/")
    assert response.cookies.get(config.PKCE_COOKIE_NAME) == "verifier"


def test_oauth_callback_creates_user_and_session(client, auth_service, monkeypatch):
    async def _fake_finalize(provider, *, code, state, request):
        return OAuthAssertion("google", "google_oauth_id_12345", "  GoOgLeUsEr@GmAiL.cOm  "), "/dashboard"

    monkeypatch.setattr(routes, "get_provider", lambda name: GOOGLE)
    monkeypatch.setattr(routes, "finalize_login", _fake_finalize)

    response = client.get(
        "/api/auth/oauth/google/callback",
        params={"code": "valid_oauth_code", "state": "signed"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/dashboard"
    session_id = response.cookies.get(config.SESSION_COOKIE_NAME)
    user = auth_service.resolve(session_id)
    assert user.email == "googleuser@gmail.com"
    assert user.oauth_subject_id == "google_oauth_id_12345"
    assert auth_service.count_users() == 1


def test_oauth_callback_reconciles_off_the_event_loop(client, auth_service, monkeypatch):
    threads = {}
    reconcile = auth_service.reconcile

    async def _fake_finalize(provider, *, code, state, request):
        threads["loop"] = threading.get_ident()
        return OAuthAssertion("google", "google_oauth_id_12345", "googleuser@gmail.com"), "/"

    def _recording_reconcile(*args, **kwargs):
        threads["reconcile"] = threading.get_ident()
        return reconcile(*args, **kwargs)

    monkeypatch.setattr(routes, "get_provider", lambda name: GOOGLE)
    monkeypatch.setattr(routes, "finalize_login", _fake_finalize)
    monkeypatch.setattr(auth_service, "reconcile", _recording_reconcile)

    response = client.get(
        "/api/auth/oauth/google/callback",
        params={"code": "valid_oauth_code", "state": "signed"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert threads["reconcile"] != threads["loop"]


def test_oauth_callback_logs_in_existing_user(client, auth_service, monkeypatch):
    existing, _ = auth_service.register("googleuser@gmail.com", "password123", "password123")

    async def _fake_finalize(provider, *, code, state, request):
        return OAuthAssertion("google", "google_oauth_id_12345", "googleuser@gmail.com"), "//evil.example"

    monkeypatch.setattr(routes, "get_provider", lambda name: GOOGLE)
    monkeypatch.setattr(routes, "finalize_login", _fake_finalize)

    response = client.get(
        "/api/auth/oauth/google/callback",
        params={"code": "valid_oauth_code", "state": "signed"},
        follow_redirects=False,
    )

    assert response.headers["location"] == config.AFTER_AUTHENTICATION_PATH
    assert auth_service.resolve(response.cookies.get(config.SESSION_COOKIE_NAME)).id == existing.id
    assert auth_service.count_users() == 1
    assert auth_service.count_sessions(user_id=existing.id) == 2


@pytest.mark.parametrize(
    "params, expected",
    [
        ({"error": "access_denied"}, "cancelled"),
        ({"error": "invalid_request"}, "Failed to sign in with Google"),
        ({}, "incomplete"),
    ],
)
def test_oauth_callback_errors_redirect_to_sign_in(client, auth_service, monkeypatch, params, expected):
    monkeypatch.setattr(routes, "get_provider", lambda name: GOOGLE)

    response = client.get("/api/auth/oauth/google/callback", params=params, follow_redirects=False)

    assert response.status_code == 302
    assert expected in _alert(response)
    assert auth_service.count_users() == 0
    assert auth_service.count_sessions() == 0


def test_oauth_callback_without_email_creates_nothing(client, auth_service, monkeypatch):
    async def _fake_finalize(provider, *, code, state, request):
        return OAuthAssertion("google", "google_oauth_id_12345", None), "/"

    monkeypatch.setattr(routes, "get_provider", lambda name: GOOGLE)
    monkeypatch.setattr(routes, "finalize_login", _fake_finalize)

    response = client.get(
        "/api/auth/oauth/google/callback",
        params={"code": "valid_code", "state": "signed"},
        follow_redirects=False,
    )

    assert "Email address was not provided" in _alert(response)
    assert config.SESSION_COOKIE_NAME not in response.cookies
    assert auth_service.count_users() == 0
    assert auth_service.count_sessions() == 0


def test_oauth_callback_handshake_failure(client, auth_service, monkeypatch):
    async def _fake_finalize(provider, *, code, state, request):
        raise OAuthFailure("Google rejected the sign-in.")

    monkeypatch.setattr(routes, "get_provider", lambda name: GOOGLE)
    monkeypatch.setattr(routes, "finalize_login", _fake_finalize)

    response = client.get(
        "/api/auth/oauth/google/callback",
        params={"code": "invalid_code", "state": "signed"},
        follow_redirects=False,
    )

    assert _alert(response) == "Google rejected the sign-in."
    assert auth_service.count_users() == 0


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
