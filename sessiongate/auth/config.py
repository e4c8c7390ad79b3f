"""Configuration helpers for the authentication subsystem."""

from __future__ import annotations

import os
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

load_dotenv()


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _split_hosts(value: str) -> list[str]:
    return [host.strip() for host in value.split(",") if host.strip()]


def _normalize_base_url(value: Optional[str], fallback: str) -> str:
    candidate = (value or fallback or "").strip()
    if not candidate:
        return fallback
    parsed = urlparse(candidate if "://" in candidate else f"https://{candidate}")
    if not parsed.scheme or not parsed.netloc:
        return fallback
    return f"{parsed.scheme}://{parsed.netloc}"


APP_BASE_URL = _normalize_base_url(os.getenv("APP_BASE_URL"), "http://localhost:8000")

# Peers allowed to set X-Forwarded-For; everyone else is keyed on the socket address.
TRUSTED_PROXY_HOSTS = _split_hosts(os.getenv("TRUSTED_PROXY_HOSTS", "127.0.0.1"))

SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-session-secret")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session_id")
PKCE_COOKIE_NAME = os.getenv("OAUTH_PKCE_COOKIE_NAME", "oauth_pkce")

SESSION_COOKIE_DOMAIN = os.getenv("SESSION_COOKIE_DOMAIN") or None
SESSION_COOKIE_PATH = os.getenv("SESSION_COOKIE_PATH", "/")
SESSION_COOKIE_SECURE = _bool_env("SESSION_COOKIE_SECURE", default=APP_BASE_URL.startswith("https://"))
SESSION_COOKIE_HTTPONLY = _bool_env("SESSION_COOKIE_HTTPONLY", default=True)
SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax").capitalize()
# Sessions have no server-side expiry, so the cookie is effectively permanent.
SESSION_COOKIE_MAX_AGE_DAYS = int(os.getenv("SESSION_COOKIE_MAX_AGE_DAYS", str(365 * 20)))

LOGIN_RATE_LIMIT = int(os.getenv("LOGIN_RATE_LIMIT", "10"))
LOGIN_RATE_WINDOW_SECONDS = float(os.getenv("LOGIN_RATE_WINDOW_SECONDS", "180"))

PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))
PASSWORD_MAX_LENGTH = int(os.getenv("PASSWORD_MAX_LENGTH", "1024"))

SIGN_IN_PATH = os.getenv("SIGN_IN_PATH", "/session/new")
AFTER_AUTHENTICATION_PATH = os.getenv("AFTER_AUTHENTICATION_PATH", "/")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_ISSUER = os.getenv("GOOGLE_ISSUER", "https://accounts.google.com")
OAUTH_SCOPES = os.getenv("OAUTH_SCOPES", "openid email profile")
OAUTH_PROMPT = os.getenv("OAUTH_PROMPT", "select_account")
OAUTH_REDIRECT_BASE = _normalize_base_url(os.getenv("OAUTH_REDIRECT_BASE"), APP_BASE_URL)
OAUTH_REDIRECT_PATH = os.getenv("OAUTH_REDIRECT_PATH", "/api/auth/oauth/{provider}/callback")


def oauth_redirect_uri(provider: str) -> str:
    return f"{OAUTH_REDIRECT_BASE.rstrip('/')}{OAUTH_REDIRECT_PATH.format(provider=provider)}"


def google_enabled() -> bool:
    """Return True if Google sign-in is configured."""

    return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)
