"""Cookie helpers for session management."""

from __future__ import annotations

from fastapi import Response

from . import config
from .models import AuthSession


def attach_session_cookie(response: Response, session: AuthSession) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=session.id,
        domain=config.SESSION_COOKIE_DOMAIN,
        path=config.SESSION_COOKIE_PATH,
        httponly=config.SESSION_COOKIE_HTTPONLY,
        secure=config.SESSION_COOKIE_SECURE,
        samesite=config.SESSION_COOKIE_SAMESITE,
        max_age=config.SESSION_COOKIE_MAX_AGE_DAYS * 24 * 60 * 60,
    )


def clear_session_cookies(response: Response) -> None:
    for cookie_name in (config.SESSION_COOKIE_NAME, config.PKCE_COOKIE_NAME):
        response.delete_cookie(
            key=cookie_name,
            domain=config.SESSION_COOKIE_DOMAIN,
            path=config.SESSION_COOKIE_PATH,
        )
