"""FastAPI routes that expose session-based authentication flows."""

from __future__ import annotations

import logging
import math
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from . import config
from .cookies import attach_session_cookie, clear_session_cookies
from .deps import client_address, require_user, session_id_from_request
from .errors import InvalidCredentials, OAuthFailure, RateLimited, ValidationFailure
from .models import AuthSession, AuthUser
from .oauth import build_authorization_url, finalize_login, get_provider
from .schemas import (
    LoginRequest,
    RegistrationRequest,
    SessionEnvelope,
    SessionMeta,
    SessionUser,
    ValidationErrorDetail,
)
from .service import AuthService, get_auth_service

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _build_envelope(user: AuthUser, session: AuthSession, *, callback_url: Optional[str] = None) -> SessionEnvelope:
    return SessionEnvelope(
        user=SessionUser.model_validate(user),
        session=SessionMeta(session_id=session.id),
        callback_url=callback_url,
    )


def _safe_callback(value: Optional[str]) -> str:
    # Only same-site paths; anything else would be an open redirect.
    if value and value.startswith("/") and not value.startswith("//"):
        return value
    return config.AFTER_AUTHENTICATION_PATH


def _sign_in_redirect(alert: str) -> RedirectResponse:
    target = f"{config.SIGN_IN_PATH}?{urlencode({'alert': alert})}"
    return RedirectResponse(target, status_code=status.HTTP_302_FOUND)


@router.post("/registration", response_model=SessionEnvelope, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegistrationRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionEnvelope:
    try:
        user, session = auth_service.register(
            payload.email,
            payload.password,
            payload.password_confirmation,
            ip_address=client_address(request),
            user_agent=request.headers.get("user-agent"),
        )
    except ValidationFailure as error:
        detail = ValidationErrorDetail(message=error.message, errors=error.errors)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail.model_dump(),
        ) from error
    attach_session_cookie(response, session)
    response.headers["Cache-Control"] = "no-store"
    return _build_envelope(user, session, callback_url=config.AFTER_AUTHENTICATION_PATH)


@router.post("/session", response_model=SessionEnvelope)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionEnvelope:
    address = client_address(request)
    try:
        user, session = auth_service.login(
            payload.email,
            payload.password,
            client_key=address or "unknown",
            ip_address=address,
            user_agent=request.headers.get("user-agent"),
        )
    except RateLimited as error:
        headers = None
        if error.retry_after is not None:
            headers = {"Retry-After": str(max(int(math.ceil(error.retry_after)), 1))}
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=error.message,
            headers=headers,
        ) from error
    except InvalidCredentials as error:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=error.message) from error
    attach_session_cookie(response, session)
    response.headers["Cache-Control"] = "no-store"
    return _build_envelope(user, session, callback_url=config.AFTER_AUTHENTICATION_PATH)


@router.get("/session", response_model=SessionUser)
def current_user(user: AuthUser = Depends(require_user)) -> SessionUser:
    return SessionUser.model_validate(user)


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, auth_service: AuthService = Depends(get_auth_service)) -> Response:
    auth_service.terminate_session(session_id_from_request(request))
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookies(response)
    return response


@router.get("/oauth/{provider}/login")
async def oauth_login(provider: str, callbackUrl: Optional[str] = None):
    settings = get_provider(provider)
    if settings is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sign-in provider not available")
    redirect = RedirectResponse(config.SIGN_IN_PATH, status_code=status.HTTP_302_FOUND)
    try:
        url = await build_authorization_url(settings, redirect, callback_url=_safe_callback(callbackUrl))
    except OAuthFailure as error:
        return _sign_in_redirect(error.reason)
    redirect.headers["location"] = url
    return redirect


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    auth_service: AuthService = Depends(get_auth_service),
):
    settings = get_provider(provider)
    if settings is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sign-in provider not available")
    if error:
        LOGGER.info("%s sign-in ended with provider error %s", settings.label, error)
        if error == "access_denied":
            return _sign_in_redirect(f"Sign in with {settings.label} was cancelled.")
        return _sign_in_redirect(f"Failed to sign in with {settings.label}.")
    if not code or not state:
        return _sign_in_redirect(f"Failed to sign in with {settings.label}. The response was incomplete.")

    try:
        assertion, callback_url = await finalize_login(settings, code=code, state=state, request=request)
        user, session = await run_in_threadpool(
            auth_service.reconcile,
            assertion.provider,
            assertion.subject_id,
            assertion.email,
            ip_address=client_address(request),
            user_agent=request.headers.get("user-agent"),
        )
    except OAuthFailure as failure:
        LOGGER.warning("%s sign-in failed: %s", settings.label, failure.reason)
        return _sign_in_redirect(failure.reason)

    redirect = RedirectResponse(_safe_callback(callback_url), status_code=status.HTTP_302_FOUND)
    attach_session_cookie(redirect, session)
    redirect.delete_cookie(
        key=config.PKCE_COOKIE_NAME,
        domain=config.SESSION_COOKIE_DOMAIN,
        path=config.SESSION_COOKIE_PATH,
    )
    LOGGER.info("User %s signed in with %s", user.id, settings.label)
    return redirect
