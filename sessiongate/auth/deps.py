"""FastAPI dependencies for session-aware routes."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from . import config
from .errors import Unauthenticated
from .models import AuthUser
from .service import AuthService, get_auth_service


def client_address(request: Request) -> Optional[str]:
    # Forwarded headers are applied by ProxyHeadersMiddleware for trusted proxies only.
    if request.client:
        return request.client.host
    return None


def session_id_from_request(request: Request) -> Optional[str]:
    return request.cookies.get(config.SESSION_COOKIE_NAME) or None


def get_optional_user(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[AuthUser]:
    return auth_service.resolve(session_id_from_request(request))


def require_user(user: Optional[AuthUser] = Depends(get_optional_user)) -> AuthUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=Unauthenticated.default_message,
        )
    return user
