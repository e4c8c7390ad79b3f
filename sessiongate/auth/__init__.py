"""Authentication and session lifecycle for SessionGate."""

from .errors import (
    AuthError,
    InvalidCredentials,
    OAuthFailure,
    RateLimited,
    Unauthenticated,
    ValidationFailure,
)
from .rate_limit import RateLimiter
from .routes import router as auth_router
from .service import AuthService, get_auth_service
from .store import normalize_email

__all__ = [
    "AuthError",
    "AuthService",
    "InvalidCredentials",
    "OAuthFailure",
    "RateLimited",
    "RateLimiter",
    "Unauthenticated",
    "ValidationFailure",
    "auth_router",
    "get_auth_service",
    "normalize_email",
]
