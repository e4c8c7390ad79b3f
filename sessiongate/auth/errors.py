"""Failure kinds raised by the authentication core.

Every failure here is per-request and recoverable: the transport layer maps
each kind to a status code or redirect and the caller simply tries again.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional


class AuthError(Exception):
    """Base class for authentication failures."""

    default_message = "Authentication failed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailure(AuthError):
    """User-correctable input problem, carrying messages per field."""

    default_message = "Validation failed."

    def __init__(self, errors: Mapping[str, List[str]]) -> None:
        self.errors: Dict[str, List[str]] = {field: list(messages) for field, messages in errors.items()}
        super().__init__(", ".join(self.full_messages()) or None)

    def full_messages(self) -> List[str]:
        messages: List[str] = []
        for field, field_messages in self.errors.items():
            label = field.replace("_", " ").capitalize()
            messages.extend(f"{label} {message}" for message in field_messages)
        return messages


class InvalidCredentials(AuthError):
    # Identical for unknown email and wrong password.
    default_message = "Try another email address or password."


class OAuthFailure(AuthError):
    default_message = "Failed to sign in."

    def __init__(self, reason: Optional[str] = None) -> None:
        self.reason = reason or self.default_message
        super().__init__(self.reason)


class RateLimited(AuthError):
    default_message = "Try again later."

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[float] = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class Unauthenticated(AuthError):
    """No live session backs the request."""

    default_message = "Authentication required."
