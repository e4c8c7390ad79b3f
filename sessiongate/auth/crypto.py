"""Cryptographic helpers for the authentication subsystem."""

from __future__ import annotations

import base64
import hashlib
import os
import secrets
from functools import lru_cache
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_PASSWORD_HASHER = PasswordHasher()


def hash_password(password: str) -> str:
    """Hash a plain text password using Argon2."""

    return _PASSWORD_HASHER.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a password against an Argon2 hash in constant time."""

    if not password_hash:
        return False
    try:
        return _PASSWORD_HASHER.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password(secrets.token_hex(16))


def burn_password_check(password: str) -> None:
    """Spend the cost of one verification when there is no account to check against."""

    verify_password(password, _dummy_hash())


def generate_token(length: int = 32) -> str:
    """Generate a URL-safe random token."""

    return secrets.token_urlsafe(length)


def generate_unusable_secret() -> str:
    """Random password for accounts that only sign in through a provider."""

    return secrets.token_hex(16)


def generate_pkce_verifier() -> str:
    raw = os.urandom(32)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
