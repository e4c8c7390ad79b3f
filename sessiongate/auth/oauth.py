"""OpenID Connect helpers for provider sign-in (Google).

The handshake here is the only place a provider assertion is verified:
signed state, PKCE, code exchange, and ID token signature, audience, issuer
and nonce checks. ``AuthService.reconcile`` trusts what this module returns.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from fastapi import Request, Response
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jose import JWTError, jwt

from . import config
from .crypto import generate_pkce_challenge, generate_pkce_verifier, generate_token
from .errors import OAuthFailure

LOGGER = logging.getLogger(__name__)

STATE_MAX_AGE_SECONDS = 600

_serializer = URLSafeTimedSerializer(config.SESSION_SECRET, salt="oauth-state")
_metadata_cache: Dict[str, Tuple[datetime, Dict[str, Any]]] = {}
_jwks_cache: Dict[str, Tuple[datetime, Dict[str, Any]]] = {}
_cache_lock = asyncio.Lock()


@dataclass(frozen=True)
class ProviderSettings:
    name: str
    issuer: str
    client_id: str
    client_secret: Optional[str]
    label: str


@dataclass(frozen=True)
class OAuthAssertion:
    """Verified identity handed to the reconciler."""

    provider: str
    subject_id: str
    email: Optional[str]


def get_provider(name: str) -> Optional[ProviderSettings]:
    if name == "google" and config.google_enabled():
        return ProviderSettings(
            name="google",
            issuer=config.GOOGLE_ISSUER,
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            label="Google",
        )
    return None


async def _fetch_json(url: str) -> Dict[str, Any]:
    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.json()


def _fresh(entry: Optional[Tuple[datetime, Dict[str, Any]]], ttl: timedelta) -> Optional[Dict[str, Any]]:
    if entry and datetime.now(timezone.utc) - entry[0] < ttl:
        return entry[1]
    return None


async def _metadata(provider: ProviderSettings) -> Dict[str, Any]:
    async with _cache_lock:
        cached = _fresh(_metadata_cache.get(provider.issuer), timedelta(hours=1))
        if cached is not None:
            return cached
        well_known = provider.issuer.rstrip("/") + "/.well-known/openid-configuration"
        try:
            document = await _fetch_json(well_known)
        except httpx.HTTPError as exc:
            LOGGER.error("Discovery document fetch failed for %s: %s", provider.name, exc)
            raise OAuthFailure(f"Could not reach {provider.label}.") from exc
        _metadata_cache[provider.issuer] = (datetime.now(timezone.utc), document)
        return document


async def _jwks(provider: ProviderSettings) -> Dict[str, Any]:
    metadata = await _metadata(provider)
    jwks_uri = metadata.get("jwks_uri")
    if not jwks_uri:
        raise OAuthFailure(f"{provider.label} did not publish signing keys.")
    async with _cache_lock:
        cached = _fresh(_jwks_cache.get(jwks_uri), timedelta(hours=4))
        if cached is not None:
            return cached
        try:
            keys = await _fetch_json(jwks_uri)
        except httpx.HTTPError as exc:
            LOGGER.error("JWKS fetch failed for %s: %s", provider.name, exc)
            raise OAuthFailure(f"Could not reach {provider.label}.") from exc
        _jwks_cache[jwks_uri] = (datetime.now(timezone.utc), keys)
        return keys


def _serialize_state(provider: ProviderSettings, callback_url: Optional[str], nonce: str) -> str:
    payload = {
        "provider": provider.name,
        "callback": callback_url or config.AFTER_AUTHENTICATION_PATH,
        "nonce": nonce,
    }
    return _serializer.dumps(payload)


def _deserialize_state(state: str, provider: ProviderSettings) -> Dict[str, Any]:
    try:
        payload = _serializer.loads(state, max_age=STATE_MAX_AGE_SECONDS)
    except SignatureExpired as exc:
        raise OAuthFailure("Sign-in request expired. Please try again.") from exc
    except BadSignature as exc:
        raise OAuthFailure("Sign-in request was not recognised.") from exc
    if payload.get("provider") != provider.name:
        raise OAuthFailure("Sign-in request was not recognised.")
    return payload


async def build_authorization_url(
    provider: ProviderSettings,
    response: Response,
    *,
    callback_url: Optional[str] = None,
) -> str:
    metadata = await _metadata(provider)
    authorization_endpoint = metadata.get("authorization_endpoint")
    if not authorization_endpoint:
        raise OAuthFailure(f"{provider.label} authorization endpoint missing.")
    nonce = generate_token(8)
    state = _serialize_state(provider, callback_url, nonce)
    verifier = generate_pkce_verifier()
    response.set_cookie(
        key=config.PKCE_COOKIE_NAME,
        value=verifier,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite=config.SESSION_COOKIE_SAMESITE,
        domain=config.SESSION_COOKIE_DOMAIN,
        path=config.SESSION_COOKIE_PATH,
        max_age=STATE_MAX_AGE_SECONDS,
    )
    query = {
        "client_id": provider.client_id,
        "response_type": "code",
        "redirect_uri": config.oauth_redirect_uri(provider.name),
        "scope": config.OAUTH_SCOPES,
        "state": state,
        "nonce": nonce,
        "code_challenge": generate_pkce_challenge(verifier),
        "code_challenge_method": "S256",
    }
    if config.OAUTH_PROMPT:
        query["prompt"] = config.OAUTH_PROMPT
    return f"{authorization_endpoint}?{urlencode(query)}"


async def exchange_code(provider: ProviderSettings, *, code: str, verifier: str) -> Dict[str, Any]:
    metadata = await _metadata(provider)
    token_endpoint = metadata.get("token_endpoint")
    if not token_endpoint:
        raise OAuthFailure(f"{provider.label} token endpoint missing.")
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.oauth_redirect_uri(provider.name),
        "client_id": provider.client_id,
        "code_verifier": verifier,
    }
    if provider.client_secret:
        data["client_secret"] = provider.client_secret
    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.post(token_endpoint, data=data)
    except httpx.HTTPError as exc:
        LOGGER.error("Token exchange with %s failed: %s", provider.name, exc)
        raise OAuthFailure(f"Could not reach {provider.label}.") from exc
    if resp.status_code != 200:
        LOGGER.error("Token exchange with %s rejected: %s", provider.name, resp.text)
        raise OAuthFailure(f"{provider.label} rejected the sign-in.")
    return resp.json()


async def decode_id_token(
    provider: ProviderSettings,
    id_token: str,
    *,
    nonce: str,
    access_token: Optional[str] = None,
) -> Dict[str, Any]:
    keys = await _jwks(provider)
    try:
        header = jwt.get_unverified_header(id_token)
    except JWTError as exc:
        raise OAuthFailure(f"{provider.label} returned a malformed identity token.") from exc
    kid = header.get("kid")
    key_data = next((key for key in keys.get("keys", []) if key.get("kid") == kid), None)
    if not key_data:
        raise OAuthFailure(f"{provider.label} signing key not found.")
    # Google issues tokens with and without the scheme on ``iss``.
    issuers = (provider.issuer, provider.issuer.split("://", 1)[-1])
    try:
        claims = jwt.decode(
            id_token,
            key_data,
            algorithms=[key_data.get("alg", "RS256")],
            audience=provider.client_id,
            issuer=issuers,
            access_token=access_token,
        )
    except JWTError as exc:
        LOGGER.warning("Identity token from %s failed verification: %s", provider.name, exc)
        raise OAuthFailure(f"{provider.label} returned an invalid identity token.") from exc
    if claims.get("nonce") != nonce:
        raise OAuthFailure(f"{provider.label} identity token nonce mismatch.")
    return claims


def parse_assertion(provider: ProviderSettings, claims: Dict[str, Any]) -> OAuthAssertion:
    subject = claims.get("sub")
    if not subject:
        raise OAuthFailure(f"{provider.label} did not return an account identifier.")
    email = claims.get("email")
    # An unverified address must not be used to join an existing account.
    if claims.get("email_verified") in (False, "false"):
        email = None
    return OAuthAssertion(provider=provider.name, subject_id=str(subject), email=email)


async def finalize_login(
    provider: ProviderSettings,
    *,
    code: str,
    state: str,
    request: Request,
) -> Tuple[OAuthAssertion, str]:
    payload = _deserialize_state(state, provider)
    verifier = request.cookies.get(config.PKCE_COOKIE_NAME)
    if not verifier:
        raise OAuthFailure("Sign-in request was not recognised.")
    token_response = await exchange_code(provider, code=code, verifier=verifier)
    id_token = token_response.get("id_token")
    if not id_token:
        raise OAuthFailure(f"{provider.label} did not return an identity token.")
    claims = await decode_id_token(
        provider,
        id_token,
        nonce=payload["nonce"],
        access_token=token_response.get("access_token"),
    )
    return parse_assertion(provider, claims), payload.get("callback") or config.AFTER_AUTHENTICATION_PATH
