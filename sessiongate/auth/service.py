"""Authentication service coordinating users, sessions, and sign-in methods."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Generator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..db import init_database, session_scope
from . import config
from .crypto import burn_password_check, generate_unusable_secret, hash_password, verify_password
from .errors import InvalidCredentials, OAuthFailure, ValidationFailure
from .models import AuthSession, AuthUser
from .rate_limit import RateLimiter
from .store import ReconcileAction, SessionStore, UserStore, normalize_email, plan_reconciliation

LOGGER = logging.getLogger(__name__)

BLANK = "can't be blank"
EMAIL_TAKEN = "has already been taken"
CONFIRMATION_MISMATCH = "doesn't match Password"


class AuthService:
    """Central authority for authentication flows.

    Each public operation runs against its own transaction. Registration and
    OAuth sign-in create the user (or link it) and the first session in the
    same transaction, so a failure leaves neither behind.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        password_min_length: int = config.PASSWORD_MIN_LENGTH,
        password_max_length: int = config.PASSWORD_MAX_LENGTH,
    ) -> None:
        if session_factory is None:
            init_database()
        self._session_factory = session_factory
        self.rate_limiter = rate_limiter or RateLimiter()
        self._password_min_length = password_min_length
        self._password_max_length = password_max_length

    @contextmanager
    def _scope(self) -> Generator[Session, None, None]:
        with session_scope(self._session_factory) as db:
            yield db

    # Password sign-in -----------------------------------------------------

    def authenticate(self, email: Optional[str], password: Optional[str]) -> AuthUser:
        """Return the user matching the credentials or raise ``InvalidCredentials``."""

        normalized = normalize_email(email)
        candidate = password or ""
        user: Optional[AuthUser] = None
        if normalized:
            with self._scope() as db:
                user = UserStore(db).find_by_email(normalized)
        if user is None:
            burn_password_check(candidate)
            raise InvalidCredentials()
        if not verify_password(candidate, user.password_hash):
            raise InvalidCredentials()
        return user

    def login(
        self,
        email: Optional[str],
        password: Optional[str],
        *,
        client_key: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[AuthUser, AuthSession]:
        """Rate-limited password sign-in that starts a session on success."""

        self.rate_limiter.hit(client_key)
        try:
            user = self.authenticate(email, password)
        except InvalidCredentials:
            LOGGER.info("Rejected password sign-in from %s", client_key)
            raise
        session = self.start_session(user, ip_address=ip_address, user_agent=user_agent)
        return user, session

    # Registration ---------------------------------------------------------

    def _registration_errors(
        self,
        email: str,
        password: Optional[str],
        password_confirmation: Optional[str],
    ) -> Dict[str, List[str]]:
        errors: Dict[str, List[str]] = {}
        if not email:
            errors.setdefault("email", []).append(BLANK)
        if not password:
            errors.setdefault("password", []).append(BLANK)
        elif len(password) < self._password_min_length:
            errors.setdefault("password", []).append(
                f"is too short (minimum is {self._password_min_length} characters)"
            )
        elif len(password) > self._password_max_length:
            errors.setdefault("password", []).append(
                f"is too long (maximum is {self._password_max_length} characters)"
            )
        if password and password_confirmation != password:
            errors.setdefault("password_confirmation", []).append(CONFIRMATION_MISMATCH)
        return errors

    def register(
        self,
        email: Optional[str],
        password: Optional[str],
        password_confirmation: Optional[str],
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[AuthUser, AuthSession]:
        """Create a password account and sign it in, or raise ``ValidationFailure``."""

        normalized = normalize_email(email)
        errors = self._registration_errors(normalized, password, password_confirmation)
        if normalized:
            with self._scope() as db:
                if UserStore(db).find_by_email(normalized) is not None:
                    errors.setdefault("email", []).append(EMAIL_TAKEN)
        if errors:
            raise ValidationFailure(errors)

        password_hash = hash_password(password)
        with self._scope() as db:
            users = UserStore(db)
            try:
                user = users.create(email=normalized, password_hash=password_hash)
            except IntegrityError as exc:
                db.rollback()
                if users.find_by_email(normalized) is None:
                    raise
                LOGGER.warning("Registration lost a concurrent insert for an existing email")
                raise ValidationFailure({"email": [EMAIL_TAKEN]}) from exc
            session = SessionStore(db).create(user=user, ip_address=ip_address, user_agent=user_agent)
        LOGGER.info("Registered user %s", user.id)
        return user, session

    # OAuth sign-in --------------------------------------------------------

    def reconcile(
        self,
        provider: Optional[str],
        subject_id: Optional[str],
        email: Optional[str],
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[AuthUser, AuthSession]:
        """Match a verified provider identity to an account by email and sign it in.

        The caller must already have verified the assertion with the provider.
        An existing account gets the provider identity attached unless it
        already has one; an unknown email gets a new account whose password is
        a random secret nobody knows.
        """

        provider_name = (provider or "").strip()
        subject = str(subject_id or "").strip()
        normalized = normalize_email(email)
        if not normalized:
            raise OAuthFailure(f"Email address was not provided by {provider_name or 'the provider'}.")
        if not provider_name or not subject:
            raise OAuthFailure("The identity provider did not return an account identifier.")

        try:
            with self._scope() as db:
                users = UserStore(db)
                user, action = self._find_or_create_oauth_user(
                    db, users, email=normalized, provider=provider_name, subject=subject
                )
                session = SessionStore(db).create(user=user, ip_address=ip_address, user_agent=user_agent)
        except IntegrityError as exc:
            LOGGER.warning("OAuth sign-in via %s could not be persisted: %s", provider_name, exc.orig)
            raise OAuthFailure(f"Failed to sign in with {provider_name}. The account could not be saved.") from exc

        if action is ReconcileAction.CREATE:
            LOGGER.info("Created user %s from %s sign-in", user.id, provider_name)
        elif action is ReconcileAction.LINK:
            LOGGER.info("Linked %s identity to user %s", provider_name, user.id)
        return user, session

    def _find_or_create_oauth_user(
        self,
        db: Session,
        users: UserStore,
        *,
        email: str,
        provider: str,
        subject: str,
    ) -> Tuple[AuthUser, ReconcileAction]:
        existing = users.find_by_email(email)
        action = plan_reconciliation(existing)

        if action is ReconcileAction.CREATE:
            try:
                created = users.create(
                    email=email,
                    password_hash=hash_password(generate_unusable_secret()),
                    oauth_provider=provider,
                    oauth_subject_id=subject,
                )
                return created, action
            except IntegrityError:
                db.rollback()
                existing = users.find_by_email(email)
                if existing is None:
                    raise
                LOGGER.info("Concurrent %s sign-in created the account first; reusing it", provider)
                action = plan_reconciliation(existing)

        if action is ReconcileAction.LINK and not users.link_oauth(existing, provider=provider, subject_id=subject):
            # Another sign-in linked a provider between our read and the update.
            action = ReconcileAction.FOUND
        return existing, action

    # Sessions -------------------------------------------------------------

    def start_session(
        self,
        user: AuthUser,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthSession:
        with self._scope() as db:
            session = SessionStore(db).create(user=user, ip_address=ip_address, user_agent=user_agent)
        LOGGER.info("Started session for user %s", user.id)
        return session

    def terminate_session(self, session_id: Optional[str]) -> bool:
        """Delete a session; unknown or already-deleted ids are ignored."""

        with self._scope() as db:
            deleted = SessionStore(db).delete(session_id)
        if deleted:
            LOGGER.info("Terminated a session")
        return deleted

    def resolve(self, session_id: Optional[str]) -> Optional[AuthUser]:
        """Return the user owning ``session_id`` or ``None`` when unauthenticated."""

        if not session_id:
            return None
        with self._scope() as db:
            session = SessionStore(db).get(session_id)
            if session is None:
                return None
            return UserStore(db).get(session.user_id)

    # Accounts -------------------------------------------------------------

    def get_user_by_id(self, user_id: str) -> Optional[AuthUser]:
        with self._scope() as db:
            return UserStore(db).get(user_id)

    def find_user_by_email(self, email: Optional[str]) -> Optional[AuthUser]:
        with self._scope() as db:
            return UserStore(db).find_by_email(email)

    def delete_user(self, user_id: str) -> bool:
        """Delete an account together with every session it owns."""

        with self._scope() as db:
            users = UserStore(db)
            user = users.get(user_id)
            if user is None:
                return False
            users.delete(user)
        LOGGER.info("Deleted user %s", user_id)
        return True

    def count_users(self) -> int:
        with self._scope() as db:
            return UserStore(db).count()

    def count_sessions(self, *, user_id: Optional[str] = None) -> int:
        with self._scope() as db:
            return SessionStore(db).count(user_id=user_id)


_AUTH_SERVICE: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    global _AUTH_SERVICE
    if _AUTH_SERVICE is None:
        _AUTH_SERVICE = AuthService()
    return _AUTH_SERVICE
