"""Storage access for users and sessions.

Both stores wrap a single SQLAlchemy unit of work handed in by the caller, so
a registration or OAuth sign-in can create the user and its first session in
one transaction. Uniqueness is decided by the database; the lookups here only
let callers report the common case without tripping the constraint.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .crypto import generate_token
from .models import AuthSession, AuthUser

LOGGER = logging.getLogger(__name__)


def normalize_email(value: Optional[str]) -> str:
    """Trim surrounding whitespace and lower-case an email address."""

    if value is None:
        return ""
    return str(value).strip().lower()


class ReconcileAction(str, Enum):
    """What an OAuth sign-in has to do with the account matching its email."""

    FOUND = "found"
    LINK = "link"
    CREATE = "create"


def plan_reconciliation(existing: Optional[AuthUser]) -> ReconcileAction:
    if existing is None:
        return ReconcileAction.CREATE
    if existing.oauth_subject_id:
        return ReconcileAction.FOUND
    return ReconcileAction.LINK


class UserStore:
    """User records reachable through one database session."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, user_id: str) -> Optional[AuthUser]:
        if not user_id:
            return None
        return self._db.get(AuthUser, user_id)

    def find_by_email(self, email: Optional[str]) -> Optional[AuthUser]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self._db.execute(select(AuthUser).where(AuthUser.email == normalized)).scalar_one_or_none()

    def create(
        self,
        *,
        email: str,
        password_hash: str,
        oauth_provider: Optional[str] = None,
        oauth_subject_id: Optional[str] = None,
    ) -> AuthUser:
        """Insert a user, raising ``IntegrityError`` if the email is already stored."""

        user = AuthUser(
            email=normalize_email(email),
            password_hash=password_hash,
            oauth_provider=oauth_provider,
            oauth_subject_id=oauth_subject_id,
        )
        self._db.add(user)
        self._db.flush()
        return user

    def link_oauth(self, user: AuthUser, *, provider: str, subject_id: str) -> bool:
        """Attach a provider identity unless one is already linked.

        The update is conditional on the columns still being empty, so two
        concurrent sign-ins cannot both claim the account.
        """

        result = self._db.execute(
            update(AuthUser)
            .where(AuthUser.id == user.id, AuthUser.oauth_subject_id.is_(None))
            .values(oauth_provider=provider, oauth_subject_id=subject_id)
            .execution_options(synchronize_session=False)
        )
        self._db.refresh(user)
        return bool(result.rowcount)

    def delete(self, user: AuthUser) -> None:
        self._db.delete(user)
        self._db.flush()

    def count(self) -> int:
        return self._db.execute(select(func.count()).select_from(AuthUser)).scalar() or 0


class SessionStore:
    """Session records reachable through one database session."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def create(
        self,
        *,
        user: AuthUser,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthSession:
        record = AuthSession(
            id=generate_token(32),
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._db.add(record)
        self._db.flush()
        return record

    def get(self, session_id: Optional[str]) -> Optional[AuthSession]:
        if not session_id:
            return None
        return self._db.get(AuthSession, session_id)

    def delete(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        result = self._db.execute(delete(AuthSession).where(AuthSession.id == session_id))
        return bool(result.rowcount)

    def count(self, *, user_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(AuthSession)
        if user_id:
            stmt = stmt.where(AuthSession.user_id == user_id)
        return self._db.execute(stmt).scalar() or 0
