"""SQLAlchemy models for the authentication subsystem."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from ..db import Base
from ..db_models import TimestampMixin


class AuthUser(TimestampMixin, Base):
    """Credential-bearing identity, unique per normalized email."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "(oauth_provider IS NULL) = (oauth_subject_id IS NULL)",
            name="ck_users_oauth_pair",
        ),
    )

    id = Column(String(40), primary_key=True, default=lambda: uuid4().hex)
    email = Column(String(320), unique=True, nullable=False, index=True)
    password_hash = Column(Text, nullable=False)
    oauth_provider = Column(String(32), nullable=True)
    oauth_subject_id = Column(String(255), nullable=True)

    sessions = relationship(
        "AuthSession",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def has_oauth_identity(self) -> bool:
        return bool(self.oauth_subject_id)

    def __repr__(self) -> str:
        return f"AuthUser(id={self.id!r}, email={self.email!r})"


class AuthSession(TimestampMixin, Base):
    """Authenticated client context; its id is the session cookie value."""

    __tablename__ = "sessions"

    id = Column(String(72), primary_key=True)
    user_id = Column(String(40), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    user = relationship("AuthUser", back_populates="sessions")

    def __repr__(self) -> str:
        return f"AuthSession(user_id={self.user_id!r})"
