"""Pydantic schemas for authentication routes."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionUser(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    oauth_provider: Optional[str] = None


class SessionMeta(BaseModel):
    session_id: str = Field(..., description="Opaque session identifier")


class SessionEnvelope(BaseModel):
    user: SessionUser
    session: SessionMeta
    callback_url: Optional[str] = None


class LoginRequest(BaseModel):
    # Blank values reach the service so they fail like any other bad credential.
    email: str = ""
    password: str = ""


class RegistrationRequest(BaseModel):
    email: str = ""
    password: str = ""
    password_confirmation: str = ""


class ValidationErrorDetail(BaseModel):
    message: str
    errors: Dict[str, List[str]]
