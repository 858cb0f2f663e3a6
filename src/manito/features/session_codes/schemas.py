"""Pydantic schemas for session-code endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class CreateSessionCodeRequest(BaseModel):
    """Request body for POST /api/session-codes."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)
    type: str | None = Field(default="signup", description="Auth flow the link completes")


class SessionCodeResponse(BaseModel):
    """A freshly issued code and the deep link that carries it."""

    session_code: str
    expires_at: datetime
    deep_link: str


class RetrieveSessionRequest(BaseModel):
    """Request body for POST /api/retrieve-session."""

    session_code: str


class RetrieveSessionResponse(BaseModel):
    """Credential pair behind a redeemed code."""

    access_token: str
    refresh_token: str
    type: str | None = None
