"""Pydantic schemas for API session tokens (not QR credentials)."""

from __future__ import annotations

from pydantic import BaseModel


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    # Seconds until the access token expires.
    expires_in: int
    role: str


class RefreshRequest(BaseModel):
    # Optional: browsers send the HttpOnly cookie instead.
    refresh_token: str | None = None
