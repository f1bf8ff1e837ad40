"""Pydantic schemas for QR credentials and verification."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator


class Credential(BaseModel):
    """Signed claims carried inside a QR code. Timestamps are epoch ms."""

    user_id: int
    email: str
    name: str
    access_level: str
    allowed_areas: list[str] = Field(default_factory=list)
    allowed_area_ids: list[int] = Field(default_factory=list)
    issued_at: int
    expires_at: int

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _window(self) -> "Credential":
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be after issued_at")
        return self

    def is_expired(self, now_ms: int) -> bool:
        """Expiry is exclusive: the credential is dead at ``expires_at``."""
        return now_ms >= self.expires_at


class QRUserInfo(BaseModel):
    name: str
    email: str
    access_level: str
    allowed_areas: list[str]


class QRGenerateData(BaseModel):
    qr_content: str
    user_info: QRUserInfo
    expires_at: int
    generated_at: int


class VerifyRequest(BaseModel):
    qr_content: str
    area_id: int

    @field_validator("qr_content")
    @classmethod
    def _content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("QR content must not be empty")
        if len(v) > 8192:
            raise ValueError("QR content too large")
        return v


class ScanVerifyRequest(VerifyRequest):
    device_info: dict = Field(default_factory=dict)


class VerifyData(BaseModel):
    access_granted: bool
    degraded: bool = False
    user_id: int | None = None
    user_name: str | None = None
    access_level: str | None = None
    reason: str | None = None
    message: str


class ScanVerifyData(VerifyData):
    logged: bool
