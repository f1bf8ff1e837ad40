"""
FastAPI dependencies — database session, auth guards and core components.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.core.config import settings
from accreditation.core.credentials import CredentialCodec
from accreditation.core.security import decode_access_token
from accreditation.db.session import async_session_factory
from accreditation.models.user import User
from accreditation.services.cache import SnapshotCache
from accreditation.services.ingestion import ScanLogIngestor
from accreditation.services.snapshot import AuthorizationSnapshotStore
from accreditation.services.sync import SyncService
from accreditation.services.verifier import ScanVerifier

# auto_error=False so we can fall back to the HttpOnly cookie
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_PREFIX}/auth/login", auto_error=False
)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Decode JWT from Header OR Cookie, look up user."""
    final_token = token
    if not final_token and access_token:
        # Cookie is stored as "Bearer <token>"
        final_token = access_token.removeprefix("Bearer ").strip()

    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not final_token:
        raise credentials_exc

    payload = decode_access_token(final_token)
    if payload is None:
        raise credentials_exc

    user_id: str | None = payload.get("sub")
    if user_id is None or not user_id.isdigit():
        raise credentials_exc

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exc
    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Reject inactive accounts."""
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return current_user


async def require_admin(
    current_user: User = Depends(get_current_active_user),
) -> User:
    """Only allow admin role to proceed."""
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


async def require_scanner_or_admin(
    current_user: User = Depends(get_current_active_user),
) -> User:
    """Scanner devices and admins may sync and upload scan logs."""
    if current_user.role not in ("admin", "scanner"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return current_user


# ── Core components ─────────────────────────────────────────────────
@lru_cache
def get_credential_codec() -> CredentialCodec:
    return CredentialCodec(
        settings.QR_SECRET_KEY,
        ttl=timedelta(minutes=settings.QR_CODE_EXPIRE_MINUTES),
    )


def get_snapshot_cache(request: Request) -> SnapshotCache | None:
    """Cache client created in the app lifespan, or None when disabled."""
    return getattr(request.app.state, "snapshot_cache", None)


def get_snapshot_store(
    db: AsyncSession = Depends(get_db),
    cache: SnapshotCache | None = Depends(get_snapshot_cache),
) -> AuthorizationSnapshotStore:
    return AuthorizationSnapshotStore(db, cache=cache, timeout=settings.STORE_TIMEOUT_SECONDS)


def get_scan_verifier(
    snapshots: AuthorizationSnapshotStore = Depends(get_snapshot_store),
    codec: CredentialCodec = Depends(get_credential_codec),
) -> ScanVerifier:
    return ScanVerifier(
        codec, snapshots, allow_degraded=settings.ALLOW_DEGRADED_VERIFICATION
    )


def get_scan_ingestor(db: AsyncSession = Depends(get_db)) -> ScanLogIngestor:
    return ScanLogIngestor(db, timeout=settings.STORE_TIMEOUT_SECONDS)


def get_sync_service(
    snapshots: AuthorizationSnapshotStore = Depends(get_snapshot_store),
) -> SyncService:
    return SyncService(snapshots)
