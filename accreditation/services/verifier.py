"""
Scan verifier — decides whether a presented QR credential opens an area.

Each attempt is resolved in a single step:

    Received -> Granted | GrantedDegraded
              | Denied(malformed | tampered_or_wrong_key | expired
                       | inactive_user | not_authorized)

The area list embedded in the credential is a point-in-time claim. Grants are
made against the *live* snapshot so that access revoked after issuance is
honoured; the embedded claim is only used for degraded decisions when the
store cannot be reached and degraded mode is enabled.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from accreditation.core.credentials import CredentialCodec, to_epoch_ms
from accreditation.core.exceptions import (CredentialError, ErrorKind,
                                           NotFoundError, StoreUnavailableError)
from accreditation.schemas.access import AuthorizationSnapshotRow
from accreditation.schemas.qr import Credential
from accreditation.services.snapshot import AuthorizationSnapshotStore

logger = logging.getLogger(__name__)

DENIAL_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.MALFORMED: "Invalid QR code",
    ErrorKind.TAMPERED_OR_WRONG_KEY: "QR code signature is not valid",
    ErrorKind.EXPIRED: "QR code has expired",
    ErrorKind.INACTIVE_USER: "User not found or inactive",
    ErrorKind.NOT_AUTHORIZED: "No access to this area",
}


class OutcomeKind(str, enum.Enum):
    GRANTED = "granted"
    GRANTED_DEGRADED = "granted_degraded"
    DENIED = "denied"


@dataclass(frozen=True)
class VerificationOutcome:
    kind: OutcomeKind
    reason: ErrorKind | None = None
    credential: Credential | None = None
    snapshot: AuthorizationSnapshotRow | None = None
    degraded: bool = False

    @property
    def access_granted(self) -> bool:
        return self.kind is not OutcomeKind.DENIED

    @property
    def message(self) -> str:
        if self.kind is OutcomeKind.GRANTED:
            return "Access granted"
        if self.kind is OutcomeKind.GRANTED_DEGRADED:
            return "Access granted (offline verification)"
        return DENIAL_MESSAGES.get(self.reason, "Access denied")  # type: ignore[arg-type]

    @property
    def user_id(self) -> int | None:
        if self.snapshot is not None:
            return self.snapshot.user_id
        return self.credential.user_id if self.credential else None

    @property
    def user_name(self) -> str | None:
        if self.snapshot is not None:
            return self.snapshot.name
        return self.credential.name if self.credential else None

    @property
    def access_level(self) -> str | None:
        if self.snapshot is not None:
            return self.snapshot.access_level
        return self.credential.access_level if self.credential else None

    @classmethod
    def denied(cls, reason: ErrorKind, **kwargs) -> "VerificationOutcome":
        return cls(kind=OutcomeKind.DENIED, reason=reason, **kwargs)


class ScanVerifier:
    def __init__(
        self,
        codec: CredentialCodec,
        snapshots: AuthorizationSnapshotStore,
        allow_degraded: bool = False,
    ) -> None:
        self._codec = codec
        self._snapshots = snapshots
        self._allow_degraded = allow_degraded

    async def verify(
        self,
        raw_token: str,
        area_id: int,
        now: datetime | None = None,
    ) -> VerificationOutcome:
        now = now or datetime.now(timezone.utc)

        try:
            credential = self._codec.parse(raw_token)
        except CredentialError as exc:
            logger.info("QR rejected for area %s: %s", area_id, exc.message)
            return VerificationOutcome.denied(exc.kind)

        if credential.is_expired(to_epoch_ms(now)):
            return VerificationOutcome.denied(ErrorKind.EXPIRED, credential=credential)

        try:
            snapshot = await self._snapshots.get_user_snapshot(credential.user_id, now)
        except NotFoundError:
            return VerificationOutcome.denied(ErrorKind.INACTIVE_USER, credential=credential)
        except StoreUnavailableError:
            if not self._allow_degraded:
                raise
            return self._degraded(credential, area_id)

        if area_id in snapshot.allowed_area_ids:
            return VerificationOutcome(
                kind=OutcomeKind.GRANTED, credential=credential, snapshot=snapshot
            )
        return VerificationOutcome.denied(
            ErrorKind.NOT_AUTHORIZED, credential=credential, snapshot=snapshot
        )

    @staticmethod
    def _degraded(credential: Credential, area_id: int) -> VerificationOutcome:
        logger.warning(
            "Authorization store unreachable; degraded decision for user %d area %s",
            credential.user_id,
            area_id,
        )
        if area_id in credential.allowed_area_ids:
            return VerificationOutcome(
                kind=OutcomeKind.GRANTED_DEGRADED, credential=credential, degraded=True
            )
        return VerificationOutcome.denied(
            ErrorKind.NOT_AUTHORIZED, credential=credential, degraded=True
        )
