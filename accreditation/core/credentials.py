"""
QR credential codec — builds and parses signed, time-limited access tokens.

Wire format (the string encoded in the QR image)::

    {"payload": "<canonical credential JSON>",
     "data": "<HMAC-SHA256 hex of payload>",
     "checksum": "<first 8 hex chars of MD5 of payload>",
     "version": "1.0"}

The checksum is a cheap corruption filter anyone can recompute; the keyed
``data`` tag is the only integrity check that proves the server issued the
token. Parsing never looks at the clock: whether a parsed credential is still
valid is answered by :meth:`Credential.is_expired`.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from accreditation.core.exceptions import CredentialError, ErrorKind
from accreditation.schemas.access import AuthorizationSnapshotRow
from accreditation.schemas.qr import Credential

logger = logging.getLogger(__name__)

WIRE_VERSION = "1.0"
CHECKSUM_LENGTH = 8
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def canonical_bytes(credential: Credential) -> bytes:
    return json.dumps(
        credential.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
    ).encode("utf-8")


def short_checksum(payload: bytes) -> str:
    return hashlib.md5(payload, usedforsecurity=False).hexdigest()[:CHECKSUM_LENGTH]


@dataclass(frozen=True)
class IssuedCredential:
    credential: Credential
    token: str
    tag: str
    checksum: str


class CredentialCodec:
    """Stateless signer/parser bound to one server secret and TTL."""

    def __init__(self, secret: str, ttl: timedelta = timedelta(hours=1)) -> None:
        if not secret:
            raise ValueError("QR secret must not be empty")
        if ttl <= timedelta(0):
            raise ValueError("QR credential TTL must be positive")
        self._key = secret.encode("utf-8")
        self.ttl = ttl

    def _tag(self, payload: bytes) -> str:
        return hmac.new(self._key, payload, hashlib.sha256).hexdigest()

    def issue(self, row: AuthorizationSnapshotRow, now: datetime) -> IssuedCredential:
        issued_at = to_epoch_ms(now)
        credential = Credential(
            user_id=row.user_id,
            email=row.email,
            name=row.name,
            access_level=row.access_level,
            allowed_areas=sorted(set(row.allowed_areas)),
            allowed_area_ids=sorted(set(row.allowed_area_ids)),
            issued_at=issued_at,
            expires_at=issued_at + int(self.ttl.total_seconds() * 1000),
        )
        payload = canonical_bytes(credential)
        tag = self._tag(payload)
        checksum = short_checksum(payload)
        token = json.dumps(
            {
                "payload": payload.decode("utf-8"),
                "data": tag,
                "checksum": checksum,
                "version": WIRE_VERSION,
            },
            separators=(",", ":"),
        )
        return IssuedCredential(credential=credential, token=token, tag=tag, checksum=checksum)

    def parse(self, raw_token: str) -> Credential:
        """Decode ``raw_token`` or raise :class:`CredentialError`."""
        try:
            envelope = json.loads(raw_token)
        except (TypeError, ValueError) as exc:
            raise CredentialError("QR content is not valid JSON") from exc

        if not isinstance(envelope, dict):
            raise CredentialError("QR content is not an envelope object")
        if envelope.get("version") != WIRE_VERSION:
            raise CredentialError("Unsupported QR format version")

        payload_text = envelope.get("payload")
        tag = envelope.get("data")
        checksum = envelope.get("checksum")
        if not all(isinstance(v, str) for v in (payload_text, tag, checksum)):
            raise CredentialError("QR envelope is missing required fields")

        try:
            payload = payload_text.encode("utf-8")
            presented_tag = tag.encode("utf-8")
            presented_checksum = checksum.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise CredentialError("QR envelope is not valid UTF-8") from exc

        if not hmac.compare_digest(short_checksum(payload).encode(), presented_checksum):
            raise CredentialError("QR checksum mismatch")
        if not hmac.compare_digest(self._tag(payload).encode(), presented_tag):
            raise CredentialError(
                "QR signature mismatch", kind=ErrorKind.TAMPERED_OR_WRONG_KEY
            )

        # Past this point the payload was produced by this server, so a
        # decode failure means the issuing side and this side disagree.
        try:
            return Credential.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("Signed QR payload failed validation: %s", exc)
            raise CredentialError("QR payload has an invalid shape") from exc
