"""Tests for the QR credential codec (no database involved)."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from accreditation.core.credentials import (WIRE_VERSION, CredentialCodec,
                                            short_checksum, to_epoch_ms)
from accreditation.core.exceptions import CredentialError, ErrorKind
from accreditation.schemas.access import AuthorizationSnapshotRow

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def codec() -> CredentialCodec:
    return CredentialCodec("unit-test-secret")


@pytest.fixture
def row() -> AuthorizationSnapshotRow:
    return AuthorizationSnapshotRow(
        user_id=7,
        email="alice@example.com",
        name="Alice",
        access_level="Staff",
        access_priority=3,
        allowed_areas=["Staff Area", "Main Arena", "Main Arena"],
        allowed_area_ids=[1, 2],
    )


def _reencode(token: str, payload: str, checksum: str | None = None) -> str:
    envelope = json.loads(token)
    envelope["payload"] = payload
    if checksum is not None:
        envelope["checksum"] = checksum
    return json.dumps(envelope)


def test_issue_then_parse_returns_same_credential(codec, row):
    issued = codec.issue(row, NOW)
    parsed = codec.parse(issued.token)

    assert parsed == issued.credential
    assert parsed.user_id == 7
    assert parsed.access_level == "Staff"
    assert parsed.allowed_areas == ["Main Arena", "Staff Area"]
    assert parsed.allowed_area_ids == [1, 2]


def test_envelope_shape(codec, row):
    issued = codec.issue(row, NOW)
    envelope = json.loads(issued.token)

    assert set(envelope) == {"payload", "data", "checksum", "version"}
    assert envelope["version"] == WIRE_VERSION
    assert len(envelope["checksum"]) == 8
    assert len(envelope["data"]) == 64
    assert envelope["checksum"] == short_checksum(envelope["payload"].encode())


def test_default_ttl_is_one_hour(codec, row):
    credential = codec.issue(row, NOW).credential
    assert credential.issued_at == to_epoch_ms(NOW)
    assert credential.expires_at - credential.issued_at == 3_600_000


def test_custom_ttl():
    codec = CredentialCodec("k", ttl=timedelta(minutes=5))
    row = AuthorizationSnapshotRow(user_id=1, email="a@b.co", name="A")
    credential = codec.issue(row, NOW).credential
    assert credential.expires_at - credential.issued_at == 300_000


def test_expiry_boundary_is_exclusive(codec, row):
    credential = codec.issue(row, NOW).credential
    assert not credential.is_expired(credential.expires_at - 1)
    assert credential.is_expired(credential.expires_at)
    assert credential.is_expired(credential.expires_at + 1)


def test_parse_does_not_check_expiry(codec, row):
    """Parsing an old credential still succeeds; expiry is the verifier's call."""
    issued = codec.issue(row, NOW - timedelta(days=30))
    assert codec.parse(issued.token).user_id == 7


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "not json at all",
        "[1, 2, 3]",
        '{"payload": "{}"}',
        '{"payload": "{}", "data": "00", "checksum": "00", "version": "2.0"}',
        '{"payload": 1, "data": "00", "checksum": "00", "version": "1.0"}',
    ],
)
def test_garbage_is_malformed(codec, raw):
    with pytest.raises(CredentialError) as exc_info:
        codec.parse(raw)
    assert exc_info.value.kind is ErrorKind.MALFORMED


def test_flipped_payload_with_stale_checksum_is_malformed(codec, row):
    issued = codec.issue(row, NOW)
    payload = json.loads(issued.token)["payload"]
    forged = payload.replace('"access_level":"Staff"', '"access_level":"VIP"')
    assert forged != payload

    with pytest.raises(CredentialError) as exc_info:
        codec.parse(_reencode(issued.token, forged))
    assert exc_info.value.kind is ErrorKind.MALFORMED


def test_flipped_payload_with_recomputed_checksum_is_tampered(codec, row):
    issued = codec.issue(row, NOW)
    payload = json.loads(issued.token)["payload"]
    forged = payload.replace('"Main Arena"', '"VIP Lounge"')

    token = _reencode(issued.token, forged, checksum=short_checksum(forged.encode()))
    with pytest.raises(CredentialError) as exc_info:
        codec.parse(token)
    assert exc_info.value.kind is ErrorKind.TAMPERED_OR_WRONG_KEY


def test_every_single_byte_flip_is_rejected(codec, row):
    issued = codec.issue(row, NOW)
    payload = json.loads(issued.token)["payload"]
    for i in range(len(payload)):
        flipped = payload[:i] + chr(ord(payload[i]) ^ 0x01) + payload[i + 1:]
        with pytest.raises(CredentialError):
            codec.parse(_reencode(issued.token, flipped))
        with pytest.raises(CredentialError) as exc_info:
            codec.parse(_reencode(issued.token, flipped, short_checksum(flipped.encode())))
        assert exc_info.value.kind is ErrorKind.TAMPERED_OR_WRONG_KEY


def test_wrong_key_is_tampered(codec, row):
    issued = CredentialCodec("some-other-secret").issue(row, NOW)
    with pytest.raises(CredentialError) as exc_info:
        codec.parse(issued.token)
    assert exc_info.value.kind is ErrorKind.TAMPERED_OR_WRONG_KEY


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        CredentialCodec("")
