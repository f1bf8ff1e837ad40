"""
QR credential endpoints.

- GET /qr/generate issues a fresh credential for the logged-in user.
- POST /qr/verify is open to devices and runs the full verifier without
  writing a scan log (scanner apps upload their logs via /sync/scan-logs).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from accreditation.api.v1.deps import (get_credential_codec,
                                       get_current_active_user,
                                       get_scan_verifier, get_snapshot_store)
from accreditation.core.credentials import CredentialCodec
from accreditation.models.user import User
from accreditation.schemas.common import APIResponse
from accreditation.schemas.qr import (QRGenerateData, QRUserInfo, VerifyData,
                                      VerifyRequest)
from accreditation.services.snapshot import AuthorizationSnapshotStore
from accreditation.services.verifier import ScanVerifier, VerificationOutcome

router = APIRouter(prefix="/qr", tags=["qr"])
logger = logging.getLogger(__name__)


def verify_data(outcome: VerificationOutcome) -> dict:
    return {
        "access_granted": outcome.access_granted,
        "degraded": outcome.degraded,
        "user_id": outcome.user_id,
        "user_name": outcome.user_name,
        "access_level": outcome.access_level,
        "reason": outcome.reason.value if outcome.reason else None,
        "message": outcome.message,
    }


@router.get("/generate", response_model=APIResponse[QRGenerateData])
async def generate_qr(
    current_user: User = Depends(get_current_active_user),
    snapshots: AuthorizationSnapshotStore = Depends(get_snapshot_store),
    codec: CredentialCodec = Depends(get_credential_codec),
) -> APIResponse[QRGenerateData]:
    """Issue a signed, time-limited credential from the user's live snapshot."""
    row = await snapshots.get_user_snapshot(current_user.id)
    issued = codec.issue(row, datetime.now(timezone.utc))
    credential = issued.credential
    logger.info(
        "Issued QR credential for user %d (%s, %d areas)",
        row.user_id,
        credential.access_level,
        len(credential.allowed_areas),
    )
    return APIResponse(
        data=QRGenerateData(
            qr_content=issued.token,
            user_info=QRUserInfo(
                name=credential.name,
                email=credential.email,
                access_level=credential.access_level,
                allowed_areas=credential.allowed_areas,
            ),
            expires_at=credential.expires_at,
            generated_at=credential.issued_at,
        )
    )


@router.post("/verify", response_model=APIResponse[VerifyData])
async def verify_qr(
    body: VerifyRequest,
    verifier: ScanVerifier = Depends(get_scan_verifier),
) -> APIResponse[VerifyData]:
    outcome = await verifier.verify(body.qr_content, body.area_id)
    return APIResponse(data=VerifyData(**verify_data(outcome)), message=outcome.message)
