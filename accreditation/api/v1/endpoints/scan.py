"""
Online scan endpoint for connected scanner devices.

Verifies the presented QR code and appends the outcome to the scan log in the
same request. Denials are normal responses (``access_granted: false``).
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from accreditation.api.v1.deps import (get_scan_ingestor, get_scan_verifier,
                                       require_scanner_or_admin)
from accreditation.api.v1.endpoints.qr import verify_data
from accreditation.models.user import User
from accreditation.schemas.common import APIResponse
from accreditation.schemas.qr import ScanVerifyData, ScanVerifyRequest
from accreditation.services.ingestion import ScanLogIngestor
from accreditation.services.verifier import ScanVerifier

router = APIRouter(prefix="/scan", tags=["scan"])
logger = logging.getLogger(__name__)


@router.post("/verify", response_model=APIResponse[ScanVerifyData])
async def scan_verify(
    body: ScanVerifyRequest,
    scanner: User = Depends(require_scanner_or_admin),
    verifier: ScanVerifier = Depends(get_scan_verifier),
    ingestor: ScanLogIngestor = Depends(get_scan_ingestor),
) -> APIResponse[ScanVerifyData]:
    outcome = await verifier.verify(body.qr_content, body.area_id)

    try:
        logged = await ingestor.record_outcome(
            outcome, body.area_id, scanner.id, device_info=body.device_info
        )
    except (SQLAlchemyError, asyncio.TimeoutError) as exc:
        # The decision stands even if the audit row could not be written.
        logger.error("Failed to log scan by %d at area %d: %s", scanner.id, body.area_id, exc)
        logged = False

    logger.info(
        "Scan by %d at area %d: %s%s",
        scanner.id,
        body.area_id,
        outcome.kind.value,
        f" ({outcome.reason.value})" if outcome.reason else "",
    )
    return APIResponse(
        data=ScanVerifyData(**verify_data(outcome), logged=logged),
        message=outcome.message,
    )
