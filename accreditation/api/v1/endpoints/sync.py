"""
Scanner-device synchronisation endpoints (scanner or admin role).

Devices poll /sync/check-updates with the versions they hold, download the
full users/areas databases when told to, and upload buffered scan logs.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from accreditation.api.v1.deps import (get_scan_ingestor, get_sync_service,
                                       require_scanner_or_admin)
from accreditation.models.user import User
from accreditation.schemas.common import APIResponse
from accreditation.schemas.sync import (AreasDatabase, IngestResult,
                                        ScanLogBatch, UpdateCheck,
                                        UsersDatabase)
from accreditation.services.ingestion import ScanLogIngestor
from accreditation.services.sync import SyncService

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/users-database", response_model=APIResponse[UsersDatabase])
async def users_database(
    _scanner: User = Depends(require_scanner_or_admin),
    sync: SyncService = Depends(get_sync_service),
) -> APIResponse[UsersDatabase]:
    return APIResponse(data=await sync.fetch_users_database())


@router.get("/areas-database", response_model=APIResponse[AreasDatabase])
async def areas_database(
    _scanner: User = Depends(require_scanner_or_admin),
    sync: SyncService = Depends(get_sync_service),
) -> APIResponse[AreasDatabase]:
    return APIResponse(data=await sync.fetch_areas_database())


@router.post("/scan-logs", response_model=APIResponse[IngestResult])
async def upload_scan_logs(
    body: ScanLogBatch,
    scanner: User = Depends(require_scanner_or_admin),
    ingestor: ScanLogIngestor = Depends(get_scan_ingestor),
) -> APIResponse[IngestResult]:
    """Always 200 once admitted; per-entry failures are reported in the payload."""
    result = await ingestor.ingest_batch(body.logs, scanner.id, device_id=body.device_id)
    return APIResponse(data=result)


@router.get("/check-updates", response_model=APIResponse[UpdateCheck])
async def check_updates(
    users_version: int | None = Query(default=None, ge=0),
    areas_version: int | None = Query(default=None, ge=0),
    _scanner: User = Depends(require_scanner_or_admin),
    sync: SyncService = Depends(get_sync_service),
) -> APIResponse[UpdateCheck]:
    return APIResponse(data=await sync.check_updates(users_version, areas_version))
