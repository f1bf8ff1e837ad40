"""
Scan-log ingestion — append-only, idempotent persistence of scan events.

Scanner devices upload whatever they recorded while offline, possibly more
than once. Each entry is validated and inserted on its own; a conflict on the
``(user_id, scanned_at)`` key is a duplicate, not a failure, and any other
per-entry failure is reported back without aborting the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.models.scan_log import ScanLog
from accreditation.schemas.sync import IngestFailure, IngestResult, ScanLogEntryIn
from accreditation.services.verifier import VerificationOutcome

logger = logging.getLogger(__name__)

_DEDUP_KEY = ["user_id", "scanned_at"]
_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _raw_field(raw: Any, key: str) -> Any:
    return raw.get(key) if isinstance(raw, dict) else None


def _describe_validation_error(exc: ValidationError) -> str:
    fields = sorted({".".join(str(p) for p in err["loc"]) or "entry" for err in exc.errors()})
    return f"Invalid fields: {', '.join(fields)}"


class ScanLogIngestor:
    def __init__(self, db: AsyncSession, timeout: float = 5.0) -> None:
        self._db = db
        self._timeout = timeout

    async def _insert(
        self, entry: ScanLogEntryIn, actor_id: int | None, device_id: str | None
    ) -> bool:
        """Insert one entry and commit; return False if it was already stored."""
        values = {
            "user_id": entry.user_id,
            "area_id": entry.area_id,
            "scanner_user_id": actor_id,
            "access_granted": entry.access_granted,
            "degraded": entry.degraded,
            "failure_reason": entry.failure_reason,
            "scanned_at": entry.scanned_at,
            "device_info": {"device_id": device_id, **entry.device_info},
            "created_at": datetime.now(timezone.utc),
        }
        upsert = _UPSERT_DIALECTS.get(self._db.get_bind().dialect.name)
        if upsert is None:
            stmt = insert(ScanLog).values(**values)
        else:
            stmt = upsert(ScanLog).values(**values).on_conflict_do_nothing(
                index_elements=_DEDUP_KEY
            )

        try:
            result = await asyncio.wait_for(self._db.execute(stmt), timeout=self._timeout)
        except IntegrityError:
            if upsert is not None:
                raise
            # Dialects without ON CONFLICT report the duplicate as a violation.
            await self._db.rollback()
            return False
        await asyncio.wait_for(self._db.commit(), timeout=self._timeout)
        return result.rowcount != 0

    async def ingest_batch(
        self,
        entries: Iterable[Any],
        actor_id: int | None,
        device_id: str | None = None,
    ) -> IngestResult:
        result = IngestResult()
        for index, raw in enumerate(entries):
            result.total += 1
            try:
                entry = ScanLogEntryIn.model_validate(raw)
            except ValidationError as exc:
                result.errors += 1
                result.failures.append(
                    IngestFailure(
                        index=index,
                        user_id=_raw_field(raw, "user_id"),
                        scanned_at=_raw_field(raw, "scanned_at"),
                        error=_describe_validation_error(exc),
                    )
                )
                continue

            try:
                inserted = await self._insert(entry, actor_id, device_id)
            except (SQLAlchemyError, asyncio.TimeoutError) as exc:
                await self._db.rollback()
                logger.error(
                    "Error inserting scan log (user %d at %s): %s",
                    entry.user_id,
                    entry.scanned_at.isoformat(),
                    exc,
                )
                result.errors += 1
                result.failures.append(
                    IngestFailure(
                        index=index,
                        user_id=entry.user_id,
                        scanned_at=entry.scanned_at.isoformat(),
                        error="Entry could not be stored",
                    )
                )
                continue

            if inserted:
                result.processed += 1
            else:
                result.duplicates += 1

        logger.info(
            "Scan-log batch from device %s: %d new, %d duplicate, %d failed of %d",
            device_id,
            result.processed,
            result.duplicates,
            result.errors,
            result.total,
        )
        return result

    async def record_outcome(
        self,
        outcome: VerificationOutcome,
        area_id: int,
        actor_id: int | None,
        scanned_at: datetime | None = None,
        device_info: dict | None = None,
    ) -> bool:
        """Persist a live verification result; returns whether a row was written."""
        if outcome.user_id is None:
            # Unparseable credentials carry no subject to key the log on.
            logger.info("Not logging scan with unknown subject at area %d", area_id)
            return False
        entry = ScanLogEntryIn(
            user_id=outcome.user_id,
            area_id=area_id,
            access_granted=outcome.access_granted,
            failure_reason=outcome.reason.value if outcome.reason else None,
            scanned_at=scanned_at or datetime.now(timezone.utc),
            degraded=outcome.degraded,
            device_info=device_info or {},
        )
        device_id = (device_info or {}).get("device_id")
        try:
            return await self._insert(entry, actor_id, device_id)
        except (SQLAlchemyError, asyncio.TimeoutError):
            await self._db.rollback()
            raise
