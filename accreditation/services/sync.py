"""Versioned pull protocol for offline-capable scanner devices."""

from __future__ import annotations

from datetime import datetime, timezone

from accreditation.schemas.sync import (AreasDatabase, SnapshotMetadata,
                                        UpdateCheck, UsersDatabase)
from accreditation.services.snapshot import AuthorizationSnapshotStore


def update_available(current_version: int, client_version: int | None) -> bool:
    """Strict comparison: a client at or ahead of ``current_version`` is up to date."""
    return current_version > (client_version or 0)


class SyncService:
    def __init__(self, snapshots: AuthorizationSnapshotStore) -> None:
        self._snapshots = snapshots

    async def check_updates(
        self, client_users_version: int | None, client_areas_version: int | None
    ) -> UpdateCheck:
        users_version = await self._snapshots.get_users_version()
        areas_version = await self._snapshots.get_areas_version()
        return UpdateCheck(
            users_update_available=update_available(users_version, client_users_version),
            areas_update_available=update_available(areas_version, client_areas_version),
            current_users_version=users_version,
            current_areas_version=areas_version,
        )

    async def fetch_users_database(self) -> UsersDatabase:
        snapshot = await self._snapshots.get_full_snapshot()
        return UsersDatabase(
            users=snapshot.rows,
            metadata=SnapshotMetadata(
                checksum=snapshot.checksum,
                timestamp=datetime.now(timezone.utc).isoformat(),
                count=len(snapshot.rows),
                version=snapshot.version,
            ),
        )

    async def fetch_areas_database(self) -> AreasDatabase:
        snapshot = await self._snapshots.get_area_snapshot()
        return AreasDatabase(
            areas=snapshot.rows,
            metadata=SnapshotMetadata(
                checksum=snapshot.checksum,
                timestamp=datetime.now(timezone.utc).isoformat(),
                count=len(snapshot.rows),
                version=snapshot.version,
            ),
        )
