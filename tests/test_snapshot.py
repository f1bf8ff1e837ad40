"""Tests for the authorization snapshot store and its optional cache."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.core.exceptions import NotFoundError, StoreUnavailableError
from accreditation.models.access import AccessAssignment
from accreditation.services.cache import SnapshotCache
from accreditation.services.snapshot import (AuthorizationSnapshotStore,
                                             aggregate_user_rows,
                                             version_marker)
from accreditation.services.sync import SyncService
from conftest import PAST, EventData, create_user

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` (decode_responses=True)."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def set(self, key, value):
        self.store[key] = value

    async def delete(self, key):
        self.store.pop(key, None)

    async def exists(self, key):
        return int(key in self.store)

    async def ping(self):
        return True

    async def aclose(self):
        pass


class DownRedis:
    async def _fail(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")

    get = setex = set = delete = exists = ping = aclose = _fail


def _row(user_id, level_id=None, priority=None, area_id=None, area=None, **window):
    return SimpleNamespace(
        user_id=user_id,
        email=f"u{user_id}@example.com",
        name=f"User {user_id}",
        phone=None,
        valid_from=window.get("valid_from"),
        valid_until=window.get("valid_until"),
        level_id=level_id,
        level_name=f"level-{level_id}" if level_id else None,
        level_priority=priority,
        area_id=area_id,
        area_name=area,
    )


# ── Aggregation ─────────────────────────────────────────────────────
def test_highest_priority_wins():
    rows = [_row(1, 10, 3, 1, "Main Arena"), _row(1, 11, 5, 2, "VIP Lounge")]
    (snapshot,) = aggregate_user_rows(rows, NOW)
    assert snapshot.access_level == "level-11"
    assert snapshot.access_priority == 5
    assert snapshot.allowed_areas == ["Main Arena", "VIP Lounge"]
    assert snapshot.allowed_area_ids == [1, 2]


def test_priority_tie_goes_to_lowest_level_id():
    rows = [_row(1, 12, 4, 1, "Main Arena"), _row(1, 9, 4, 2, "Security Zone")]
    assert aggregate_user_rows(rows, NOW)[0].access_level == "level-9"
    assert aggregate_user_rows(list(reversed(rows)), NOW)[0].access_level == "level-9"


def test_user_without_assignments_gets_defaults():
    (snapshot,) = aggregate_user_rows([_row(3)], NOW)
    assert snapshot.access_level == "general"
    assert snapshot.access_priority == 1
    assert snapshot.allowed_areas == []


def test_window_is_half_open():
    rows = [
        _row(1, 1, 1, 1, "Future", valid_from=NOW + timedelta(seconds=1)),
        _row(1, 1, 1, 2, "Ended", valid_until=NOW),
        _row(1, 1, 1, 3, "Starts now", valid_from=NOW),
        _row(1, 1, 1, 4, "Ends later", valid_until=NOW + timedelta(microseconds=1)),
    ]
    (snapshot,) = aggregate_user_rows(rows, NOW)
    assert snapshot.allowed_areas == ["Ends later", "Starts now"]


def test_version_marker_ignores_missing_stamps():
    assert version_marker() == 0
    assert version_marker(None, None) == 0
    assert version_marker(PAST, None) == int(PAST.timestamp()) * 1_000_000


# ── Per-user snapshot ───────────────────────────────────────────────
@pytest.mark.asyncio
async def test_user_snapshot_from_store(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session)
    snapshot = await store.get_user_snapshot(event.alice.id)

    assert snapshot.access_level == "Staff"
    assert snapshot.access_priority == 3
    assert snapshot.allowed_areas == ["Main Arena", "Staff Area"]
    assert snapshot.allowed_area_ids == sorted([event.main_arena.id, event.staff_area.id])


@pytest.mark.asyncio
async def test_revoked_assignment_excluded(db_session: AsyncSession, event: EventData):
    event.staff_area_assignment.is_active = False
    await db_session.commit()

    snapshot = await AuthorizationSnapshotStore(db_session).get_user_snapshot(event.alice.id)
    assert snapshot.allowed_areas == ["Main Arena"]


@pytest.mark.asyncio
async def test_inactive_area_and_level_excluded(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session)

    event.main_arena.is_active = False
    await db_session.commit()
    assert (await store.get_user_snapshot(event.alice.id)).allowed_areas == ["Staff Area"]

    event.staff.is_active = False
    await db_session.commit()
    snapshot = await store.get_user_snapshot(event.alice.id)
    assert snapshot.allowed_areas == []
    assert snapshot.access_level == "general"


@pytest.mark.asyncio
async def test_future_assignment_not_yet_valid(db_session: AsyncSession, event: EventData):
    db_session.add(
        AccessAssignment(
            user_id=event.alice.id,
            access_level_id=event.vip.id,
            area_id=event.vip_lounge.id,
            valid_from=NOW + timedelta(hours=1),
        )
    )
    await db_session.commit()
    store = AuthorizationSnapshotStore(db_session)

    before = await store.get_user_snapshot(event.alice.id, now=NOW)
    assert "VIP Lounge" not in before.allowed_areas
    assert before.access_level == "Staff"

    after = await store.get_user_snapshot(event.alice.id, now=NOW + timedelta(hours=2))
    assert "VIP Lounge" in after.allowed_areas
    assert after.access_level == "VIP"


@pytest.mark.asyncio
async def test_inactive_or_missing_user_not_found(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session)
    event.alice.is_active = False
    await db_session.commit()

    with pytest.raises(NotFoundError):
        await store.get_user_snapshot(event.alice.id)
    with pytest.raises(NotFoundError):
        await store.get_user_snapshot(9999)


# ── Full snapshot & versions ────────────────────────────────────────
@pytest.mark.asyncio
async def test_full_snapshot_is_sorted_and_stable(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session)
    first = await store.get_full_snapshot()
    second = await store.get_full_snapshot()

    assert [r.user_id for r in first.rows] == sorted(
        [event.alice.id, event.scanner.id, event.admin.id]
    )
    assert first.checksum == second.checksum
    assert first.version == second.version


@pytest.mark.asyncio
async def test_checksum_changes_with_content(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session)
    before = await store.get_full_snapshot()

    event.staff_area_assignment.is_active = False
    await db_session.commit()
    after = await store.get_full_snapshot()

    assert after.checksum != before.checksum
    assert after.version > before.version


@pytest.mark.asyncio
async def test_users_version_only_moves_forward(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session)
    v1 = await store.get_users_version()
    assert v1 == version_marker(PAST)
    assert await store.get_users_version() == v1

    event.alice.name = "Alice Cooper"
    await db_session.commit()
    v2 = await store.get_users_version()
    assert v2 > v1

    await create_user(db_session, "bob@example.com", name="Bob")
    assert await store.get_users_version() >= v2


@pytest.mark.asyncio
async def test_users_version_advances_when_window_boundary_passes(
    db_session: AsyncSession, event: EventData
):
    starts = datetime(2025, 1, 1, tzinfo=timezone.utc)
    ends = datetime(2025, 3, 1, tzinfo=timezone.utc)
    event.staff_area_assignment.valid_from = starts
    event.staff_area_assignment.valid_until = ends
    event.staff_area_assignment.updated_at = PAST - timedelta(days=1)
    await db_session.commit()
    store = AuthorizationSnapshotStore(db_session)

    before_start = await store.get_users_version(now=datetime(2024, 6, 1, tzinfo=timezone.utc))
    after_start = await store.get_users_version(now=datetime(2025, 2, 1, tzinfo=timezone.utc))
    after_end = await store.get_users_version(now=datetime(2025, 4, 1, tzinfo=timezone.utc))

    assert before_start == version_marker(PAST)
    assert after_start == version_marker(starts)
    assert after_end == version_marker(ends)


@pytest.mark.asyncio
async def test_area_deactivation_advances_users_version(
    db_session: AsyncSession, event: EventData
):
    store = AuthorizationSnapshotStore(db_session, cache=SnapshotCache(FakeRedis()))
    before = await store.get_full_snapshot()

    event.staff_area.is_active = False
    await db_session.commit()
    after = await store.get_full_snapshot()

    alice = next(r for r in after.rows if r.user_id == event.alice.id)
    assert alice.allowed_areas == ["Main Arena"]
    assert after.checksum != before.checksum
    assert after.version > before.version

    check = await SyncService(store).check_updates(before.version, None)
    assert check.users_update_available is True
    assert check.current_users_version == after.version


@pytest.mark.asyncio
async def test_area_snapshot_and_version(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session)
    snapshot = await store.get_area_snapshot()
    assert [a.name for a in snapshot.rows] == ["Main Arena", "Staff Area", "VIP Lounge"]
    assert snapshot.version == version_marker(PAST)

    event.vip_lounge.is_active = False
    await db_session.commit()
    updated = await store.get_area_snapshot()
    assert [a.name for a in updated.rows] == ["Main Arena", "Staff Area"]
    assert updated.version > snapshot.version
    assert updated.checksum != snapshot.checksum


# ── Store failures ──────────────────────────────────────────────────
class _FailingSession:
    async def execute(self, stmt):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


class _HangingSession:
    async def execute(self, stmt):
        await asyncio.sleep(5)


@pytest.mark.asyncio
async def test_store_errors_become_store_unavailable():
    store = AuthorizationSnapshotStore(_FailingSession())
    with pytest.raises(StoreUnavailableError):
        await store.get_user_snapshot(1)
    with pytest.raises(StoreUnavailableError):
        await store.get_users_version()


@pytest.mark.asyncio
async def test_store_timeout_becomes_store_unavailable():
    store = AuthorizationSnapshotStore(_HangingSession(), timeout=0.01)
    with pytest.raises(StoreUnavailableError):
        await store.get_user_snapshot(1)


# ── Cache ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_cache_serves_matching_version(db_session: AsyncSession, event: EventData):
    redis = FakeRedis()
    store = AuthorizationSnapshotStore(db_session, cache=SnapshotCache(redis))

    first = await store.get_full_snapshot()
    key = "accreditation:snapshot:users"
    assert key in redis.store

    cached = json.loads(redis.store[key])
    cached["checksum"] = "served-from-cache"
    redis.store[key] = json.dumps(cached)

    second = await store.get_full_snapshot()
    assert second.checksum == "served-from-cache"
    assert second.rows == first.rows


@pytest.mark.asyncio
async def test_cache_bypassed_on_version_change(db_session: AsyncSession, event: EventData):
    redis = FakeRedis()
    store = AuthorizationSnapshotStore(db_session, cache=SnapshotCache(redis))
    first = await store.get_full_snapshot()

    key = "accreditation:snapshot:users"
    cached = json.loads(redis.store[key])
    cached["checksum"] = "stale"
    redis.store[key] = json.dumps(cached)

    event.scanner.is_active = False
    await db_session.commit()
    second = await store.get_full_snapshot()

    assert second.checksum != "stale"
    assert second.version > first.version
    assert event.scanner.id not in [r.user_id for r in second.rows]
    assert json.loads(redis.store[key])["version"] == second.version


@pytest.mark.asyncio
async def test_cache_failure_is_a_miss(db_session: AsyncSession, event: EventData):
    store = AuthorizationSnapshotStore(db_session, cache=SnapshotCache(DownRedis()))
    with_cache = await store.get_full_snapshot()
    without_cache = await AuthorizationSnapshotStore(db_session).get_full_snapshot()
    assert with_cache.checksum == without_cache.checksum

    areas = await store.get_area_snapshot()
    assert len(areas.rows) == 3


@pytest.mark.asyncio
async def test_cache_helpers_report_misses_when_down():
    cache = SnapshotCache(DownRedis())
    assert await cache.get("anything") is None
    assert await cache.get_json("anything") is None
    assert await cache.exists("anything") is False
    assert await cache.ping() is False
    await cache.set("k", "v")
    await cache.close()
