import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import asyncpg
import pytest

from agbot_webhook.errors import PersistenceError
from agbot_webhook.models import ACTION_CREATE, CRITICAL, LOW_FUEL, AlertAction, SyncCounts
from agbot_webhook.repositories import (
    ASSET_COLUMNS,
    LOCATION_COLUMNS,
    UPSERT_ASSET_SQL,
    UPSERT_LOCATION_SQL,
    AlertRepository,
    AssetRepository,
    LocationRepository,
    ReadingRepository,
    SyncLogRepository,
)
from agbot_webhook.transformer import transform_record
from tests.helpers.db import FakeConn
from tests.factories import FakeRecord, asset_row, gasbot_record

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]

NOW = datetime(2026, 3, 1, 4, 0, tzinfo=timezone.utc)


def transformed():
    return transform_record(gasbot_record(), NOW)


async def test_upsert_sql_conflicts_on_external_guid():
    assert "ON CONFLICT (external_guid) DO UPDATE" in UPSERT_LOCATION_SQL
    assert "external_guid = EXCLUDED.external_guid" not in UPSERT_LOCATION_SQL
    assert "raw_data = EXCLUDED.raw_data" in UPSERT_ASSET_SQL
    assert "COALESCE(EXCLUDED.location_id, agbot_assets.location_id)" in UPSERT_ASSET_SQL


async def test_location_upsert_binds_every_column():
    conn = FakeConn()
    location_id = uuid.uuid4()
    conn.fetchrow_results = [FakeRecord({"id": location_id, "inserted": True})]

    result = await LocationRepository(conn).upsert(transformed().location)

    assert result == location_id
    query, args = conn.fetchrow_calls[0]
    assert query == UPSERT_LOCATION_SQL
    assert len(args) == len(LOCATION_COLUMNS)
    assert args[0] == "loc-guid-0001"
    assert json.loads(args[-1])["LocationGuid"] == "loc-guid-0001"


async def test_asset_upsert_passes_location_last():
    conn = FakeConn()
    asset_id, location_id = uuid.uuid4(), uuid.uuid4()
    conn.fetchrow_results = [FakeRecord({"id": asset_id, "inserted": False})]

    result = await AssetRepository(conn).upsert(transformed().asset, location_id)

    assert result == asset_id
    query, args = conn.fetchrow_calls[0]
    assert query == UPSERT_ASSET_SQL
    assert len(args) == len(ASSET_COLUMNS) + 1
    assert args[-1] == location_id


async def test_get_snapshot_converts_numeric_columns():
    conn = FakeConn()
    conn.fetchrow_results = [asset_row({"battery_voltage": Decimal("3.15"), "current_level_percent": Decimal("9.50")})]

    snap = await AssetRepository(conn).get_snapshot("asset-guid-0001")

    assert snap.battery_voltage == 3.15
    assert snap.level_percent == 9.5
    assert snap.is_online is True
    assert conn.fetchrow_calls[0][1] == ("asset-guid-0001",)


async def test_get_snapshot_unknown_asset():
    assert await AssetRepository(FakeConn()).get_snapshot("nope") is None


async def test_reading_insert_puts_asset_first():
    conn = FakeConn()
    reading_id = uuid.uuid4()
    asset_id = uuid.uuid4()
    conn.fetchval_results = [reading_id]

    result = await ReadingRepository(conn).insert(transformed().reading, asset_id)

    assert result == reading_id
    query, args = conn.fetchval_calls[0]
    assert query.startswith("INSERT INTO agbot_readings")
    assert args[0] == asset_id
    assert args[2] == 67.5


async def test_database_error_becomes_persistence_error():
    conn = FakeConn()
    conn.raise_on_next = asyncpg.InterfaceError("connection lost")

    with pytest.raises(PersistenceError) as excinfo:
        await ReadingRepository(conn).insert(transformed().reading, uuid.uuid4())

    assert excinfo.value.stage == "reading"
    assert "reading write failed" in str(excinfo.value)


async def test_alert_create_uses_partial_unique_index():
    conn = FakeConn()
    conn.fetchval_results = [None]
    action = AlertAction(LOW_FUEL, ACTION_CREATE, severity=CRITICAL, title="Critical fuel level", current_value=2.0)

    result = await AlertRepository(conn).create(uuid.uuid4(), action, NOW)

    assert result is None
    query, args = conn.fetchval_calls[0]
    assert "ON CONFLICT (asset_id, alert_type) WHERE is_active DO NOTHING" in query
    assert args[1:3] == (LOW_FUEL, CRITICAL)


async def test_alert_find_active_returns_dict():
    conn = FakeConn()
    alert_id = uuid.uuid4()
    conn.fetchrow_results = [FakeRecord({"id": alert_id, "severity": "warning"})]

    assert await AlertRepository(conn).find_active(uuid.uuid4(), LOW_FUEL) == {"id": alert_id, "severity": "warning"}


async def test_alert_resolve_stamps_time():
    conn = FakeConn()
    alert_id = uuid.uuid4()

    await AlertRepository(conn).resolve(alert_id, NOW)

    query, args = conn.execute_calls[0]
    assert "is_active = false" in query
    assert args == (alert_id, NOW)


async def test_sync_log_insert():
    conn = FakeConn()
    conn.fetchval_results = [uuid.uuid4()]
    counts = SyncCounts(locations=1, assets=1, readings=1, alerts_triggered=0, records_failed=2)

    await SyncLogRepository(conn).insert("gasbot_webhook", "partial", counts, "Record 2 (x): bad", 12, NOW, NOW)

    _, args = conn.fetchval_calls[0]
    assert args[:7] == ("gasbot_webhook", "partial", 1, 1, 1, 0, 2)
    assert args[7] == "Record 2 (x): bad"
