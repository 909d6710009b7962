import pytest

from agbot_webhook.orchestrator import WebhookOrchestrator
from tests.factories import gasbot_batch, gasbot_record

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def test_batch_lands_in_postgres(db_pool, settings):
    orchestrator = WebhookOrchestrator(db_pool, settings)

    result = await orchestrator.process(gasbot_batch(3))

    assert (result.processed, result.failed) == (3, 0)
    async with db_pool.acquire() as conn:
        assert await conn.fetchval("SELECT count(*) FROM agbot_locations") == 3
        assert await conn.fetchval("SELECT count(*) FROM agbot_assets WHERE location_id IS NOT NULL") == 3
        assert await conn.fetchval("SELECT count(*) FROM agbot_readings") == 3
        log = await conn.fetchrow("SELECT status, readings_processed, records_failed FROM agbot_sync_log")
    assert dict(log) == {"status": "success", "readings_processed": 3, "records_failed": 0}


async def test_redelivery_upserts_and_appends(db_pool, settings):
    orchestrator = WebhookOrchestrator(db_pool, settings)
    record = gasbot_record()

    await orchestrator.process([record])
    await orchestrator.process([gasbot_record({"AssetReportedLitres": 5000})])

    async with db_pool.acquire() as conn:
        assert await conn.fetchval("SELECT count(*) FROM agbot_assets") == 1
        assert await conn.fetchval("SELECT count(*) FROM agbot_readings") == 2
        percent = await conn.fetchval(
            "SELECT current_level_percent FROM agbot_assets WHERE external_guid = $1",
            record["AssetGuid"],
        )
    assert float(percent) == 50.0


async def test_alert_lifecycle(db_pool, settings):
    orchestrator = WebhookOrchestrator(db_pool, settings)

    await orchestrator.process([gasbot_record({"DeviceBatteryVoltage": 3.25})])
    await orchestrator.process([gasbot_record({"DeviceBatteryVoltage": 3.1})])
    async with db_pool.acquire() as conn:
        rows = await conn.fetch("SELECT severity, is_active FROM agbot_alerts WHERE alert_type = 'low_battery'")
    assert [(r["severity"], r["is_active"]) for r in rows] == [("critical", True)]

    await orchestrator.process([gasbot_record({"DeviceBatteryVoltage": 3.7})])
    async with db_pool.acquire() as conn:
        row = await conn.fetchrow("SELECT is_active, resolved_at FROM agbot_alerts WHERE alert_type = 'low_battery'")
    assert row["is_active"] is False
    assert row["resolved_at"] is not None


async def test_partial_failure_is_logged(db_pool, settings):
    batch = gasbot_batch(5)
    for name in ("AssetGuid", "AssetSerialNumber", "DeviceSerialNumber"):
        batch[2].pop(name)

    result = await WebhookOrchestrator(db_pool, settings).process(batch)

    assert (result.processed, result.failed) == (4, 1)
    async with db_pool.acquire() as conn:
        log = await conn.fetchrow("SELECT status, records_failed, error_message FROM agbot_sync_log")
    assert log["status"] == "partial"
    assert log["records_failed"] == 1
    assert log["error_message"].startswith("Record 3 ")
