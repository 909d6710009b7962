"""
Data access for the agbot_* tables.

Zero business logic: upsert-by-external-guid for locations and assets,
append-only inserts for readings and sync-log rows, and the small set of
alert queries the alert engine needs. Database failures surface as
PersistenceError tagged with the step that failed.
"""
from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import asyncpg

from agbot_webhook.errors import PersistenceError
from agbot_webhook.models import (
    AlertAction,
    AssetInput,
    AssetSnapshot,
    LocationInput,
    ReadingInput,
    SyncCounts,
)

LOCATION_COLUMNS = (
    "external_guid",
    "name",
    "customer_name",
    "customer_guid",
    "tenancy_name",
    "address",
    "state",
    "postcode",
    "country",
    "latitude",
    "longitude",
    "installation_status",
    "installation_status_label",
    "is_disabled",
    "daily_consumption_liters",
    "days_remaining",
    "calibrated_fill_level",
    "last_telemetry_at",
    "last_telemetry_epoch",
    "raw_data",
)

ASSET_COLUMNS = (
    "external_guid",
    "name",
    "serial_number",
    "profile_name",
    "commodity",
    "capacity_liters",
    "current_level_liters",
    "current_level_percent",
    "current_raw_percent",
    "ullage_liters",
    "daily_consumption_liters",
    "days_remaining",
    "device_guid",
    "device_serial",
    "device_model",
    "device_sku",
    "device_network_id",
    "is_online",
    "is_disabled",
    "device_state",
    "battery_voltage",
    "temperature_c",
    "device_activated_at",
    "last_telemetry_at",
    "last_telemetry_epoch",
    "raw_data",
)

READING_COLUMNS = (
    "level_liters",
    "level_percent",
    "raw_percent",
    "is_online",
    "battery_voltage",
    "temperature_c",
    "device_state",
    "daily_consumption",
    "days_remaining",
    "reading_at",
    "telemetry_epoch",
)


def _upsert_sql(table: str, columns: tuple[str, ...], extra: tuple[str, ...] = ()) -> str:
    """INSERT ... ON CONFLICT (external_guid) overwriting every mutable column."""
    all_columns = columns + extra
    placeholders = []
    for idx, name in enumerate(all_columns, start=1):
        placeholders.append(f"${idx}::jsonb" if name == "raw_data" else f"${idx}")
    updates = [f"{name} = EXCLUDED.{name}" for name in columns if name != "external_guid"]
    if "location_id" in extra:
        # a record without location fields keeps the asset's existing link
        updates.append(f"location_id = COALESCE(EXCLUDED.location_id, {table}.location_id)")
    updates.append("updated_at = now()")
    return (
        f"INSERT INTO {table} ({', '.join(all_columns)})\n"
        f"VALUES ({', '.join(placeholders)})\n"
        f"ON CONFLICT (external_guid) DO UPDATE SET\n  "
        + ",\n  ".join(updates)
        + "\nRETURNING id, (xmax = 0) AS inserted"
    )


UPSERT_LOCATION_SQL = _upsert_sql("agbot_locations", LOCATION_COLUMNS)
UPSERT_ASSET_SQL = _upsert_sql("agbot_assets", ASSET_COLUMNS, extra=("location_id",))
INSERT_READING_SQL = (
    f"INSERT INTO agbot_readings (asset_id, {', '.join(READING_COLUMNS)})\n"
    f"VALUES ({', '.join(f'${i}' for i in range(1, len(READING_COLUMNS) + 2))})\n"
    "RETURNING id"
)


@contextmanager
def db_step(stage: str):
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
        raise PersistenceError(f"{stage} write failed: {exc}", stage=stage) from exc


def _values(obj, columns: tuple[str, ...]) -> list[Any]:
    data = asdict(obj)
    values = []
    for name in columns:
        value = data[name]
        if name == "raw_data":
            value = json.dumps(value or {}, default=str)
        values.append(value)
    return values


def _as_float(value) -> Optional[float]:
    # NUMERIC columns come back as Decimal
    return None if value is None else float(value)


class LocationRepository:
    def __init__(self, conn):
        self.conn = conn

    async def upsert(self, location: LocationInput) -> UUID:
        with db_step("location"):
            row = await self.conn.fetchrow(UPSERT_LOCATION_SQL, *_values(location, LOCATION_COLUMNS))
        if row is None:
            raise PersistenceError(f"location upsert returned no row for {location.external_guid}", stage="location")
        return row["id"]


class AssetRepository:
    def __init__(self, conn):
        self.conn = conn

    async def get_snapshot(self, external_guid: str) -> Optional[AssetSnapshot]:
        with db_step("asset"):
            row = await self.conn.fetchrow(
                """
                SELECT id, external_guid, location_id, is_online, battery_voltage,
                       current_level_percent, days_remaining
                FROM agbot_assets
                WHERE external_guid = $1
                """,
                external_guid,
            )
        if not row:
            return None
        return AssetSnapshot(
            id=row["id"],
            external_guid=row["external_guid"],
            location_id=row["location_id"],
            is_online=bool(row["is_online"]),
            battery_voltage=_as_float(row["battery_voltage"]),
            level_percent=_as_float(row["current_level_percent"]),
            days_remaining=_as_float(row["days_remaining"]),
        )

    async def upsert(self, asset: AssetInput, location_id: Optional[UUID]) -> UUID:
        with db_step("asset"):
            row = await self.conn.fetchrow(
                UPSERT_ASSET_SQL,
                *_values(asset, ASSET_COLUMNS),
                location_id,
            )
        if row is None:
            raise PersistenceError(f"asset upsert returned no row for {asset.external_guid}", stage="asset")
        return row["id"]


class ReadingRepository:
    def __init__(self, conn):
        self.conn = conn

    async def insert(self, reading: ReadingInput, asset_id: UUID) -> UUID:
        with db_step("reading"):
            return await self.conn.fetchval(
                INSERT_READING_SQL,
                asset_id,
                *_values(reading, READING_COLUMNS),
            )


class AlertRepository:
    def __init__(self, conn):
        self.conn = conn

    async def find_active(self, asset_id: UUID, alert_type: str) -> Optional[dict]:
        with db_step("alerts"):
            row = await self.conn.fetchrow(
                """
                SELECT id, severity
                FROM agbot_alerts
                WHERE asset_id = $1 AND alert_type = $2 AND is_active
                LIMIT 1
                """,
                asset_id,
                alert_type,
            )
        return dict(row) if row else None

    async def create(self, asset_id: UUID, action: AlertAction, triggered_at: datetime) -> Optional[UUID]:
        """Insert an active alert. Returns None if one was opened concurrently."""
        with db_step("alerts"):
            return await self.conn.fetchval(
                """
                INSERT INTO agbot_alerts
                    (asset_id, alert_type, severity, title, message,
                     current_value, threshold_value, previous_value, is_active, triggered_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, true, $9)
                ON CONFLICT (asset_id, alert_type) WHERE is_active DO NOTHING
                RETURNING id
                """,
                asset_id,
                action.alert_type,
                action.severity,
                action.title,
                action.message,
                action.current_value,
                action.threshold_value,
                action.previous_value,
                triggered_at,
            )

    async def escalate(self, alert_id: UUID, action: AlertAction) -> None:
        """Change the severity of an open alert in place."""
        with db_step("alerts"):
            await self.conn.execute(
                """
                UPDATE agbot_alerts
                SET severity = $2, title = $3, message = $4,
                    current_value = $5, threshold_value = $6
                WHERE id = $1 AND is_active
                """,
                alert_id,
                action.severity,
                action.title,
                action.message,
                action.current_value,
                action.threshold_value,
            )

    async def resolve(self, alert_id: UUID, resolved_at: datetime) -> None:
        with db_step("alerts"):
            await self.conn.execute(
                """
                UPDATE agbot_alerts
                SET is_active = false, resolved_at = $2
                WHERE id = $1 AND is_active
                """,
                alert_id,
                resolved_at,
            )


class SyncLogRepository:
    def __init__(self, conn):
        self.conn = conn

    async def insert(
        self,
        sync_type: str,
        status: str,
        counts: SyncCounts,
        error_message: Optional[str],
        duration_ms: int,
        started_at: datetime,
        completed_at: datetime,
    ) -> Optional[UUID]:
        with db_step("sync_log"):
            return await self.conn.fetchval(
                """
                INSERT INTO agbot_sync_log
                    (sync_type, status, locations_processed, assets_processed,
                     readings_processed, alerts_triggered, records_failed,
                     error_message, duration_ms, started_at, completed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                RETURNING id
                """,
                sync_type,
                status,
                counts.locations,
                counts.assets,
                counts.readings,
                counts.alerts_triggered,
                counts.records_failed,
                error_message,
                duration_ms,
                started_at,
                completed_at,
            )


@dataclass
class Repositories:
    locations: LocationRepository
    assets: AssetRepository
    readings: ReadingRepository
    alerts: AlertRepository
    sync_log: SyncLogRepository

    @classmethod
    def for_connection(cls, conn) -> "Repositories":
        return cls(
            locations=LocationRepository(conn),
            assets=AssetRepository(conn),
            readings=ReadingRepository(conn),
            alerts=AlertRepository(conn),
            sync_log=SyncLogRepository(conn),
        )
