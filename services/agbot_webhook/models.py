"""Internal schema for ingested AgBot data."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

LOW_BATTERY = "low_battery"
LOW_FUEL = "low_fuel"
DEVICE_OFFLINE = "device_offline"

WARNING = "warning"
CRITICAL = "critical"

ACTION_CREATE = "create"
ACTION_RESOLVE = "resolve"
ACTION_NONE = "none"

SYNC_TYPE = "gasbot_webhook"
STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_ERROR = "error"


@dataclass
class LocationInput:
    external_guid: str
    name: str
    customer_name: str
    customer_guid: str
    tenancy_name: Optional[str] = None
    address: str = ""
    state: str = ""
    postcode: str = ""
    country: str = "Australia"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    installation_status: Optional[int] = None
    installation_status_label: Optional[str] = None
    is_disabled: bool = False
    daily_consumption_liters: Optional[float] = None
    days_remaining: Optional[float] = None
    calibrated_fill_level: Optional[float] = None
    last_telemetry_at: Optional[datetime] = None
    last_telemetry_epoch: Optional[int] = None
    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssetInput:
    external_guid: str
    name: str
    serial_number: Optional[str] = None
    profile_name: Optional[str] = None
    commodity: Optional[str] = None
    capacity_liters: Optional[float] = None
    current_level_liters: Optional[float] = None
    current_level_percent: Optional[float] = None
    current_raw_percent: Optional[float] = None
    ullage_liters: Optional[float] = None
    daily_consumption_liters: Optional[float] = None
    days_remaining: Optional[float] = None
    device_guid: Optional[str] = None
    device_serial: Optional[str] = None
    device_model: Optional[int] = None
    device_sku: Optional[str] = None
    device_network_id: Optional[str] = None
    is_online: bool = False
    is_disabled: bool = False
    device_state: Optional[str] = None
    battery_voltage: Optional[float] = None
    temperature_c: Optional[float] = None
    device_activated_at: Optional[datetime] = None
    last_telemetry_at: Optional[datetime] = None
    last_telemetry_epoch: Optional[int] = None
    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReadingInput:
    reading_at: datetime
    level_liters: Optional[float] = None
    level_percent: Optional[float] = None
    raw_percent: Optional[float] = None
    is_online: bool = False
    battery_voltage: Optional[float] = None
    temperature_c: Optional[float] = None
    device_state: Optional[str] = None
    daily_consumption: Optional[float] = None
    days_remaining: Optional[float] = None
    telemetry_epoch: Optional[int] = None


@dataclass
class TransformedRecord:
    """The three sub-records one vendor record maps onto."""

    location: Optional[LocationInput]
    asset: AssetInput
    reading: ReadingInput


@dataclass
class AssetSnapshot:
    """The alert-relevant slice of an asset's state."""

    external_guid: str
    is_online: bool
    battery_voltage: Optional[float] = None
    level_percent: Optional[float] = None
    days_remaining: Optional[float] = None
    id: Optional[UUID] = None
    location_id: Optional[UUID] = None

    @classmethod
    def from_input(cls, asset: AssetInput, asset_id: UUID | None = None) -> "AssetSnapshot":
        return cls(
            external_guid=asset.external_guid,
            is_online=asset.is_online,
            battery_voltage=asset.battery_voltage,
            level_percent=asset.current_level_percent,
            days_remaining=asset.days_remaining,
            id=asset_id,
        )


@dataclass
class AlertAction:
    alert_type: str
    action: str
    severity: Optional[str] = None
    title: str = ""
    message: str = ""
    current_value: Optional[float] = None
    threshold_value: Optional[float] = None
    previous_value: Optional[float] = None


@dataclass
class SyncCounts:
    locations: int = 0
    assets: int = 0
    readings: int = 0
    alerts_triggered: int = 0
    records_failed: int = 0
