"""
Maps validated Gasbot records onto the internal location/asset/reading shapes.

Gasbot field names are PascalCase (LocationGuid, AssetReportedLitres, ...);
the database uses snake_case. Everything here is pure: no I/O, no clock reads
except through the `received_at` argument.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from dateutil import parser as dtparser

from agbot_webhook.errors import TransformError
from agbot_webhook.models import AssetInput, LocationInput, ReadingInput, TransformedRecord
from agbot_webhook.validator import as_number, as_online_flag, has_location_group, is_blank

DEFAULT_UTC_OFFSET_HOURS = 8.0
DEFAULT_COUNTRY = "Australia"

# Epoch values above this are milliseconds (1e11 seconds is year 5138).
_EPOCH_MS_THRESHOLD = 100_000_000_000
# Nine or more digits is an epoch; shorter runs like "20260301" are ISO-8601 basic dates.
_EPOCH_STRING = re.compile(r"^\s*-?\d{9,}(\.\d+)?\s*$")


def vendor_timezone(utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS) -> timezone:
    return timezone(timedelta(hours=utc_offset_hours))


def slugify(value: str) -> str:
    slug = re.sub(r"\s+", "-", value.strip()).lower()
    return re.sub(r"[^a-z0-9-]", "", slug)


def _epoch_to_datetime(value: float, field_name: str) -> datetime:
    seconds = value / 1000.0 if abs(value) >= _EPOCH_MS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise TransformError(f"{field_name} is not a valid epoch: {value!r}") from exc


def parse_timestamp(value: Any, field_name: str, tz: timezone | None = None) -> Optional[datetime]:
    """
    Normalize an ISO-8601 string or Unix epoch (seconds or milliseconds) to
    an aware UTC datetime. Naive strings are vendor local time, a fixed
    offset with no daylight saving.
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        raise TransformError(f"{field_name} is not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return _epoch_to_datetime(float(value), field_name)
    if not isinstance(value, str):
        raise TransformError(f"{field_name} is not a timestamp: {value!r}")
    if _EPOCH_STRING.match(value):
        return _epoch_to_datetime(float(value), field_name)
    try:
        dt = dtparser.isoparse(value.strip())
    except (ValueError, OverflowError) as exc:
        raise TransformError(f"{field_name} is not ISO-8601: {value!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz or vendor_timezone())
    return dt.astimezone(timezone.utc)


def epoch_millis(dt: Optional[datetime]) -> Optional[int]:
    if dt is None:
        return None
    return int(dt.timestamp() * 1000)


def compute_fill_percent(level_liters: Optional[float], capacity_liters: Optional[float]) -> Optional[float]:
    """Percent of capacity; None when capacity is unknown or not positive."""
    if level_liters is None or capacity_liters is None or capacity_liters <= 0:
        return None
    return round(level_liters / capacity_liters * 100.0, 2)


def compute_ullage(capacity_liters: Optional[float], level_liters: Optional[float]) -> Optional[float]:
    if capacity_liters is None or level_liters is None:
        return None
    return max(round(capacity_liters - level_liters, 2), 0.0)


def _float(record: Mapping[str, Any], name: str) -> Optional[float]:
    value = record.get(name)
    if is_blank(value):
        return None
    number = as_number(value)
    if number is None:
        raise TransformError(f"{name} is not numeric: {value!r}")
    return number


def _int(record: Mapping[str, Any], name: str) -> Optional[int]:
    number = _float(record, name)
    return None if number is None else int(number)


def _text(record: Mapping[str, Any], name: str) -> Optional[str]:
    value = record.get(name)
    if is_blank(value):
        return None
    return str(value).strip()


def _flag(record: Mapping[str, Any], name: str) -> bool:
    return bool(as_online_flag(record.get(name)))


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def location_external_guid(record: Mapping[str, Any]) -> str:
    guid = _text(record, "LocationGuid")
    if guid:
        return guid
    return f"location-{slugify(_text(record, 'LocationId') or 'unknown')}"


def asset_external_guid(record: Mapping[str, Any]) -> str:
    guid = _text(record, "AssetGuid")
    if guid:
        return guid
    serial = _text(record, "AssetSerialNumber") or _text(record, "DeviceSerialNumber") or "unknown"
    return f"asset-{slugify(serial)}"


def transform_location(
    record: Mapping[str, Any],
    asset_percent: Optional[float],
    is_online: bool,
    tz: timezone,
) -> LocationInput:
    tenancy = _text(record, "TenancyName")
    address = _text(record, "LocationAddress") or ""
    parts = [part.strip() for part in address.split(",")] if address else []

    telemetry_at = _first(
        parse_timestamp(record.get("LocationLastCalibratedTelemetryTimestamp"), "LocationLastCalibratedTelemetryTimestamp", tz),
        parse_timestamp(record.get("LocationLastCalibratedTelemetryEpoch"), "LocationLastCalibratedTelemetryEpoch", tz),
        parse_timestamp(record.get("AssetLastCalibratedTelemetryTimestamp"), "AssetLastCalibratedTelemetryTimestamp", tz),
    )
    status = _int(record, "LocationInstallationStatus")
    calibrated = _float(record, "LocationCalibratedFillLevel")

    return LocationInput(
        external_guid=location_external_guid(record),
        name=_text(record, "LocationId") or address or location_external_guid(record),
        customer_name=tenancy or "Unknown Customer",
        customer_guid=_text(record, "CustomerGuid") or f"customer-{slugify(tenancy) if tenancy else 'unknown'}",
        tenancy_name=tenancy,
        address=address,
        state=parts[2] if len(parts) >= 3 else (_text(record, "LocationState") or ""),
        postcode=parts[3] if len(parts) >= 4 else (_text(record, "LocationPostcode") or ""),
        country=_text(record, "LocationCountry") or DEFAULT_COUNTRY,
        latitude=_float(record, "LocationLat"),
        longitude=_float(record, "LocationLng"),
        installation_status=status if status is not None else int(is_online),
        installation_status_label="Active" if is_online else "Offline",
        is_disabled=_flag(record, "LocationDisabledStatus"),
        daily_consumption_liters=_float(record, "LocationDailyConsumption"),
        days_remaining=_float(record, "LocationDaysRemaining"),
        calibrated_fill_level=calibrated if calibrated is not None else asset_percent,
        last_telemetry_at=telemetry_at,
        last_telemetry_epoch=epoch_millis(telemetry_at),
        raw_data=dict(record),
    )


def transform_record(
    record: Mapping[str, Any],
    received_at: datetime,
    utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS,
) -> TransformedRecord:
    """Split one flat vendor record into location, asset and reading inputs."""
    tz = vendor_timezone(utc_offset_hours)

    is_online = as_online_flag(record.get("DeviceOnline"))
    if is_online is None:
        raise TransformError(f"DeviceOnline is not a boolean: {record.get('DeviceOnline')!r}")

    capacity = _float(record, "AssetProfileWaterCapacity")
    litres = _float(record, "AssetReportedLitres")
    calibrated = _float(record, "AssetCalibratedFillLevel")
    percent = calibrated if calibrated is not None else compute_fill_percent(litres, capacity)
    if litres is None and percent is not None and capacity is not None and capacity > 0:
        litres = round(capacity * percent / 100.0, 2)
    raw_percent = _first(_float(record, "AssetRawFillLevel"), percent)
    ullage = _first(compute_ullage(capacity, litres), _float(record, "AssetRefillCapacityLitres"))

    asset_telemetry_at = _first(
        parse_timestamp(record.get("AssetLastCalibratedTelemetryTimestamp"), "AssetLastCalibratedTelemetryTimestamp", tz),
        parse_timestamp(record.get("AssetLastCalibratedTelemetryEpoch"), "AssetLastCalibratedTelemetryEpoch", tz),
    )
    activated_at = _first(
        parse_timestamp(record.get("DeviceActivationTimestamp"), "DeviceActivationTimestamp", tz),
        parse_timestamp(record.get("DeviceActivationEpoch"), "DeviceActivationEpoch", tz),
    )
    device_serial = _text(record, "DeviceSerialNumber")
    serial = _text(record, "AssetSerialNumber") or device_serial
    battery = _float(record, "DeviceBatteryVoltage")
    temperature = _float(record, "DeviceTemperature")
    device_state = _text(record, "DeviceState")
    daily = _float(record, "AssetDailyConsumption")
    days = _float(record, "AssetDaysRemaining")

    asset = AssetInput(
        external_guid=asset_external_guid(record),
        name=_text(record, "AssetSerialNumber") or _text(record, "AssetProfileName") or asset_external_guid(record),
        serial_number=serial,
        profile_name=_text(record, "AssetProfileName"),
        commodity=_text(record, "AssetProfileCommodity"),
        capacity_liters=capacity,
        current_level_liters=litres,
        current_level_percent=percent,
        current_raw_percent=raw_percent,
        ullage_liters=ullage,
        daily_consumption_liters=daily,
        days_remaining=days,
        device_guid=_text(record, "DeviceGuid") or (f"device-{device_serial}" if device_serial else None),
        device_serial=device_serial,
        device_model=_int(record, "DeviceModel"),
        device_sku=_text(record, "DeviceSKU"),
        device_network_id=_text(record, "DeviceNetworkId"),
        is_online=is_online,
        is_disabled=_flag(record, "AssetDisabledStatus"),
        device_state=device_state,
        battery_voltage=battery,
        temperature_c=temperature,
        device_activated_at=activated_at,
        last_telemetry_at=asset_telemetry_at,
        last_telemetry_epoch=epoch_millis(asset_telemetry_at),
        raw_data=dict(record),
    )

    reading_at = asset_telemetry_at or received_at
    reading = ReadingInput(
        reading_at=reading_at,
        level_liters=litres,
        level_percent=percent,
        raw_percent=raw_percent,
        is_online=is_online,
        battery_voltage=battery,
        temperature_c=temperature,
        device_state=device_state,
        daily_consumption=_first(daily, _float(record, "LocationDailyConsumption")),
        days_remaining=_first(days, _float(record, "LocationDaysRemaining")),
        telemetry_epoch=epoch_millis(reading_at),
    )

    location = None
    if has_location_group(record):
        location = transform_location(record, percent, is_online, tz)

    return TransformedRecord(location=location, asset=asset, reading=reading)
