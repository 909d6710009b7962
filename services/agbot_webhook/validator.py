"""
Per-record validation of Gasbot webhook payloads.

Checks are grouped the way the vendor groups its fields (Location*, Asset*,
Device*). All problems in a record are collected rather than stopping at the
first one, so the sync log can carry a complete diagnosis.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

NUMERIC_FIELDS = (
    "LocationLat",
    "LocationLng",
    "LocationCalibratedFillLevel",
    "LocationDailyConsumption",
    "LocationDaysRemaining",
    "LocationInstallationStatus",
    "AssetProfileWaterCapacity",
    "AssetReportedLitres",
    "AssetCalibratedFillLevel",
    "AssetRawFillLevel",
    "AssetRefillCapacityLitres",
    "AssetDailyConsumption",
    "AssetDaysRemaining",
    "DeviceBatteryVoltage",
    "DeviceTemperature",
    "DeviceModel",
)

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}

MAX_CAPACITY_LITRES = 1_000_000


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    record: Optional[Mapping[str, Any]] = None

    @property
    def valid(self) -> bool:
        return not self.errors


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def as_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None when it is not numeric."""
    if isinstance(value, bool) or is_blank(value):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def as_online_flag(value: Any) -> Optional[bool]:
    """Accepts booleans, 0/1 and 'true'/'false' style strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def has_location_group(record: Mapping[str, Any]) -> bool:
    return any(key.startswith("Location") and not is_blank(record[key]) for key in record)


def _check_range(
    result: ValidationResult,
    record: Mapping[str, Any],
    name: str,
    low: float,
    high: float,
    unit: str = "",
) -> None:
    number = as_number(record.get(name))
    if number is not None and not (low <= number <= high):
        result.warnings.append(f"{name} out of expected range ({low:g}-{high:g}{unit}): {number:g}{unit}")


def _validate_numeric_fields(record: Mapping[str, Any], result: ValidationResult) -> None:
    for name in NUMERIC_FIELDS:
        value = record.get(name)
        if is_blank(value):
            continue
        if as_number(value) is None:
            result.errors.append(f"{name} must be numeric, got {value!r}")


def _validate_location(record: Mapping[str, Any], result: ValidationResult) -> None:
    if not has_location_group(record):
        return
    if is_blank(record.get("LocationGuid")) and is_blank(record.get("LocationId")):
        result.errors.append("Missing required field: LocationGuid or LocationId")
    for name in ("LocationGuid", "LocationId"):
        value = record.get(name)
        if not is_blank(value) and not isinstance(value, str):
            result.errors.append(f"{name} must be a string, got {type(value).__name__}")
    _check_range(result, record, "LocationLat", -90, 90)
    _check_range(result, record, "LocationLng", -180, 180)
    _check_range(result, record, "LocationCalibratedFillLevel", 0, 100, "%")


def _validate_asset(record: Mapping[str, Any], result: ValidationResult) -> None:
    identity = [record.get(name) for name in ("AssetGuid", "AssetSerialNumber", "DeviceSerialNumber")]
    if all(is_blank(value) for value in identity):
        result.errors.append("Missing required field: AssetGuid or AssetSerialNumber")
    guid = record.get("AssetGuid")
    if not is_blank(guid) and not isinstance(guid, str):
        result.errors.append(f"AssetGuid must be a string, got {type(guid).__name__}")

    if is_blank(record.get("AssetReportedLitres")) and is_blank(record.get("AssetCalibratedFillLevel")):
        result.errors.append("Missing required field: AssetReportedLitres or AssetCalibratedFillLevel")

    capacity = as_number(record.get("AssetProfileWaterCapacity"))
    if capacity is not None:
        if capacity <= 0:
            result.warnings.append(f"AssetProfileWaterCapacity must be positive: {capacity:g}")
        elif capacity > MAX_CAPACITY_LITRES:
            result.warnings.append(f"AssetProfileWaterCapacity suspiciously large: {capacity:g}L")
    litres = as_number(record.get("AssetReportedLitres"))
    if litres is not None and litres < 0:
        result.warnings.append(f"AssetReportedLitres is negative: {litres:g}")
    _check_range(result, record, "AssetCalibratedFillLevel", 0, 100, "%")


def _validate_device(record: Mapping[str, Any], result: ValidationResult) -> None:
    online = record.get("DeviceOnline")
    if online is None:
        result.errors.append("Missing required field: DeviceOnline")
    elif as_online_flag(online) is None:
        result.errors.append(f"DeviceOnline must be boolean or 0/1, got {online!r}")
    _check_range(result, record, "DeviceBatteryVoltage", 0, 20, "V")
    _check_range(result, record, "DeviceTemperature", -50, 100, "C")
    _check_range(result, record, "DeviceSignalStrength", -150, 0, "dBm")


def validate_record(record: Any) -> ValidationResult:
    """Validate one raw vendor record. Never raises."""
    result = ValidationResult()
    if not isinstance(record, Mapping):
        result.errors.append(f"Record must be an object, got {type(record).__name__}")
        return result

    result.record = record
    _validate_numeric_fields(record, result)
    _validate_location(record, result)
    _validate_asset(record, result)
    _validate_device(record, result)
    return result
