"""
Threshold alerting for AgBot assets.

evaluate() is pure: it compares the asset state from the current delivery with
the state stored before it and returns one action per alert type.
apply_actions() turns those actions into alert rows, keeping at most one
active alert per (asset, alert_type).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from agbot_webhook.errors import AlertError, PersistenceError
from agbot_webhook.models import (
    ACTION_CREATE,
    ACTION_NONE,
    ACTION_RESOLVE,
    CRITICAL,
    DEVICE_OFFLINE,
    LOW_BATTERY,
    LOW_FUEL,
    WARNING,
    AlertAction,
    AssetSnapshot,
)
from agbot_webhook.settings import AlertThresholds
from shared.logging import log_event
from shared.metrics import alert_actions_total

logger = logging.getLogger(__name__)


@dataclass
class AlertOutcome:
    created: int = 0
    escalated: int = 0
    resolved: int = 0


def _battery_action(current: AssetSnapshot, previous: Optional[AssetSnapshot], t: AlertThresholds) -> AlertAction:
    voltage = current.battery_voltage
    if voltage is None:
        return AlertAction(LOW_BATTERY, ACTION_NONE)
    if voltage < t.battery_critical_v:
        severity, threshold = CRITICAL, t.battery_critical_v
    elif voltage < t.battery_warning_v:
        severity, threshold = WARNING, t.battery_warning_v
    else:
        return AlertAction(LOW_BATTERY, ACTION_RESOLVE, current_value=voltage)
    return AlertAction(
        LOW_BATTERY,
        ACTION_CREATE,
        severity=severity,
        title=f"{severity.capitalize()} battery",
        message=f"Battery at {voltage:.2f}V (threshold {threshold:.2f}V)",
        current_value=voltage,
        threshold_value=threshold,
        previous_value=previous.battery_voltage if previous else None,
    )


def _fuel_breach(
    days: Optional[float], percent: Optional[float], max_days: int, max_percent: float
) -> Optional[tuple[float, float]]:
    """Return (value, threshold) for the metric that breached, days first."""
    if days is not None and days <= max_days:
        return float(days), float(max_days)
    if percent is not None and percent <= max_percent:
        return percent, max_percent
    return None


def _fuel_action(current: AssetSnapshot, previous: Optional[AssetSnapshot], t: AlertThresholds) -> AlertAction:
    days, percent = current.days_remaining, current.level_percent
    if days is None and percent is None:
        return AlertAction(LOW_FUEL, ACTION_NONE)

    severity = CRITICAL
    breach = _fuel_breach(days, percent, t.fuel_critical_days, t.fuel_critical_percent)
    if breach is None:
        severity = WARNING
        breach = _fuel_breach(days, percent, t.fuel_warning_days, t.fuel_warning_percent)
    if breach is None:
        return AlertAction(LOW_FUEL, ACTION_RESOLVE, current_value=percent)

    value, threshold = breach
    level = f"{percent:.1f}%" if percent is not None else "unknown level"
    remaining = f"{days:g} days remaining" if days is not None else "days remaining unknown"
    return AlertAction(
        LOW_FUEL,
        ACTION_CREATE,
        severity=severity,
        title=f"{severity.capitalize()} fuel level",
        message=f"Tank at {level}, {remaining}",
        current_value=value,
        threshold_value=threshold,
        previous_value=previous.level_percent if previous else None,
    )


def _offline_action(current: AssetSnapshot, previous: Optional[AssetSnapshot]) -> AlertAction:
    if current.is_online:
        return AlertAction(DEVICE_OFFLINE, ACTION_RESOLVE, current_value=1.0)
    # only the online -> offline edge opens an alert
    if previous is not None and previous.is_online:
        return AlertAction(
            DEVICE_OFFLINE,
            ACTION_CREATE,
            severity=WARNING,
            title="Device offline",
            message=f"Device for {current.external_guid} went offline",
            current_value=0.0,
            threshold_value=1.0,
            previous_value=1.0,
        )
    return AlertAction(DEVICE_OFFLINE, ACTION_NONE)


def evaluate(
    current: AssetSnapshot,
    previous: Optional[AssetSnapshot],
    thresholds: AlertThresholds | None = None,
) -> list[AlertAction]:
    """One action (create, resolve or none) per alert type, evaluated independently."""
    t = thresholds or AlertThresholds()
    return [
        _battery_action(current, previous, t),
        _fuel_action(current, previous, t),
        _offline_action(current, previous),
    ]


async def apply_actions(
    alerts_repo,
    asset_id: UUID,
    actions: list[AlertAction],
    now: datetime,
) -> AlertOutcome:
    outcome = AlertOutcome()
    try:
        for action in actions:
            if action.action == ACTION_NONE:
                continue
            existing = await alerts_repo.find_active(asset_id, action.alert_type)

            if action.action == ACTION_RESOLVE:
                if existing:
                    await alerts_repo.resolve(existing["id"], now)
                    outcome.resolved += 1
                    alert_actions_total.labels(alert_type=action.alert_type, action="resolve").inc()
                continue

            if existing is None:
                alert_id = await alerts_repo.create(asset_id, action, now)
                if alert_id is not None:
                    outcome.created += 1
                    alert_actions_total.labels(alert_type=action.alert_type, action="create").inc()
                    log_event(
                        logger,
                        "alert created",
                        asset_id=str(asset_id),
                        alert_type=action.alert_type,
                        severity=action.severity,
                        alert_id=str(alert_id),
                    )
            elif existing.get("severity") != action.severity:
                await alerts_repo.escalate(existing["id"], action)
                outcome.escalated += 1
                alert_actions_total.labels(alert_type=action.alert_type, action="escalate").inc()
    except PersistenceError as exc:
        raise AlertError(f"alert evaluation failed: {exc}") from exc
    return outcome
