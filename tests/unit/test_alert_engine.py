import uuid
from datetime import datetime, timezone

import pytest

from agbot_webhook.alert_engine import apply_actions, evaluate
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

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]

NOW = datetime(2026, 3, 1, 4, 0, tzinfo=timezone.utc)


def snapshot(**overrides) -> AssetSnapshot:
    values = {
        "external_guid": "asset-guid-0001",
        "is_online": True,
        "battery_voltage": 3.6,
        "level_percent": 67.5,
        "days_remaining": 45,
    }
    values.update(overrides)
    return AssetSnapshot(**values)


def by_type(actions: list[AlertAction]) -> dict[str, AlertAction]:
    return {a.alert_type: a for a in actions}


class FakeAlertRepo:
    def __init__(self, active: dict | None = None):
        self.active = dict(active or {})
        self.created = []
        self.escalated = []
        self.resolved = []
        self.fail = False

    async def find_active(self, asset_id, alert_type):
        if self.fail:
            raise PersistenceError("alerts write failed: connection reset", stage="alerts")
        return self.active.get(alert_type)

    async def create(self, asset_id, action, triggered_at):
        self.created.append(action)
        return uuid.uuid4()

    async def escalate(self, alert_id, action):
        self.escalated.append((alert_id, action.severity))

    async def resolve(self, alert_id, resolved_at):
        self.resolved.append((alert_id, resolved_at))


async def test_healthy_asset_resolves_everything():
    actions = by_type(evaluate(snapshot(), snapshot()))
    assert [a.action for a in actions.values()] == [ACTION_RESOLVE] * 3


async def test_battery_warning_band():
    action = by_type(evaluate(snapshot(battery_voltage=3.25), None))[LOW_BATTERY]
    assert action.action == ACTION_CREATE
    assert action.severity == WARNING
    assert action.threshold_value == 3.3


async def test_battery_critical_supersedes_warning():
    action = by_type(evaluate(snapshot(battery_voltage=3.1), None))[LOW_BATTERY]
    assert action.severity == CRITICAL
    assert action.threshold_value == 3.2


async def test_battery_at_warning_threshold_is_healthy():
    action = by_type(evaluate(snapshot(battery_voltage=3.3), None))[LOW_BATTERY]
    assert action.action == ACTION_RESOLVE


async def test_unknown_battery_does_nothing():
    action = by_type(evaluate(snapshot(battery_voltage=None), None))[LOW_BATTERY]
    assert action.action == ACTION_NONE


async def test_fuel_warning_by_days():
    action = by_type(evaluate(snapshot(days_remaining=7), None))[LOW_FUEL]
    assert (action.action, action.severity) == (ACTION_CREATE, WARNING)


async def test_fractional_days_are_not_truncated():
    above_warning = by_type(evaluate(snapshot(days_remaining=7.9), None))[LOW_FUEL]
    above_critical = by_type(evaluate(snapshot(days_remaining=3.5), None))[LOW_FUEL]

    assert above_warning.action == ACTION_RESOLVE
    assert (above_critical.action, above_critical.severity) == (ACTION_CREATE, WARNING)
    assert above_critical.message.endswith("3.5 days remaining")


async def test_fuel_warning_by_percent():
    action = by_type(evaluate(snapshot(level_percent=15.0), None))[LOW_FUEL]
    assert (action.action, action.severity) == (ACTION_CREATE, WARNING)


async def test_fuel_critical_by_days_even_when_level_is_fine():
    action = by_type(evaluate(snapshot(days_remaining=2, level_percent=67.5), None))[LOW_FUEL]
    assert action.severity == CRITICAL
    assert action.current_value == 2.0
    assert action.threshold_value == 3.0


async def test_fuel_critical_by_percent():
    action = by_type(evaluate(snapshot(days_remaining=None, level_percent=9.5), None))[LOW_FUEL]
    assert action.severity == CRITICAL
    assert action.threshold_value == 10.0


async def test_fuel_unknown_does_nothing():
    action = by_type(evaluate(snapshot(days_remaining=None, level_percent=None), None))[LOW_FUEL]
    assert action.action == ACTION_NONE


async def test_offline_alert_only_on_transition():
    first_seen_offline = by_type(evaluate(snapshot(is_online=False), None))[DEVICE_OFFLINE]
    still_offline = by_type(evaluate(snapshot(is_online=False), snapshot(is_online=False)))[DEVICE_OFFLINE]
    went_offline = by_type(evaluate(snapshot(is_online=False), snapshot(is_online=True)))[DEVICE_OFFLINE]
    assert first_seen_offline.action == ACTION_NONE
    assert still_offline.action == ACTION_NONE
    assert went_offline.action == ACTION_CREATE


async def test_custom_thresholds():
    thresholds = AlertThresholds(battery_warning_v=3.7, battery_critical_v=3.5)
    action = by_type(evaluate(snapshot(battery_voltage=3.6), None, thresholds))[LOW_BATTERY]
    assert action.severity == WARNING


async def test_apply_creates_new_alert():
    repo = FakeAlertRepo()
    actions = evaluate(snapshot(battery_voltage=3.1), None)
    outcome = await apply_actions(repo, uuid.uuid4(), actions, NOW)
    assert outcome.created == 1
    assert repo.created[0].alert_type == LOW_BATTERY


async def test_apply_skips_duplicate_of_same_severity():
    existing = {LOW_BATTERY: {"id": uuid.uuid4(), "severity": CRITICAL}}
    repo = FakeAlertRepo(existing)
    outcome = await apply_actions(repo, uuid.uuid4(), evaluate(snapshot(battery_voltage=3.1), None), NOW)
    assert outcome.created == 0
    assert outcome.escalated == 0
    assert repo.created == []


async def test_apply_escalates_in_place():
    alert_id = uuid.uuid4()
    repo = FakeAlertRepo({LOW_FUEL: {"id": alert_id, "severity": WARNING}})
    outcome = await apply_actions(repo, uuid.uuid4(), evaluate(snapshot(days_remaining=2), None), NOW)
    assert outcome.escalated == 1
    assert outcome.created == 0
    assert repo.escalated == [(alert_id, CRITICAL)]


async def test_apply_resolves_open_alert():
    alert_id = uuid.uuid4()
    repo = FakeAlertRepo({DEVICE_OFFLINE: {"id": alert_id, "severity": WARNING}})
    outcome = await apply_actions(repo, uuid.uuid4(), evaluate(snapshot(is_online=True), None), NOW)
    assert outcome.resolved == 1
    assert repo.resolved == [(alert_id, NOW)]


async def test_resolve_without_open_alert_is_noop():
    repo = FakeAlertRepo()
    outcome = await apply_actions(repo, uuid.uuid4(), evaluate(snapshot(), None), NOW)
    assert (outcome.created, outcome.escalated, outcome.resolved) == (0, 0, 0)


async def test_persistence_failure_becomes_alert_error():
    repo = FakeAlertRepo()
    repo.fail = True
    with pytest.raises(AlertError) as excinfo:
        await apply_actions(repo, uuid.uuid4(), evaluate(snapshot(), None), NOW)
    assert excinfo.value.stage == "alerts"
