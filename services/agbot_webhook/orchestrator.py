"""
Drives one webhook delivery from parsed body to sync-log row.

Records are processed sequentially on a single pooled connection with no
batch-level transaction: each record's writes commit as they happen, and a
failing record is reported in the result without touching the others.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

import asyncpg

from agbot_webhook.alert_engine import apply_actions, evaluate
from agbot_webhook.errors import MalformedBatchError, RecordError, ValidationError
from agbot_webhook.models import STATUS_ERROR, AssetSnapshot, SyncCounts
from agbot_webhook.repositories import Repositories
from agbot_webhook.settings import Settings
from agbot_webhook.sync_logger import SyncHandle, SyncLogger, determine_status, summarize_errors
from agbot_webhook.transformer import transform_record
from agbot_webhook.validator import is_blank, validate_record
from shared.logging import log_event, log_exception
from shared.metrics import (
    webhook_batch_size,
    webhook_deliveries_total,
    webhook_processing_duration_seconds,
    webhook_records_total,
)

logger = logging.getLogger(__name__)

_REFERENCE_FIELDS = ("AssetGuid", "AssetSerialNumber", "DeviceSerialNumber", "LocationGuid", "LocationId")

# Raised by pool.acquire() when the database cannot be reached.
_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_reference(record: Any) -> str:
    """Best human-readable identifier for a record in error messages."""
    if isinstance(record, Mapping):
        for name in _REFERENCE_FIELDS:
            value = record.get(name)
            if not is_blank(value):
                return str(value)
    return "unknown"


def normalize_batch(payload: Any) -> list:
    if isinstance(payload, Mapping):
        return [payload]
    if isinstance(payload, list):
        return payload
    raise MalformedBatchError(f"Expected a JSON object or array, got {type(payload).__name__}")


@dataclass
class BatchResult:
    processed: int
    failed: int
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    status: str = STATUS_ERROR
    counts: SyncCounts = field(default_factory=SyncCounts)


class WebhookOrchestrator:
    def __init__(
        self,
        pool,
        settings: Settings,
        repositories_factory: Callable[[Any], Repositories] = Repositories.for_connection,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.pool = pool
        self.settings = settings
        self.repositories_factory = repositories_factory
        self.clock = clock

    async def process(self, payload: Any) -> BatchResult:
        records = normalize_batch(payload)
        handle = SyncLogger.begin()
        started = time.monotonic()
        received_at = self.clock()
        counts = SyncCounts()
        errors: list[str] = []
        processed = 0
        webhook_batch_size.observe(len(records))

        try:
            async with self.pool.acquire() as conn:
                repos = self.repositories_factory(conn)
                for index, record in enumerate(records, start=1):
                    if await self._process_one(repos, index, record, received_at, counts, errors):
                        processed += 1
                status = determine_status(processed, counts.records_failed)
                duration_ms = await SyncLogger(repos.sync_log).complete(
                    handle, status, counts, summarize_errors(errors)
                )
        except _CONNECT_ERRORS as exc:
            log_exception(logger, "webhook batch aborted", exc, {"records": len(records)})
            counts.records_failed = len(records) - processed
            errors.append(f"Batch aborted: {exc}")
            status = STATUS_ERROR
            duration_ms = await self._log_aborted(handle, counts, errors)

        webhook_deliveries_total.labels(result=status).inc()
        webhook_processing_duration_seconds.observe(time.monotonic() - started)
        log_event(
            logger,
            "webhook batch processed",
            records=len(records),
            processed=processed,
            failed=counts.records_failed,
            sync_status=status,
            alerts_triggered=counts.alerts_triggered,
            duration_ms=duration_ms,
        )
        return BatchResult(
            processed=processed,
            failed=counts.records_failed,
            errors=errors,
            duration_ms=duration_ms,
            status=status,
            counts=counts,
        )

    async def _process_one(
        self,
        repos: Repositories,
        index: int,
        record: Any,
        received_at: datetime,
        counts: SyncCounts,
        errors: list[str],
    ) -> bool:
        reference = record_reference(record)
        try:
            await self._process_record(repos, record, received_at, counts)
        except RecordError as exc:
            stage = exc.stage
            reason = str(exc)
        except Exception as exc:
            # anything unexpected is still confined to this record
            log_exception(logger, "unexpected record failure", exc, {"record_index": index, "asset_ref": reference})
            stage = "unexpected"
            reason = f"{type(exc).__name__}: {exc}"
        else:
            webhook_records_total.labels(result="processed", stage="none").inc()
            return True

        counts.records_failed += 1
        errors.append(f"Record {index} ({reference}): {reason}")
        webhook_records_total.labels(result="failed", stage=stage).inc()
        log_event(
            logger,
            "record failed",
            level="WARNING",
            record_index=index,
            stage=stage,
            asset_ref=reference,
            error=reason,
        )
        return False

    async def _process_record(
        self,
        repos: Repositories,
        record: Any,
        received_at: datetime,
        counts: SyncCounts,
    ) -> None:
        result = validate_record(record)
        if not result.valid:
            raise ValidationError(result.errors)
        if result.warnings:
            log_event(
                logger,
                "record warnings",
                level="WARNING",
                asset_ref=record_reference(record),
                warnings=result.warnings,
            )

        transformed = transform_record(record, received_at, self.settings.vendor_utc_offset_hours)

        location_id = None
        if transformed.location is not None:
            location_id = await repos.locations.upsert(transformed.location)
            counts.locations += 1

        previous = await repos.assets.get_snapshot(transformed.asset.external_guid)
        asset_id = await repos.assets.upsert(transformed.asset, location_id)
        counts.assets += 1

        await repos.readings.insert(transformed.reading, asset_id)
        counts.readings += 1

        current = AssetSnapshot.from_input(transformed.asset, asset_id)
        actions = evaluate(current, previous, self.settings.thresholds)
        outcome = await apply_actions(repos.alerts, asset_id, actions, received_at)
        counts.alerts_triggered += outcome.created

    async def _log_aborted(self, handle: SyncHandle, counts: SyncCounts, errors: list[str]) -> int:
        """Best-effort sync-log row for a batch that lost its connection."""
        try:
            async with self.pool.acquire() as conn:
                repos = self.repositories_factory(conn)
                return await SyncLogger(repos.sync_log).complete(
                    handle, STATUS_ERROR, counts, summarize_errors(errors)
                )
        except _CONNECT_ERRORS as exc:
            log_exception(logger, "sync log write skipped", exc, {"sync_status": STATUS_ERROR})
            return handle.elapsed_ms()
