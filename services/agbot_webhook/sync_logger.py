"""One agbot_sync_log row per accepted webhook delivery."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from agbot_webhook.errors import PersistenceError
from agbot_webhook.models import (
    STATUS_ERROR,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    SYNC_TYPE,
    SyncCounts,
)
from shared.logging import log_exception

logger = logging.getLogger(__name__)

MAX_SUMMARY_ERRORS = 3


@dataclass
class SyncHandle:
    started_at: datetime
    started_monotonic: float

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_monotonic) * 1000)


def determine_status(processed: int, failed: int, aborted: bool = False) -> str:
    if aborted or (failed > 0 and processed == 0):
        return STATUS_ERROR
    if failed > 0:
        return STATUS_PARTIAL
    return STATUS_SUCCESS


def summarize_errors(errors: list[str]) -> Optional[str]:
    if not errors:
        return None
    return "; ".join(errors[:MAX_SUMMARY_ERRORS])


class SyncLogger:
    def __init__(self, repo, sync_type: str = SYNC_TYPE):
        self.repo = repo
        self.sync_type = sync_type

    @staticmethod
    def begin() -> SyncHandle:
        return SyncHandle(started_at=datetime.now(timezone.utc), started_monotonic=time.monotonic())

    async def complete(
        self,
        handle: SyncHandle,
        status: str,
        counts: SyncCounts,
        error_summary: Optional[str],
    ) -> int:
        """Write the log row and return the duration in ms. Write failures are logged only."""
        duration_ms = handle.elapsed_ms()
        try:
            await self.repo.insert(
                sync_type=self.sync_type,
                status=status,
                counts=counts,
                error_message=error_summary,
                duration_ms=duration_ms,
                started_at=handle.started_at,
                completed_at=datetime.now(timezone.utc),
            )
        except PersistenceError as exc:
            log_exception(logger, "sync log write failed", exc, {"sync_status": status})
        return duration_ms
