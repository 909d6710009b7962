"""
Error taxonomy for webhook ingestion.

Only AuthenticationError and MalformedBatchError ever leave the orchestrator;
every RecordError is caught per record and reported in the batch result.
"""


class WebhookError(Exception):
    """Base class for all ingestion errors."""


class AuthenticationError(WebhookError):
    """Bearer token missing or not matching the configured secret (401)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MalformedBatchError(WebhookError):
    """Top-level body is not a JSON object or array (400)."""


class RecordError(WebhookError):
    """A failure confined to one record of a batch."""

    stage = "record"

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ValidationError(RecordError):
    stage = "validate"

    def __init__(self, problems: list[str]):
        super().__init__("; ".join(problems) or "invalid record")
        self.problems = list(problems)


class TransformError(RecordError):
    stage = "transform"


class PersistenceError(RecordError):
    """Database failure while writing one record; stage names the failing step."""

    stage = "persist"


class AlertError(RecordError):
    stage = "alerts"
