import hmac
import json
import logging

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import BaseModel

from agbot_webhook.errors import AuthenticationError, MalformedBatchError
from shared.logging import log_event
from shared.metrics import auth_failures_total, webhook_deliveries_total

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["gasbot"])

MAX_RESPONSE_ERRORS = 5


class WebhookResponse(BaseModel):
    success: bool = True
    processed: int
    failed: int
    duration_ms: int
    errors: list[str] | None = None


def authenticate(authorization: str | None, secret: str) -> None:
    """Check a `Bearer <secret>` header in constant time."""
    if not authorization:
        raise AuthenticationError("missing")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("invalid")
    if not hmac.compare_digest(token.strip().encode("utf-8"), secret.encode("utf-8")):
        raise AuthenticationError("invalid")


def parse_body(body: bytes):
    try:
        return json.loads(body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedBatchError(f"Invalid JSON body: {exc}") from exc


@router.post("/gasbot-webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def gasbot_webhook(
    request: Request,
    authorization: str | None = Header(default=None),
):
    """
    Receive a Gasbot push: one record object or an array of them.

    Returns:
        200 with processed/failed counts, including when some records failed
        400 for a body that is not a JSON object or array
        401 for a missing or wrong bearer token
    """
    settings = request.app.state.settings
    try:
        authenticate(authorization, settings.webhook_secret)
    except AuthenticationError as exc:
        auth_failures_total.labels(reason=exc.reason).inc()
        webhook_deliveries_total.labels(result="unauthorized").inc()
        log_event(logger, "webhook rejected", level="WARNING", reason=f"auth_{exc.reason}")
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    orchestrator = request.app.state.orchestrator
    try:
        payload = parse_body(await request.body())
        result = await orchestrator.process(payload)
    except MalformedBatchError as exc:
        webhook_deliveries_total.labels(result="malformed").inc()
        log_event(logger, "webhook rejected", level="WARNING", reason="malformed", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))

    return WebhookResponse(
        processed=result.processed,
        failed=result.failed,
        duration_ms=result.duration_ms,
        errors=result.errors[:MAX_RESPONSE_ERRORS] or None,
    )
