"""
Prometheus metrics for the webhook ingest service.

Exposed through prometheus_client.generate_latest() on GET /metrics.
"""

from prometheus_client import Counter, Histogram

# Deliveries (one per POST)
webhook_deliveries_total = Counter(
    "agbot_webhook_deliveries_total",
    "Total webhook deliveries by outcome",
    ["result"],  # success | partial | error | unauthorized | malformed
)

webhook_records_total = Counter(
    "agbot_webhook_records_total",
    "Total webhook records by outcome and failing stage",
    ["result", "stage"],  # processed|failed, validate|transform|location|asset|reading|alerts|none
)

webhook_batch_size = Histogram(
    "agbot_webhook_batch_size",
    "Number of records per webhook delivery",
    buckets=[1, 2, 5, 10, 25, 50, 100, 250, 500],
)

webhook_processing_duration_seconds = Histogram(
    "agbot_webhook_processing_duration_seconds",
    "Time spent processing one webhook batch",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Alerts
alert_actions_total = Counter(
    "agbot_alert_actions_total",
    "Alert rows created, escalated or resolved",
    ["alert_type", "action"],  # create | escalate | resolve
)

# HTTP
http_request_duration_seconds = Histogram(
    "agbot_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path_template", "status_code"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

http_requests_total = Counter(
    "agbot_http_requests_total",
    "Total HTTP requests",
    ["method", "path_template", "status_code"],
)

auth_failures_total = Counter(
    "agbot_auth_failures_total",
    "Webhook authentication failures by reason",
    ["reason"],  # missing | invalid
)
