"""
Prometheus metrics for queue-to-db.

- Per-tenant message outcomes (received, persisted, rejected, failed)
- Message processing duration
- Tenant pipeline states after startup
- Connection health
"""

import logging
import socket

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

TENANT_STATES = ("provisioned", "subscribed", "failed")

# =============================================================================
# Message outcomes
# =============================================================================

messages_received_counter = Counter(
    "queue_to_db_messages_received_total",
    "Total number of messages received from tenant queues",
    labelnames=["tenant"],
)

messages_persisted_counter = Counter(
    "queue_to_db_messages_persisted_total",
    "Total number of events inserted into tenant tables",
    labelnames=["tenant"],
)

messages_rejected_counter = Counter(
    "queue_to_db_messages_rejected_total",
    "Total number of messages dropped because they failed validation",
    labelnames=["tenant"],
)

messages_failed_counter = Counter(
    "queue_to_db_messages_failed_total",
    "Total number of valid events the database rejected",
    labelnames=["tenant"],
)

message_processing_duration_seconds = Histogram(
    "queue_to_db_message_processing_duration_seconds",
    "Time spent validating and persisting individual messages",
    labelnames=["tenant"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

# =============================================================================
# Startup and health
# =============================================================================

tenant_pipelines_gauge = Gauge(
    "queue_to_db_tenant_pipelines",
    "Number of tenant pipelines by state",
    labelnames=["state"],
)

connection_status_gauge = Gauge(
    "queue_to_db_connection_status",
    "Connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
)


def record_received(tenant: str) -> None:
    messages_received_counter.labels(tenant=tenant).inc()


def record_persisted(tenant: str, duration_seconds: float) -> None:
    messages_persisted_counter.labels(tenant=tenant).inc()
    message_processing_duration_seconds.labels(tenant=tenant).observe(duration_seconds)


def record_rejected(tenant: str) -> None:
    messages_rejected_counter.labels(tenant=tenant).inc()


def record_failed(tenant: str, duration_seconds: float) -> None:
    messages_failed_counter.labels(tenant=tenant).inc()
    message_processing_duration_seconds.labels(tenant=tenant).observe(duration_seconds)


def update_tenant_states(counts: dict[str, int]) -> None:
    """Set the pipeline gauge from a state -> count mapping; missing states read 0."""
    for state in TENANT_STATES:
        tenant_pipelines_gauge.labels(state=state).set(counts.get(state, 0))


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        available_port = s.getsockname()[1]

    start_http_server(available_port, registry=REGISTRY)
    return available_port
