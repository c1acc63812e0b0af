"""
Prometheus metrics for the API service.

Tracks WebSocket connections, realtime frame processing and authentication.
Metrics live in the default registry so the /metrics endpoint exposed by
prometheus-fastapi-instrumentator serves them alongside the HTTP metrics.
"""
from prometheus_client import Counter, Histogram, Gauge

# WebSocket connection metrics
websocket_connections_active = Gauge(
    "websocket_connections_active",
    "Number of open WebSocket connections",
    labelnames=["instance"]
)

websocket_connections_total = Counter(
    "websocket_connections_total",
    "Total number of WebSocket connections accepted",
    labelnames=["instance", "authenticated"]
)

websocket_disconnections_total = Counter(
    "websocket_disconnections_total",
    "Total number of WebSocket disconnections",
    labelnames=["instance", "reason"]
)

websocket_users_connected = Gauge(
    "websocket_users_connected",
    "Number of users with a registered connection",
    labelnames=["instance"]
)

# Realtime frame metrics
websocket_frames_received_total = Counter(
    "websocket_frames_received_total",
    "Total number of frames received, by processing outcome",
    labelnames=["outcome", "instance"]
)

websocket_deliveries_total = Counter(
    "websocket_deliveries_total",
    "Live delivery attempts, by result",
    labelnames=["result", "instance"]
)

message_store_failures_total = Counter(
    "message_store_failures_total",
    "Message store operations that raised StoreError",
    labelnames=["operation", "instance"]
)

websocket_frame_duration_seconds = Histogram(
    "websocket_frame_duration_seconds",
    "Time to process one inbound frame including persistence",
    labelnames=["outcome"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0]
)

# Authentication metrics
auth_requests_total = Counter(
    "auth_requests_total",
    "Total number of login and registration requests",
    labelnames=["type", "status", "instance"]
)

auth_token_validations_total = Counter(
    "auth_token_validations_total",
    "Total number of token validation attempts",
    labelnames=["channel", "status", "instance"]
)


def update_websocket_metrics(registry) -> None:
    """
    Refresh the gauges from the connection registry.

    Called by the gateway after every connect and disconnect.

    Args:
        registry: ConnectionRegistry instance
    """
    websocket_users_connected.labels(instance="api").set(len(registry))
