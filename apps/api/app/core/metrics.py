"""Prometheus metrics for the chat relay.

Covers chat turn outcomes, stream parsing, hashtag resolution and the
completion backend.
"""

from prometheus_client import Counter, Gauge, Histogram

# Chat turns
chat_requests_total = Counter(
    "chat_requests_total",
    "Total chat turns",
    ["status"],  # success/error/cancelled
)

chat_response_duration_seconds = Histogram(
    "chat_response_duration_seconds",
    "Chat response generation duration in seconds",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0],
)

chat_stream_chunks_total = Counter(
    "chat_stream_chunks_total",
    "Total text fragments forwarded to clients",
)

stream_parse_errors_total = Counter(
    "stream_parse_errors_total",
    "Stream segments discarded because they were not valid JSON",
)

# Hashtags
hashtag_resolutions_total = Counter(
    "hashtag_resolutions_total",
    "Tag resolution outcomes",
    ["outcome"],  # resolved/fallback/degraded/empty
)

tag_store_errors_total = Counter(
    "tag_store_errors_total",
    "Persistence failures tolerated by the hashtag pipeline",
    ["operation"],
)

# Completion backend
completion_backend_errors_total = Counter(
    "completion_backend_errors_total",
    "Completion backend failures surfaced to clients",
    ["kind"],  # unavailable/response/protocol
)

websocket_connections_active = Gauge(
    "websocket_connections_active",
    "Open chat WebSocket connections",
)
