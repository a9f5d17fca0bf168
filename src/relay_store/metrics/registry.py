"""
Relay metrics, registered in the Prometheus global REGISTRY on import.
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Ingestion / buffer ---

MESSAGES_INGESTED_TOTAL = Counter(
    "relay_messages_ingested_total",
    "Total number of inbound messages accepted into the buffer",
    ["payload"],
)

MESSAGES_DROPPED_TOTAL = Counter(
    "relay_messages_dropped_total",
    "Total number of buffered messages discarded without delivery",
    ["reason"],
)

STORAGE_ERRORS_TOTAL = Counter(
    "relay_storage_errors_total",
    "Total number of failed buffer file writes",
)

BUFFER_MESSAGES = Gauge("relay_buffer_messages", "Messages currently buffered")
BUFFER_ELIGIBLE = Gauge("relay_buffer_eligible", "Buffered messages outside their backoff window")
BUFFER_BACKOFF_ENTRIES = Gauge("relay_buffer_backoff_entries", "Active backoff entries")

# 0=closed, 1=half_open, 2=open
CIRCUIT_STATE = Gauge("relay_circuit_state", "Circuit breaker state (0=closed,1=half_open,2=open)")

# --- Delivery ---

DELIVERY_ATTEMPTS_TOTAL = Counter(
    "relay_delivery_attempts_total",
    "Total number of outbound batch attempts",
    ["outcome"],
)

MESSAGES_DELIVERED_TOTAL = Counter(
    "relay_messages_delivered_total",
    "Total number of messages acknowledged by the endpoint",
)

DELIVERY_LATENCY_SECONDS = Histogram(
    "relay_delivery_latency_seconds",
    "Outbound batch attempt latency in seconds",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class MetricsRegistry:
    """Centralized metrics registry for relay components."""

    messages_ingested_total = MESSAGES_INGESTED_TOTAL
    messages_dropped_total = MESSAGES_DROPPED_TOTAL
    storage_errors_total = STORAGE_ERRORS_TOTAL
    buffer_messages = BUFFER_MESSAGES
    buffer_eligible = BUFFER_ELIGIBLE
    buffer_backoff_entries = BUFFER_BACKOFF_ENTRIES
    circuit_state = CIRCUIT_STATE
    delivery_attempts_total = DELIVERY_ATTEMPTS_TOTAL
    messages_delivered_total = MESSAGES_DELIVERED_TOTAL
    delivery_latency_seconds = DELIVERY_LATENCY_SECONDS


# Singleton instance
metrics_registry = MetricsRegistry()
