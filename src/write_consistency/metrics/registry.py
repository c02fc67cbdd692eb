"""
Prometheus metrics for the orchestration primitives.
Registered on the global REGISTRY at import time.
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Retry ---

RETRY_ATTEMPTS_TOTAL = Counter(
    "wc_retry_attempts_total",
    "Attempts made by retry(), by outcome",
    ["operation", "outcome"],
)

RETRY_EXHAUSTED_TOTAL = Counter(
    "wc_retry_exhausted_total",
    "Retried operations that failed on every attempt",
    ["operation"],
)

# --- Circuit breaker ---

CIRCUIT_STATE = Gauge(
    "wc_circuit_state",
    "Circuit state (0=closed, 1=half_open, 2=open)",
    ["circuit"],
)

CIRCUIT_REJECTED_TOTAL = Counter(
    "wc_circuit_rejected_total",
    "Calls rejected while the circuit was open",
    ["circuit"],
)

CIRCUIT_TRANSITIONS_TOTAL = Counter(
    "wc_circuit_transitions_total",
    "Circuit state transitions",
    ["circuit", "to_state"],
)

# --- Write verification ---

VERIFY_TOTAL = Counter(
    "wc_verify_total",
    "Write verifications, by outcome",
    ["verification", "outcome"],
)

VERIFY_POLLS = Histogram(
    "wc_verify_polls",
    "Reads needed before a verification finished",
    ["verification"],
    buckets=[1, 2, 3, 4, 5, 7, 10, 15, 20],
)

# --- Retry queue ---

QUEUE_DEPTH = Gauge(
    "wc_queue_depth",
    "Items waiting in the retry queue",
    ["queue"],
)

QUEUE_IN_FLIGHT = Gauge(
    "wc_queue_in_flight",
    "Items currently being processed",
    ["queue"],
)

QUEUE_PROCESSED_TOTAL = Counter(
    "wc_queue_processed_total",
    "Processing attempts, by outcome",
    ["queue", "outcome"],
)

QUEUE_DEAD_LETTERS_TOTAL = Counter(
    "wc_queue_dead_letters_total",
    "Items that exhausted their retries",
    ["queue"],
)


# --- Reconciliation ---

RECONCILE_RUNS_TOTAL = Counter(
    "wc_reconcile_runs_total",
    "Reconciliation passes, by outcome (ok, error, skipped)",
    ["job", "outcome"],
)

RECONCILE_PROBLEMS_TOTAL = Counter(
    "wc_reconcile_problems_total",
    "Records that failed validation",
    ["job"],
)

RECONCILE_REPAIRS_TOTAL = Counter(
    "wc_reconcile_repairs_total",
    "Repair attempts on invalid records, by outcome",
    ["job", "outcome"],
)


class MetricsRegistry:
    """Structured access to every orchestration metric."""

    retry_attempts_total = RETRY_ATTEMPTS_TOTAL
    retry_exhausted_total = RETRY_EXHAUSTED_TOTAL
    circuit_state = CIRCUIT_STATE
    circuit_rejected_total = CIRCUIT_REJECTED_TOTAL
    circuit_transitions_total = CIRCUIT_TRANSITIONS_TOTAL
    verify_total = VERIFY_TOTAL
    verify_polls = VERIFY_POLLS
    queue_depth = QUEUE_DEPTH
    queue_in_flight = QUEUE_IN_FLIGHT
    queue_processed_total = QUEUE_PROCESSED_TOTAL
    queue_dead_letters_total = QUEUE_DEAD_LETTERS_TOTAL
    reconcile_runs_total = RECONCILE_RUNS_TOTAL
    reconcile_problems_total = RECONCILE_PROBLEMS_TOTAL
    reconcile_repairs_total = RECONCILE_REPAIRS_TOTAL


metrics_registry = MetricsRegistry()
