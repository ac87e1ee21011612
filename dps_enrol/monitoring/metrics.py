"""
Prometheus metrics for enrolment payment monitoring.

Tracks:
- Transactions started by currency
- Settlements by outcome
- Rejected callbacks by reason
- PxPay requests, errors and latency
- Pending transactions reported as stale
"""
from prometheus_client import Counter, Gauge, Histogram

# Transaction metrics
transactions_started_total = Counter(
    "dps_transactions_started_total",
    "Total transactions created and sent to PxPay",
    ["currency"],
)

transaction_amount = Histogram(
    "dps_transaction_amount",
    "Transaction amounts in major currency units",
    buckets=(10, 25, 50, 100, 250, 500, 1000, 2500, 5000),
)

transactions_settled_total = Counter(
    "dps_transactions_settled_total",
    "Total transactions settled",
    ["operation", "outcome"],  # operation: confirm, abort; outcome: approved, declined
)

callbacks_rejected_total = Counter(
    "dps_callbacks_rejected_total",
    "Total gateway callbacks rejected before settlement",
    ["operation", "reason"],  # invalid, not_found, already_processed, owner_mismatch
)

enrolments_granted_total = Counter(
    "dps_enrolments_granted_total",
    "Total enrolments granted after approved payments",
)

# PxPay API metrics
pxpay_requests_total = Counter(
    "dps_pxpay_requests_total",
    "Total PxPay requests",
    ["operation", "status"],  # operation: generate_request, process_response
)

pxpay_errors_total = Counter(
    "dps_pxpay_errors_total",
    "Total PxPay errors",
    ["kind"],
)

pxpay_duration_seconds = Histogram(
    "dps_pxpay_duration_seconds",
    "PxPay request duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Maintenance metrics
stale_pending_transactions = Gauge(
    "dps_stale_pending_transactions",
    "Pending transactions older than the stale threshold at the last maintenance run",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_transaction_started(currency: str, amount: float) -> None:
        """Record a transaction handed to PxPay."""
        transactions_started_total.labels(currency=currency).inc()
        transaction_amount.observe(amount)

    @staticmethod
    def record_settlement(operation: str, approved: bool) -> None:
        """Record a settled transaction."""
        outcome = "approved" if approved else "declined"
        transactions_settled_total.labels(operation=operation, outcome=outcome).inc()

    @staticmethod
    def record_callback_rejected(operation: str, reason: str) -> None:
        """Record a callback rejected before settlement."""
        callbacks_rejected_total.labels(operation=operation, reason=reason).inc()

    @staticmethod
    def record_enrolment_granted() -> None:
        enrolments_granted_total.inc()

    @staticmethod
    def record_pxpay_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record PxPay API call."""
        pxpay_requests_total.labels(operation=operation, status=status).inc()
        pxpay_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_pxpay_error(kind: str) -> None:
        """Record PxPay API error."""
        pxpay_errors_total.labels(kind=kind).inc()

    @staticmethod
    def set_stale_pending(count: int) -> None:
        stale_pending_transactions.set(count)


# Export singleton instance
metrics = MetricsCollector()
