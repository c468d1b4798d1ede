"""
Prometheus metrics for checkout reconciliation monitoring.

Tracks:
- Verification requests by entry point and outcome
- Reconciliation strategy outcomes
- Gateway call counts, durations and errors
- Orders materialized and materialization races lost
- Session cleanup counts
"""
from prometheus_client import Counter, Gauge, Histogram

# Verification metrics
verification_requests_total = Counter(
    "checkout_verification_requests_total",
    "Total verification requests",
    ["entry_point", "outcome"],  # entry_point: session, order; outcome: paid, failed, replay
)

verification_duration_seconds = Histogram(
    "checkout_verification_duration_seconds",
    "Verification duration in seconds",
    ["entry_point"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0),
)

strategy_outcomes_total = Counter(
    "checkout_strategy_outcomes_total",
    "Reconciliation strategy outcomes",
    ["strategy", "outcome"],  # outcome: completed, not_completed, absent, unavailable, skipped
)

trusted_redirects_total = Counter(
    "checkout_trusted_redirects_total",
    "Verifications settled by the matching redirect id policy",
)

# Materialization metrics
orders_materialized_total = Counter(
    "checkout_orders_materialized_total",
    "Orders created from checkout sessions",
)

materialization_races_lost_total = Counter(
    "checkout_materialization_races_lost_total",
    "Materialization attempts that found the session already terminal",
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],  # status: ok, not_found, error, circuit_open
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Total payment gateway errors",
    ["error_type"],  # transient, permanent, rate_limit
)

gateway_duration_seconds = Histogram(
    "gateway_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

gateway_circuit_breaker_state = Gauge(
    "gateway_circuit_breaker_state",
    "Gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Cleanup metrics
sessions_cleaned_total = Counter(
    "checkout_sessions_cleaned_total",
    "Checkout sessions touched by cleanup",
    ["action"],  # stripped, expired, purged
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_verification(entry_point: str, outcome: str, duration_seconds: float) -> None:
        """Record a verification request."""
        verification_requests_total.labels(entry_point=entry_point, outcome=outcome).inc()
        verification_duration_seconds.labels(entry_point=entry_point).observe(duration_seconds)

    @staticmethod
    def record_strategy_outcome(strategy: str, outcome: str) -> None:
        """Record the outcome of one reconciliation strategy."""
        strategy_outcomes_total.labels(strategy=strategy, outcome=outcome).inc()

    @staticmethod
    def record_trusted_redirect() -> None:
        """Record a verification settled by the trusted redirect policy."""
        trusted_redirects_total.inc()

    @staticmethod
    def record_order_materialized() -> None:
        """Record a materialized order."""
        orders_materialized_total.inc()

    @staticmethod
    def record_materialization_race_lost() -> None:
        """Record a materialization that lost the session status race."""
        materialization_races_lost_total.inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record gateway API call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_error(error_type: str) -> None:
        """Record gateway API error."""
        gateway_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_sessions_cleaned(action: str, count: int) -> None:
        """Record sessions handled by a cleanup pass."""
        if count:
            sessions_cleaned_total.labels(action=action).inc(count)


metrics = MetricsCollector()
