"""Prometheus metrics for reserve movements, settlement runs, disputes and risk reviews"""

from prometheus_client import Counter, Histogram

# Reserve ledger metrics
reserve_operation_counter = Counter(
    "reserve_operations_total",
    "Reserve ledger operations",
    ["operation", "outcome"],  # hold|release|adjust|chargeback_debit x committed|rejected|failed
)

reserve_amount_counter = Counter(
    "reserve_amount_minor_units_total",
    "Minor currency units moved through the reserve ledger",
    ["operation"],
)

chargeback_unfunded_counter = Counter(
    "reserve_chargeback_unfunded_minor_units_total",
    "Chargeback debit shortfall not covered by reserve balance",
)

# Settlement metrics
settlement_result_counter = Counter(
    "reserve_settlement_results_total",
    "Scheduled hold releases by outcome",
    ["status"],  # released | error
)

settlement_duration_histogram = Histogram(
    "reserve_settlement_batch_seconds",
    "Scheduled release batch duration",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

# Chargeback metrics
chargeback_created_counter = Counter(
    "chargebacks_received_total",
    "Chargebacks recorded",
    ["reason"],
)

chargeback_resolved_counter = Counter(
    "chargebacks_resolved_total",
    "Chargebacks resolved",
    ["status", "impacted_reserve"],
)

# Risk metrics
risk_assessment_counter = Counter(
    "risk_assessments_total",
    "Risk assessments performed",
    ["level", "requires_approval"],
)

# Downstream collaborators
dispatch_failure_counter = Counter(
    "reserve_dispatch_failures_total",
    "Audit or event dispatch failures after commit",
    ["target"],  # audit | events
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_reserve_operation(operation: str, outcome: str, amount: int = 0) -> None:
    """Count a ledger operation; amounts are tracked only for committed ones"""
    reserve_operation_counter.labels(operation=operation, outcome=outcome).inc()
    if outcome == "committed" and amount:
        reserve_amount_counter.labels(operation=operation).inc(abs(amount))
