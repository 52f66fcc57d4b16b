"""
Prometheus metrics for the reconciliation service.

Metrics exposed:
- Comparison counters and latency histograms
- Mapping rule usage counters
- Bulk job status counters and in-flight unit gauge
- Upstream source failure counters
- Circuit breaker state gauge
- Scheduler status gauge
"""
from prometheus_client import Counter, Gauge, Histogram

# Comparison Metrics
comparisons_total = Counter(
    "sportsrecon_comparisons_total",
    "Total reconciliation units executed",
    ["module", "source", "status"]
)

comparison_duration_seconds = Histogram(
    "sportsrecon_comparison_duration_seconds",
    "Reconciliation unit latency in seconds",
    ["module", "source"]
)

comparison_match_percentage = Histogram(
    "sportsrecon_comparison_match_percentage",
    "Distribution of match percentages",
    ["module"],
    buckets=(10, 25, 50, 75, 90, 95, 99, 100)
)

# Mapping Rule Metrics
mapping_rules_fired_total = Counter(
    "sportsrecon_mapping_rules_fired_total",
    "Mapping rules that decided a field comparison",
    ["mapping_type", "field_type"]
)

mapping_rules_expired_total = Counter(
    "sportsrecon_mapping_rules_expired_total",
    "Mapping rules deactivated by the expiry sweep"
)

mapping_suggestions_recorded_total = Counter(
    "sportsrecon_mapping_suggestions_recorded_total",
    "Potential mappings recorded for review",
    ["field_type"]
)

# Bulk Job Metrics
bulk_jobs_total = Counter(
    "sportsrecon_bulk_jobs_total",
    "Bulk comparison jobs by terminal status",
    ["status"]
)

bulk_units_in_flight = Gauge(
    "sportsrecon_bulk_units_in_flight",
    "Reconciliation units currently running inside bulk jobs"
)

# Upstream Metrics
upstream_requests_failure_total = Counter(
    "sportsrecon_upstream_requests_failure_total",
    "Failed requests to authoritative sources",
    ["source", "error_type"]
)

# Circuit Breaker Metrics
circuit_breaker_state = Gauge(
    "sportsrecon_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["service"]
)

# Scheduler Metrics
scheduler_running = Gauge(
    "sportsrecon_scheduler_running",
    "Whether the maintenance scheduler is running (1=running, 0=stopped)"
)

_BREAKER_STATE_VALUES = {"closed": 0, "open": 1, "half-open": 2, "half_open": 2}


def record_comparison(module: str, source: str, status: str, duration_seconds: float,
                      match_percentage: float | None = None):
    """Record one reconciliation unit outcome."""
    comparisons_total.labels(module=module, source=source, status=status).inc()
    comparison_duration_seconds.labels(module=module, source=source).observe(duration_seconds)
    if match_percentage is not None:
        comparison_match_percentage.labels(module=module).observe(match_percentage)


def record_rule_fired(mapping_type: str, field_type: str):
    """Record a mapping rule deciding a comparison."""
    mapping_rules_fired_total.labels(mapping_type=mapping_type, field_type=field_type).inc()


def record_upstream_failure(source: str, error_type: str = "unknown"):
    """Record a failed authoritative source request."""
    upstream_requests_failure_total.labels(source=source, error_type=error_type).inc()


def update_breaker_state(service: str, state: str):
    """Publish a circuit breaker state transition."""
    circuit_breaker_state.labels(service=service).set(_BREAKER_STATE_VALUES.get(state, 0))


def update_scheduler_metrics():
    """Update scheduler status gauge."""
    from sportsrecon.core.scheduler import get_scheduler

    scheduler = get_scheduler()
    scheduler_running.set(1 if scheduler and scheduler.running else 0)
