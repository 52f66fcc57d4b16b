"""
Circuit breakers for authoritative source calls.

When a source keeps failing, its breaker opens and later units fail fast
with an UpstreamError instead of waiting on timeouts. Uses the pybreaker
library.

Circuit Breaker States:
- CLOSED: Requests pass through normally
- OPEN: Requests fail immediately (after fail_max failures)
- HALF_OPEN: One request allowed to test if the source has recovered

Circuit Breakers:
- oracle_gateway_breaker: HTTP gateway in front of the analytics database
- stats_api_breaker: paid stats API
"""
import logging

from pybreaker import CircuitBreaker, CircuitBreakerListener

from sportsrecon.core import metrics

logger = logging.getLogger(__name__)

DEFAULT_FAIL_MAX = 5  # Failures before opening
DEFAULT_RESET_TIMEOUT = 60  # Seconds before a trial request


class MetricsListener(CircuitBreakerListener):
    """Publish breaker state changes to prometheus and the log."""

    def state_change(self, cb, old_state, new_state):
        old_name = old_state.name if old_state else "none"
        logger.warning(f"Circuit breaker '{cb.name}' changed {old_name} -> {new_state.name}")
        metrics.update_breaker_state(cb.name, new_state.name)


oracle_gateway_breaker = CircuitBreaker(
    fail_max=DEFAULT_FAIL_MAX,
    reset_timeout=DEFAULT_RESET_TIMEOUT,
    listeners=[MetricsListener()],
    name="oracle_gateway",
)

stats_api_breaker = CircuitBreaker(
    fail_max=DEFAULT_FAIL_MAX,
    reset_timeout=DEFAULT_RESET_TIMEOUT,
    listeners=[MetricsListener()],
    name="stats_api",
)

BREAKERS = {
    "oracle": oracle_gateway_breaker,
    "api": stats_api_breaker,
}


def get_all_breaker_states() -> dict[str, str]:
    """
    Current state of every source breaker.

    Returns:
        Dictionary mapping breaker names to 'closed', 'open' or 'half-open'
    """
    return {breaker.name: breaker.current_state for breaker in BREAKERS.values()}


def reset_breaker(breaker: CircuitBreaker) -> None:
    """
    Manually close a breaker.

    Only reset once the source is known to have recovered.
    """
    breaker.close()
    logger.warning(f"Circuit breaker '{breaker.name}' manually reset to CLOSED state")
