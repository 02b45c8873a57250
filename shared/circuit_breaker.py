"""
Circuit Breaker Pattern Implementation.

This module provides circuit breaker protection for the two external
collaborators of the orchestration engine (Inference Service and Tool
Service) so that an outage fails fast instead of stalling every
conversation on timeouts.

Circuit breaker states:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is down, requests fail fast without calling the service
- HALF_OPEN: Testing if service recovered, one request allowed

Usage:
    from shared.circuit_breaker import call_with_breaker, inference_breaker
    import pybreaker

    try:
        result = await call_with_breaker(inference_breaker, llm.ainvoke, messages)
    except pybreaker.CircuitBreakerError:
        # Circuit is OPEN - treat as a stage fault
        ...

Configuration:
    - fail_max: Number of consecutive failures before opening circuit
    - reset_timeout: Seconds to wait before trying again (half-open state)
"""

import logging
import time
from typing import Any, Callable

import pybreaker

logger = logging.getLogger(__name__)


class CircuitBreakerLogger(pybreaker.CircuitBreakerListener):
    """
    Log circuit breaker state changes and failures.

    This listener provides visibility into circuit breaker behavior
    for debugging and monitoring purposes.
    """

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        """Log state transitions."""
        if new_state.name == "open":
            logger.warning(
                f"Circuit breaker '{cb.name}' OPENED - "
                f"service appears down, failing fast for {cb.reset_timeout}s"
            )
        elif new_state.name == "half-open":
            logger.info(
                f"Circuit breaker '{cb.name}' HALF-OPEN - "
                f"testing if service recovered"
            )
        elif new_state.name == "closed":
            logger.info(
                f"Circuit breaker '{cb.name}' CLOSED - "
                f"service recovered, resuming normal operation"
            )
        else:
            old_name = old_state.name if old_state else None
            logger.info(
                f"Circuit breaker '{cb.name}' state: {old_name} -> {new_state.name}"
            )


# Singleton registry of circuit breakers
_breakers: dict[str, pybreaker.CircuitBreaker] = {}
_logger_instance = CircuitBreakerLogger()

# Failure bookkeeping for the asyncio wrapper (pybreaker only counts via call())
_consecutive_failures: dict[str, int] = {}
_opened_at: dict[str, float] = {}


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 30,
    exclude: list[type] | None = None,
) -> pybreaker.CircuitBreaker:
    """
    Get or create a circuit breaker for a service.

    Args:
        name: Unique identifier for the circuit breaker
        fail_max: Number of consecutive failures before opening circuit
        reset_timeout: Seconds before attempting recovery (half-open)
        exclude: Exception types that should NOT count as failures

    Returns:
        CircuitBreaker instance (singleton per name)
    """
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=exclude or [],
            listeners=[_logger_instance],
        )
        logger.info(
            f"Created circuit breaker '{name}' | "
            f"fail_max={fail_max} | reset_timeout={reset_timeout}s"
        )
    return _breakers[name]


# =============================================================================
# PRE-CONFIGURED CIRCUIT BREAKERS FOR EXTERNAL SERVICES
# =============================================================================

# Inference Service - every analysis stage depends on it
inference_breaker = get_circuit_breaker(
    name="inference_service",
    fail_max=5,
    reset_timeout=30,
)

# Tool Service - business operations (lookups, emails, bookings)
tool_service_breaker = get_circuit_breaker(
    name="tool_service",
    fail_max=5,
    reset_timeout=30,
)


def _record_failure(breaker: pybreaker.CircuitBreaker, error: Exception) -> None:
    failures = _consecutive_failures.get(breaker.name, 0) + 1
    _consecutive_failures[breaker.name] = failures

    logger.warning(
        f"Circuit breaker '{breaker.name}' recorded failure | "
        f"consecutive={failures}/{breaker.fail_max} | {type(error).__name__}: {error}"
    )

    if breaker.current_state == pybreaker.STATE_HALF_OPEN or failures >= breaker.fail_max:
        breaker.open()
        _opened_at[breaker.name] = time.monotonic()


def _record_success(breaker: pybreaker.CircuitBreaker) -> None:
    _consecutive_failures[breaker.name] = 0
    if breaker.current_state != pybreaker.STATE_CLOSED:
        breaker.close()
        logger.info(f"Circuit breaker '{breaker.name}' recovered, closing circuit")


async def call_with_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable,
    *args,
    **kwargs,
) -> Any:
    """
    Call async function with circuit breaker protection (native asyncio).

    pybreaker's call_async() requires Tornado which we don't use.
    This wrapper provides the same fail-fast behavior for asyncio:
    - Fail fast while the circuit is OPEN and reset_timeout has not elapsed
    - Let a single trial call through once reset_timeout has elapsed (HALF_OPEN)
    - Open the circuit after fail_max consecutive system errors

    Args:
        breaker: CircuitBreaker instance to use
        func: Async function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from func

    Raises:
        pybreaker.CircuitBreakerError: If circuit is open
        Exception: Any exception raised by func
    """
    if breaker.current_state == pybreaker.STATE_OPEN:
        opened_at = _opened_at.get(breaker.name, 0.0)
        if time.monotonic() - opened_at < breaker.reset_timeout:
            logger.warning(f"Circuit breaker '{breaker.name}' is OPEN, failing fast")
            raise pybreaker.CircuitBreakerError(
                f"Circuit breaker '{breaker.name}' is open"
            )
        breaker.half_open()

    try:
        result = await func(*args, **kwargs)
    except pybreaker.CircuitBreakerError:
        raise
    except Exception as e:
        if breaker.is_system_error(e):
            _record_failure(breaker, e)
        raise

    _record_success(breaker)
    return result


def reset_breaker(breaker: pybreaker.CircuitBreaker) -> None:
    """Force a breaker back to CLOSED and clear its failure count."""
    _consecutive_failures.pop(breaker.name, None)
    _opened_at.pop(breaker.name, None)
    if breaker.current_state != pybreaker.STATE_CLOSED:
        breaker.close()


def get_breaker_status() -> dict[str, dict[str, Any]]:
    """
    Get status of all circuit breakers for monitoring/health checks.

    Returns:
        Dict of {name: {state, consecutive_failures, reset_timeout}}
    """
    return {
        name: {
            "state": breaker.current_state,
            "consecutive_failures": _consecutive_failures.get(name, 0),
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _breakers.items()
    }
