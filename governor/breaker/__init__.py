"""Circuit breaking for downstream targets."""

from governor.breaker.circuit_breaker import CircuitBreaker, CircuitState, CircuitStats

__all__ = ["CircuitBreaker", "CircuitState", "CircuitStats"]
