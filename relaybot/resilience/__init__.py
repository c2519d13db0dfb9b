from .breaker import BreakerState, CircuitBreaker
from .guard import CallGuard
from .retry import retry

__all__ = ["BreakerState", "CallGuard", "CircuitBreaker", "retry"]
