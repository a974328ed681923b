"""Custom exception classes for fetchguard"""

from typing import Optional


class FetchGuardError(Exception):
    """Base exception for fetchguard errors"""

    pass


class TransientError(FetchGuardError):
    """Raised by producers for retryable failures (network blips, 5xx)"""

    pass


class RateLimitError(FetchGuardError):
    """Raised when the arbiter explicitly denies a request

    Never retried automatically. ``retry_after`` is the number of seconds the
    caller should wait, when the arbiter supplied one.
    """

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class ArbiterError(FetchGuardError):
    """Raised when the arbiter rejects a malformed check"""

    pass


class ArbiterUnavailableError(ArbiterError):
    """Raised when the arbiter cannot be reached or fails internally"""

    pass


class AddressResolutionError(FetchGuardError):
    """Raised when the caller's network address cannot be determined"""

    pass


class CircuitOpenError(FetchGuardError):
    """Raised when circuit breaker is open"""

    pass


class RetriesExhaustedError(FetchGuardError):
    """Raised (and stored as the terminal error) once every retry has failed

    ``last_error`` is the failure of the final attempt; ``attempts`` counts the
    initial attempt plus every retry.
    """

    def __init__(self, last_error: Exception, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
