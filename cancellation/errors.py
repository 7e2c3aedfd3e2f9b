"""
Error taxonomy for cancellation processing.

Every error carries a stable ``error_code`` so that the orchestrator can turn
it into a failed ``CancellationResult`` without inspecting message text.
Commands never raise these outward; the invoker raises ``ProviderFailure``
only after its retries are exhausted, and the orchestrator catches it.
"""

from typing import Optional


class CancellationError(Exception):
    """Base class for all cancellation errors"""

    error_code = "SERVICE_ERROR"

    def __init__(
        self, message: str, error_code: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class ValidationFailure(CancellationError):
    """Malformed input. Raised before any side effect."""

    error_code = "VALIDATION_ERROR"


class AccessDenied(CancellationError):
    error_code = "ACCESS_DENIED"


class NotFound(CancellationError):
    """Order, product or webhook could not be resolved"""

    error_code = "NOT_FOUND"


class PolicyViolation(CancellationError):
    """Status or window rules forbid the requested action"""

    error_code = "POLICY_VIOLATION"


class ProviderFailure(CancellationError):
    """Network, timeout or vendor error. Retryable at the invoker."""

    error_code = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, error_code)
        self.status_code = status_code


class CommandTimeout(ProviderFailure):
    error_code = "TIMEOUT"


class ServiceError(CancellationError):
    """Unexpected internal fault"""

    error_code = "SERVICE_ERROR"
