"""
Error taxonomy shared across the scheduling core.

NotFound and PartialFailure are handled close to where they happen (callers
fall back to a default), ValidationError is raised at construction time, and
TransportError carries whether the failed operation is safe to retry.
"""


class SchedulingError(Exception):
    """Base exception for inbox scheduler errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class ValidationError(SchedulingError):
    """Malformed input rejected at construction (bad interval, timezone, window)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, recoverable=False)
        self.field = field


class NotFoundError(SchedulingError):
    """A referenced record (message, event, connection, user) does not exist."""

    def __init__(self, message: str, resource: str = "unknown", identifier: str | None = None):
        super().__init__(message, recoverable=True)
        self.resource = resource
        self.identifier = identifier


class PartialFailureError(SchedulingError):
    """Every sub-query of a fan-out failed; carries the per-source errors."""

    def __init__(self, message: str, failures: dict[str, str] | None = None):
        super().__init__(message, recoverable=True)
        self.failures = failures or {}


class TransportError(SchedulingError):
    """A mail or calendar provider call failed."""

    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message, recoverable=retryable)
        self.retryable = retryable
        self.status_code = status_code


class AgentError(SchedulingError):
    """The language-model agent could not produce a reply."""
