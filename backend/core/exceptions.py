"""Custom exceptions for the automation engine."""

from typing import Optional

from core.constants import ErrorKind


class AutomationException(Exception):
    """Base exception for the automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AutomationException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(AutomationException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(AutomationException):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class GraphValidationError(ValidationError):
    """Raised when a graph cannot be enabled because it is invalid."""

    def __init__(self, report):
        self.report = report
        super().__init__("Graph validation failed: " + "; ".join(report.errors))


class ClaimLostError(AutomationException):
    """The running episode no longer holds the run's claim.

    Raised when a fenced update matches no row because the run was
    recovered, cancelled or claimed by another worker in the meantime.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Lost claim on run {run_id}", 409)


# ─── Engine errors ────────────────────────────────────────────
# These are captured onto the failing Run; they never cross Run boundaries.

class EngineError(AutomationException):
    """Base class for errors that fail a single Run."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message, 500)


class ConfigurationError(EngineError):
    """Malformed node config, unknown predicate or unknown action kind."""

    kind = ErrorKind.CONFIGURATION


class FatalEngineError(EngineError):
    """Always-terminal engine error."""


class StepLimitExceeded(FatalEngineError):
    kind = ErrorKind.STEP_LIMIT_EXCEEDED


class MissingNodeError(FatalEngineError):
    kind = ErrorKind.MISSING_NODE


# ─── Action errors ────────────────────────────────────────────

class ActionError(EngineError):
    """Permanent action handler failure."""

    kind = ErrorKind.ACTION_FAILED


class ActionConfigurationError(ActionError):
    """Action is missing required parameters or is of an unknown kind."""

    kind = ErrorKind.CONFIGURATION


class TransientActionError(ActionError):
    """Timeout, connection error or 5xx from an external collaborator."""

    kind = ErrorKind.TRANSIENT_ACTION
