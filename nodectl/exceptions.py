"""Custom exceptions for nodectl."""


class NodectlError(Exception):
    """Base exception for all nodectl errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class NotFoundError(NodectlError):
    """Exception raised when a profile or node does not exist."""

    pass


class AlreadyExistsError(NodectlError):
    """Exception raised when a profile is already active or a name collides."""

    pass


class InvalidOperationError(NodectlError):
    """Exception raised for operations the current state does not allow."""

    pass


class ConfigurationError(NodectlError):
    """Exception raised for configuration errors."""

    pass


class StoreError(NodectlError):
    """Exception raised when persisted node state cannot be read or written."""

    pass


class NodeStepError(NodectlError):
    """Base for failures tied to one node and one lifecycle step."""

    def __init__(self, node: str, step: str, message: str, details: str = None):
        self.node = node
        self.step = step
        super().__init__(f"{step} failed on node '{node}': {message}", details)


class BackendFailureError(NodeStepError):
    """Exception raised when a host driver or runtime installer reports terminal failure."""

    def __init__(
        self, node: str, step: str, message: str, details: str = None, retryable: bool = False
    ):
        self.retryable = retryable
        super().__init__(node, step, message, details)


class OperationTimeoutError(NodeStepError):
    """Exception raised when a backend call exceeds the caller's deadline."""

    pass


class OperationCancelledError(NodectlError):
    """Exception raised when the caller cancels a running operation."""

    pass


class ProbeInconsistencyError(NodectlError):
    """Observed state violates the host/runtime dependency."""

    pass


class UnreliableOperationError(InvalidOperationError):
    """Exception raised when the backend cannot reliably perform an operation."""

    pass


class DriverError(NodectlError):
    """Raised by concrete drivers; wrapped into BackendFailureError by the orchestrator."""

    def __init__(self, message: str, details: str = None, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message, details)
