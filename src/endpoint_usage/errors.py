"""Exception hierarchy for endpoint usage tracking."""


class EndpointUsageError(Exception):
    """Base exception for endpoint usage errors."""

    pass


class StoreUnavailableError(EndpointUsageError):
    """Raised when the key-value store is unreachable or rejects a command."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Store unavailable during {operation}{detail}")


class DeliveryError(EndpointUsageError):
    """Raised when a notification channel fails to deliver a report."""

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} delivery failed: {reason}")
