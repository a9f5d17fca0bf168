"""
Custom exceptions for the relay store.

Provides structured error handling for storage and delivery failures.
"""


class RelayError(Exception):
    """Base operational error for the relay."""

    pass


class StorageError(RelayError):
    """Persisting or loading the buffer file failed (disk full, permission, ...).

    ``result`` carries what the failed call already applied in memory, when
    the caller needs it (removed messages, a ``FailureResult``).
    """

    def __init__(self, message: str, result: object = None):
        super().__init__(message)
        self.result = result


class DeliveryError(RelayError):
    """Outbound attempt failed before an HTTP status was received."""

    pass


class DeliveryTimeout(DeliveryError):
    """Outbound attempt exceeded its timeout."""

    pass


def map_http_error(e: Exception) -> DeliveryError:
    import httpx

    if isinstance(e, httpx.TimeoutException):
        return DeliveryTimeout(str(e) or type(e).__name__)
    if isinstance(e, httpx.HTTPError):
        return DeliveryError(f"{type(e).__name__}: {e}")
    return DeliveryError(str(e))
