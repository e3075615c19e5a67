"""
Transfer Errors

All failures raised by the transfer engine derive from TransferError so
callers can catch the whole family at once. Nothing in the engine retries.
"""

from typing import List, Optional


class TransferError(Exception):
    """Base class for transfer engine failures."""


class TransferConnectionError(TransferError, ConnectionError):
    """Socket connect/read/write failure."""

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message)
        self.host = host


class TransferInterrupted(TransferError):
    """
    The transfer did not complete as requested.

    Raised when the upload acknowledgement does not echo the requested size,
    or when the downloaded byte count does not match it.
    """

    def __init__(self, message: str, requested: int, observed):
        super().__init__(message)
        self.requested = requested
        self.observed = observed


class WorkerFailure(TransferError):
    """A background generator or executor thread terminated abnormally."""


class BatchFailed(WorkerFailure):
    """One or more connections of a multi-connection transfer failed."""

    def __init__(self, message: str, errors: List[BaseException]):
        super().__init__(message)
        self.errors = errors
