from __future__ import annotations
"""Error types raised by the S3 storage layer."""


class StorageError(Exception):
    """Base class for every storage layer error."""


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist."""

    def __init__(self, path: str):
        super().__init__(f"object '{path}' not found in storage")
        self.path = path


class CredentialsError(StorageError):
    """Raised when the store cannot be reached with the configured credentials."""


class ConfigurationError(StorageError, ValueError):
    """Raised for settings that can never produce a working client."""


class TransportError(StorageError):
    """Wraps a provider error with the path or bucket it concerned."""


class PartialBatchFailureError(TransportError):
    """Raised when one delete batch fails.

    Batches submitted before the failing one are not rolled back.
    """

    def __init__(self, message: str, identifiers=()):
        super().__init__(message)
        self.identifiers = list(identifiers)


class TransferCancelledError(RuntimeError):
    """Raised when an upload or download is cancelled by the caller."""
