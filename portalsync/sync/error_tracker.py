"""
Error taxonomy for the fetch-and-sync engine.

Errors fall into four groups:
- Transient fetch failures (`SourceFetchError` and subclasses): retried by the
  retry policy until the attempt budget is spent.
- Terminal fetch failures (`TerminalFetchError`): end the retry loop at once.
- Precondition violations (`PreconditionError`): logic bugs in the caller,
  never retried.
- Store failures (`StoreError`): raised by blob store implementations.

Every error carries the operation context in its message and, where known,
the URL or store path as `source_id`.
"""

from typing import Optional

class SyncException(Exception):
    """Base class for all custom sync exceptions."""
    def __init__(self, message: str, source_id: Optional[str] = None, recovery_suggestion: Optional[str] = None):
        self.message = message
        self.source_id = source_id
        self.recovery_suggestion = recovery_suggestion
        super().__init__(self.message)

class ConfigurationError(SyncException):
    """Indicates an error in the sync settings."""
    pass

class SourceFetchError(SyncException):
    """Indicates a transient failure to fetch content from a source."""
    pass

class DocumentDecodeError(SourceFetchError):
    """Indicates the document body could not be decoded with its declared charset."""
    pass

class RetriesExhaustedError(SourceFetchError):
    """Indicates the retry budget was spent without a successful attempt."""
    def __init__(self, message: str, attempts: int, source_id: Optional[str] = None):
        super().__init__(message, source_id=source_id,
                         recovery_suggestion="Check whether the origin server is reachable and raise http.max_attempts if it is only flaky.")
        self.attempts = attempts

class TerminalFetchError(SyncException):
    """Indicates a failure that must not be retried (e.g. an authentication redirect)."""
    pass

class TransportSetupError(SyncException):
    """Indicates the HTTP session could not be built."""
    pass

class ProxyError(TransportSetupError):
    """Indicates the proxy allocation service returned nothing usable."""
    pass

class FetchCancelledError(SyncException):
    """Indicates a fetch chain was cancelled between attempts or during a sleep."""
    pass

class UnexpectedContentTypeError(SyncException):
    """Indicates a fetched resource does not have the expected mime type."""
    pass

class StoreError(SyncException):
    """Indicates a failure in the backing blob store."""
    pass

class BlobNotFoundError(StoreError):
    """Indicates the requested object does not exist in the bucket."""
    pass

class MetadataError(StoreError):
    """Indicates stored object metadata could not be interpreted."""
    pass

class PreconditionError(SyncException):
    """Indicates an artifact was written without content, hash or content type."""
    pass
