"""
Resilient fetch-and-sync engine.

This module fetches resources from an unreliable legacy web portal (retries,
proxy rotation, encoding repair) and keeps a versioned copy of every artifact
in a blob store, backing up superseded versions and removing artifacts that
disappeared upstream.
"""

from .config import (
    SyncSettings, HttpSettings, ProxySettings, StorageSettings,
    FetchRequest, Download
)

from .error_tracker import (
    SyncException, ConfigurationError, SourceFetchError, DocumentDecodeError,
    RetriesExhaustedError, TerminalFetchError, TransportSetupError, ProxyError,
    FetchCancelledError, UnexpectedContentTypeError, StoreError,
    BlobNotFoundError, MetadataError, PreconditionError
)

from .resilience import RetryPolicy, RetryState, Retrier

from .proxy import (
    ProxyResolver, ProxyParser, JsonProxyListParser, PlainProxyParser, get_proxy_parser
)

from .encoding import EncodingNormalizer

from .transport import ResilientTransport

from .blob_store import (
    BlobStore, BlobMetadata, WriteAttributes, MemoryBlobStore, LocalBlobStore
)

from .versioned_object import VersionedObject

from .reconciler import (
    StoreReconciler, WriteAction, SyncOutcome, ItemOutcome, ReconcileResult
)

from .batching import do_in_batch

from .context import SyncContext

__all__ = [
    # Configuration
    'SyncSettings',
    'HttpSettings',
    'ProxySettings',
    'StorageSettings',
    'FetchRequest',
    'Download',

    # Errors
    'SyncException',
    'ConfigurationError',
    'SourceFetchError',
    'DocumentDecodeError',
    'RetriesExhaustedError',
    'TerminalFetchError',
    'TransportSetupError',
    'ProxyError',
    'FetchCancelledError',
    'UnexpectedContentTypeError',
    'StoreError',
    'BlobNotFoundError',
    'MetadataError',
    'PreconditionError',

    # Transport
    'RetryPolicy',
    'RetryState',
    'Retrier',
    'ProxyResolver',
    'ProxyParser',
    'JsonProxyListParser',
    'PlainProxyParser',
    'get_proxy_parser',
    'EncodingNormalizer',
    'ResilientTransport',

    # Store
    'BlobStore',
    'BlobMetadata',
    'WriteAttributes',
    'MemoryBlobStore',
    'LocalBlobStore',
    'VersionedObject',
    'StoreReconciler',
    'WriteAction',
    'SyncOutcome',
    'ItemOutcome',
    'ReconcileResult',

    # Helpers
    'do_in_batch',
    'SyncContext',
]
