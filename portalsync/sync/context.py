"""
Lazy wiring of the engine components for one worker.
"""

import threading
from typing import Optional

from .blob_store import BlobStore, LocalBlobStore
from .config import SyncSettings
from .proxy import ProxyResolver
from .reconciler import StoreReconciler
from .transport import ResilientTransport


class SyncContext:
    """
    Builds the transport, blob store and reconciler on first use and keeps
    them for the lifetime of the context. Use one context per worker thread.
    """

    def __init__(self, settings: SyncSettings, store: Optional[BlobStore] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.settings = settings
        self.cancel_event = cancel_event
        self._store = store
        self._transport: Optional[ResilientTransport] = None
        self._reconciler: Optional[StoreReconciler] = None

    @property
    def http(self) -> ResilientTransport:
        if self._transport is None:
            resolver = ProxyResolver(self.settings.proxy) if self.settings.http.use_proxy else None
            self._transport = ResilientTransport(
                self.settings.http, proxy_resolver=resolver, cancel_event=self.cancel_event
            )
        return self._transport

    @property
    def store(self) -> BlobStore:
        if self._store is None:
            self._store = LocalBlobStore(self.settings.storage.root_directory)
        return self._store

    @property
    def reconciler(self) -> StoreReconciler:
        if self._reconciler is None:
            self._reconciler = StoreReconciler(self.store, self.http, self.settings)
        return self._reconciler

    def close(self):
        if self._transport is not None:
            self._transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
