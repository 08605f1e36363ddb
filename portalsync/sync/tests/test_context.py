import tempfile
from unittest.mock import patch

from ..blob_store import LocalBlobStore, MemoryBlobStore
from ..config import SyncSettings
from ..context import SyncContext
from ..proxy import ProxyResolver


def test_components_are_built_once():
    with tempfile.TemporaryDirectory() as temp_dir:
        context = SyncContext(SyncSettings(storage={"root_directory": temp_dir}))

        assert isinstance(context.store, LocalBlobStore)
        assert context.store is context.store
        assert context.http is context.http
        assert context.reconciler is context.reconciler
        assert context.reconciler.transport is context.http
        assert context.http.proxy_resolver is None


def test_injected_store_and_proxy_wiring():
    store = MemoryBlobStore()
    settings = SyncSettings(http={"use_proxy": True}, proxy={"url": "https://proxies.example.com/"})

    context = SyncContext(settings, store=store)
    with patch.object(context.http, "close") as close:
        with context:
            assert context.store is store
            assert isinstance(context.http.proxy_resolver, ProxyResolver)
        close.assert_called_once()
