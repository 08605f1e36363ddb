"""
Unit tests for the blob store implementations.
"""

import gzip
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from ..blob_store import MemoryBlobStore, LocalBlobStore, WriteAttributes
from ..error_tracker import BlobNotFoundError, StoreError


class FakeClock:
    def __init__(self, start=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "local"])
def store(request, clock):
    if request.param == "memory":
        yield MemoryBlobStore(clock=clock)
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            yield LocalBlobStore(temp_dir, clock=clock)


class TestBlobStore:

    def test_write_and_read_plain(self, store):
        meta = store.write("fetched", "sitzungen/s1.html", b"<html/>", WriteAttributes(content_type="text/html"))
        assert meta.size == 7
        assert store.read("fetched", "sitzungen/s1.html") == b"<html/>"

    def test_gzip_is_transparent_on_read(self, store):
        attributes = WriteAttributes(content_type="application/pdf", content_encoding="gzip")
        store.write("fetched", "docs/a.pdf", gzip.compress(b"%PDF-1.4"), attributes)
        assert store.read("fetched", "docs/a.pdf") == b"%PDF-1.4"

    def test_attributes_round_trip(self, store, clock):
        source_time = datetime(2023, 11, 5, 8, 30, tzinfo=timezone.utc)
        store.write("fetched", "a/b.html", b"x", WriteAttributes(
            content_type="text/html;charset=utf-8",
            content_language="de",
            custom_time=source_time,
            metadata={"hash": "abc", "fetchedAt": "2024-03-01T12:00:00Z"},
        ))

        meta = store.get_attributes("fetched", "a/b.html")
        assert meta.path == "a/b.html"
        assert meta.content_type == "text/html;charset=utf-8"
        assert meta.content_language == "de"
        assert meta.custom_time == source_time
        assert meta.updated == clock.now
        assert meta.metadata == {"hash": "abc", "fetchedAt": "2024-03-01T12:00:00Z"}

    def test_missing_object(self, store):
        with pytest.raises(BlobNotFoundError):
            store.get_attributes("fetched", "nope.html")
        with pytest.raises(BlobNotFoundError):
            store.read("fetched", "nope.html")
        with pytest.raises(BlobNotFoundError):
            store.delete("fetched", "nope.html")
        assert not store.exists("fetched", "nope.html")

    def test_touch_only_changes_updated(self, store, clock):
        store.write("fetched", "a.html", b"body", WriteAttributes(content_type="text/html", metadata={"hash": "h"}))
        clock.advance(hours=2)

        meta = store.touch("fetched", "a.html")
        assert meta.updated == clock.now
        assert meta.metadata == {"hash": "h"}
        assert store.read("fetched", "a.html") == b"body"

    def test_delete(self, store):
        store.write("fetched", "a.html", b"body", WriteAttributes(content_type="text/html"))
        store.delete("fetched", "a.html")
        assert not store.exists("fetched", "a.html")

    def test_list_by_prefix_is_bucket_scoped(self, store):
        for path in ["vorlagen/v2.html", "vorlagen/v1.html", "sitzungen/s1.html"]:
            store.write("fetched", path, b"x", WriteAttributes(content_type="text/html"))
        store.write("backup", "vorlagen/v0.html", b"x", WriteAttributes(content_type="text/html"))

        assert [m.path for m in store.list("fetched", "vorlagen/")] == ["vorlagen/v1.html", "vorlagen/v2.html"]
        assert len(store.list("fetched")) == 3
        assert store.list("other") == []


class TestLocalBlobStore:

    def test_rejects_escaping_paths(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = LocalBlobStore(temp_dir)
            with pytest.raises(StoreError):
                store.write("fetched", "../outside.html", b"x", WriteAttributes(content_type="text/html"))
            with pytest.raises(StoreError):
                store.get_attributes("fetched", "/etc/passwd")

    def test_persists_across_instances(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            LocalBlobStore(temp_dir).write("fetched", "a/b.html", b"x", WriteAttributes(content_type="text/html"))
            reopened = LocalBlobStore(temp_dir)
            assert reopened.read("fetched", "a/b.html") == b"x"
            assert [m.path for m in reopened.list("fetched", "a/")] == ["a/b.html"]
