"""
One logical artifact in the blob store.

A `VersionedObject` is identified by `(folder, name)` and carries the
attributes of its stored version once `load_metadata()` has run. Superseded
versions are written to the backup bucket under a timestamped name before
they are overwritten or deleted.
"""

import gzip
import posixpath
from datetime import datetime
from typing import Optional

from ..config import get_logger
from .blob_store import BlobStore, BlobMetadata, WriteAttributes
from .config import StorageSettings, FetchRequest
from .error_tracker import BlobNotFoundError, MetadataError, PreconditionError
from .naming import backup_name, split_extension, format_rfc3339, parse_rfc3339

logger = get_logger(__name__)

META_HASH = "hash"
META_FETCHED_AT = "fetchedAt"
META_CHANGED_BY = "changedBy"
CHANGED_BY_CREATE = "Create"
CHANGED_BY_UPDATE = "Update"


class VersionedObject:
    """An artifact with lazily loaded store attributes."""

    def __init__(self, store: BlobStore, storage: StorageSettings, folder: str, name: str,
                 source_time: Optional[datetime] = None):
        self.store = store
        self.storage = storage
        self.folder = folder
        self.name = name
        self.source_time = source_time

        self.content_type: Optional[str] = None
        self.content_hash: Optional[str] = None
        self.updated_at: Optional[datetime] = None
        self.fetched_at: Optional[datetime] = None
        self.body: Optional[bytes] = None

        self.exists_in_store = False
        self.metadata_loaded = False
        self.loaded_from_cache = False
        # Set once this instance has written or touched the stored version
        self.synced_this_cycle = False

    def __repr__(self):
        return f"VersionedObject({self.path!r}, hash={self.content_hash!r}, exists={self.exists_in_store})"

    @classmethod
    def for_request(cls, store: BlobStore, storage: StorageSettings, request: FetchRequest) -> 'VersionedObject':
        """Clean artifact for a fetch request, nothing loaded from the store yet."""
        return cls(store, storage, request.folder, request.filename, source_time=request.created)

    @classmethod
    def from_metadata(cls, store: BlobStore, storage: StorageSettings, meta: BlobMetadata) -> 'VersionedObject':
        """Fully loaded artifact built from the attributes of a stored object."""
        folder, name = posixpath.split(meta.path)
        if folder:
            folder += '/'
        obj = cls(store, storage, folder, name)
        obj.metadata_loaded = True
        obj._apply_metadata(meta)
        return obj

    def copy(self) -> 'VersionedObject':
        other = VersionedObject(self.store, self.storage, self.folder, self.name, self.source_time)
        other.content_type = self.content_type
        other.content_hash = self.content_hash
        other.updated_at = self.updated_at
        other.fetched_at = self.fetched_at
        other.body = self.body
        other.exists_in_store = self.exists_in_store
        other.metadata_loaded = self.metadata_loaded
        return other

    @property
    def path(self) -> str:
        return self.folder + self.name

    @property
    def name_without_extension(self) -> str:
        return split_extension(self.name)[0]

    @property
    def extension(self) -> str:
        return split_extension(self.name)[1]

    def _apply_metadata(self, meta: BlobMetadata) -> None:
        raw_fetched_at = meta.metadata.get(META_FETCHED_AT, "")
        try:
            fetched_at = parse_rfc3339(raw_fetched_at)
        except ValueError as e:
            raise MetadataError(
                f"invalid {META_FETCHED_AT} '{raw_fetched_at}' on {meta.path}: {e}",
                source_id=meta.path,
            ) from e

        self.exists_in_store = True
        self.content_hash = meta.metadata.get(META_HASH)
        self.content_type = meta.content_type
        self.updated_at = meta.updated
        self.source_time = meta.custom_time
        self.fetched_at = fetched_at

    def load_metadata(self, bucket: Optional[str] = None) -> None:
        """
        Populate the stored attributes. Runs once per instance; an artifact
        that does not exist is left with exists_in_store False.

        Raises:
            MetadataError: If the stored fetchedAt cannot be parsed
        """
        if self.metadata_loaded:
            return
        self.metadata_loaded = True

        bucket = bucket or self.storage.bucket_fetched
        try:
            meta = self.store.get_attributes(bucket, self.path)
        except BlobNotFoundError:
            return
        self._apply_metadata(meta)

    def read_body(self, bucket: Optional[str] = None) -> bytes:
        bucket = bucket or self.storage.bucket_fetched
        logger.debug(f"Read From Store: {bucket}/{self.path}")
        self.body = self.store.read(bucket, self.path)
        return self.body

    def check_writable(self, content_hash: Optional[str] = None) -> None:
        """
        Raise PreconditionError unless body, hash, content type and fetch
        time are all set. `content_hash` stands in for a hash not yet assigned.
        """
        if not self.body:
            raise PreconditionError(f"body was not set for file {self.path}", source_id=self.path)
        if not (content_hash or self.content_hash):
            raise PreconditionError(f"hash was not set for file {self.path}", source_id=self.path)
        if not self.content_type:
            raise PreconditionError(f"contentType was not set for file {self.path}", source_id=self.path)
        if self.fetched_at is None:
            raise PreconditionError(f"fetchedAt was not set for file {self.path}", source_id=self.path)

    def write_body(self, bucket: Optional[str] = None) -> BlobMetadata:
        """Write body gzip-compressed with hash, fetch time and change kind as metadata."""
        self.check_writable()

        bucket = bucket or self.storage.bucket_fetched
        metadata = {
            META_HASH: self.content_hash,
            META_FETCHED_AT: format_rfc3339(self.fetched_at),
            META_CHANGED_BY: CHANGED_BY_UPDATE if self.exists_in_store else CHANGED_BY_CREATE,
        }

        attributes = WriteAttributes(
            content_type=self.content_type,
            content_encoding="gzip",
            content_language=self.storage.content_language,
            custom_time=self.source_time,
            metadata=metadata,
        )
        meta = self.store.write(bucket, self.path, gzip.compress(self.body), attributes)
        self.updated_at = meta.updated
        self.exists_in_store = True
        self.synced_this_cycle = True
        return meta

    def touch(self, bucket: Optional[str] = None) -> None:
        """Refresh the update time of the stored version."""
        bucket = bucket or self.storage.bucket_fetched
        meta = self.store.touch(bucket, self.path)
        self.updated_at = meta.updated
        self.synced_this_cycle = True

    def delete(self, bucket: Optional[str] = None) -> None:
        bucket = bucket or self.storage.bucket_fetched
        self.store.delete(bucket, self.path)
        self.exists_in_store = False

    def backup(self, delete_original: bool = False) -> 'VersionedObject':
        """
        Copy the stored version to the backup bucket as
        `<stem>_<YYYY-mm-dd-HH-MM-SS><ext>` (timestamp of its last write),
        optionally deleting it from the primary bucket afterwards.

        The in-memory body of this instance is left untouched. A backup that
        already exists with the same hash is not rewritten; one with another
        hash is kept, and this version gets the first 8 hash characters
        appended to its backup name.
        """
        primary = self.storage.bucket_fetched
        stored = VersionedObject.from_metadata(
            self.store, self.storage, self.store.get_attributes(primary, self.path)
        )
        stored.read_body(primary)

        backup = stored.copy()
        backup.name = backup_name(stored.name, stored.updated_at)
        backup.exists_in_store = False
        existing_hash = self._backup_hash(backup.path)
        if existing_hash is not None and existing_hash != stored.content_hash:
            logger.warning(f"Backup {backup.path} holds another version, keeping both")
            backup.name = backup_name(stored.name, stored.updated_at, (stored.content_hash or "")[:8])
            existing_hash = self._backup_hash(backup.path)

        if existing_hash is not None and existing_hash == stored.content_hash:
            logger.debug(f"Backup {backup.path} already exists with hash {stored.content_hash}")
        else:
            backup.write_body(self.storage.bucket_backup)

        if delete_original:
            self.delete(primary)
        return backup

    def _backup_hash(self, path: str) -> Optional[str]:
        try:
            return self.store.get_attributes(self.storage.bucket_backup, path).metadata.get(META_HASH)
        except BlobNotFoundError:
            return None
