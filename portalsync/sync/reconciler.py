"""
Store reconciliation for fetched artifacts.

The reconciler decides, per artifact, whether the stored copy is fresh enough
to reuse, whether a fetched body is new (write), unchanged (touch) or
different (back up, then overwrite), and removes stored artifacts that no
longer exist upstream together with their dependent children.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional, Set

from ..config import get_logger
from .blob_store import BlobStore, utc_now
from .config import SyncSettings, FetchRequest
from .error_tracker import SyncException
from .naming import compute_content_hash
from .transport import ResilientTransport
from .versioned_object import VersionedObject

logger = get_logger(__name__)


class WriteAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    TOUCHED = "touched"
    UNCHANGED = "unchanged"


@dataclass
class SyncOutcome:
    """Result of one fetch-and-write cycle."""
    object: VersionedObject
    fresh: bool
    action: WriteAction


@dataclass
class ItemOutcome:
    """What happened to one stored artifact during orphan reconciliation."""
    path: str
    action: str  # deleted, child_deleted, failed
    parent: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ReconcileResult:
    outcomes: List[ItemOutcome] = field(default_factory=list)

    @property
    def deleted(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.action in ("deleted", "child_deleted")]

    @property
    def failed(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.action == "failed"]

    @property
    def ok(self) -> bool:
        return not self.failed


class StoreReconciler:
    """
    Keeps the primary bucket in line with the remote origin.

    Args:
        store: Backing blob store
        transport: Transport used for stale or missing artifacts
        settings: Sync settings (buckets, freshness window)
        clock: Returns the current time; used for freshness and fetchedAt
    """

    def __init__(self, store: BlobStore, transport: ResilientTransport, settings: SyncSettings,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.transport = transport
        self.settings = settings
        self.storage = settings.storage
        self.clock = clock or utc_now

    def new_object(self, request: FetchRequest) -> VersionedObject:
        return VersionedObject.for_request(self.store, self.storage, request)

    def fetch_if_stale(self, obj: VersionedObject, request: FetchRequest,
                       expected_mime: Optional[str] = None, force: bool = False) -> bool:
        """
        Fill `obj.body` from the store or the origin.

        The stored copy is used unless `force` is set, or the request asks for
        a re-download and the stored copy is older than the freshness window.

        Returns:
            True if the body was fetched from the origin, False if read from the store
        """
        obj.load_metadata()

        now = self.clock()
        too_new = obj.exists_in_store and now < obj.updated_at + self.settings.min_age
        use_stored = not force and obj.exists_in_store and (not request.redownload or too_new)

        if use_stored:
            obj.read_body()
            obj.loaded_from_cache = True
            return False

        logger.info(f"{request.method}: {request.name} ({request.url})")
        download = self.transport.fetch(
            request.method, request.url,
            form_data=request.form_data,
            expected_mime=expected_mime or request.expected_mime,
        )
        obj.fetched_at = now
        obj.content_type = download.content_type
        obj.body = download.content
        obj.loaded_from_cache = False
        return True

    def write_if_changed(self, obj: VersionedObject, new_hash: str) -> WriteAction:
        """
        Persist `obj.body` unless the stored version already has `new_hash`.
        A body set without a fetch time is stamped with the current time.

        Raises:
            PreconditionError: If body, hash or content type are missing;
                raised before anything is backed up or written
        """
        obj.load_metadata()
        if obj.fetched_at is None:
            obj.fetched_at = self.clock()
        obj.check_writable(new_hash)

        if obj.exists_in_store:
            if obj.content_hash == new_hash:
                logger.debug(f"Same Hash for File {obj.path}: {new_hash}")
                if obj.loaded_from_cache or obj.synced_this_cycle:
                    return WriteAction.UNCHANGED
                obj.touch()
                return WriteAction.TOUCHED

            logger.debug(f"Hash different from Download for existing File {obj.path}: {obj.content_hash}")
            obj.backup()
            logger.info(f"backup successfully, Update File: {obj.path} ({new_hash})")
            action = WriteAction.UPDATED
        else:
            logger.info(f"Create File: {obj.path}")
            action = WriteAction.CREATED

        obj.content_hash = new_hash
        obj.write_body()
        return action

    def sync(self, request: FetchRequest, expected_mime: Optional[str] = None,
             force: bool = False) -> SyncOutcome:
        """Fetch (if stale) and persist one artifact."""
        obj = self.new_object(request)
        fresh = self.fetch_if_stale(obj, request, expected_mime=expected_mime, force=force)
        action = self.write_if_changed(obj, compute_content_hash(obj.body or b''))
        return SyncOutcome(obj, fresh, action)

    def list_objects(self, prefix: str) -> List[VersionedObject]:
        """Artifacts in the primary bucket under `prefix`, attributes loaded."""
        return [
            VersionedObject.from_metadata(self.store, self.storage, meta)
            for meta in self.store.list(self.storage.bucket_fetched, prefix)
        ]

    def reconcile_missing(self, prefix: str, live_paths: Iterable[str],
                          child_folders: Iterable[str], min_time: datetime) -> ReconcileResult:
        """
        Back up and delete stored artifacts under `prefix` that no longer exist
        upstream, then do the same for their children.

        Only artifacts whose source time is after `min_time` are considered.
        A child of a deleted parent is any artifact in one of `child_folders`
        whose name starts with the parent's name without extension.

        Per-item failures are collected in the result; only a failure to list
        `prefix` itself is raised.
        """
        live: Set[str] = set(live_paths)
        child_folders = list(child_folders)
        result = ReconcileResult()

        to_delete: List[VersionedObject] = []
        for meta in self.store.list(self.storage.bucket_fetched, prefix):
            if meta.custom_time is None or meta.custom_time <= min_time:
                continue
            if meta.path in live:
                continue
            logger.info(f"DELETE File '{meta.path}' not existing upstream and backup it")
            try:
                to_delete.append(VersionedObject.from_metadata(self.store, self.storage, meta))
            except SyncException as e:
                logger.error(f"could not create file from attrs {meta.path}: {e}")
                result.outcomes.append(ItemOutcome(meta.path, "failed", error=str(e)))

        for parent in to_delete:
            try:
                parent.backup(delete_original=True)
            except SyncException as e:
                logger.error(f"error deleting file: {parent.path} {e}")
                result.outcomes.append(ItemOutcome(parent.path, "failed", error=str(e)))
                continue
            result.outcomes.append(ItemOutcome(parent.path, "deleted"))

            for child_folder in child_folders:
                self._delete_children(parent, child_folder, result)

        return result

    def _delete_children(self, parent: VersionedObject, child_folder: str, result: ReconcileResult) -> None:
        child_prefix = child_folder + parent.name_without_extension
        try:
            children = self.list_objects(child_prefix)
        except SyncException as e:
            logger.error(f"error reading files: {child_prefix} {e}")
            result.outcomes.append(ItemOutcome(child_prefix, "failed", parent=parent.path, error=str(e)))
            return

        for child in children:
            logger.info(f"DELETE Child from '{parent.name}' and backup it {child.path}")
            try:
                child.backup(delete_original=True)
            except SyncException as e:
                logger.error(f"error deleting file: {child.path} {e}")
                result.outcomes.append(ItemOutcome(child.path, "failed", parent=parent.path, error=str(e)))
                continue
            result.outcomes.append(ItemOutcome(child.path, "child_deleted", parent=parent.path))
