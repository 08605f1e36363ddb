"""
Blob store abstraction for fetched artifacts.

The engine only needs a narrow, bucket-scoped object store interface:
attributes, read, write, touch (refresh the update time), delete and prefix
listing. Objects written with content_encoding "gzip" are decompressed
transparently on read, as cloud object stores do.

Two implementations are provided:
- MemoryBlobStore: in-process, with an injectable clock
- LocalBlobStore: a directory per bucket with JSON sidecar metadata
"""

import gzip
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..config import get_logger
from .error_tracker import StoreError, BlobNotFoundError

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WriteAttributes:
    """Attributes set when writing an object."""
    content_type: str
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    custom_time: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class BlobMetadata:
    """Attributes of a stored object."""
    path: str
    content_type: str
    updated: datetime
    size: int = 0
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    custom_time: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "path": self.path,
            "content_type": self.content_type,
            "updated": self.updated.isoformat(),
            "size": self.size,
            "content_encoding": self.content_encoding,
            "content_language": self.content_language,
            "custom_time": self.custom_time.isoformat() if self.custom_time else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'BlobMetadata':
        return cls(
            path=data["path"],
            content_type=data.get("content_type", ""),
            updated=datetime.fromisoformat(data["updated"]),
            size=data.get("size", 0),
            content_encoding=data.get("content_encoding"),
            content_language=data.get("content_language"),
            custom_time=datetime.fromisoformat(data["custom_time"]) if data.get("custom_time") else None,
            metadata=dict(data.get("metadata") or {}),
        )


def decode_content(data: bytes, content_encoding: Optional[str], path: str) -> bytes:
    if content_encoding == "gzip":
        try:
            return gzip.decompress(data)
        except (OSError, EOFError) as e:
            raise StoreError(f"error decompressing {path}: {e}", source_id=path) from e
    return data


class BlobStore(ABC):
    """Bucket-scoped object store."""

    @abstractmethod
    def get_attributes(self, bucket: str, path: str) -> BlobMetadata:
        """Attributes of an object; raises BlobNotFoundError if it does not exist."""
        pass

    @abstractmethod
    def read(self, bucket: str, path: str) -> bytes:
        """Content of an object, gunzipped if it was written gzip-encoded."""
        pass

    @abstractmethod
    def write(self, bucket: str, path: str, data: bytes, attributes: WriteAttributes) -> BlobMetadata:
        pass

    @abstractmethod
    def touch(self, bucket: str, path: str) -> BlobMetadata:
        """Refresh the update time of an object without rewriting its content."""
        pass

    @abstractmethod
    def delete(self, bucket: str, path: str) -> None:
        pass

    @abstractmethod
    def list(self, bucket: str, prefix: str = "") -> List[BlobMetadata]:
        """Attributes of all objects whose path starts with prefix, ordered by path."""
        pass

    def exists(self, bucket: str, path: str) -> bool:
        try:
            self.get_attributes(bucket, path)
            return True
        except BlobNotFoundError:
            return False


class MemoryBlobStore(BlobStore):
    """Keeps objects in a dict; used for tests and dry runs."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self._objects: Dict[Tuple[str, str], Tuple[bytes, BlobMetadata]] = {}
        self.write_count = 0
        self.touch_count = 0

    def _get(self, bucket: str, path: str) -> Tuple[bytes, BlobMetadata]:
        try:
            return self._objects[(bucket, path)]
        except KeyError:
            raise BlobNotFoundError(f"object {bucket}/{path} does not exist", source_id=path)

    def get_attributes(self, bucket: str, path: str) -> BlobMetadata:
        return replace(self._get(bucket, path)[1])

    def read(self, bucket: str, path: str) -> bytes:
        data, meta = self._get(bucket, path)
        return decode_content(data, meta.content_encoding, path)

    def write(self, bucket: str, path: str, data: bytes, attributes: WriteAttributes) -> BlobMetadata:
        meta = BlobMetadata(
            path=path,
            content_type=attributes.content_type,
            updated=self.clock(),
            size=len(data),
            content_encoding=attributes.content_encoding,
            content_language=attributes.content_language,
            custom_time=attributes.custom_time,
            metadata=dict(attributes.metadata),
        )
        self._objects[(bucket, path)] = (bytes(data), meta)
        self.write_count += 1
        return replace(meta)

    def touch(self, bucket: str, path: str) -> BlobMetadata:
        data, meta = self._get(bucket, path)
        meta = replace(meta, updated=self.clock())
        self._objects[(bucket, path)] = (data, meta)
        self.touch_count += 1
        return replace(meta)

    def delete(self, bucket: str, path: str) -> None:
        self._get(bucket, path)
        del self._objects[(bucket, path)]

    def list(self, bucket: str, prefix: str = "") -> List[BlobMetadata]:
        return [
            replace(meta)
            for (b, path), (_, meta) in sorted(self._objects.items())
            if b == bucket and path.startswith(prefix)
        ]


class LocalBlobStore(BlobStore):
    """
    Stores objects below `root`:

        root/<bucket>/objects/<path>          raw (possibly gzipped) bytes
        root/<bucket>/metadata/<path>.json    BlobMetadata as JSON
    """

    def __init__(self, root: str, clock: Optional[Clock] = None):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.clock = clock or utc_now

    def _paths(self, bucket: str, path: str) -> Tuple[Path, Path]:
        if not path or path.startswith('/') or '..' in Path(path).parts:
            raise StoreError(f"invalid object path '{path}'", source_id=path)
        bucket_dir = self.root / bucket
        return bucket_dir / "objects" / path, bucket_dir / "metadata" / (path + ".json")

    def _load_meta(self, meta_path: Path, path: str) -> BlobMetadata:
        try:
            with open(meta_path, 'r', encoding='utf-8') as f:
                return BlobMetadata.from_dict(json.load(f))
        except FileNotFoundError:
            raise BlobNotFoundError(f"object {path} does not exist", source_id=path)
        except (OSError, ValueError, KeyError) as e:
            raise StoreError(f"error reading metadata of {path}: {e}", source_id=path) from e

    def _save_meta(self, meta_path: Path, meta: BlobMetadata) -> None:
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = meta_path.with_name(meta_path.name + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(meta.to_dict(), f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, meta_path)

    def get_attributes(self, bucket: str, path: str) -> BlobMetadata:
        _, meta_path = self._paths(bucket, path)
        return self._load_meta(meta_path, path)

    def read(self, bucket: str, path: str) -> bytes:
        object_path, meta_path = self._paths(bucket, path)
        meta = self._load_meta(meta_path, path)
        try:
            data = object_path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundError(f"object {path} has metadata but no content", source_id=path)
        except OSError as e:
            raise StoreError(f"error reading {path}: {e}", source_id=path) from e
        return decode_content(data, meta.content_encoding, path)

    def write(self, bucket: str, path: str, data: bytes, attributes: WriteAttributes) -> BlobMetadata:
        object_path, meta_path = self._paths(bucket, path)
        meta = BlobMetadata(
            path=path,
            content_type=attributes.content_type,
            updated=self.clock(),
            size=len(data),
            content_encoding=attributes.content_encoding,
            content_language=attributes.content_language,
            custom_time=attributes.custom_time,
            metadata=dict(attributes.metadata),
        )
        try:
            object_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = object_path.with_name(object_path.name + ".tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, object_path)
            self._save_meta(meta_path, meta)
        except OSError as e:
            raise StoreError(f"error writing {path}: {e}", source_id=path) from e
        logger.debug(f"wrote {bucket}/{path} ({len(data)} bytes)")
        return meta

    def touch(self, bucket: str, path: str) -> BlobMetadata:
        _, meta_path = self._paths(bucket, path)
        meta = replace(self._load_meta(meta_path, path), updated=self.clock())
        try:
            self._save_meta(meta_path, meta)
        except OSError as e:
            raise StoreError(f"error touching {path}: {e}", source_id=path) from e
        return meta

    def delete(self, bucket: str, path: str) -> None:
        object_path, meta_path = self._paths(bucket, path)
        if not meta_path.exists():
            raise BlobNotFoundError(f"object {path} does not exist", source_id=path)
        try:
            meta_path.unlink()
            if object_path.exists():
                object_path.unlink()
        except OSError as e:
            raise StoreError(f"error deleting {path}: {e}", source_id=path) from e
        logger.debug(f"deleted {bucket}/{path}")

    def list(self, bucket: str, prefix: str = "") -> List[BlobMetadata]:
        metadata_dir = self.root / bucket / "metadata"
        if not metadata_dir.exists():
            return []
        results = []
        for meta_path in metadata_dir.rglob("*.json"):
            path = meta_path.relative_to(metadata_dir).as_posix()[:-len(".json")]
            if path.startswith(prefix):
                results.append(self._load_meta(meta_path, path))
        return sorted(results, key=lambda m: m.path)
