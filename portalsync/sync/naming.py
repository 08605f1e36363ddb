"""
Naming, hashing and timestamp helpers shared by the store components.
"""

import hashlib
import posixpath
import re
import unicodedata
from datetime import datetime, timezone

# Letters NFKD does not decompose into a base letter
_TRANSLITERATIONS = {
    'ß': 'ss', 'æ': 'ae', 'Æ': 'AE', 'ø': 'o', 'Ø': 'O',
    'œ': 'oe', 'Œ': 'OE', 'ł': 'l', 'Ł': 'L', 'đ': 'd', 'Đ': 'D',
}

BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"


def sanitize_path(value: str) -> str:
    """
    Make a resource name safe to use as an object path.

    Accents are stripped, whitespace becomes '-', anything outside
    [A-Za-z0-9._~/-] is dropped and repeated separators are collapsed.
    """
    if not value:
        return ""
    value = ''.join(_TRANSLITERATIONS.get(c, c) for c in value)
    value = unicodedata.normalize('NFKD', value)
    value = ''.join(c for c in value if not unicodedata.combining(c))
    value = re.sub(r'\s+', '-', value.strip())
    value = re.sub(r'[^A-Za-z0-9._~/-]', '', value)
    value = re.sub(r'-{2,}', '-', value)
    value = re.sub(r'/{2,}', '/', value)
    return value


def compute_content_hash(content: bytes) -> str:
    """MD5 hex digest used as the artifact fingerprint."""
    return hashlib.md5(content).hexdigest()


def split_extension(name: str):
    """Return (stem, extension) of the last path segment of name."""
    base = posixpath.basename(name)
    stem, ext = posixpath.splitext(base)
    return stem, ext


def backup_name(name: str, updated: datetime, suffix: str = "") -> str:
    """
    Name of the backup copy of an artifact last written at `updated`.
    `suffix` tells apart versions superseded within the same second.
    """
    stem, ext = split_extension(name)
    suffix = f"_{suffix}" if suffix else ""
    return sanitize_path(f"{stem}_{updated.strftime(BACKUP_TIMESTAMP_FORMAT)}{suffix}{ext}")


def format_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp; raises ValueError on malformed input."""
    if not value:
        raise ValueError("empty timestamp")
    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
