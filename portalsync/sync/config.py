"""
Settings and request schema for the fetch-and-sync engine.

This module defines the static configuration the engine is constructed with
(HTTP behaviour, proxy allocation, storage buckets, freshness) and the small
value types passed between its components.
"""

import os
import yaml
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Union
from urllib.parse import urlparse
from pydantic import BaseModel, Field, field_validator, model_validator

from ..config import DEFAULT_CONTENT_LANGUAGE, DEFAULT_STORE_ROOT, ANY_MIME_TYPE, HTTP_GET, HTTP_POST
from .error_tracker import ConfigurationError
from .naming import sanitize_path


DEFAULT_USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36'


class HttpSettings(BaseModel):
    """HTTP client behaviour towards the origin server."""
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    call_delay: float = Field(default=0.5, ge=0, description="Pacing delay before every attempt in seconds")
    max_attempts: int = Field(default=3, ge=1, description="Attempts per logical request")
    use_proxy: bool = Field(default=False, description="Route requests through an allocated proxy")
    retry_delay: float = Field(default=2.0, ge=0, description="Base backoff delay between attempts in seconds")
    max_retry_delay: float = Field(default=120.0, ge=0, description="Ceiling for the growing backoff delay in seconds")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")
    terminal_header: str = Field(default="X-Page", description="Response header marking an authentication redirect")
    terminal_header_value: str = Field(default="noauth.asp", description="Header value that ends the retry loop")

    @model_validator(mode='after')
    def validate_delays(self):
        """Backoff ceiling must not be below the base delay."""
        if self.max_retry_delay < self.retry_delay:
            raise ValueError('max_retry_delay must be >= retry_delay')
        return self


class ProxySettings(BaseModel):
    """Access to the proxy allocation service."""
    url: Optional[str] = Field(None, description="Allocation service URL")
    secret_header_key: str = Field(default="X-Proxy-Secret", description="Header carrying the service secret")
    secret: Optional[str] = Field(None, description="Service secret")
    host_header_key: str = Field(default="X-Proxy-Host", description="Header carrying the service host")
    host: Optional[str] = Field(None, description="Service host")
    proto: str = Field(default="http", description="Scheme used when the service returns a bare host:port")
    parser: str = Field(default="json-list", description="Response parser (json-list or plain)")
    timeout: float = Field(default=10.0, gt=0, description="Allocation request timeout in seconds")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        if v is None:
            return v
        result = urlparse(v)
        if not all([result.scheme, result.netloc]):
            raise ValueError('Invalid URL format')
        return v


class StorageSettings(BaseModel):
    """Buckets of the backing blob store."""
    bucket_fetched: str = Field(default="fetched", description="Primary bucket for fetched artifacts")
    bucket_backup: str = Field(default="backup", description="Bucket receiving superseded versions")
    bucket_ocr: str = Field(default="ocr", description="Bucket for OCR results")
    bucket_ocr_html: str = Field(default="ocr-html", description="Bucket for rendered OCR results")
    content_language: str = Field(default=DEFAULT_CONTENT_LANGUAGE, description="Content-Language of written objects")
    root_directory: str = Field(default=DEFAULT_STORE_ROOT, description="Root of the local blob store")

    @model_validator(mode='after')
    def validate_buckets(self):
        """Primary and backup buckets must differ."""
        if self.bucket_fetched == self.bucket_backup:
            raise ValueError('bucket_fetched and bucket_backup must differ')
        return self


class SyncSettings(BaseModel):
    """Main configuration for the fetch-and-sync engine."""
    name: str = Field(default="portalsync", description="Configuration name")
    http: HttpSettings = Field(default_factory=HttpSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    min_age_before_download: float = Field(default=86400.0, ge=0, description="Seconds a stored artifact stays fresh")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(None, description="Log file path")

    @model_validator(mode='after')
    def validate_proxy(self):
        """A proxy allocation URL is required when proxies are enabled."""
        if self.http.use_proxy and not self.proxy.url:
            raise ValueError('http.use_proxy requires proxy.url')
        return self

    @property
    def min_age(self) -> timedelta:
        return timedelta(seconds=self.min_age_before_download)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'SyncSettings':
        """Load configuration from YAML file, then apply environment overrides."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict) -> 'SyncSettings':
        """Build settings from a plain dict, applying environment overrides."""
        data = _apply_env_overrides(data)
        try:
            return cls(**data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid sync settings: {e}") from e

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode='json')
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True)


ENV_OVERRIDES = {
    'PORTALSYNC_PROXY_SECRET': ('proxy', 'secret'),
    'PORTALSYNC_PROXY_URL': ('proxy', 'url'),
    'PORTALSYNC_STORE_ROOT': ('storage', 'root_directory'),
    'PORTALSYNC_LOG_LEVEL': ('log_level',),
}


def _apply_env_overrides(data: Dict) -> Dict:
    data = dict(data)
    for env_var, keys in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        current = data
        for key in keys[:-1]:
            current[key] = dict(current.get(key) or {})
            current = current[key]
        current[keys[-1]] = value
    return data


class FetchRequest(BaseModel):
    """A remote resource the engine should have a current copy of."""
    url: str = Field(..., description="Resource URL")
    folder: str = Field(default="", description="Store folder (path prefix)")
    name: str = Field(default="", description="Artifact name without extension")
    ending: str = Field(default="", description="Artifact extension including the dot")
    created: Optional[datetime] = Field(None, description="Creation time of the upstream resource")
    form_data: Optional[Dict[str, str]] = Field(None, description="Form payload; presence makes this a POST")
    expected_mime: str = Field(default=ANY_MIME_TYPE, description="Expected content-type prefix")
    redownload: bool = Field(default=False, description="Ignore stored freshness for this artifact")
    redownload_children: bool = Field(default=False, description="Propagate re-fetch intent to dependents")

    @field_validator('name')
    @classmethod
    def sanitize_name(cls, v):
        return sanitize_path(v)

    @field_validator('folder')
    @classmethod
    def validate_folder(cls, v):
        if v and not v.endswith('/'):
            v = v + '/'
        return v

    @field_validator('created')
    @classmethod
    def ensure_timezone(cls, v):
        if v is not None and v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v

    @property
    def method(self) -> str:
        return HTTP_POST if self.form_data is not None else HTTP_GET

    @property
    def filename(self) -> str:
        return self.name + self.ending


@dataclass
class Download:
    """Result of one successful transport call."""
    name: str
    content_type: str
    content: bytes
    status_code: int

    @property
    def size(self) -> int:
        return len(self.content)
