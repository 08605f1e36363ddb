"""
Egress proxy allocation.

The allocation service is asked for a proxy before every new HTTP session.
How its response body turns into a proxy URL is a small pluggable capability
(`ProxyParser`), selected by `proxy.parser` in the settings or injected.
"""

import json
from abc import ABC, abstractmethod
from typing import Dict, Optional, Type
from urllib.parse import urlparse

import requests

from ..config import get_logger
from .config import ProxySettings
from .error_tracker import ProxyError

logger = get_logger(__name__)

SOCKS_SCHEMES = ('socks4', 'socks4a', 'socks5', 'socks5h')


def with_scheme(address: str, default_proto: str) -> str:
    """Prefix `address` with `default_proto://` unless it already has a scheme."""
    address = address.strip()
    if '://' in address:
        return address
    return f"{default_proto}://{address}"


def is_socks_proxy(proxy_url: str) -> bool:
    return urlparse(proxy_url).scheme.lower() in SOCKS_SCHEMES


class ProxyParser(ABC):
    """Turns the allocation service response body into a proxy URL."""

    def __init__(self, default_proto: str = "http"):
        self.default_proto = default_proto

    @abstractmethod
    def parse(self, body: bytes) -> str:
        pass


class JsonProxyListParser(ProxyParser):
    """Body is a JSON list of {"ip": ..., "port": ...}; the first entry wins."""

    def parse(self, body: bytes) -> str:
        try:
            entries = json.loads(body)
        except ValueError as e:
            raise ProxyError(f"proxy service returned invalid JSON: {e}")
        if not isinstance(entries, list) or not entries:
            raise ProxyError("no proxies")

        entry = entries[0]
        if not isinstance(entry, dict):
            raise ProxyError(f"unexpected proxy entry: {entry!r}")
        # The service is not consistent about key casing
        fields = {str(k).lower(): v for k, v in entry.items()}
        ip, port = fields.get('ip'), fields.get('port')
        if not ip or port in (None, ''):
            raise ProxyError(f"proxy entry without ip/port: {entry!r}")
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ProxyError(f"proxy entry with invalid port: {entry!r}")
        return with_scheme(f"{ip}:{port}", self.default_proto)


class PlainProxyParser(ProxyParser):
    """Body is a single proxy URL or host:port."""

    def parse(self, body: bytes) -> str:
        text = body.decode('utf-8', errors='replace').strip()
        if not text:
            raise ProxyError("no proxies")
        proxy_url = with_scheme(text.splitlines()[0], self.default_proto)
        if not urlparse(proxy_url).netloc:
            raise ProxyError(f"invalid proxy address: {text!r}")
        return proxy_url


PROXY_PARSERS: Dict[str, Type[ProxyParser]] = {
    'json-list': JsonProxyListParser,
    'plain': PlainProxyParser,
}


def get_proxy_parser(name: str, default_proto: str = "http") -> ProxyParser:
    try:
        parser_cls = PROXY_PARSERS[name]
    except KeyError:
        raise ProxyError(f"Unknown proxy parser '{name}', expected one of {sorted(PROXY_PARSERS)}")
    return parser_cls(default_proto=default_proto)


class ProxyResolver:
    """Asks the allocation service for a currently valid proxy."""

    def __init__(self, settings: ProxySettings, parser: Optional[ProxyParser] = None,
                 session: Optional[requests.Session] = None):
        self.settings = settings
        self.parser = parser or get_proxy_parser(settings.parser, settings.proto)
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.settings.secret:
            headers[self.settings.secret_header_key] = self.settings.secret
        if self.settings.host:
            headers[self.settings.host_header_key] = self.settings.host
        return headers

    def resolve(self) -> str:
        """Return a proxy URL such as http://1.2.3.4:8080 or socks5://1.2.3.4:1080."""
        if not self.settings.url:
            raise ProxyError("proxy.url is not configured")
        try:
            response = self.session.get(self.settings.url, headers=self._headers(), timeout=self.settings.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ProxyError(f"error requesting proxy from {self.settings.url}: {e}",
                             source_id=self.settings.url) from e

        proxy_url = self.parser.parse(response.content)
        logger.info(f"selected proxy {proxy_url}")
        return proxy_url
