"""
Resilient HTTP transport towards the legacy portal.

Every request runs through a `Retrier`: a pacing delay before each attempt, a
fresh session (and proxy) after each failure, and a growing backoff between
attempts. HTML bodies are passed through the `EncodingNormalizer`.
"""

import posixpath
import random
import threading
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

import requests

from ..config import get_logger, ANY_MIME_TYPE, HTTP_GET, HTTP_POST
from .config import HttpSettings, Download
from .encoding import EncodingNormalizer, canonical_content_type
from .error_tracker import SourceFetchError, TerminalFetchError, TransportSetupError, UnexpectedContentTypeError
from .proxy import ProxyResolver, is_socks_proxy
from .resilience import Retrier, RetryPolicy, RetryState

logger = get_logger(__name__)


def resource_name(url: str) -> str:
    """Last path segment of a URL, query string included (e.g. 'vo020.asp?VOLFDNR=12')."""
    parts = urlsplit(url)
    name = posixpath.basename(parts.path.rstrip('/')) or parts.netloc
    if parts.query:
        name = f"{name}?{parts.query}"
    return name


class ResilientTransport:
    """Fetches resources with GET or form-encoded POST, retrying transient failures."""

    def __init__(self, settings: HttpSettings, *,
                 proxy_resolver: Optional[ProxyResolver] = None,
                 normalizer: Optional[EncodingNormalizer] = None,
                 session_factory: Callable[[], requests.Session] = requests.Session,
                 state: Optional[RetryState] = None,
                 sleep: Optional[Callable[[float], object]] = None,
                 cancel_event: Optional[threading.Event] = None,
                 rng: Optional[random.Random] = None):
        self.settings = settings
        self.proxy_resolver = proxy_resolver
        self.normalizer = normalizer or EncodingNormalizer()
        self.session_factory = session_factory
        self.policy = RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.retry_delay,
            max_delay_seconds=settings.max_retry_delay,
            call_delay_seconds=settings.call_delay,
        )
        self.retrier = Retrier(
            self.policy, self._build_session,
            state=state, sleep=sleep, cancel_event=cancel_event, rng=rng,
        )

    @property
    def state(self) -> RetryState:
        return self.retrier.state

    def _build_session(self) -> requests.Session:
        session = self.session_factory()
        # Set default headers to mimic a real browser
        session.headers.update({
            'User-Agent': self.settings.user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'de-DE,de;q=0.9,en;q=0.5',
            'Connection': 'keep-alive',
        })

        if self.settings.use_proxy:
            if self.proxy_resolver is None:
                raise TransportSetupError("http.use_proxy is set but no proxy resolver is configured")
            proxy_url = self.proxy_resolver.resolve()
            # requests routes socks schemes through PySocks, everything else as a forward proxy
            session.proxies = {'http': proxy_url, 'https': proxy_url}
            kind = "SOCKS" if is_socks_proxy(proxy_url) else "HTTP"
            logger.info(f"Using {kind} proxy {proxy_url}")

        return session

    def _is_terminal(self, response: requests.Response) -> bool:
        value = response.headers.get(self.settings.terminal_header)
        return value is not None and value.strip().lower() == self.settings.terminal_header_value.lower()

    def get(self, url: str) -> Download:
        """GET a resource. Any status other than 200 (404 included) is a failure."""

        def attempt(session: requests.Session) -> Download:
            logger.debug(f"send request: {url}")
            response = session.get(url, timeout=self.settings.timeout, allow_redirects=True)
            status = response.status_code

            if self._is_terminal(response):
                raise TerminalFetchError(
                    f"error fetching {self.settings.terminal_header}={self.settings.terminal_header_value} - no retry: {url} | {status}",
                    source_id=url,
                    recovery_suggestion="The portal redirected to its login page; check access to the resource.",
                )
            if status == 404:
                logger.warning(f"error fetching: {url} | {status}")
            if status != 200:
                raise SourceFetchError(f"error fetching: {url} | {status}", source_id=url)

            header_type = canonical_content_type(response.headers.get('content-type'))
            if header_type.startswith('text/html'):
                content, content_type = self.normalizer.normalize(header_type, response.content)
            else:
                content, content_type = response.content, header_type

            return Download(resource_name(response.url or url), content_type, content, status)

        return self.retrier.run(attempt, f"GET {url}")

    def post(self, url: str, form_data: Dict[str, str]) -> Download:
        """
        POST a form. A 404 is logged and passed through as an empty download;
        other non-200 statuses and empty bodies are failures.
        """

        def attempt(session: requests.Session) -> Download:
            logger.info(f"send post request: {url} {form_data}")
            response = session.post(
                url,
                data=form_data,
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                timeout=self.settings.timeout,
                allow_redirects=True,
            )
            status = response.status_code
            header_type = canonical_content_type(response.headers.get('content-type'))
            name = resource_name(response.url or url)

            if self._is_terminal(response):
                raise TerminalFetchError(
                    f"error fetching {self.settings.terminal_header}={self.settings.terminal_header_value} - no retry: {url} | {status}",
                    source_id=url,
                )
            if status == 404:
                logger.warning(f"error fetching: {url} | {status}")
                return Download(name, header_type, b'', status)
            if status != 200:
                raise SourceFetchError(f"error fetching: {url} | {status}", source_id=url)

            if header_type.startswith('text/html'):
                content, content_type = self.normalizer.normalize(header_type, response.content)
            else:
                content, content_type = response.content, header_type

            if not content:
                raise SourceFetchError(f"error empty body: {url}", source_id=url)

            return Download(name, content_type, content, status)

        return self.retrier.run(attempt, f"POST {url}")

    def fetch(self, method: str, url: str, form_data: Optional[Dict[str, str]] = None,
              expected_mime: str = ANY_MIME_TYPE) -> Download:
        """
        Fetch a resource and check its content type.

        Args:
            method: "GET" or "POST"
            url: Resource URL
            form_data: Form payload for POST
            expected_mime: Required content-type prefix, "*" for any

        Returns:
            The Download
        """
        method = method.upper()
        if method == HTTP_GET:
            download = self.get(url)
        elif method == HTTP_POST:
            download = self.post(url, form_data or {})
        else:
            raise ValueError(f"Unsupported HTTP method: {method}")

        if expected_mime != ANY_MIME_TYPE and not download.content_type.startswith(expected_mime):
            raise UnexpectedContentTypeError(
                f"content is not {expected_mime} on page {url}, is {download.content_type}",
                source_id=url,
            )
        return download

    def close(self):
        """Close the live session."""
        self.retrier.discard_client()
