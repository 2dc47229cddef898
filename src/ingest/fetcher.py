"""Remote fetcher: cheap metadata probes and full-body retrieval over HTTP."""

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import ReadTimeoutError
from urllib3.util.retry import Retry

from src.config.settings import (
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    DEFAULT_RETRIEVE_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
)

logger = logging.getLogger(__name__)

# Connect timeout in seconds; read timeout comes from the caller
CONNECT_TIMEOUT = 10

# Session-level retry for network transients
_retry = Retry(total=1, allowed_methods=["GET", "HEAD"], backoff_factor=1, status_forcelist=[502, 503, 504],
               raise_on_status=False)
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_retry))
_session.mount("http://", HTTPAdapter(max_retries=_retry))


class FetchError(Exception):
    """Exception raised when a body retrieval fails."""
    def __init__(self, url: str, message: str, status: Optional[int] = None,
                 original_error: Optional[Exception] = None):
        self.url = url
        self.message = message
        self.status = status
        self.original_error = original_error
        super().__init__(f"{url}: {message}")


class FetchTimeoutError(FetchError, TimeoutError):
    """Retrieval deadline elapsed."""
    pass


def _is_read_timeout(error: requests.ConnectionError) -> bool:
    """True when requests wrapped a urllib3 read timeout raised mid-body."""
    if isinstance(error.__context__, ReadTimeoutError):
        return True
    return any(isinstance(arg, ReadTimeoutError) for arg in error.args)


@dataclass(frozen=True)
class ProbeResult:
    """Metadata returned by a HEAD probe."""
    status: int
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    content_length: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status < 400


@dataclass(frozen=True)
class FetchResult:
    """A retrieved body plus the freshness headers that came with it."""
    url: str
    content: bytes
    status: int = 200
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    content_length: Optional[str] = None


class RemoteFetcher:
    """HTTP probe/retrieve with per-call timeouts and an identifying User-Agent."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        retrieve_timeout: float = DEFAULT_RETRIEVE_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.headers = {"User-Agent": user_agent, "Accept": "*/*"}
        self.probe_timeout = probe_timeout
        self.retrieve_timeout = retrieve_timeout
        self.session = session or _session

    def probe(self, url: str) -> Optional[ProbeResult]:
        """
        HEAD the URL and report its freshness headers.

        Returns:
            ProbeResult (any status), or None when the server could not be
            reached in time. Never raises for network problems.
        """
        try:
            response = self.session.head(
                url,
                headers=self.headers,
                timeout=(CONNECT_TIMEOUT, self.probe_timeout),
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.warning(f"Probe unavailable for {url}: {e}")
            return None

        return ProbeResult(
            status=response.status_code,
            etag=response.headers.get("ETag"),
            last_modified=response.headers.get("Last-Modified"),
            content_length=response.headers.get("Content-Length"),
        )

    def retrieve(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        """
        GET the full body, following redirects.

        Args:
            url: Source URL
            timeout: Read timeout in seconds (default: fetcher's retrieve_timeout)

        Raises:
            FetchTimeoutError: If the deadline elapses
            FetchError: On a non-success status or any other transport failure
        """
        read_timeout = timeout if timeout is not None else self.retrieve_timeout
        try:
            response = self.session.get(
                url,
                headers=self.headers,
                timeout=(CONNECT_TIMEOUT, read_timeout),
                allow_redirects=True,
            )
            if not response.ok:
                raise FetchError(url, f"HTTP {response.status_code} {response.reason}", response.status_code)
            content = response.content
        except requests.Timeout as e:
            raise FetchTimeoutError(url, f"timed out after {read_timeout}s", original_error=e) from e
        except requests.ConnectionError as e:
            # a read timeout while streaming the body surfaces as ConnectionError
            if _is_read_timeout(e):
                raise FetchTimeoutError(url, f"timed out after {read_timeout}s", original_error=e) from e
            raise FetchError(url, f"request failed: {e}", original_error=e) from e
        except requests.RequestException as e:
            raise FetchError(url, f"request failed: {e}", original_error=e) from e

        logger.info(f"Retrieved {len(content)} bytes from {url}")
        return FetchResult(
            url=url,
            content=content,
            status=response.status_code,
            etag=response.headers.get("ETag"),
            last_modified=response.headers.get("Last-Modified"),
            content_length=response.headers.get("Content-Length"),
        )
