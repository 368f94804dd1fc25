"""HTTP retrieval for plugins and the save engine.

The framework treats retrieval as an injected capability: anything with
the shape ``fetch(url) -> bytes`` that raises on failure will do. This
module provides the default one, built on httpx.

Timeouts and retry policy belong here, not in the save engine.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

import webfetch
from webfetch.common.exceptions import NetworkGetError

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]

USER_AGENT = f"webfetch/{webfetch.__version__}"


class HttpFetcher:
    """Fetches URLs over HTTP for synchronous drivers.

    This class encapsulates:

    - httpx.Client lifecycle
    - Error classification into NetworkGetError

    Example::

        with HttpFetcher(timeout=30.0) as fetcher:
            content = fetcher.fetch("https://example.org/feed.xml")
    """

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        quiet: bool = False,
    ) -> None:
        """Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds. None means no timeout.
            transport: Optional httpx transport (tests use MockTransport).
            quiet: Log HTTP failures at debug level instead of warning,
                for cron runs that should stay silent.
        """
        self.timeout = timeout
        self.quiet = quiet
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def fetch(self, url: str) -> bytes:
        """Retrieve *url* and return the response body.

        Raises:
            NetworkGetError: On transport errors or an HTTP error status.
        """
        logger.debug(f"get({url})")
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            self._report(url, f"{type(e).__name__}: {e}")
            raise NetworkGetError(url, f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            reason = f"HTTP {response.status_code} {response.reason_phrase}"
            self._report(url, reason)
            raise NetworkGetError(url, reason, response.status_code)

        return response.content

    __call__ = fetch

    def _report(self, url: str, reason: str) -> None:
        if self.quiet:
            logger.debug(f"failed to get {url}: {reason}")
        else:
            logger.warning(f"failed to get {url}: {reason}")
