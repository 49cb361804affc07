"""Time-bounded HTML/feed fetcher."""

from __future__ import annotations

import httpx

DEFAULT_USER_AGENT = "LabwatchIngest/1.0 (+https://github.com/labwatch)"


class FetchError(RuntimeError):
    """Base error for page fetch failures."""

    def __init__(self, message: str, code: str = "FETCH_ERROR") -> None:
        super().__init__(message)
        self.code = code


class FetchTimeoutError(FetchError):
    """Raised when a fetch exceeds its time bound."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Timed out fetching {url}", code="FETCH_TIMEOUT")


class PageFetcher:
    """Fetch documents as text with a per-request timeout."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._timeout = timeout
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/rss+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(follow_redirects=True, timeout=timeout)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_http_client:
            self._http.close()

    def fetch_text(self, url: str, *, timeout: float | None = None) -> str:
        try:
            response = self._http.get(url, headers=self._headers, timeout=timeout or self._timeout)
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(url) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"HTTP error fetching {url}: {exc}") from exc

        if response.status_code >= 400:
            raise FetchError(
                f"Fetch failed ({response.status_code}) for {url}",
                code=f"HTTP_{response.status_code}",
            )
        return response.text

    def __enter__(self) -> PageFetcher:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
