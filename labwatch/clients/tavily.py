"""Client for the Tavily search API."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from labwatch.normalize import parse_datetime
from tools.backoff import SleepFn, call_with_retry


class TavilyError(RuntimeError):
    """Base error for Tavily client failures."""

    def __init__(self, message: str, code: str = "TAVILY_ERROR") -> None:
        super().__init__(message)
        self.code = code


class TavilyRateLimitError(TavilyError):
    """Raised when Tavily responds with HTTP 429."""

    def __init__(self, message: str = "Rate limited by Tavily") -> None:
        super().__init__(message, code="TAVILY_429")


class TavilyTimeoutError(TavilyError):
    """Raised when a Tavily request times out."""

    def __init__(self, message: str = "Tavily request timed out") -> None:
        super().__init__(message, code="TAVILY_TIMEOUT")


class TavilyServerError(TavilyError):
    """Raised on Tavily 5xx responses."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Tavily server error: {status_code}", code="TAVILY_5XX")


class TavilySchemaError(TavilyError):
    """Raised when the Tavily response schema does not match expectations."""

    def __init__(self, message: str = "Unexpected Tavily response schema") -> None:
        super().__init__(message, code="TAVILY_SCHEMA_ERR")


TRANSIENT_ERRORS: tuple[type[TavilyError], ...] = (
    TavilyRateLimitError,
    TavilyTimeoutError,
    TavilyServerError,
)


@dataclass(frozen=True)
class SearchHit:
    """One normalized search result."""

    title: str | None
    url: str
    publisher: str | None = None
    published_at: datetime | None = None
    snippet: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SearchHit | None:
        url = payload.get("url")
        if not isinstance(url, str) or not url.strip():
            return None
        title = payload.get("title")
        publisher = payload.get("source")
        snippet = payload.get("content") or payload.get("snippet")
        return cls(
            title=title.strip() if isinstance(title, str) and title.strip() else None,
            url=url.strip(),
            publisher=publisher if isinstance(publisher, str) and publisher else None,
            published_at=parse_datetime(payload.get("published_date")),
            snippet=snippet if isinstance(snippet, str) and snippet else None,
        )


class TavilyClient:
    """Minimal Tavily API client wrapper with a single bounded retry."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.tavily.com",
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
        sleep: SleepFn | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("SEARCH_API_KEY is required to create a TavilyClient.")
        self._api_key = api_key
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_http_client:
            self._http.close()

    def search(
        self,
        *,
        query: str,
        max_results: int = 5,
        days: int | None = None,
        topic: str = "news",
        search_depth: str = "basic",
        include_domains: Sequence[str] | None = None,
    ) -> list[SearchHit]:
        """Execute a search, retrying once on transient failure."""
        if max_results <= 0:
            raise ValueError("max_results must be a positive integer.")

        payload: dict[str, Any] = {
            "query": query,
            "search_depth": search_depth,
            "topic": topic,
            "max_results": max_results,
            "include_answer": False,
            "include_raw_content": False,
        }
        if days:
            payload["days"] = days
        if include_domains:
            payload["include_domains"] = list(include_domains)

        results = call_with_retry(
            lambda: self._post_search(payload),
            retry_on=TRANSIENT_ERRORS,
            label="tavily.search",
            max_attempts=self._max_attempts,
            delay=self._retry_delay,
            sleep=self._sleep,
        )
        hits = [SearchHit.from_payload(item) for item in results]
        return [hit for hit in hits if hit is not None]

    def _post_search(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            response = self._http.post("/search", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise TavilyTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise TavilyError(f"HTTP error calling Tavily: {exc}") from exc

        if response.status_code == 429:
            raise TavilyRateLimitError()
        if response.status_code in (408, 504):
            raise TavilyTimeoutError()
        if response.status_code >= 500:
            raise TavilyServerError(response.status_code)
        if response.status_code >= 400:
            detail = response.text[:200]
            try:
                detail_json = response.json()
            except ValueError:
                detail_json = None
            if isinstance(detail_json, dict):
                detail = detail_json.get("message") or detail_json.get("detail") or detail
            raise TavilyError(
                f"Tavily request failed: {response.status_code} - {detail}",
                code=f"TAVILY_{response.status_code}",
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TavilySchemaError("Failed to decode Tavily response JSON.") from exc

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise TavilySchemaError("`results` missing from Tavily response.")
        return [item for item in results if isinstance(item, dict)]

    def __enter__(self) -> TavilyClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
