from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from app.config import settings
from app.errors import RequestCancelled
from app.services import logger as log_service
from app.services.cancellation import CancellationToken
from app.tools import content_extractor, web_utils

SCRAPE_TIMEOUT_SECONDS = 15.0
USER_AGENT = "DeepSearchBot/1.0 (+https://example.local)"

# Per-URL failure kinds.
TIMEOUT = "timeout"
NETWORK = "network"
HTTP_ERROR = "http_error"
INVALID_URL = "invalid_url"
EMPTY = "empty"
FETCH_FAILED = "fetch_failed"

Fetcher = Callable[[httpx.AsyncClient, str], Awaitable[str]]


@dataclass
class UrlScrapeResult:
    url: str
    success: bool
    data: str | None = None
    error: str | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        payload: dict[str, Any] = {"success": False, "error": self.error}
        if self.detail:
            payload["detail"] = self.detail
        return payload


@dataclass
class BulkScrapeResult:
    success: bool
    results: dict[str, UrlScrapeResult] = field(default_factory=dict)

    @property
    def failed(self) -> list[UrlScrapeResult]:
        return [r for r in self.results.values() if not r.success]

    @property
    def error(self) -> str | None:
        if self.success:
            return None
        return "; ".join(f"{r.url}: {r.error}" for r in self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "results": {url: r.to_dict() for url, r in self.results.items()},
        }


class WebScraper:
    """Fetch pages concurrently and reduce each to readable text.

    Every URL gets its own outcome; one failure never discards the others.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = SCRAPE_TIMEOUT_SECONDS,
        max_page_chars: int | None = None,
        max_parallel: int | None = None,
        fetcher: Fetcher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_page_chars = max_page_chars or settings.scrape_max_page_chars
        self.max_parallel = max(int(max_parallel or settings.scrape_max_parallel_requests), 1)
        self._fetcher = fetcher
        self._transport = transport

    async def scrape_many(
        self,
        urls: list[str],
        cancel: CancellationToken | None = None,
    ) -> BulkScrapeResult:
        unique = web_utils.dedupe_urls(urls)
        if cancel:
            cancel.raise_if_cancelled()

        semaphore = asyncio.Semaphore(self.max_parallel)
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        ) as client:
            outcomes = await asyncio.gather(
                *(self._scrape_one(client, url, semaphore, cancel) for url in unique)
            )

        results = {outcome.url: outcome for outcome in outcomes}
        bulk = BulkScrapeResult(
            success=all(outcome.success for outcome in outcomes),
            results=results,
        )
        log_service.log_event(
            event_type="scrape_completed",
            message="Bulk scrape finished",
            requested=len(unique),
            failed=len(bulk.failed),
        )
        return bulk

    async def _scrape_one(
        self,
        client: httpx.AsyncClient,
        url: str,
        semaphore: asyncio.Semaphore,
        cancel: CancellationToken | None,
    ) -> UrlScrapeResult:
        if not web_utils.is_valid_url(url):
            return UrlScrapeResult(url=url, success=False, error=INVALID_URL, detail="only http(s) URLs are supported")

        fetcher = self._fetcher or self._fetch_default
        async with semaphore:
            fetch = asyncio.wait_for(fetcher(client, url), timeout=self.timeout_seconds)
            try:
                raw = await (cancel.run(fetch) if cancel else fetch)
            except RequestCancelled:
                raise
            except (asyncio.TimeoutError, httpx.TimeoutException):
                return UrlScrapeResult(
                    url=url,
                    success=False,
                    error=TIMEOUT,
                    detail=f"no response within {self.timeout_seconds:g}s",
                )
            except httpx.HTTPStatusError as exc:
                return UrlScrapeResult(
                    url=url,
                    success=False,
                    error=HTTP_ERROR,
                    detail=f"HTTP {exc.response.status_code}",
                )
            except httpx.InvalidURL as exc:
                return UrlScrapeResult(url=url, success=False, error=INVALID_URL, detail=str(exc))
            except httpx.HTTPError as exc:
                return UrlScrapeResult(url=url, success=False, error=NETWORK, detail=str(exc) or type(exc).__name__)
            except Exception as exc:
                log_service.logger.warning("Fetch failed for %s: %s", url, exc)
                return UrlScrapeResult(url=url, success=False, error=FETCH_FAILED, detail=str(exc) or type(exc).__name__)

        try:
            # trafilatura/BeautifulSoup parsing is CPU bound; keep it off the event loop.
            extracted = await asyncio.to_thread(content_extractor.extract_main_content, url, raw)
        except Exception as exc:
            log_service.logger.warning("Extraction failed for %s: %s", url, exc)
            return UrlScrapeResult(url=url, success=False, error=FETCH_FAILED, detail=f"extraction failed: {exc}")

        text = web_utils.clean_content(extracted.text, max_length=self.max_page_chars)
        if not text:
            return UrlScrapeResult(url=url, success=False, error=EMPTY, detail="no readable text on page")
        if extracted.title and not text.startswith("#"):
            text = f"# {extracted.title}\n\n{text}"
        return UrlScrapeResult(url=url, success=True, data=text)

    async def _fetch_default(self, client: httpx.AsyncClient, url: str) -> str:
        response = await client.get(url)
        response.raise_for_status()
        return response.text
