from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from app.errors import SearchProviderError
from app.services.cancellation import CancellationToken


@dataclass
class SearchResult:
    title: str
    link: str
    snippet: str
    date: str | None = None


async def search(
    query: str,
    *,
    max_results: int = 10,
    cancel: CancellationToken | None = None,
) -> list[SearchResult]:
    """Execute a Serper (Google) search and return organic results in rank order."""
    if not settings.serper_api_key:
        raise SearchProviderError("serper", "SERPER_API_KEY is not configured")

    payload: dict[str, Any] = {"q": query, "num": max_results}

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            request = client.post(
                settings.serper_base_url,
                json=payload,
                headers={
                    "X-API-KEY": settings.serper_api_key,
                    "Content-Type": "application/json",
                },
            )
            response = await (cancel.run(request) if cancel else request)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as exc:
        raise SearchProviderError(
            "serper",
            f"HTTP {exc.response.status_code}",
            status_code=exc.response.status_code,
        ) from exc
    except httpx.HTTPError as exc:
        raise SearchProviderError("serper", f"request failed: {exc}") from exc

    return [
        SearchResult(
            title=item.get("title", ""),
            link=item.get("link", ""),
            snippet=item.get("snippet", ""),
            date=item.get("date"),
        )
        for item in data.get("organic", [])[:max_results]
    ]
