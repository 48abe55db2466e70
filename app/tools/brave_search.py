from __future__ import annotations

from typing import Any

import httpx

from app.config import settings
from app.errors import SearchProviderError
from app.services.cancellation import CancellationToken
from app.tools.serper_search import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


async def search(
    query: str,
    *,
    max_results: int = 10,
    cancel: CancellationToken | None = None,
) -> list[SearchResult]:
    """Execute a Brave web search and normalize results."""
    if not settings.brave_api_key:
        raise SearchProviderError("brave", "BRAVE_API_KEY is not configured")

    params: dict[str, Any] = {
        "q": query,
        "count": max_results,
    }

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            request = client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": settings.brave_api_key,
                },
            )
            response = await (cancel.run(request) if cancel else request)
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as exc:
        raise SearchProviderError(
            "brave",
            f"HTTP {exc.response.status_code}",
            status_code=exc.response.status_code,
        ) from exc
    except httpx.HTTPError as exc:
        raise SearchProviderError("brave", f"request failed: {exc}") from exc

    mapped: list[SearchResult] = []
    for item in payload.get("web", {}).get("results", [])[:max_results]:
        snippets = item.get("extra_snippets", []) or []
        description = item.get("description", "") or ""
        mapped.append(
            SearchResult(
                title=item.get("title", ""),
                link=item.get("url", ""),
                snippet=description.strip() or " ".join(snippets).strip(),
                # Brave reports relative ages ("2 days ago") when page_age is absent.
                date=item.get("page_age") or item.get("age"),
            )
        )
    return mapped
