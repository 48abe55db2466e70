from __future__ import annotations

from dataclasses import dataclass

from app.config import settings
from app.services.cancellation import CancellationToken
from app.tools import brave_search, serper_search
from app.tools.serper_search import SearchResult


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str


async def search(
    query: str,
    *,
    max_results: int = 10,
    cancel: CancellationToken | None = None,
) -> SearchResponse:
    """Dispatch to the configured provider. Failures propagate; no retries here."""
    provider = settings.search_provider.lower().strip()

    if provider == "serper":
        results = await serper_search.search(query, max_results=max_results, cancel=cancel)
        return SearchResponse(results=results, provider="serper")

    if provider == "brave":
        results = await brave_search.search(query, max_results=max_results, cancel=cancel)
        return SearchResponse(results=results, provider="brave")

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


def results_to_dicts(results: list[SearchResult]) -> list[dict]:
    """Convert SearchResult list to the JSON shape handed to the model."""
    return [
        {"title": r.title, "link": r.link, "snippet": r.snippet, "date": r.date}
        for r in results
    ]
