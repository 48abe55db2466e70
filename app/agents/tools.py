from __future__ import annotations

from typing import Any, Awaitable, Callable

from app.config import settings
from app.errors import ToolExecutionFailure
from app.services.cancellation import CancellationToken
from app.services.prompt_store import render_prompt
from app.tools import search_provider
from app.tools.web_scraper import WebScraper

SEARCH_WEB = "searchWeb"
SCRAPE_PAGES = "scrapePages"

SearchFn = Callable[..., Awaitable[search_provider.SearchResponse]]


def tool_definitions() -> list[dict[str, Any]]:
    return [
        {
            "name": SEARCH_WEB,
            "description": render_prompt("tools.search_web"),
            "input_schema": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The query to search the web for.",
                    },
                },
                "required": ["query"],
            },
        },
        {
            "name": SCRAPE_PAGES,
            "description": render_prompt("tools.scrape_pages"),
            "input_schema": {
                "type": "object",
                "properties": {
                    "urls": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "The URLs to scrape.",
                    },
                },
                "required": ["urls"],
            },
        },
    ]


class ChatTools:
    """The fixed tool set offered to the chat agent."""

    def __init__(
        self,
        *,
        search: SearchFn | None = None,
        scraper: WebScraper | None = None,
        result_count: int | None = None,
    ):
        self._search = search or search_provider.search
        self._scraper = scraper or WebScraper()
        self.result_count = result_count or settings.search_result_count
        self.definitions = tool_definitions()

    async def execute(
        self,
        tool_name: str,
        args: dict[str, Any],
        cancel: CancellationToken,
    ) -> Any:
        cancel.raise_if_cancelled()
        if tool_name == SEARCH_WEB:
            return await self._search_web(args, cancel)
        if tool_name == SCRAPE_PAGES:
            return await self._scrape_pages(args, cancel)
        raise ToolExecutionFailure(f"Unknown tool: {tool_name}", kind="unknown_tool")

    async def _search_web(self, args: dict[str, Any], cancel: CancellationToken) -> list[dict]:
        query = args.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ToolExecutionFailure("searchWeb requires a non-empty 'query' string", kind="invalid_arguments")

        response = await self._search(query.strip(), max_results=self.result_count, cancel=cancel)
        return search_provider.results_to_dicts(response.results)

    async def _scrape_pages(self, args: dict[str, Any], cancel: CancellationToken) -> dict[str, Any]:
        urls = args.get("urls")
        if isinstance(urls, str):
            urls = [urls]
        if not isinstance(urls, list) or not urls or not all(isinstance(u, str) for u in urls):
            raise ToolExecutionFailure("scrapePages requires a non-empty 'urls' list of strings", kind="invalid_arguments")

        bulk = await self._scraper.scrape_many(urls, cancel=cancel)
        payload: dict[str, Any] = {
            "success": bulk.success,
            "results": [
                {
                    "url": url,
                    "success": outcome.success,
                    "data": outcome.data if outcome.success else _describe_failure(outcome.error, outcome.detail),
                }
                for url, outcome in bulk.results.items()
            ],
        }
        if not bulk.success:
            payload["error"] = bulk.error
        return payload


def _describe_failure(kind: str | None, detail: str | None) -> str:
    if detail:
        return f"{kind}: {detail}"
    return kind or "unknown error"
