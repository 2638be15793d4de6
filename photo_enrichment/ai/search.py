from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

CUSTOM_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"


class SearchError(Exception):
    """Web search failed or is not configured."""


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WebSearchClient:
    """Google Custom Search JSON API."""

    def __init__(self, api_key: str, cx: str, http: httpx.AsyncClient, max_results: int = 5) -> None:
        self.api_key = api_key
        self.cx = cx
        self.http = http
        self.max_results = max_results

    async def search(self, query: str, max_results: Optional[int] = None) -> List[SearchResult]:
        if not self.api_key or not self.cx:
            raise SearchError("web search is not configured")

        num = max(1, min(10, max_results or self.max_results))
        try:
            response = await self.http.get(
                CUSTOM_SEARCH_URL,
                params={"key": self.api_key, "cx": self.cx, "q": query, "num": num},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SearchError(str(e)) from e

        results = []
        for item in (data.get("items") or [])[:num]:
            results.append(
                SearchResult(
                    title=item.get("title") or "",
                    url=item.get("link") or "",
                    snippet=item.get("snippet") or "",
                    source=item.get("displayLink") or "",
                )
            )
        logger.debug("search %r -> %d result(s)", query, len(results))
        return results


def format_search_results(query: str, results: List[SearchResult]) -> str:
    if not results:
        return f"Query: {query}\n(no results)"
    lines = [f"Query: {query}"]
    for i, r in enumerate(results, 1):
        lines.append(f"{i}. {r.title} ({r.source})\n   {r.url}\n   {r.snippet}")
    return "\n".join(lines)
