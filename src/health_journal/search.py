# search.py
# Web search providers. Both return SearchResult lists and raise SearchError
# on provider failure; an empty list means the query simply found nothing.

import httpx

from health_journal.config import Settings
from health_journal.errors import SearchError
from health_journal.models import SearchResult

GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"


class GoogleSearch:
    """Google Custom Search JSON API."""

    def __init__(
        self,
        api_key: str,
        cse_id: str,
        max_results: int = 5,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._cse_id = cse_id
        self._max_results = max_results
        self._client = client or httpx.Client(timeout=15)

    def search(self, query: str) -> list[SearchResult]:
        query = query.strip()
        if not query:
            raise SearchError("no query provided")
        try:
            response = self._client.get(
                GOOGLE_CSE_URL,
                params={
                    "key": self._api_key,
                    "cx": self._cse_id,
                    "q": query,
                    "num": self._max_results,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SearchError(f"Google search failed for {query!r}: {exc}") from exc

        items = response.json().get("items") or []
        return [
            SearchResult(
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
                link=item.get("link", ""),
            )
            for item in items
        ]


class DuckDuckGoSearch:
    """Keyless fallback provider backed by ddgs."""

    def __init__(self, max_results: int = 5) -> None:
        self._max_results = max_results

    def search(self, query: str) -> list[SearchResult]:
        from ddgs import DDGS

        query = query.strip()
        if not query:
            raise SearchError("no query provided")
        try:
            # Coerce the generator to a list to ensure actual execution
            results = list(DDGS().text(query, max_results=self._max_results))
        except Exception as exc:
            raise SearchError(f"Search failed for {query!r}: {exc}") from exc

        return [
            SearchResult(
                title=r.get("title", ""),
                snippet=r.get("body", ""),
                link=r.get("href", ""),
            )
            for r in results
        ]


def build_search(settings: Settings) -> GoogleSearch | DuckDuckGoSearch:
    if settings.google_api_key and settings.google_cse_id:
        return GoogleSearch(settings.google_api_key, settings.google_cse_id)
    return DuckDuckGoSearch()
