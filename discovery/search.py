"""Search-endpoint probing with a fixed dictionary of broad queries."""

from typing import Any, List, Optional
from urllib.parse import urlsplit

from discovery.base import DiscoveryStrategy

SEARCH_PATH = "/search.json"


def handle_from_url(url: Any) -> Optional[str]:
    if not isinstance(url, str) or "/products/" not in url:
        return None
    path = urlsplit(url).path if "://" in url else url.split("?", 1)[0].split("#", 1)[0]
    handle = path.split("/products/", 1)[-1].strip("/").split("/", 1)[0]
    return handle or None


def extract_search_handles(payload: Any) -> List[str]:
    """Product handles from any of the known search response shapes."""
    if not isinstance(payload, dict):
        return []

    entries: List[Any] = []
    if isinstance(payload.get("products"), list):
        entries = payload["products"]
    elif isinstance(payload.get("results"), list):
        entries = [
            entry
            for entry in payload["results"]
            if isinstance(entry, dict) and entry.get("object_type") == "product"
        ]
    else:
        resources = payload.get("resources")
        if isinstance(resources, dict):
            results = resources.get("results")
            if isinstance(results, dict) and isinstance(results.get("products"), list):
                entries = results["products"]

    handles: List[str] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        handle = entry.get("handle") or handle_from_url(entry.get("url"))
        if isinstance(handle, str) and handle and handle not in handles:
            handles.append(handle)
    return handles


class SearchStrategy(DiscoveryStrategy):
    name = "search"

    async def run(self) -> None:
        queries = list(self.probes.search_queries)
        results = await self.run_in_batches(
            queries,
            self.settings.search_batch_size,
            self.process_query,
            pause=self.settings.search_batch_pause_seconds,
        )
        new_products = sum(result for result in results if isinstance(result, int))
        self.logger.info(f"Search exploitation complete: {new_products} new products from {len(queries)} queries")

    async def process_query(self, query: str) -> int:
        payload = await self.scheduler.fetch_json(
            self.url(SEARCH_PATH), params={"q": query, "limit": self.settings.page_size}
        )
        handles = extract_search_handles(payload)
        if not handles:
            return 0
        return await self.resolve_handles(
            handles, f"search:{query}", self.settings.search_result_batch_size
        )
