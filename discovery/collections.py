"""Collection traversal: listed collections plus probed guesses for hidden ones."""

from typing import List

from discovery.base import DiscoveryStrategy, extract_products

COLLECTIONS_PATH = "/collections.json"


class CollectionStrategy(DiscoveryStrategy):
    name = "collections"

    async def run(self) -> None:
        await self.list_collections()
        await self.discover_hidden_collections()

        handles = sorted(self.state.collections)
        self.logger.info(f"Paginating {len(handles)} collections")
        await self.run_in_batches(handles, self.settings.collection_batch_size, self.scan_collection)
        self.logger.info(
            f"Collection scanning complete: {self.state.stats.collections_found} collections found"
        )

    def _add_collection(self, handle: str) -> bool:
        if not handle or handle in self.state.collections:
            return False
        self.state.collections.add(handle)
        self.state.stats.collections_found += 1
        return True

    async def list_collections(self) -> List[str]:
        """Collections advertised by the listing endpoint."""
        payload = await self.scheduler.fetch_json(self.url(COLLECTIONS_PATH))
        listed: List[str] = []
        if not isinstance(payload, dict) or not isinstance(payload.get("collections"), list):
            return listed
        for collection in payload["collections"]:
            if not isinstance(collection, dict):
                continue
            handle = collection.get("handle")
            if isinstance(handle, str) and self._add_collection(handle):
                listed.append(handle)
        self.logger.debug(f"Listed collections: {len(listed)}")
        return listed

    async def collection_exists(self, handle: str) -> bool:
        """Existence probe: a one-product page that actually contains a product."""
        if handle in self.state.collections:
            return False
        payload = await self.scheduler.fetch_json(
            self.url(f"/collections/{handle}/products.json"), params={"limit": 1}
        )
        return bool(extract_products(payload))

    async def discover_hidden_collections(self) -> List[str]:
        guesses = [handle for handle in self.probes.collection_guesses if handle not in self.state.collections]
        outcomes = await self.run_in_batches(guesses, self.settings.collection_batch_size, self.collection_exists)
        found: List[str] = []
        for handle, exists in zip(guesses, outcomes):
            if exists and self._add_collection(handle):
                found.append(handle)
                self.logger.info(f"Found hidden collection: {handle}")
        return found

    async def scan_collection(self, handle: str) -> int:
        result = await self.paginate(
            f"/collections/{handle}/products.json",
            source=f"collection:{handle}",
            max_pages=self.settings.max_collection_pages,
            empty_page_limit=self.settings.consecutive_empty_collection_pages,
        )
        return result.new_products
