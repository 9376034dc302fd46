"""Catalog pagination over ``/products.json``, unsorted and per sort order."""

import asyncio
from typing import Dict

from discovery.base import DiscoveryStrategy, PaginationResult

PRODUCTS_PATH = "/products.json"


class CatalogStrategy(DiscoveryStrategy):
    """Standard walk plus one independent walk per configured sort order.

    All walks run concurrently; the shared classifier sorts out the heavy
    overlap between them.
    """

    name = "catalog"

    async def run(self) -> None:
        walks = [self.walk_standard()]
        walks.extend(self.walk_sorted(order) for order in self.probes.sort_orders)
        results = await asyncio.gather(*walks, return_exceptions=True)

        summary: Dict[str, int] = {}
        labels = ["standard", *self.probes.sort_orders]
        for label, outcome in zip(labels, results):
            if isinstance(outcome, BaseException):
                self.logger.error(f"Catalog walk {label} failed: {outcome}", exc_info=outcome)
                continue
            summary[label] = outcome.pages_requested
        self.logger.info(
            f"Catalog pagination done: {self.state.stats.products_found} products, pages per walk {summary}"
        )

    async def walk_standard(self) -> PaginationResult:
        return await self.paginate(
            PRODUCTS_PATH,
            source="products.json",
            max_pages=self.settings.max_product_pages_standard,
            empty_page_limit=self.settings.consecutive_empty_product_pages,
        )

    async def walk_sorted(self, sort_order: str) -> PaginationResult:
        return await self.paginate(
            PRODUCTS_PATH,
            source=f"products.json?sort_by={sort_order}",
            max_pages=self.settings.max_product_pages_sorted,
            empty_page_limit=self.settings.consecutive_empty_product_pages,
            params={"sort_by": sort_order},
        )
