"""Sitemap parsing with existence checks for products not seen elsewhere."""

import xml.etree.ElementTree as ET
from typing import List, Optional, Tuple

from discovery.base import DiscoveryStrategy
from discovery.search import handle_from_url

HANDLE_CHECK_BATCH_SIZE = 10


def parse_sitemap(xml_content: str) -> Tuple[Optional[str], List[str]]:
    """Return the root tag (``urlset``/``sitemapindex``) and every ``<loc>`` value.

    Namespaces are stripped. Malformed XML yields ``(None, [])``.
    """
    try:
        root = ET.fromstring(xml_content.strip())
    except ET.ParseError:
        return None, []

    for elem in root.iter():
        if isinstance(elem.tag, str) and "}" in elem.tag:
            elem.tag = elem.tag.split("}", 1)[1]

    if root.tag == "sitemapindex":
        entries = root.findall("./sitemap/loc")
    elif root.tag == "urlset":
        entries = root.findall("./url/loc")
    else:
        return root.tag, []
    return root.tag, [loc.text.strip() for loc in entries if loc.text and loc.text.strip()]


class SitemapStrategy(DiscoveryStrategy):
    name = "sitemap"

    async def run(self) -> None:
        sitemap_urls = [self.url(path) for path in self.probes.sitemap_paths]
        await self.run_in_batches(sitemap_urls, self.settings.sitemap_batch_size, self.process_sitemap)
        self.logger.info(
            f"Sitemap parsing complete: {self.state.stats.sitemap_urls_found} URLs found, "
            f"{self.state.stats.discontinued_products_found} discontinued"
        )

    async def process_sitemap(self, sitemap_url: str, follow_index: bool = True) -> int:
        body = await self.scheduler.fetch_text(sitemap_url)
        if not body:
            return 0
        root_tag, locations = parse_sitemap(body)
        if root_tag is None:
            self.logger.debug(f"Sitemap XML parsing error: {sitemap_url}")
            return 0

        if root_tag == "sitemapindex":
            if not follow_index:
                return 0
            children = [loc for loc in locations if "product" in loc.lower()]
            self.logger.debug(f"{sitemap_url}: index with {len(children)} product sitemaps")
            counts = await self.run_in_batches(
                children,
                self.settings.sitemap_batch_size,
                lambda child: self.process_sitemap(child, follow_index=False),
            )
            return sum(count for count in counts if isinstance(count, int))

        # Recorded locations only feed the counter; the seen-product set
        # decides what still needs fetching, so a resumed scan retries them.
        handles: List[str] = []
        for location in locations:
            if location not in self.state.sitemap_urls:
                self.state.sitemap_urls.add(location)
                self.state.stats.sitemap_urls_found += 1
            handle = handle_from_url(location)
            if handle and handle not in handles:
                handles.append(handle)

        pending = [handle for handle in handles if not self.classifier.is_known_product(handle)]
        results = await self.run_in_batches(pending, HANDLE_CHECK_BATCH_SIZE, self.check_and_fetch)
        return sum(result for result in results if isinstance(result, int))

    async def product_available(self, handle: str) -> bool:
        if self.context.cache.contains(self.base_url, handle):
            return True
        return await self.scheduler.probe(self.url(f"/products/{handle}"))

    async def check_and_fetch(self, handle: str) -> int:
        if self.classifier.is_known_product(handle):
            return 0
        if not await self.product_available(handle):
            analysis = self.state.analysis
            if handle not in analysis.discontinued_products:
                analysis.discontinued_products.add(handle)
                self.state.stats.discontinued_products_found += 1
            return 0
        product = await self.fetch_product_by_handle(handle)
        if product is None:
            return 0
        return self.ingest_products([product], "sitemap")
