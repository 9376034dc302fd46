"""Cart/config endpoint scraping for embedded variant identifiers."""

import re
from typing import Iterable, List, Pattern

from discovery.base import DiscoveryStrategy

LONG_ID_PATTERN = re.compile(r"\b(\d{11,15})\b")
MIN_KEYED_ID_LENGTH = 10


def keyed_id_pattern(keys: Iterable[str]) -> Pattern[str]:
    names = "|".join(re.escape(key) for key in keys)
    return re.compile(rf'"(?:{names})"\s*:\s*"?(\d+)')


def extract_candidate_ids(content: str, gwp_markers: Iterable[str], id_keys: Iterable[str]) -> List[str]:
    """Variant ID candidates found in a raw response body, in first-seen order.

    Keyed IDs are only considered when the body carries a gift-with-purchase
    marker; bare 11-15 digit tokens are always candidates.
    """
    candidates: List[str] = []
    if any(marker in content for marker in gwp_markers):
        for match in keyed_id_pattern(id_keys).finditer(content):
            candidate = match.group(1)
            if len(candidate) >= MIN_KEYED_ID_LENGTH:
                candidates.append(candidate)
    candidates.extend(LONG_ID_PATTERN.findall(content))
    return list(dict.fromkeys(candidates))


class CartStrategy(DiscoveryStrategy):
    name = "cart"

    async def run(self) -> None:
        endpoints = list(self.probes.cart_endpoints)
        results = await self.run_in_batches(endpoints, len(endpoints) or 1, self.process_endpoint)
        found = sum(result for result in results if isinstance(result, int))
        self.logger.info(f"Cart endpoint scanning complete: {found} new variants")

    async def process_endpoint(self, endpoint: str) -> int:
        body = await self.scheduler.fetch_text(self.url(endpoint))
        if not body:
            return 0
        if any(marker in body for marker in self.probes.gwp_markers):
            self.logger.info(f"Found GWP campaign data in {endpoint}")
        candidates = [
            candidate
            for candidate in extract_candidate_ids(body, self.probes.gwp_markers, self.probes.variant_id_keys)
            if not self.classifier.is_known_variant(candidate)
        ]
        if not candidates:
            return 0
        results = await self.run_in_batches(
            candidates,
            self.settings.variant_probe_batch_size,
            lambda variant_id: self.probe_variant(variant_id, f"cart:{endpoint}"),
        )
        return sum(1 for result in results if result)

    async def probe_variant(self, variant_id: str, source: str) -> bool:
        """Look up one variant through the single-variant endpoint and classify it."""
        if self.classifier.is_known_variant(variant_id):
            return False
        payload = await self.scheduler.fetch_json(self.url(f"/variants/{variant_id}.js"))
        if not isinstance(payload, dict) or payload.get("id") is None:
            return False
        product = {
            "title": payload.get("product_title"),
            "handle": payload.get("product_handle") or "",
        }
        item = self.classifier.record_variant(payload, product, source, price_in_minor_units=True)
        return item is not None
