"""
Variant classification and deduplication.

Every discovery strategy funnels what it finds through a single
``VariantClassifier``. The classifier owns the "already seen" sets and the
two ranked output lists of the scan state, so classification is idempotent
per variant identifier no matter how many strategies report the same variant.
"""

from __future__ import annotations

import bisect
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from core.scan_state import ScanState
from core.types import RawProduct, RawVariant, ScanItem, parse_price

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT_TITLE = "Unknown Product"
DEFAULT_VARIANT_TITLE = "Default"

StateCallback = Callable[[ScanState], None]


def _variant_id(raw_variant: RawVariant) -> Optional[str]:
    value = raw_variant.get("id")
    if value is None or isinstance(value, bool) or value == "":
        return None
    return str(value)


class VariantClassifier:
    """Dedup store plus lowest-priced / free-item ranking for one scan."""

    def __init__(
        self,
        state: ScanState,
        *,
        lowest_priced_count: int = 10,
        lowest_priced_threshold: Decimal = Decimal("0.01"),
        free_items_threshold: Decimal = Decimal("0.01"),
        checkpoint_every: int = 1000,
        enable_analysis: bool = True,
        on_free_items: Optional[StateCallback] = None,
        on_checkpoint: Optional[StateCallback] = None,
    ):
        self.state = state
        self.lowest_priced_count = lowest_priced_count
        self.lowest_priced_threshold = Decimal(lowest_priced_threshold)
        self.free_items_threshold = Decimal(free_items_threshold)
        self.checkpoint_every = checkpoint_every
        self.enable_analysis = enable_analysis
        self.on_free_items = on_free_items
        self.on_checkpoint = on_checkpoint
        self._free_flag_raised = state.has_free_items

    @classmethod
    def from_settings(cls, state: ScanState, settings, **callbacks) -> "VariantClassifier":
        return cls(
            state,
            lowest_priced_count=settings.lowest_priced_count,
            lowest_priced_threshold=settings.lowest_priced_threshold,
            free_items_threshold=settings.free_items_threshold,
            checkpoint_every=settings.checkpoint_every,
            enable_analysis=settings.enable_variant_analysis,
            **callbacks,
        )

    def sync_with_state(self) -> None:
        """Re-read flags derived from the state after it was restored."""
        self._free_flag_raised = self.state.has_free_items

    # ------------------------------------------------------------------
    # Dedup checks
    # ------------------------------------------------------------------

    def is_known_product(self, handle: str) -> bool:
        return handle in self.state.seen_products

    def is_known_variant(self, variant_id: Any) -> bool:
        return str(variant_id) in self.state.seen_variants

    def claim_product(self, handle: Optional[str]) -> bool:
        """Mark ``handle`` as seen. Returns ``False`` if another path already claimed it."""
        if not handle or handle in self.state.seen_products:
            return False
        self.state.seen_products.add(handle)
        self.state.stats.products_found += 1
        return True

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_product(
        self,
        product: RawProduct,
        source: str,
        *,
        price_in_minor_units: bool = False,
    ) -> int:
        """Record every variant of ``product``; returns how many were new."""
        new_variants = 0
        for raw_variant in product.get("variants") or []:
            if not isinstance(raw_variant, dict):
                continue
            item = self.record_variant(
                raw_variant, product, source, price_in_minor_units=price_in_minor_units
            )
            if item is not None:
                new_variants += 1
        return new_variants

    def record_variant(
        self,
        raw_variant: RawVariant,
        raw_product: Optional[RawProduct],
        source: str,
        *,
        price_in_minor_units: bool = False,
    ) -> Optional[ScanItem]:
        """Classify a variant on first sighting; repeat sightings are ignored.

        Variants without an identifier or with an unparseable price are
        skipped without being marked as seen.
        """
        variant_id = _variant_id(raw_variant)
        if variant_id is None or variant_id in self.state.seen_variants:
            return None

        price = parse_price(raw_variant.get("price"), minor_units=price_in_minor_units)
        if price is None:
            logger.debug(f"Skipping variant {variant_id} with unusable price {raw_variant.get('price')!r}")
            return None

        product = raw_product or {}
        self.state.seen_variants.add(variant_id)
        item = self._build_item(variant_id, raw_variant, product, price, source)

        stats = self.state.stats
        stats.variants_processed += 1

        if price >= self.lowest_priced_threshold:
            self._insert_lowest(item)

        if price < self.free_items_threshold:
            self.state.free_items.append(item)
            stats.free_items_found = len(self.state.free_items)
            logger.info(f"Free item: {item.title} - {item.variant} ({item.price}) via {source}")
            if not self._free_flag_raised:
                self._free_flag_raised = True
                if self.on_free_items is not None:
                    self.on_free_items(self.state)

        if self.enable_analysis:
            self._analyze(item, raw_variant)

        if self.checkpoint_every and stats.variants_processed % self.checkpoint_every == 0:
            if self.on_checkpoint is not None:
                self.on_checkpoint(self.state)

        return item

    def _build_item(
        self,
        variant_id: str,
        raw_variant: RawVariant,
        product: RawProduct,
        price: Decimal,
        source: str,
    ) -> ScanItem:
        base_url = self.state.base_url
        title = product.get("title") or raw_variant.get("product_title") or UNKNOWN_PRODUCT_TITLE
        handle = product.get("handle") or raw_variant.get("product_handle") or ""
        return ScanItem(
            variant_id=variant_id,
            title=str(title),
            variant=str(raw_variant.get("title") or DEFAULT_VARIANT_TITLE),
            price=price,
            available=raw_variant.get("available") is not False,
            cart_url=f"{base_url}/cart/{variant_id}:1",
            product_url=f"{base_url}/products/{handle}" if handle else "",
            product_handle=str(handle),
            source=source,
            found_at=datetime.now(timezone.utc).isoformat(),
        )

    def _insert_lowest(self, item: ScanItem) -> None:
        ranked = self.state.lowest_priced
        # insort_right keeps first-seen order among equal prices
        bisect.insort_right(ranked, item, key=lambda entry: entry.price)
        if len(ranked) > self.lowest_priced_count:
            del ranked[self.lowest_priced_count :]
        self.state.stats.lowest_priced_found = bool(ranked)

    def _analyze(self, item: ScanItem, raw_variant: RawVariant) -> None:
        analysis = self.state.analysis
        handle = item.product_handle or UNKNOWN_PRODUCT_TITLE
        analysis.add_combination(
            handle,
            {
                "id": item.variant_id,
                "title": item.variant,
                "price": float(item.price),
                "available": item.available,
                "option1": raw_variant.get("option1"),
                "option2": raw_variant.get("option2"),
                "option3": raw_variant.get("option3"),
            },
        )
        analysis.add_price(item.price)

        inventory: Dict[str, Any] = {
            "quantity": raw_variant.get("inventory_quantity"),
            "policy": raw_variant.get("inventory_policy"),
            "management": raw_variant.get("inventory_management"),
        }
        if any(value is not None for value in inventory.values()):
            analysis.inventory[item.variant_id] = inventory

        self.state.stats.variant_combinations_analyzed += 1
