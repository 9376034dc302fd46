"""
Mutable per-target scan state.

One ``ScanState`` is created per scan invocation and owned by that scan's
classifier; nothing here is shared across targets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, List, Set

from core.types import ScanItem, ScanStats

CHECKPOINT_VERSION = 1


@dataclass
class VariantAnalysis:
    """Auxiliary variant/price/inventory index used only for reporting."""

    variant_combinations: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    price_patterns: Dict[str, int] = field(default_factory=dict)
    inventory: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    discontinued_products: Set[str] = field(default_factory=set)

    def add_combination(self, handle: str, combination: Dict[str, Any]) -> None:
        self.variant_combinations.setdefault(handle, []).append(combination)

    def add_price(self, price: Decimal) -> None:
        key = str(price.quantize(Decimal("0.01"), rounding=ROUND_FLOOR))
        self.price_patterns[key] = self.price_patterns.get(key, 0) + 1

    def top_price_patterns(self, limit: int = 10) -> List[tuple]:
        return sorted(self.price_patterns.items(), key=lambda kv: (-kv[1], Decimal(kv[0])))[:limit]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_combinations": self.variant_combinations,
            "price_patterns": self.price_patterns,
            "inventory": self.inventory,
            "discontinued_products": sorted(self.discontinued_products),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantAnalysis":
        return cls(
            variant_combinations={k: list(v) for k, v in (data.get("variant_combinations") or {}).items()},
            price_patterns={k: int(v) for k, v in (data.get("price_patterns") or {}).items()},
            inventory=dict(data.get("inventory") or {}),
            discontinued_products=set(data.get("discontinued_products") or []),
        )


@dataclass
class ScanState:
    domain: str
    base_url: str
    stats: ScanStats = field(default_factory=ScanStats)
    seen_products: Set[str] = field(default_factory=set)
    seen_variants: Set[str] = field(default_factory=set)
    collections: Set[str] = field(default_factory=set)
    sitemap_urls: Set[str] = field(default_factory=set)
    lowest_priced: List[ScanItem] = field(default_factory=list)
    free_items: List[ScanItem] = field(default_factory=list)
    analysis: VariantAnalysis = field(default_factory=VariantAnalysis)

    @property
    def has_free_items(self) -> bool:
        return bool(self.free_items)

    def to_dict(self) -> Dict[str, Any]:
        """Checkpoint payload; sets are written sorted so snapshots diff cleanly."""
        return {
            "version": CHECKPOINT_VERSION,
            "domain": self.domain,
            "base_url": self.base_url,
            "stats": self.stats.to_dict(),
            "seen_products": sorted(self.seen_products),
            "seen_variants": sorted(self.seen_variants),
            "collections": sorted(self.collections),
            "sitemap_urls": sorted(self.sitemap_urls),
            "lowest_priced": [item.to_dict() for item in self.lowest_priced],
            "free_items": [item.to_dict() for item in self.free_items],
            "analysis": self.analysis.to_dict(),
        }

    def restore(self, payload: Dict[str, Any]) -> None:
        """Replace this state's contents with a checkpoint payload."""
        self.stats = ScanStats.from_dict(payload.get("stats") or {})
        self.seen_products = set(payload.get("seen_products") or [])
        self.seen_variants = {str(v) for v in payload.get("seen_variants") or []}
        self.collections = set(payload.get("collections") or [])
        self.sitemap_urls = set(payload.get("sitemap_urls") or [])
        self.lowest_priced = [ScanItem.from_dict(item) for item in payload.get("lowest_priced") or []]
        self.free_items = [ScanItem.from_dict(item) for item in payload.get("free_items") or []]
        self.analysis = VariantAnalysis.from_dict(payload.get("analysis") or {})
        if payload.get("base_url"):
            self.base_url = payload["base_url"]
