"""
Core data types shared by the scanner components.

Contains the variant record, statistics, phase identifiers, the public
scan result/failure shapes and progress reporting primitives.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

RawProduct = Dict[str, Any]
RawVariant = Dict[str, Any]

MINOR_UNIT_FACTOR = Decimal(100)


def parse_price(value: Any, minor_units: bool = False) -> Optional[Decimal]:
    """Parse a remote price field into decimal currency.

    ``minor_units`` marks payloads (the ``.js`` endpoints) that report integer
    cents instead of a decimal string.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite():
        return None
    if minor_units:
        price = price / MINOR_UNIT_FACTOR
    return price


# ============================================================================
# Variant records
# ============================================================================


@dataclass(frozen=True)
class ScanItem:
    """One classified variant as it appears in the output lists."""

    variant_id: str
    title: str
    variant: str
    price: Decimal
    available: bool
    cart_url: str
    product_url: str
    product_handle: str
    source: str
    found_at: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price"] = float(self.price)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanItem":
        return cls(
            variant_id=str(data["variant_id"]),
            title=data.get("title") or "",
            variant=data.get("variant") or "",
            price=Decimal(str(data["price"])),
            available=bool(data.get("available", True)),
            cart_url=data.get("cart_url", ""),
            product_url=data.get("product_url", ""),
            product_handle=data.get("product_handle", ""),
            source=data.get("source", ""),
            found_at=data.get("found_at", ""),
        )


# ============================================================================
# Phases and statistics
# ============================================================================


class Phase(str, Enum):
    """Scan state machine phases."""

    INITIALIZING = "initializing"
    RESOLVING = "resolving"
    SITEMAP = "sitemap"
    CATALOG = "catalog"
    COLLECTIONS = "collections"
    SEARCH = "search"
    CART = "cart"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class ScanStats:
    variants_processed: int = 0
    products_found: int = 0
    collections_found: int = 0
    free_items_found: int = 0
    lowest_priced_found: bool = False
    total_requests: int = 0
    sitemap_urls_found: int = 0
    discontinued_products_found: int = 0
    variant_combinations_analyzed: int = 0
    checkpoints_saved: int = 0
    current_phase: str = Phase.INITIALIZING.value
    start_time: float = field(default_factory=time.time)
    last_checkpoint: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanStats":
        known = {key: value for key, value in data.items() if key in cls.__dataclass_fields__}
        return cls(**known)


# ============================================================================
# Public result shapes
# ============================================================================


class FailureReason(str, Enum):
    INVALID_DOMAIN = "invalid domain format"
    NO_STOREFRONT = "no reachable storefront found"
    STOPPED = "scan stopped before a storefront was resolved"


@dataclass
class ScanFailure:
    reason: FailureReason
    target: str
    success: bool = False

    @property
    def error(self) -> str:
        return self.reason.value

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, "target": self.target}


@dataclass
class ScanResult:
    domain: str
    scanned_url: str
    free_items_found: int
    free_items: List[ScanItem]
    lowest_priced_items: List[ScanItem]
    stats: Dict[str, Any]
    output_file: Optional[str]
    csv_file: Optional[str]
    checkpoint_file: Optional[str]
    duration_seconds: float
    stopped_early: bool = False
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "domain": self.domain,
            "scanned_url": self.scanned_url,
            "free_items_found": self.free_items_found,
            "free_items": [item.to_dict() for item in self.free_items],
            "lowest_priced_items": [item.to_dict() for item in self.lowest_priced_items],
            "stats": self.stats,
            "output_file": self.output_file,
            "csv_file": self.csv_file,
            "checkpoint_file": self.checkpoint_file,
            "duration_seconds": self.duration_seconds,
            "stopped_early": self.stopped_early,
        }


ScanOutcome = Union[ScanResult, ScanFailure]


# ============================================================================
# Progress reporting primitives
# ============================================================================


@dataclass
class ProgressEvent:
    """Represents a progress update emitted during scanning."""

    phase: str
    current: int
    total: int
    message: Optional[str] = None


ProgressCallback = Callable[["ProgressEvent"], None]
