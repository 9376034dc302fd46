"""
Shared plumbing for discovery strategies.

A strategy only knows how to find candidate products or variants; fetching
goes through the shared ``RequestScheduler`` and every finding is handed to
the shared ``VariantClassifier``, which decides whether it is new.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from core.cancellation import ScanControl
from core.classifier import VariantClassifier
from core.product_cache import ProductCache
from core.scan_state import ScanState
from core.types import ProgressCallback, ProgressEvent, RawProduct, parse_price
from network.request_scheduler import RequestScheduler
from utils.config_loader import ProbeDictionaries, ScannerSettings

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class DiscoveryContext:
    """Everything a strategy needs for one target; built once per scan."""

    base_url: str
    scheduler: RequestScheduler
    classifier: VariantClassifier
    cache: ProductCache
    control: ScanControl
    settings: ScannerSettings
    probes: ProbeDictionaries
    progress_callback: Optional[ProgressCallback] = None

    @property
    def state(self) -> ScanState:
        return self.classifier.state


@dataclass
class PaginationResult:
    pages_requested: int = 0
    products_seen: int = 0
    new_products: int = 0
    stopped_by: str = "max_pages"


def extract_products(payload: Any) -> List[RawProduct]:
    """Pull the ``products`` list out of a listing response, tolerating junk."""
    if not isinstance(payload, dict):
        return []
    products = payload.get("products")
    if not isinstance(products, list):
        return []
    return [product for product in products if isinstance(product, dict)]


def normalize_minor_unit_product(product: RawProduct) -> RawProduct:
    """Return a copy of a ``.js`` product body with decimal variant prices."""
    normalized = dict(product)
    variants = []
    for variant in product.get("variants") or []:
        if not isinstance(variant, dict):
            continue
        converted = dict(variant)
        price = parse_price(variant.get("price"), minor_units=True)
        converted["price"] = str(price) if price is not None else None
        variants.append(converted)
    normalized["variants"] = variants
    return normalized


class DiscoveryStrategy(ABC):
    """Base class for the independent producers of candidate variants."""

    name = "discovery"

    def __init__(self, context: DiscoveryContext):
        self.context = context
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    @property
    def base_url(self) -> str:
        return self.context.base_url

    @property
    def scheduler(self) -> RequestScheduler:
        return self.context.scheduler

    @property
    def classifier(self) -> VariantClassifier:
        return self.context.classifier

    @property
    def settings(self) -> ScannerSettings:
        return self.context.settings

    @property
    def probes(self) -> ProbeDictionaries:
        return self.context.probes

    @property
    def control(self) -> ScanControl:
        return self.context.control

    @property
    def state(self) -> ScanState:
        return self.context.state

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @abstractmethod
    async def run(self) -> None:
        """Run the strategy to completion (or until the scan is stopped)."""

    async def should_continue(self) -> bool:
        """Suspension point checked at the top of every loop iteration."""
        return await self.control.wait_if_paused()

    def emit_progress(self, current: int, total: int, message: Optional[str] = None) -> None:
        callback = self.context.progress_callback
        if callback is None:
            return
        try:
            callback(ProgressEvent(phase=self.name, current=current, total=total, message=message))
        except Exception as exc:  # noqa: BLE001
            self.logger.debug(f"Progress callback failed: {exc}")

    # ------------------------------------------------------------------
    # Product ingestion
    # ------------------------------------------------------------------

    def ingest_products(self, products: Iterable[RawProduct], source: str) -> int:
        """Classify the variants of each product; returns how many products were new.

        A product is new when its handle had not been claimed yet, or, for
        handle-less payloads, when it contributed at least one new variant.
        """
        new_products = 0
        for product in products:
            handle = product.get("handle")
            if handle:
                self.context.cache.put(self.base_url, handle, product)
                if not self.classifier.claim_product(handle):
                    continue
                self.classifier.record_product(product, source)
                new_products += 1
            elif self.classifier.record_product(product, source):
                new_products += 1
        return new_products

    async def fetch_product_by_handle(self, handle: str) -> Optional[RawProduct]:
        """Full product body for ``handle``, served from the cache when possible."""
        cached = self.context.cache.get(self.base_url, handle)
        if cached is not None:
            return cached
        payload = await self.scheduler.fetch_json(self.url(f"/products/{handle}.js"))
        if not isinstance(payload, dict) or not isinstance(payload.get("variants"), list):
            return None
        product = normalize_minor_unit_product(payload)
        product.setdefault("handle", handle)
        self.context.cache.put(self.base_url, handle, product)
        return product

    async def resolve_handles(self, handles: Sequence[str], source: str, batch_size: int) -> int:
        """Fetch and classify products for handles nobody has claimed yet."""
        pending = [handle for handle in dict.fromkeys(handles) if handle and not self.classifier.is_known_product(handle)]

        async def resolve(handle: str) -> int:
            if self.classifier.is_known_product(handle):
                return 0
            product = await self.fetch_product_by_handle(handle)
            if product is None:
                return 0
            return self.ingest_products([product], source)

        results = await self.run_in_batches(pending, batch_size, resolve)
        return sum(result for result in results if isinstance(result, int))

    # ------------------------------------------------------------------
    # Iteration helpers
    # ------------------------------------------------------------------

    async def paginate(
        self,
        path: str,
        *,
        source: str,
        max_pages: int,
        empty_page_limit: int,
        params: Optional[Mapping[str, Any]] = None,
    ) -> PaginationResult:
        """Walk ``?page=1..max_pages`` until too many consecutive pages add nothing new."""
        result = PaginationResult()
        consecutive_empty = 0
        page = 1
        while page <= max_pages and consecutive_empty < empty_page_limit:
            if not await self.should_continue():
                result.stopped_by = "stopped"
                return result
            query: Dict[str, Any] = {"limit": self.settings.page_size, "page": page}
            if params:
                query.update(params)
            payload = await self.scheduler.fetch_json(self.url(path), params=query)
            result.pages_requested += 1
            products = extract_products(payload)
            new_products = self.ingest_products(products, source) if products else 0
            result.products_seen += len(products)
            result.new_products += new_products
            if new_products == 0:
                consecutive_empty += 1
            else:
                consecutive_empty = 0
            page += 1
        if consecutive_empty >= empty_page_limit:
            result.stopped_by = "empty_pages"
        self.logger.debug(
            f"{path} {dict(params or {})}: {result.pages_requested} pages, "
            f"{result.new_products} new products ({result.stopped_by})"
        )
        return result

    async def run_in_batches(
        self,
        items: Sequence[T],
        batch_size: int,
        worker: Callable[[T], Awaitable[R]],
        *,
        pause: float = 0.0,
    ) -> List[Optional[R]]:
        """Run ``worker`` over ``items`` in concurrent batches, one batch at a time.

        Exceptions raised by a worker are logged and stored as ``None``; they
        never escape the batch.
        """
        results: List[Optional[R]] = []
        batch_size = max(1, batch_size)
        for start in range(0, len(items), batch_size):
            if not await self.should_continue():
                break
            batch = items[start : start + batch_size]
            outcomes = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    self.logger.error(f"{self.name} worker failed for {item!r}: {outcome}", exc_info=outcome)
                    results.append(None)
                else:
                    results.append(outcome)
            self.emit_progress(min(start + batch_size, len(items)), len(items))
            if pause and start + batch_size < len(items):
                await asyncio.sleep(pause)
        return results
