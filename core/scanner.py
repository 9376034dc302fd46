"""
Per-target scan driver.

``StoreScanner`` owns the state, classifier, checkpoint store and result
persistence of one resolved storefront and runs the discovery phases in
order: sitemap, catalog, collections, search, cart.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Type

from core.cancellation import ScanControl
from core.checkpoint import CheckpointStore
from core.classifier import VariantClassifier
from core.persistence import PersistedResults, ResultPersistence
from core.product_cache import ProductCache
from core.scan_state import ScanState
from core.types import Phase, ProgressCallback, ProgressEvent, ScanResult
from discovery.base import DiscoveryContext, DiscoveryStrategy
from discovery.cart import CartStrategy
from discovery.catalog import CatalogStrategy
from discovery.collections import CollectionStrategy
from discovery.search import SearchStrategy
from discovery.sitemap import SitemapStrategy
from network.request_scheduler import RequestScheduler
from utils.config_loader import ProbeDictionaries, ScannerSettings
from utils.data_paths import ScanPaths
from utils.logger import colored_print, log_scan_event
from utils.scan_tracking import ScanTracker

logger = logging.getLogger(__name__)


class StoreScanner:
    """Runs every discovery phase against one resolved base URL."""

    def __init__(
        self,
        domain: str,
        base_url: str,
        *,
        scheduler: RequestScheduler,
        paths: ScanPaths,
        settings: ScannerSettings,
        probes: Optional[ProbeDictionaries] = None,
        cache: Optional[ProductCache] = None,
        control: Optional[ScanControl] = None,
        progress_callback: Optional[ProgressCallback] = None,
        started_at: Optional[datetime] = None,
    ):
        self.domain = domain
        self.base_url = base_url.rstrip("/")
        self.scheduler = scheduler
        self.paths = paths
        self.settings = settings
        self.probes = probes or ProbeDictionaries()
        self.cache = cache if cache is not None else ProductCache(settings.product_cache_size)
        self.control = control or scheduler.control
        self.progress_callback = progress_callback
        self.started_at = started_at or datetime.now()

        self.state = ScanState(domain=domain, base_url=self.base_url)
        self.checkpoints = CheckpointStore(paths.checkpoint_path) if settings.enable_checkpoints else None
        self.classifier = VariantClassifier.from_settings(
            self.state,
            settings,
            on_free_items=self._on_free_items,
            on_checkpoint=self._on_checkpoint_due,
        )
        tracker = ScanTracker(paths.history_csv, paths.summary_csv) if settings.enable_site_tracking else None
        self.persistence = ResultPersistence(
            paths,
            tracker=tracker,
            include_analysis=settings.enable_variant_analysis,
            excel=settings.enable_excel_export,
        )
        self.context = DiscoveryContext(
            base_url=self.base_url,
            scheduler=scheduler,
            classifier=self.classifier,
            cache=self.cache,
            control=self.control,
            settings=settings,
            probes=self.probes,
            progress_callback=progress_callback,
        )
        self.persisted: Optional[PersistedResults] = None

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def phases(self) -> List[Tuple[Phase, Type[DiscoveryStrategy]]]:
        settings = self.settings
        plan: List[Tuple[Phase, Type[DiscoveryStrategy], bool]] = [
            (Phase.SITEMAP, SitemapStrategy, settings.enable_sitemap_parsing),
            (Phase.CATALOG, CatalogStrategy, True),
            (Phase.COLLECTIONS, CollectionStrategy, True),
            (Phase.SEARCH, SearchStrategy, settings.enable_search_exploitation),
            (Phase.CART, CartStrategy, settings.enable_cart_scraping),
        ]
        return [(phase, strategy) for phase, strategy, enabled in plan if enabled]

    async def run_full_scan(self) -> ScanResult:
        started = time.monotonic()
        if self.settings.resume_from_checkpoint:
            self.load_checkpoint()

        phases = self.phases()
        for index, (phase, strategy_cls) in enumerate(phases, start=1):
            if self.control.stopped:
                logger.info("Stop requested, skipping remaining phases")
                break
            self._enter_phase(phase, index, len(phases))
            strategy = strategy_cls(self.context)
            try:
                await strategy.run()
            except Exception:
                logger.exception("%s phase failed for %s", phase.value, self.domain)
            self._sync_request_stats()

        await self.scheduler.drain()
        self._sync_request_stats()

        self._enter_phase(Phase.PERSISTING, len(phases), len(phases))
        self.save_checkpoint()
        self.persisted = self.save_all_results()
        self._enter_phase(Phase.DONE, len(phases), len(phases))

        duration = round(time.monotonic() - started, 2)
        self._announce_summary(duration)
        return self.build_result(duration)

    def _enter_phase(self, phase: Phase, current: int, total: int) -> None:
        self.state.stats.current_phase = phase.value
        log_scan_event(
            logger, "phase", f"Phase {phase.value} for {self.base_url}", phase=phase.value, domain=self.domain
        )
        if self.progress_callback is not None:
            try:
                self.progress_callback(ProgressEvent(phase=phase.value, current=current, total=total))
            except Exception as exc:  # noqa: BLE001
                logger.debug("Progress callback failed: %s", exc)

    def _sync_request_stats(self) -> None:
        self.state.stats.total_requests = self.scheduler.stats.total_requests

    # ------------------------------------------------------------------
    # Classifier side effects
    # ------------------------------------------------------------------

    def _on_free_items(self, state: ScanState) -> None:
        item = state.free_items[0]
        log_scan_event(
            logger,
            "free_item",
            f"First free item at {self.domain}",
            variant_id=item.variant_id,
            price=str(item.price),
            cart_url=item.cart_url,
        )
        colored_print("NOTIFY", f"Free item found at {self.domain}: {item.title} - {item.variant} (${item.price:.2f})")

    def _on_checkpoint_due(self, state: ScanState) -> None:
        self._sync_request_stats()
        if self.save_checkpoint():
            colored_print("INFO", f"Checkpoint saved: {state.stats.variants_processed} variants processed")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_checkpoint(self) -> bool:
        if self.checkpoints is None:
            return False
        return self.checkpoints.save(self.state)

    def load_checkpoint(self) -> bool:
        if self.checkpoints is None:
            return False
        restored = self.checkpoints.load(self.state)
        if restored:
            self.classifier.sync_with_state()
        return restored

    def save_all_results(self) -> PersistedResults:
        return self.persistence.save_all_results(self.state, started_at=self.started_at)

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def stats_snapshot(self) -> Dict[str, Any]:
        snapshot = self.state.stats.to_dict()
        snapshot["requests"] = self.scheduler.stats.to_dict()
        snapshot["pacing"] = self.scheduler.delay.snapshot()
        snapshot["errors"] = self.scheduler.reporter.generate_report()
        snapshot["cache"] = {"size": len(self.cache), "evictions": self.cache.evictions}
        return snapshot

    def build_result(self, duration: float) -> ScanResult:
        persisted = self.persisted
        checkpoint_file = None
        if self.checkpoints is not None and self.checkpoints.exists():
            checkpoint_file = str(self.checkpoints.path)
        return ScanResult(
            domain=self.domain,
            scanned_url=self.base_url,
            free_items_found=len(self.state.free_items),
            free_items=list(self.state.free_items),
            lowest_priced_items=list(self.state.lowest_priced),
            stats=self.stats_snapshot(),
            output_file=str(persisted.report_path) if persisted and persisted.report_path else None,
            csv_file=str(persisted.csv_path) if persisted and persisted.csv_path else None,
            checkpoint_file=checkpoint_file,
            duration_seconds=duration,
            stopped_early=self.control.stopped,
        )

    def _announce_summary(self, duration: float) -> None:
        stats = self.state.stats
        colored_print(
            "SUCCESS",
            f"Scan of {self.domain} finished in {duration:.1f}s: "
            f"{stats.products_found} products, {stats.variants_processed} variants, "
            f"{len(self.state.free_items)} free items",
        )
