"""
Scan orchestration: domain cleaning, base-URL resolution and per-target scans.

``scan(target)`` is the single entry point used by the CLI and by any other
caller; it always returns either a ``ScanResult`` or a typed ``ScanFailure``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence
from urllib.parse import urlsplit

import httpx

from core.cancellation import ScanControl
from core.product_cache import ProductCache
from core.scanner import StoreScanner
from core.types import FailureReason, ProgressCallback, ScanFailure, ScanOutcome
from network.request_scheduler import RequestScheduler
from utils.config_loader import ProbeDictionaries, ScannerSettings, get_settings, load_probe_dictionaries
from utils.data_paths import get_scan_paths

logger = logging.getLogger(__name__)

EXISTENCE_CHECK_PATH = "/products.json"
DOMAIN_GROUP_SIZE = 3
DOMAIN_GROUP_PAUSE_SECONDS = 3.0


def clean_domain_input(raw: Any) -> Optional[str]:
    """Normalise free-form input (bare domain or URL) to a lowercase hostname.

    Returns ``None`` for input that cannot be a storefront domain.
    """
    if not isinstance(raw, str):
        return None
    candidate = raw.strip()
    if not candidate:
        return None
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        hostname = urlsplit(candidate).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    if "." not in hostname or len(hostname) <= 3:
        return None
    return hostname


async def resolve_base_url(
    domain: str,
    scheduler: RequestScheduler,
    prefixes: Sequence[str],
) -> Optional[str]:
    """Try each hostname prefix in order; first valid catalog response wins."""
    for prefix in prefixes:
        if scheduler.control.stopped:
            return None
        base_url = f"https://{prefix}{domain}"
        payload = await scheduler.fetch_json(f"{base_url}{EXISTENCE_CHECK_PATH}", params={"limit": 1})
        if isinstance(payload, dict) and isinstance(payload.get("products"), list):
            logger.info("Found working storefront: %s", base_url)
            return base_url
        logger.debug("No catalog at %s", base_url)
    return None


class ScanOrchestrator:
    """Runs the resolve -> discover -> persist state machine for targets.

    Transport/client injection exists so callers (and tests) can route all
    traffic through a custom httpx transport.
    """

    def __init__(
        self,
        settings: Optional[ScannerSettings] = None,
        *,
        probes: Optional[ProbeDictionaries] = None,
        control: Optional[ScanControl] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cache: Optional[ProductCache] = None,
    ):
        self.settings = settings or get_settings()
        if probes is None:
            probes = load_probe_dictionaries(self.settings.probes_file)
        self.probes = probes
        self.control = control or ScanControl()
        self.transport = transport
        self.progress_callback = progress_callback
        self.cache = cache

    def _new_scheduler(self) -> RequestScheduler:
        return RequestScheduler.from_settings(
            self.settings, control=self.control, transport=self.transport
        )

    async def scan(self, target: str) -> ScanOutcome:
        domain = clean_domain_input(target)
        if domain is None:
            logger.warning("Invalid domain format: %r", target)
            return ScanFailure(FailureReason.INVALID_DOMAIN, str(target))

        started_at = datetime.now()
        async with self._new_scheduler() as scheduler:
            base_url = await resolve_base_url(domain, scheduler, self.probes.host_prefixes)
            if base_url is None:
                if self.control.stopped:
                    logger.info("Scan of %s stopped before a storefront was resolved", domain)
                    return ScanFailure(FailureReason.STOPPED, domain)
                logger.warning("No working storefront found for %s", domain)
                return ScanFailure(FailureReason.NO_STOREFRONT, domain)

            paths = get_scan_paths(
                domain,
                started_at,
                output_dir=self.settings.output_dir,
                tracking_dir=self.settings.tracking_dir,
            )
            cache = self.cache if self.cache is not None else ProductCache(self.settings.product_cache_size)
            scanner = StoreScanner(
                domain,
                base_url,
                scheduler=scheduler,
                paths=paths,
                settings=self.settings,
                probes=self.probes,
                cache=cache,
                control=self.control,
                progress_callback=self.progress_callback,
                started_at=started_at,
            )
            return await scanner.run_full_scan()

    async def scan_many(
        self,
        targets: Sequence[str],
        *,
        group_size: int = DOMAIN_GROUP_SIZE,
        pause_seconds: float = DOMAIN_GROUP_PAUSE_SECONDS,
    ) -> List[ScanOutcome]:
        """Scan several targets, a few at a time, pausing between groups."""
        outcomes: List[ScanOutcome] = []
        group_size = max(1, group_size)
        for start in range(0, len(targets), group_size):
            if self.control.stopped:
                break
            group = targets[start : start + group_size]
            logger.info("Scanning group %d: %s", start // group_size + 1, ", ".join(group))
            outcomes.extend(await asyncio.gather(*(self.scan(target) for target in group)))
            if pause_seconds and start + group_size < len(targets):
                await asyncio.sleep(pause_seconds)
        return outcomes


async def scan(target: str, settings: Optional[ScannerSettings] = None, **kwargs) -> ScanOutcome:
    return await ScanOrchestrator(settings, **kwargs).scan(target)


def run_scan_for_domain(target: str, settings: Optional[ScannerSettings] = None, **kwargs) -> ScanOutcome:
    """Blocking wrapper around :func:`scan` for synchronous callers."""
    return asyncio.run(scan(target, settings, **kwargs))
