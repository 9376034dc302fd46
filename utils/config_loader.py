"""Scanner configuration: environment-driven settings and overridable probe dictionaries."""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_HOST_PREFIXES: List[str] = [
    "", "www.", "shop.", "secure.", "store.", "checkout.",
    "us.", "account.", "checkout-us.", "shopify.",
]

DEFAULT_SORT_ORDERS: List[str] = ["price:asc", "created_at:desc", "updated_at:desc"]

DEFAULT_COLLECTION_GUESSES: List[str] = [
    "all", "sale", "new", "featured", "best-sellers",
    "clearance", "discount", "free", "samples", "gifts",
    "outlet", "special", "promo", "deals", "limited",
    "test", "hidden", "private", "staff", "wholesale",
    "bundle", "combo", "trial", "beta", "exclusive",
    "member", "vip", "loyalty", "rewards", "bonus",
]

DEFAULT_SEARCH_QUERIES: List[str] = [
    "*", "a", "sale", "free", "new", "discount",
    "price:0", "0.00", "$0", "sample", "gift",
    "clearance", "outlet", "promo", "deal", "special",
    "test", "demo", "trial", "beta", "preview",
    "bundle", "combo", "set", "kit", "collection",
    "limited", "exclusive", "member", "vip", "bonus",
]

DEFAULT_SITEMAP_PATHS: List[str] = [
    "/sitemap.xml",
    "/sitemap_products.xml",
    "/sitemap_collections.xml",
    "/sitemap_pages.xml",
    "/sitemap_products_1.xml",
    "/sitemap_products_2.xml",
    "/sitemap_products_3.xml",
    "/sitemap_archived.xml",
    "/sitemap_old.xml",
    "/sitemap_backup.xml",
]

DEFAULT_CART_ENDPOINTS: List[str] = [
    "/cart.js", "/cart.json", "/meta.json",
    "/config.json", "/checkout.json", "/theme.json",
]

DEFAULT_GWP_MARKERS: List[str] = [
    "gwpCampaign", "giftTiers", "minimumValue", "freeGift",
    "bundleDiscount", "promoCode", "specialOffer", "loyaltyReward",
]

DEFAULT_VARIANT_ID_KEYS: List[str] = ["productId", "variantId", "variant_id", "product_id"]


class ProbeDictionaries(BaseModel):
    """Fixed probe lists used by the discovery strategies.

    Every list can be replaced from a JSON file so the probe set is an input
    rather than a constant baked into the strategies.
    """

    host_prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_HOST_PREFIXES))
    sort_orders: List[str] = Field(default_factory=lambda: list(DEFAULT_SORT_ORDERS))
    collection_guesses: List[str] = Field(default_factory=lambda: list(DEFAULT_COLLECTION_GUESSES))
    search_queries: List[str] = Field(default_factory=lambda: list(DEFAULT_SEARCH_QUERIES))
    sitemap_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_SITEMAP_PATHS))
    cart_endpoints: List[str] = Field(default_factory=lambda: list(DEFAULT_CART_ENDPOINTS))
    gwp_markers: List[str] = Field(default_factory=lambda: list(DEFAULT_GWP_MARKERS))
    variant_id_keys: List[str] = Field(default_factory=lambda: list(DEFAULT_VARIANT_ID_KEYS))


class ScannerSettings(BaseSettings):
    """Scanner settings loaded from environment variables (``SHOPSCAN_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="SHOPSCAN_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Output
    output_dir: Path = Path("data/scanner-results")
    tracking_dir: Path = Path("data/tracking")
    log_file: Optional[Path] = Path("data/logs/scanner.log")
    structured_log_file: Optional[Path] = None
    log_level: str = "INFO"

    # Request scheduler
    max_concurrent: int = 35
    base_delay_seconds: float = 0.015
    max_delay_seconds: float = 5.0
    request_timeout_seconds: float = 8.0
    max_rate_limit_retries: int = 10
    proxy_url: Optional[str] = None
    user_agent: Optional[str] = None

    # Pagination
    page_size: int = 250
    max_product_pages_standard: int = 100
    max_product_pages_sorted: int = 25
    max_collection_pages: int = 25
    consecutive_empty_product_pages: int = 3
    consecutive_empty_collection_pages: int = 2

    # Batching
    collection_batch_size: int = 5
    search_batch_size: int = 3
    search_result_batch_size: int = 10
    search_batch_pause_seconds: float = 0.5
    sitemap_batch_size: int = 3
    variant_probe_batch_size: int = 10

    # Classification
    lowest_priced_count: int = 10
    lowest_priced_threshold: Decimal = Decimal("0.01")
    free_items_threshold: Decimal = Decimal("0.01")
    checkpoint_every: int = 1000
    product_cache_size: int = 15000

    # Feature flags
    enable_checkpoints: bool = True
    resume_from_checkpoint: bool = False
    enable_sitemap_parsing: bool = True
    enable_search_exploitation: bool = True
    enable_cart_scraping: bool = True
    enable_variant_analysis: bool = True
    enable_site_tracking: bool = True
    enable_excel_export: bool = False

    probes_file: Optional[Path] = None


@lru_cache
def get_settings() -> ScannerSettings:
    """
    Get cached settings instance.

    Returns:
        ScannerSettings: scanner settings
    """
    return ScannerSettings()


def load_probe_dictionaries(path: Optional[Path | str] = None) -> ProbeDictionaries:
    """Load probe dictionaries, merging a JSON override file over the defaults.

    Args:
        path: Optional JSON file whose keys replace the matching default lists

    Returns:
        ProbeDictionaries instance

    Raises:
        ConfigurationError: If the file is missing, not JSON, or fails validation
    """
    if path is None:
        return ProbeDictionaries()

    config_file = Path(path)
    if not config_file.exists():
        error_msg = f"Probe dictionary file not found: {config_file}"
        logger.error(error_msg)
        raise ConfigurationError(error_msg, {"path": str(config_file)})

    try:
        overrides: Dict[str, Any] = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        error_msg = f"Invalid JSON in probe dictionaries {config_file}: {e}"
        logger.error(error_msg)
        raise ConfigurationError(error_msg, {"path": str(config_file)}) from e
    except OSError as e:
        error_msg = f"Error reading probe dictionaries {config_file}: {e}"
        logger.error(error_msg)
        raise ConfigurationError(error_msg, {"path": str(config_file)}) from e

    if not isinstance(overrides, dict):
        raise ConfigurationError(
            f"Probe dictionaries in {config_file} must be a JSON object",
            {"path": str(config_file)},
        )

    unknown = sorted(set(overrides) - set(ProbeDictionaries.model_fields))
    if unknown:
        logger.warning("Ignoring unknown probe dictionary keys: %s", unknown)
        overrides = {key: value for key, value in overrides.items() if key not in unknown}

    try:
        probes = ProbeDictionaries(**overrides)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid probe dictionaries in {config_file}: {e}",
            {"path": str(config_file)},
        ) from e

    logger.debug(f"Probe dictionaries loaded successfully: {config_file}")
    return probes
