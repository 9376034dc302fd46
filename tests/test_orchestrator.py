import json
from decimal import Decimal

import httpx
import pytest

from core.cancellation import ScanControl
from core.orchestrator import ScanOrchestrator, clean_domain_input
from core.product_cache import ProductCache
from core.types import FailureReason, ScanFailure, ScanResult
from utils.config_loader import ProbeDictionaries

LEAN_PROBES = ProbeDictionaries(
    host_prefixes=["", "www."],
    sort_orders=[],
    collection_guesses=[],
    search_queries=[],
    sitemap_paths=[],
    cart_endpoints=[],
)


@pytest.fixture
def orchestrator_settings(settings):
    settings.user_agent = "pytest"
    return settings


def _catalog(make_product):
    first_page = [
        make_product("gift-card", (1, "0.00"), (2, "4.99")),
        make_product("wool-socks", (3, "19.00")),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params.get("page")
        if page is None or page == "1":
            return httpx.Response(200, json={"products": first_page})
        return httpx.Response(200, json={"products": []})

    return handler


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("example.com", "example.com"),
        ("  https://WWW.Example.com/collections/all?page=2 ", "example.com"),
        ("http://shop.example.co.uk", "shop.example.co.uk"),
        ("store.example.com/products/hat", "store.example.com"),
        ("", None),
        ("   ", None),
        ("localhost", None),
        ("a.b", None),
        (None, None),
        (42, None),
    ],
)
def test_clean_domain_input(raw, expected):
    assert clean_domain_input(raw) == expected


@pytest.mark.asyncio
async def test_full_scan_resolves_www_prefix_and_classifies(orchestrator_settings, fake_store, make_product):
    fake_store.add("/products.json", _catalog(make_product), host="www.example.com")
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, transport=fake_store.transport()
    )

    outcome = await orchestrator.scan("https://example.com")

    assert isinstance(outcome, ScanResult)
    assert outcome.success is True
    assert outcome.scanned_url == "https://www.example.com"
    assert outcome.free_items_found == 1
    assert outcome.free_items[0].variant_id == "1"
    assert [item.price for item in outcome.lowest_priced_items] == [Decimal("4.99"), Decimal("19.00")]
    assert outcome.stats["products_found"] == 2
    assert outcome.stats["variants_processed"] == 3

    bare_host = [r for r in fake_store.requests if r.url.host == "example.com"]
    assert len(bare_host) == 1

    report = outcome.output_file
    assert report is not None and "FREE_example.com_" in report
    assert outcome.csv_file is not None and outcome.csv_file.endswith(".csv")
    assert outcome.checkpoint_file is not None
    checkpoint = json.loads(open(outcome.checkpoint_file, encoding="utf-8").read())
    assert checkpoint["domain"] == "example.com"
    assert sorted(checkpoint["seen_variants"]) == ["1", "2", "3"]


@pytest.mark.asyncio
async def test_unreachable_storefront_fails_without_writing_files(orchestrator_settings, fake_store, tmp_path):
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, transport=fake_store.transport()
    )

    outcome = await orchestrator.scan("example.com")

    assert isinstance(outcome, ScanFailure)
    assert outcome.reason is FailureReason.NO_STOREFRONT
    assert outcome.error == "no reachable storefront found"
    assert outcome.to_dict() == {"success": False, "error": "no reachable storefront found", "target": "example.com"}
    assert [r.url.host for r in fake_store.requests] == ["example.com", "www.example.com"]
    assert not orchestrator_settings.output_dir.exists()
    assert not orchestrator_settings.tracking_dir.exists()


@pytest.mark.asyncio
async def test_invalid_domain_makes_no_requests(orchestrator_settings, fake_store):
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, transport=fake_store.transport()
    )

    outcome = await orchestrator.scan("not a domain")

    assert isinstance(outcome, ScanFailure)
    assert outcome.reason is FailureReason.INVALID_DOMAIN
    assert fake_store.requests == []


@pytest.mark.asyncio
async def test_store_without_free_items_gets_plain_report_name(orchestrator_settings, fake_store, make_product):
    fake_store.add("/products.json", {"products": [make_product("hat", (7, "12.00"))]}, host="example.com")
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, transport=fake_store.transport()
    )

    outcome = await orchestrator.scan("example.com")

    assert isinstance(outcome, ScanResult)
    assert outcome.scanned_url == "https://example.com"
    assert outcome.free_items_found == 0
    assert "FREE_" not in outcome.output_file
    assert (orchestrator_settings.tracking_dir / "scan-history.csv").exists()


@pytest.mark.asyncio
async def test_resume_skips_checkpointed_variants(orchestrator_settings, fake_store, make_product):
    fake_store.add("/products.json", _catalog(make_product), host="www.example.com")
    phases_seen = []
    first = await ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, transport=fake_store.transport()
    ).scan("example.com")
    assert first.free_items_found == 1

    orchestrator_settings.resume_from_checkpoint = True
    resumed = ScanOrchestrator(
        orchestrator_settings,
        probes=LEAN_PROBES,
        transport=fake_store.transport(),
        progress_callback=lambda event: phases_seen.append(event.phase),
    )
    second = await resumed.scan("example.com")

    assert second.free_items_found == 1
    assert second.stats["variants_processed"] == 3
    assert "done" in phases_seen


@pytest.mark.asyncio
async def test_scan_many_keeps_target_order(orchestrator_settings, fake_store, make_product):
    fake_store.add("/products.json", {"products": [make_product("hat", (7, "12.00"))]}, host="example.com")
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, transport=fake_store.transport()
    )

    outcomes = await orchestrator.scan_many(["example.com", "???", "missing.org"], group_size=2, pause_seconds=0)

    assert isinstance(outcomes[0], ScanResult)
    assert outcomes[1].reason is FailureReason.INVALID_DOMAIN
    assert outcomes[2].reason is FailureReason.NO_STOREFRONT


@pytest.mark.asyncio
async def test_stopped_control_skips_remaining_targets(orchestrator_settings, fake_store):
    control = ScanControl()
    control.stop()
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, control=control, transport=fake_store.transport()
    )

    assert await orchestrator.scan_many(["example.com", "other.com"]) == []
    assert fake_store.requests == []


@pytest.mark.asyncio
async def test_stop_during_catalog_returns_partial_result_and_writes_files(
    orchestrator_settings, fake_store, make_product
):
    control = ScanControl()
    first_page = [make_product("gift-card", (1, "0.00"), (2, "4.99"))]

    def catalog(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("page") == "1":
            control.stop()
            return httpx.Response(200, json={"products": first_page})
        if request.url.params.get("page") is None:
            return httpx.Response(200, json={"products": first_page})
        return httpx.Response(200, json={"products": [make_product("late", (9, "0.00"))]})

    fake_store.add("/products.json", catalog, host="example.com")
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, control=control, transport=fake_store.transport()
    )

    outcome = await orchestrator.scan("example.com")

    assert isinstance(outcome, ScanResult)
    assert outcome.stopped_early is True
    assert outcome.to_dict()["stopped_early"] is True
    assert [item.variant_id for item in outcome.free_items] == ["1"]
    assert [item.variant_id for item in outcome.lowest_priced_items] == ["2"]
    pages = [r.url.params.get("page") for r in fake_store.requests if r.url.path == "/products.json"]
    assert pages == [None, "1"]
    assert "/collections.json" not in fake_store.requested_paths()

    assert outcome.output_file is not None and "FREE_example.com_" in outcome.output_file
    assert open(outcome.output_file, encoding="utf-8").read()
    checkpoint = json.loads(open(outcome.checkpoint_file, encoding="utf-8").read())
    assert sorted(checkpoint["seen_variants"]) == ["1", "2"]


@pytest.mark.asyncio
async def test_stop_before_resolution_is_not_reported_as_unreachable(orchestrator_settings, fake_store, make_product):
    fake_store.add("/products.json", {"products": [make_product("hat", (7, "12.00"))]})
    control = ScanControl()
    control.stop()
    orchestrator = ScanOrchestrator(
        orchestrator_settings, probes=LEAN_PROBES, control=control, transport=fake_store.transport()
    )

    outcome = await orchestrator.scan("example.com")

    assert isinstance(outcome, ScanFailure)
    assert outcome.reason is FailureReason.STOPPED
    assert outcome.error != FailureReason.NO_STOREFRONT.value
    assert fake_store.requests == []


@pytest.mark.asyncio
async def test_shared_cache_never_mixes_products_between_stores(orchestrator_settings, fake_store, make_product):
    fake_store.add(
        "/products.json",
        {"products": [make_product("gift", (111, "0.00"), title="Store A Gift")]},
        host="a-store.com",
    )
    fake_store.add("/products.json", {"products": []}, host="b-store.com")
    fake_store.add("/search.json", {"products": [{"handle": "gift"}]}, host="b-store.com")
    fake_store.add(
        "/products/gift.js",
        {"handle": "gift", "title": "Store B Gift", "variants": [{"id": 222, "title": "Default", "price": 2500}]},
        host="b-store.com",
    )
    probes = LEAN_PROBES.model_copy(update={"host_prefixes": [""], "search_queries": ["gift"]})
    cache = ProductCache(100)

    first = await ScanOrchestrator(
        orchestrator_settings, probes=probes, transport=fake_store.transport(), cache=cache
    ).scan("a-store.com")
    second = await ScanOrchestrator(
        orchestrator_settings, probes=probes, transport=fake_store.transport(), cache=cache
    ).scan("b-store.com")

    assert [item.variant_id for item in first.free_items] == ["111"]
    assert second.free_items == []
    assert [(item.variant_id, item.title, item.price) for item in second.lowest_priced_items] == [
        ("222", "Store B Gift", Decimal("25"))
    ]
    assert second.lowest_priced_items[0].product_url == "https://b-store.com/products/gift"
