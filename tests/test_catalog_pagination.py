import httpx
import pytest

from discovery.catalog import CatalogStrategy
from utils.config_loader import ProbeDictionaries

UNSORTED = ProbeDictionaries(sort_orders=[])


def _page_handler(make_product, non_empty_pages: int):
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        sort = request.url.params.get("sort_by", "standard")
        if page > non_empty_pages:
            return httpx.Response(200, json={"products": []})
        products = [
            make_product(f"{sort}-p{page}-{index}", (page * 1000 + index, "10.00"))
            for index in range(2)
        ]
        return httpx.Response(200, json={"products": products})

    return handler


@pytest.mark.asyncio
async def test_walk_stops_after_consecutive_empty_pages(make_context, fake_store, make_product, settings):
    fake_store.add("/products.json", _page_handler(make_product, non_empty_pages=4))
    context = make_context(probes=UNSORTED)

    result = await CatalogStrategy(context).walk_standard()

    assert result.pages_requested == 4 + settings.consecutive_empty_product_pages
    assert result.stopped_by == "empty_pages"
    assert context.state.stats.products_found == 8
    assert context.state.stats.variants_processed == 8


@pytest.mark.asyncio
async def test_walk_never_exceeds_max_pages(make_context, fake_store, make_product, settings):
    settings.max_product_pages_standard = 5
    fake_store.add("/products.json", _page_handler(make_product, non_empty_pages=1000))
    context = make_context(probes=UNSORTED)

    result = await CatalogStrategy(context).walk_standard()

    assert result.pages_requested == 5
    assert result.stopped_by == "max_pages"
    pages = [int(request.url.params["page"]) for request in fake_store.requests]
    assert pages == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_all_duplicate_pages_count_as_empty(make_context, fake_store, make_product, settings):
    fake_store.add("/products.json", {"products": [make_product("same", (1, "3.00"))]})
    context = make_context(probes=UNSORTED)

    result = await CatalogStrategy(context).walk_standard()

    assert result.pages_requested == 1 + settings.consecutive_empty_product_pages
    assert context.state.stats.products_found == 1


@pytest.mark.asyncio
async def test_missing_catalog_pages_are_treated_as_empty(make_context, fake_store, settings):
    context = make_context(probes=UNSORTED)

    result = await CatalogStrategy(context).walk_standard()

    assert result.pages_requested == settings.consecutive_empty_product_pages
    assert context.state.stats.products_found == 0


@pytest.mark.asyncio
async def test_sorted_walks_run_with_their_own_bounds(make_context, fake_store, make_product, settings):
    settings.max_product_pages_standard = 2
    settings.max_product_pages_sorted = 3
    fake_store.add("/products.json", _page_handler(make_product, non_empty_pages=1000))
    context = make_context(probes=ProbeDictionaries(sort_orders=["price:asc", "created_at:desc"]))

    await CatalogStrategy(context).run()

    by_sort = {}
    for request in fake_store.requests:
        by_sort.setdefault(request.url.params.get("sort_by"), []).append(int(request.url.params["page"]))
    assert sorted(by_sort[None]) == [1, 2]
    assert sorted(by_sort["price:asc"]) == [1, 2, 3]
    assert sorted(by_sort["created_at:desc"]) == [1, 2, 3]
    assert all(request.url.params["limit"] == "250" for request in fake_store.requests)


@pytest.mark.asyncio
async def test_stopped_scan_requests_nothing(make_context, fake_store, make_product):
    fake_store.add("/products.json", _page_handler(make_product, non_empty_pages=10))
    context = make_context()
    context.control.stop()

    await CatalogStrategy(context).run()

    assert fake_store.requests == []
