"""Shared fixtures: isolated settings and an in-memory fake storefront."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from core.cancellation import ScanControl
from core.classifier import VariantClassifier
from core.product_cache import ProductCache
from core.scan_state import ScanState
from discovery.base import DiscoveryContext
from network.request_scheduler import RequestScheduler
from utils.config_loader import ProbeDictionaries, ScannerSettings

Handler = Union[Dict[str, Any], str, int, Callable[[httpx.Request], httpx.Response]]


class FakeStore:
    """Routes ``(method, host, path)`` to canned responses and records every request.

    Unknown routes answer 404. Query parameters are matched through
    ``add_page`` for paginated endpoints.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str, str], Handler] = {}
        self.pages: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, response: Handler, *, host: str = "*", method: str = "GET") -> None:
        self.routes[(method, host, path)] = response

    def add_page(self, path: str, query: str, payload: Dict[str, Any]) -> None:
        self.pages[(path, query)] = payload

    def requested_paths(self, method: str = "GET") -> List[str]:
        return [request.url.path for request in self.requests if request.method == method]

    def _lookup(self, request: httpx.Request) -> Optional[Handler]:
        host = request.url.host
        path = request.url.path
        for key in ((request.method, host, path), (request.method, "*", path)):
            if key in self.routes:
                return self.routes[key]
        for (page_path, page_query), payload in self.pages.items():
            if page_path != path:
                continue
            wanted = dict(part.split("=", 1) for part in page_query.split("&") if part)
            actual = dict(request.url.params)
            if all(actual.get(key) == value for key, value in wanted.items()):
                return payload
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._lookup(request)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        if isinstance(route, int):
            return httpx.Response(route)
        if isinstance(route, str):
            return httpx.Response(200, text=route)
        return httpx.Response(200, content=json.dumps(route), headers={"Content-Type": "application/json"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings(tmp_path) -> ScannerSettings:
    return ScannerSettings(
        _env_file=None,
        output_dir=tmp_path / "results",
        tracking_dir=tmp_path / "tracking",
        log_file=None,
        base_delay_seconds=0.0,
        search_batch_pause_seconds=0.0,
        request_timeout_seconds=2.0,
        max_concurrent=10,
    )


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def make_context(settings, fake_store):
    """Factory for a discovery context bound to ``https://example.com``."""
    def _make(probes: Optional[ProbeDictionaries] = None, **classifier_kwargs) -> DiscoveryContext:
        control = ScanControl()
        scheduler = RequestScheduler.from_settings(
            settings, control=control, transport=fake_store.transport(), user_agent="pytest"
        )
        state = ScanState(domain="example.com", base_url="https://example.com")
        classifier = VariantClassifier.from_settings(state, settings, **classifier_kwargs)
        return DiscoveryContext(
            base_url="https://example.com",
            scheduler=scheduler,
            classifier=classifier,
            cache=ProductCache(100),
            control=control,
            settings=settings,
            probes=probes or ProbeDictionaries(),
        )

    yield _make


def _product(handle: str, *variants: Tuple[int, str], title: Optional[str] = None) -> Dict[str, Any]:
    """Catalog-shaped product with ``(variant_id, price)`` pairs."""
    return {
        "id": abs(hash(handle)) % 10_000_000,
        "handle": handle,
        "title": title or handle.replace("-", " ").title(),
        "variants": [
            {"id": variant_id, "title": f"Option {index}", "price": price, "available": True}
            for index, (variant_id, price) in enumerate(variants, start=1)
        ],
    }


@pytest.fixture
def make_product():
    return _product
