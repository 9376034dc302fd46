import json

from core.checkpoint import CheckpointStore
from core.classifier import VariantClassifier
from core.scan_state import ScanState


def _populated_state() -> ScanState:
    state = ScanState(domain="example.com", base_url="https://www.example.com")
    classifier = VariantClassifier(state, lowest_priced_count=2)
    classifier.claim_product("socks")
    classifier.record_product(
        {
            "handle": "socks",
            "title": "Socks",
            "variants": [
                {"id": 1, "title": "S", "price": "0.00"},
                {"id": 2, "title": "M", "price": "4.99"},
                {"id": 3, "title": "L", "price": "7.50"},
                {"id": 4, "title": "XL", "price": "2.25"},
            ],
        },
        "catalog",
    )
    state.collections.update({"sale", "vip"})
    state.sitemap_urls.add("https://www.example.com/products/socks")
    state.analysis.discontinued_products.add("old-hat")
    state.stats.total_requests = 17
    return state


def test_checkpoint_round_trip_restores_state(tmp_path):
    original = _populated_state()
    store = CheckpointStore(tmp_path / "example.com_checkpoint.json")

    assert store.save(original) is True

    restored = ScanState(domain="example.com", base_url="https://example.com")
    assert CheckpointStore(store.path).load(restored) is True

    assert restored.seen_variants == original.seen_variants
    assert restored.seen_products == original.seen_products
    assert restored.collections == original.collections
    assert restored.sitemap_urls == original.sitemap_urls
    assert restored.free_items == original.free_items
    assert restored.lowest_priced == original.lowest_priced
    assert restored.stats.to_dict() == original.stats.to_dict()
    assert restored.analysis.to_dict() == original.analysis.to_dict()
    assert restored.base_url == "https://www.example.com"


def test_resumed_state_never_reclassifies_checkpointed_variants(tmp_path):
    original = _populated_state()
    store = CheckpointStore(tmp_path / "cp.json")
    store.save(original)

    restored = ScanState(domain="example.com", base_url="https://example.com")
    store.load(restored)
    classifier = VariantClassifier(restored, lowest_priced_count=2)
    classifier.sync_with_state()

    assert classifier.record_variant({"id": 1, "price": "0.00"}, {"handle": "socks"}, "search") is None
    assert classifier.record_variant({"id": "4", "price": "2.25"}, {"handle": "socks"}, "search") is None
    assert len(restored.free_items) == 1
    assert [item.variant_id for item in restored.lowest_priced] == ["4", "2"]


def test_checkpoint_write_is_atomic_json(tmp_path):
    store = CheckpointStore(tmp_path / "nested" / "cp.json")
    store.save(_populated_state())

    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert payload["domain"] == "example.com"
    assert payload["seen_variants"] == ["1", "2", "3", "4"]
    assert list(store.path.parent.glob("*.tmp")) == []


def test_missing_or_corrupt_checkpoint_is_ignored(tmp_path):
    state = ScanState(domain="example.com", base_url="https://example.com")
    store = CheckpointStore(tmp_path / "cp.json")
    assert store.load(state) is False

    store.path.write_text("{not json", encoding="utf-8")
    assert store.load(state) is False
    assert state.seen_variants == set()


def test_checkpoint_for_other_domain_is_ignored(tmp_path):
    store = CheckpointStore(tmp_path / "cp.json")
    store.save(_populated_state())

    other = ScanState(domain="other.com", base_url="https://other.com")
    assert store.load(other) is False
    assert other.seen_variants == set()


def test_failed_checkpoint_write_is_reported_not_raised(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = CheckpointStore(blocker / "cp.json")
    state = _populated_state()

    assert store.save(state) is False
    assert state.stats.checkpoints_saved == 0
