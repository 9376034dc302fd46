from decimal import Decimal

import pytest

from core.classifier import UNKNOWN_PRODUCT_TITLE, VariantClassifier
from core.scan_state import ScanState


def _classifier(**kwargs) -> VariantClassifier:
    state = ScanState(domain="example.com", base_url="https://example.com")
    return VariantClassifier(state, **kwargs)


def _variant(variant_id, price, **extra):
    data = {"id": variant_id, "title": "Default Title", "price": price}
    data.update(extra)
    return data


PRODUCT = {"handle": "socks", "title": "Wool Socks"}


def test_recording_same_variant_twice_is_idempotent():
    classifier = _classifier()
    first = classifier.record_variant(_variant(1, "0.00"), PRODUCT, "catalog")
    snapshot = (
        list(classifier.state.free_items),
        list(classifier.state.lowest_priced),
        classifier.state.stats.variants_processed,
    )

    again = classifier.record_variant(_variant(1, "0.00"), PRODUCT, "search")
    also_again = classifier.record_variant(_variant("1", "5.00"), PRODUCT, "sitemap")

    assert first is not None
    assert again is None and also_again is None
    assert (
        list(classifier.state.free_items),
        list(classifier.state.lowest_priced),
        classifier.state.stats.variants_processed,
    ) == snapshot
    assert classifier.is_known_variant(1)
    assert classifier.is_known_variant("1")


def test_lowest_priced_list_stays_sorted_and_bounded():
    classifier = _classifier(lowest_priced_count=3)
    prices = ["9.99", "1.50", "4.00", "0.50", "12.00", "1.50", "3.25"]
    for index, price in enumerate(prices):
        classifier.record_variant(_variant(100 + index, price), PRODUCT, "catalog")
        ranked = [item.price for item in classifier.state.lowest_priced]
        assert ranked == sorted(ranked)
        assert len(ranked) <= 3

    assert [item.price for item in classifier.state.lowest_priced] == [
        Decimal("0.50"),
        Decimal("1.50"),
        Decimal("1.50"),
    ]


def test_equal_prices_keep_first_seen_order():
    classifier = _classifier()
    classifier.record_variant(_variant(1, "2.00"), PRODUCT, "first")
    classifier.record_variant(_variant(2, "2.00"), PRODUCT, "second")

    assert [item.source for item in classifier.state.lowest_priced] == ["first", "second"]


def test_free_threshold_is_exclusive():
    classifier = _classifier(free_items_threshold=Decimal("0.01"), lowest_priced_threshold=Decimal("0.01"))

    just_below = classifier.record_variant(_variant(1, "0.009"), PRODUCT, "catalog")
    at_threshold = classifier.record_variant(_variant(2, "0.01"), PRODUCT, "catalog")

    free_ids = [item.variant_id for item in classifier.state.free_items]
    lowest_ids = [item.variant_id for item in classifier.state.lowest_priced]
    assert just_below.variant_id in free_ids
    assert at_threshold.variant_id not in free_ids
    assert at_threshold.variant_id in lowest_ids
    assert just_below.variant_id not in lowest_ids


def test_overlapping_thresholds_allow_item_in_both_lists():
    classifier = _classifier(free_items_threshold=Decimal("1.00"), lowest_priced_threshold=Decimal("0.00"))
    classifier.record_variant(_variant(1, "0.50"), PRODUCT, "catalog")

    assert len(classifier.state.free_items) == 1
    assert len(classifier.state.lowest_priced) == 1


def test_free_items_callback_fires_once():
    calls = []
    classifier = _classifier(on_free_items=lambda state: calls.append(len(state.free_items)))

    classifier.record_variant(_variant(1, "0.00"), PRODUCT, "catalog")
    classifier.record_variant(_variant(2, "0"), PRODUCT, "catalog")

    assert calls == [1]
    assert classifier.state.has_free_items
    assert classifier.state.stats.free_items_found == 2


def test_checkpoint_callback_every_n_variants():
    checkpoints = []
    classifier = _classifier(checkpoint_every=2, on_checkpoint=lambda state: checkpoints.append(state.stats.variants_processed))

    for variant_id in range(5):
        classifier.record_variant(_variant(variant_id + 1, "3.00"), PRODUCT, "catalog")

    assert checkpoints == [2, 4]


def test_item_shape_and_title_fallbacks():
    classifier = _classifier()
    from_product = classifier.record_variant(_variant(11, "2.50", available=False), PRODUCT, "catalog")
    from_variant = classifier.record_variant(
        _variant(12, "2.50", product_title="Embedded", product_handle="embedded"), None, "cart"
    )
    unknown = classifier.record_variant(_variant(13, "2.50"), {}, "cart")

    assert from_product.title == "Wool Socks"
    assert from_product.available is False
    assert from_product.cart_url == "https://example.com/cart/11:1"
    assert from_product.product_url == "https://example.com/products/socks"
    assert from_variant.title == "Embedded"
    assert from_variant.product_url == "https://example.com/products/embedded"
    assert unknown.title == UNKNOWN_PRODUCT_TITLE


def test_minor_unit_prices_are_converted():
    classifier = _classifier()
    item = classifier.record_variant(_variant(21, 499), PRODUCT, "variant.js", price_in_minor_units=True)

    assert item.price == Decimal("4.99")


@pytest.mark.parametrize("bad_price", [None, "", "free", "NaN"])
def test_unusable_variants_are_not_marked_seen(bad_price):
    classifier = _classifier()

    assert classifier.record_variant(_variant(31, bad_price), PRODUCT, "catalog") is None
    assert not classifier.is_known_variant(31)
    assert classifier.record_variant({"price": "1.00"}, PRODUCT, "catalog") is None


def test_claim_product_counts_each_handle_once():
    classifier = _classifier()

    assert classifier.claim_product("socks") is True
    assert classifier.claim_product("socks") is False
    assert classifier.claim_product("") is False
    assert classifier.state.stats.products_found == 1


def test_variant_analysis_records_combinations_prices_and_inventory():
    classifier = _classifier()
    classifier.record_product(
        {
            "handle": "hat",
            "title": "Hat",
            "variants": [
                _variant(41, "5.999", option1="Red", inventory_quantity=3, inventory_policy="deny"),
                _variant(42, "5.991", option1="Blue"),
            ],
        },
        "catalog",
    )

    analysis = classifier.state.analysis
    assert [combo["option1"] for combo in analysis.variant_combinations["hat"]] == ["Red", "Blue"]
    assert analysis.price_patterns == {"5.99": 2}
    assert analysis.inventory == {"41": {"quantity": 3, "policy": "deny", "management": None}}
    assert classifier.state.stats.variant_combinations_analyzed == 2
