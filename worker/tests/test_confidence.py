import itertools

import pytest

from pricewatch.scoring.confidence import (
    ConfidenceInput,
    calculate_price_confidence,
    raw_confidence,
    score_observation,
)


def test_scenario_d_canonical_url_on_marketplace_domain():
    url_type, canonical, confidence = score_observation(
        url="https://store.com/p/12345",
        marketplace_url="store.com",
        in_stock=True,
        has_price=True,
        price_ex_tax_derived=False,
    )

    assert url_type == "product_detail"
    assert canonical is True
    assert confidence == 1.0


def test_derived_tax_price_earns_partial_weight():
    signals = ConfidenceInput(in_stock=True, has_price=True, domain_match=True, price_ex_tax_derived=True)
    assert calculate_price_confidence(signals) == 0.93


def test_off_domain_canonical_url_loses_domain_weight():
    _, canonical, confidence = score_observation(
        url="https://other.com/p/1",
        marketplace_url="store.com",
        in_stock=True,
        has_price=True,
        price_ex_tax_derived=False,
    )
    assert canonical is True
    assert confidence == 0.75


def test_non_canonical_penalty_and_floor():
    search = ConfidenceInput(
        in_stock=True, has_price=True, domain_match=False, price_ex_tax_derived=True, is_canonical_url=False
    )
    assert calculate_price_confidence(search) == 0.58

    empty = ConfidenceInput(
        in_stock=False, has_price=False, domain_match=False, price_ex_tax_derived=True, is_canonical_url=False
    )
    assert raw_confidence(empty) == pytest.approx(0.03)
    assert calculate_price_confidence(empty) == 0.05


@pytest.mark.parametrize(
    "flags",
    list(itertools.product([True, False], repeat=5)),
)
def test_confidence_is_bounded_and_penalised(flags):
    in_stock, has_price, domain_match, derived, canonical = flags
    signals = ConfidenceInput(
        in_stock=in_stock,
        has_price=has_price,
        domain_match=domain_match and canonical,
        price_ex_tax_derived=derived,
        is_canonical_url=canonical,
    )
    raw = raw_confidence(signals)
    score = calculate_price_confidence(signals)

    assert 0.0 <= score <= 1.0
    if not canonical and raw > 0:
        assert score <= round(0.85 * raw, 2) or score == 0.05
        assert score >= 0.05
