import asyncio

import pytest

from pricewatch.config import WorkerSettings
from pricewatch.errors import ValidationError
from pricewatch.models import Marketplace, Price, Product
from pricewatch.oracles.base import AdviceRequest, MarketplaceRef, ProductRef
from pricewatch.oracles.fixture import FixtureLookupOracle, ThresholdRecommendationOracle
from pricewatch.oracles.http import HttpLookupOracle
from pricewatch.oracles.registry import build_oracles, default_mode
from pricewatch.seed import seed_catalog

FARMATODO = MarketplaceRef(
    id="m-1",
    name="Farmatodo",
    country="Colombia",
    base_url="https://www.farmatodo.com.co",
    tax_rate=0.19,
    currency="COP",
)


def _advice_request(current: float, average: float) -> AdviceRequest:
    return AdviceRequest(
        product_name="Omega 3",
        current_price=current,
        min_competitor_price=average,
        max_competitor_price=average,
        avg_competitor_price=average,
    )


def test_fixture_lookup_matches_names_case_insensitively():
    oracle = FixtureLookupOracle()
    product = ProductRef(id="p-1", name="omega 3 fish oil 1000mg x 60", brand="Nature's Bounty")

    reply = asyncio.run(oracle.lookup(product, FARMATODO))
    missing = asyncio.run(oracle.lookup(ProductRef(id="p-2", name="Unknown", brand="X"), FARMATODO))

    assert reply["priceIncTax"] == 45900
    assert missing is None


@pytest.mark.parametrize(
    ("current", "average", "expected"),
    [(52000, 46000, "lower"), (40000, 46000, "raise"), (46500, 46000, "keep"), (None, 46000, "keep")],
)
def test_threshold_oracle(current, average, expected):
    advice = asyncio.run(ThresholdRecommendationOracle(band=0.05).advise(_advice_request(current, average)))

    assert advice.recommendation == expected
    if expected != "keep":
        assert advice.suggested_price == average


def test_build_oracles_by_mode():
    offline = WorkerSettings(_env_file=None, lookup_oracle_url=None, recommendation_oracle_url=None)
    assert default_mode(offline) == "fixture"
    assert isinstance(build_oracles("fixture", offline).lookup, FixtureLookupOracle)
    with pytest.raises(ValidationError):
        build_oracles("live", offline)
    with pytest.raises(ValidationError):
        build_oracles("carrier-pigeon", offline)

    online = WorkerSettings(
        _env_file=None,
        lookup_oracle_url="https://lookup.test",
        recommendation_oracle_url="https://advice.test",
    )
    oracles = build_oracles("live", online)
    assert default_mode(online) == "live"
    assert isinstance(oracles.lookup, HttpLookupOracle)
    asyncio.run(oracles.aclose())


def test_seed_catalog_is_idempotent(session):
    seed_catalog(session)
    seed_catalog(session)

    assert session.query(Marketplace).count() == 4
    assert session.query(Product).filter(Product.is_first_party.is_(True)).count() == 4
    assert session.query(Product).filter(Product.is_first_party.is_(False)).count() == 4
    assert session.query(Price).count() == 3
    omega = session.query(Product).filter(Product.name == "Omega 3 1000mg x 60").one()
    assert {competitor.brand for competitor in omega.competitors} == {"Nature's Bounty", "GNC"}
