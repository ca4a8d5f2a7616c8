import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pricewatch.aggregator import (
    ERROR_FALLBACK,
    NO_COMPETITOR_PRICES,
    NO_COMPETITORS_LINKED,
    PARSE_FALLBACK,
    PRICE_NOT_CONFIGURED,
    RecommendationAggregator,
    weighted_mean,
)
from pricewatch.catalog import CatalogReader
from pricewatch.coordinator import RunCoordinator
from pricewatch.models import Price, Recommendation
from pricewatch.oracles.base import Advice, RecommendationOracle

NOW = datetime(2026, 3, 1, 12, tzinfo=timezone.utc)


class RecordingOracle(RecommendationOracle):
    def __init__(self, reply=None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.reply = reply or Advice(recommendation="lower", reasoning="Above market.", suggested_price=44000)
        self.error = error
        self.delay = delay
        self.requests = []

    async def advise(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture()
def catalog(session, make_marketplace, make_product):
    store_a = make_marketplace("Store A", "https://store-a.com")
    store_b = make_marketplace("Store B", "https://store-b.com")
    own = make_product("Omega 3 Nutribiotics", current_price=50000, ingredient_content={"EPA": 10})
    rival = make_product("Omega 3 Rival", brand="Rival", compared_to=own, ingredient_content={"EPA": 8})
    run = RunCoordinator(session).create("tester", total_products=1, total_lookups=2)
    return {"own": own, "rival": rival, "a": store_a, "b": store_b, "run_id": run.id}


def _observe(session, run_id, product, marketplace, price, confidence, created_at=NOW):
    session.add(
        Price(
            product_id=product.id,
            marketplace_id=marketplace.id,
            ingestion_run_id=run_id,
            price_inc_tax=price,
            price_ex_tax=round(price / 1.19, 2),
            price_per_ingredient_content={"EPA": round(price / 1.19 / 8, 2)},
            price_confidence=confidence,
            created_at=created_at,
        )
    )
    session.commit()


def _aggregate(session, run_id, oracle, product_id=None, timeout=1.0):
    plan = CatalogReader(session).build_plan(product_id)
    aggregator = RecommendationAggregator(session, oracle, confidence_threshold=0.6, timeout_seconds=timeout)
    return asyncio.run(aggregator.aggregate(run_id, plan))


def test_weighted_mean_with_zero_confidence_fallback():
    assert weighted_mean([(100.0, 0.9), (200.0, 0.1)]) == pytest.approx(110.0)
    assert weighted_mean([(100.0, 0.0), (200.0, 0.0)]) == 150.0
    assert weighted_mean([]) == 0.0


def test_scenario_a_low_confidence_observation_is_ignored(session, catalog):
    _observe(session, catalog["run_id"], catalog["rival"], catalog["a"], 40000, 0.9)
    _observe(session, catalog["run_id"], catalog["rival"], catalog["b"], 60000, 0.3)
    oracle = RecordingOracle()

    [recommendation] = _aggregate(session, catalog["run_id"], oracle)

    [request] = oracle.requests
    assert request.current_price == 50000
    assert request.min_competitor_price == request.max_competitor_price == request.avg_competitor_price == 40000
    assert [competitor.marketplace_name for competitor in request.competitor_prices] == ["Store A"]
    assert request.ingredient_content == {"EPA": 10}
    assert recommendation.recommendation == "lower"
    assert recommendation.recommended_price == 44000
    assert recommendation.current_price == 50000


def test_only_latest_observation_per_marketplace_counts(session, catalog):
    _observe(session, catalog["run_id"], catalog["rival"], catalog["a"], 30000, 0.9, NOW - timedelta(minutes=5))
    _observe(session, catalog["run_id"], catalog["rival"], catalog["a"], 42000, 0.9, NOW)
    oracle = RecordingOracle()

    _aggregate(session, catalog["run_id"], oracle)

    assert oracle.requests[0].min_competitor_price == 42000
    assert len(oracle.requests[0].competitor_prices) == 1


def test_scenario_b_no_competitors_linked(session, make_product):
    lonely = make_product("Magnesio Nutribiotics", current_price=31000)
    run = RunCoordinator(session).create("tester", total_products=0, total_lookups=0)
    oracle = RecordingOracle()

    [recommendation] = _aggregate(session, run.id, oracle, product_id=lonely.id)

    assert recommendation.recommendation == "keep"
    assert recommendation.reasoning == NO_COMPETITORS_LINKED
    assert "no competitors linked" in recommendation.reasoning.lower()
    assert oracle.requests == []


def test_price_not_configured(session, make_product):
    own = make_product("Colageno Nutribiotics")
    make_product("Colageno Rival", brand="Rival", compared_to=own)
    run = RunCoordinator(session).create("tester", total_products=1, total_lookups=0)
    oracle = RecordingOracle()

    [recommendation] = _aggregate(session, run.id, oracle)

    assert recommendation.recommendation == "keep"
    assert recommendation.reasoning == PRICE_NOT_CONFIGURED
    assert recommendation.current_price is None
    assert oracle.requests == []


def test_low_confidence_and_missing_prices_are_distinguished(session, catalog):
    oracle = RecordingOracle()
    [missing] = _aggregate(session, catalog["run_id"], oracle)
    assert missing.reasoning == NO_COMPETITOR_PRICES

    _observe(session, catalog["run_id"], catalog["rival"], catalog["a"], 40000, 0.45)
    _observe(session, catalog["run_id"], catalog["rival"], catalog["b"], 41000, 0.3)
    [low] = _aggregate(session, catalog["run_id"], oracle)

    assert low.recommendation == "keep"
    assert low.reasoning.startswith("2 low-confidence")
    assert "Store A (0.45)" in low.reasoning
    assert "Store B (0.30)" in low.reasoning
    assert oracle.requests == []


@pytest.mark.parametrize(
    ("oracle", "reasoning"),
    [
        (RecordingOracle(error=RuntimeError("rate limited")), ERROR_FALLBACK),
        (RecordingOracle(reply="I think you should lower it."), PARSE_FALLBACK),
        (RecordingOracle(delay=5), ERROR_FALLBACK),
    ],
)
def test_oracle_failures_degrade_to_keep(session, catalog, oracle, reasoning):
    _observe(session, catalog["run_id"], catalog["rival"], catalog["a"], 40000, 0.9)

    [recommendation] = _aggregate(session, catalog["run_id"], oracle, timeout=0.01)

    assert recommendation.recommendation == "keep"
    assert recommendation.reasoning == reasoning
    assert recommendation.recommended_price is None


def test_upsert_is_idempotent_and_later_call_wins(session, catalog):
    aggregator = RecommendationAggregator(session, RecordingOracle())
    own_id, run_id = catalog["own"].id, catalog["run_id"]

    aggregator.upsert(own_id, run_id, Advice(recommendation="raise", reasoning="first", suggested_price=55000), 50000)
    aggregator.upsert(own_id, run_id, Advice(recommendation="keep", reasoning="second"), 50000)

    rows = session.query(Recommendation).filter_by(product_id=own_id, ingestion_run_id=run_id).all()
    assert len(rows) == 1
    assert rows[0].recommendation == "keep"
    assert rows[0].reasoning == "second"
    assert rows[0].recommended_price is None


def test_duplicate_insert_is_retried_as_update(session, catalog, monkeypatch):
    aggregator = RecommendationAggregator(session, RecordingOracle())
    own_id, run_id = catalog["own"].id, catalog["run_id"]
    aggregator.upsert(own_id, run_id, Advice(recommendation="raise", reasoning="first", suggested_price=55000), 50000)

    real_find = aggregator._find
    lookups = {"count": 0}

    def stale_find(product_id, ingestion_run_id):
        lookups["count"] += 1
        return None if lookups["count"] == 1 else real_find(product_id, ingestion_run_id)

    monkeypatch.setattr(aggregator, "_find", stale_find)
    recommendation = aggregator.upsert(own_id, run_id, Advice(recommendation="lower", reasoning="later"), 50000)

    assert recommendation.recommendation == "lower"
    assert session.query(Recommendation).count() == 1
