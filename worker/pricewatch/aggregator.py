"""Turns a run's competitor observations into one recommendation per product."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pricewatch.catalog import CatalogReader, LookupPlan
from pricewatch.errors import ConcurrencyConflict, OracleParseError, OracleTimeout, PersistenceError
from pricewatch.models import Marketplace, Price, Recommendation, utc_now
from pricewatch.oracles.base import Advice, AdviceRequest, CompetitorPrice, ProductRef, RecommendationOracle
from pricewatch.oracles.parsing import parse_advice

logger = logging.getLogger(__name__)

PRICE_NOT_CONFIGURED = "Product price not configured. Set a current price to receive recommendations."
NO_COMPETITORS_LINKED = "No competitors linked to this product. Link competitor products to enable price comparison."
NO_COMPETITOR_PRICES = "No competitor prices found in this ingestion run."
PARSE_FALLBACK = "Unable to generate AI recommendation. Manual review recommended."
ERROR_FALLBACK = "Error during recommendation generation. Manual review needed."

LOW_CONFIDENCE_SAMPLE = 3


@dataclass(frozen=True)
class Observation:
    product: ProductRef
    marketplace_name: str
    price: Price


@dataclass(frozen=True)
class CompetitorStats:
    min_price: float
    max_price: float
    weighted_mean: float
    ingredient_averages: dict[str, float]


def weighted_mean(pairs: list[tuple[float, float]]) -> float:
    """Confidence-weighted mean of ``(price, confidence)`` pairs.

    Falls back to the plain mean when every confidence is zero.
    """
    if not pairs:
        return 0.0
    total_confidence = sum(confidence for _, confidence in pairs)
    if total_confidence == 0:
        return sum(price for price, _ in pairs) / len(pairs)
    return sum(price * confidence for price, confidence in pairs) / total_confidence


def ingredient_averages(observations: list[Observation]) -> dict[str, float]:
    buckets: dict[str, list[float]] = {}
    for observation in observations:
        for ingredient, value in (observation.price.price_per_ingredient_content or {}).items():
            buckets.setdefault(ingredient, []).append(float(value))
    return {ingredient: round(sum(values) / len(values), 2) for ingredient, values in buckets.items()}


def competitor_stats(observations: list[Observation]) -> CompetitorStats:
    prices = [observation.price.price_inc_tax for observation in observations]
    return CompetitorStats(
        min_price=min(prices),
        max_price=max(prices),
        weighted_mean=round(
            weighted_mean([(o.price.price_inc_tax, o.price.price_confidence) for o in observations]), 2
        ),
        ingredient_averages=ingredient_averages(observations),
    )


def low_confidence_reasoning(observations: list[Observation], threshold: float) -> str:
    sample = ", ".join(
        f"{o.marketplace_name} ({o.price.price_confidence:.2f})" for o in observations[:LOW_CONFIDENCE_SAMPLE]
    )
    return (
        f"{len(observations)} low-confidence competitor price(s) found below the {threshold:.2f} "
        f"confidence threshold: {sample}. Manual review recommended."
    )


class RecommendationAggregator:
    def __init__(
        self,
        db: Session,
        oracle: RecommendationOracle,
        confidence_threshold: float = 0.6,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.db = db
        self.oracle = oracle
        self.confidence_threshold = confidence_threshold
        self.timeout_seconds = timeout_seconds
        self.catalog = CatalogReader(db)

    async def aggregate(self, run_id: str, plan: LookupPlan) -> list[Recommendation]:
        recommendations = []
        for product in plan.first_party:
            try:
                advice, current_price = await self.recommend(run_id, product, plan.competitors.get(product.id, []))
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise PersistenceError(f"Failed to read prices for {product.name}: {exc}") from exc
            except Exception:
                logger.exception("Recommendation failed for product %s; defaulting to keep", product.id)
                advice, current_price = Advice(recommendation="keep", reasoning=ERROR_FALLBACK), None
            recommendations.append(self.upsert(product.id, run_id, advice, current_price))
        return recommendations

    async def recommend(
        self, run_id: str, product: ProductRef, competitors: list[ProductRef]
    ) -> tuple[Advice, float | None]:
        current = self.catalog.current_price(product.id)
        if current is None:
            return Advice(recommendation="keep", reasoning=PRICE_NOT_CONFIGURED), None
        current_price = current.price_inc_tax
        if not competitors:
            return Advice(recommendation="keep", reasoning=NO_COMPETITORS_LINKED), current_price

        observations = self.latest_observations(run_id, competitors)
        usable = [o for o in observations if o.price.price_confidence >= self.confidence_threshold]
        if not usable:
            if observations:
                reasoning = low_confidence_reasoning(observations, self.confidence_threshold)
            else:
                reasoning = NO_COMPETITOR_PRICES
            return Advice(recommendation="keep", reasoning=reasoning), current_price

        stats = competitor_stats(usable)
        request = AdviceRequest(
            product_name=product.name,
            current_price=current_price,
            ingredient_content=dict(product.ingredient_content),
            competitor_prices=[
                CompetitorPrice(
                    marketplace_name=o.marketplace_name,
                    product_name=o.product.name,
                    brand_name=o.product.brand,
                    price_inc_tax=o.price.price_inc_tax,
                    price_ex_tax=o.price.price_ex_tax,
                    price_confidence=o.price.price_confidence,
                    ingredient_content=dict(o.price.ingredient_content or {}),
                    price_per_ingredient_content=dict(o.price.price_per_ingredient_content or {}),
                )
                for o in usable
            ],
            min_competitor_price=stats.min_price,
            max_competitor_price=stats.max_price,
            avg_competitor_price=stats.weighted_mean,
            ingredient_price_averages=stats.ingredient_averages,
        )
        return await self.advise(request), current_price

    def latest_observations(self, run_id: str, competitors: list[ProductRef]) -> list[Observation]:
        by_id = {product.id: product for product in competitors}
        rows = self.db.execute(
            select(Price, Marketplace.name)
            .join(Marketplace, Marketplace.id == Price.marketplace_id)
            .where(Price.ingestion_run_id == run_id, Price.product_id.in_(list(by_id)))
            .order_by(Price.created_at.desc())
        ).all()
        latest: dict[tuple[str, str], Observation] = {}
        for price, marketplace_name in rows:
            key = (price.product_id, price.marketplace_id)
            if key not in latest:
                latest[key] = Observation(product=by_id[price.product_id], marketplace_name=marketplace_name, price=price)
        return list(latest.values())

    async def advise(self, request: AdviceRequest) -> Advice:
        try:
            raw = await self._call_oracle(request)
            return parse_advice(raw)
        except OracleParseError as exc:
            logger.warning("Unparseable recommendation for %s: %s", request.product_name, exc.message)
            return Advice(recommendation="keep", reasoning=PARSE_FALLBACK)
        except Exception as exc:
            logger.warning("Recommendation oracle failed for %s: %s", request.product_name, exc)
            return Advice(recommendation="keep", reasoning=ERROR_FALLBACK)

    async def _call_oracle(self, request: AdviceRequest) -> Any:
        try:
            return await asyncio.wait_for(self.oracle.advise(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise OracleTimeout(f"Recommendation oracle timed out after {self.timeout_seconds:g}s") from exc

    def upsert(self, product_id: str, run_id: str, advice: Advice, current_price: float | None) -> Recommendation:
        """Create or overwrite the recommendation for ``(product_id, run_id)``."""
        values = {
            "current_price": current_price,
            "recommendation": advice.recommendation,
            "reasoning": advice.reasoning,
            "recommended_price": advice.suggested_price,
        }
        try:
            recommendation = self._find(product_id, run_id)
            if recommendation is None:
                try:
                    recommendation = self._insert(product_id, run_id, values)
                except ConcurrencyConflict:
                    logger.info("Recommendation for %s in run %s already exists; updating", product_id, run_id)
                    recommendation = self._find(product_id, run_id)
                    if recommendation is None:
                        raise
            for key, value in values.items():
                setattr(recommendation, key, value)
            recommendation.updated_at = utc_now()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to save recommendation for {product_id}: {exc}") from exc
        return recommendation

    def _find(self, product_id: str, run_id: str) -> Recommendation | None:
        return self.db.execute(
            select(Recommendation).where(
                Recommendation.product_id == product_id,
                Recommendation.ingestion_run_id == run_id,
            )
        ).scalar_one_or_none()

    def _insert(self, product_id: str, run_id: str, values: dict[str, Any]) -> Recommendation:
        recommendation = Recommendation(product_id=product_id, ingestion_run_id=run_id, **values)
        self.db.add(recommendation)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConcurrencyConflict(
                "Recommendation already exists", details={"product_id": product_id, "run_id": run_id}
            ) from exc
        return recommendation
