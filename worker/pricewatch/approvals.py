"""Accept/reject workflow for recommendations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pricewatch.catalog import CatalogReader
from pricewatch.errors import NotFoundError, PersistenceError, PricewatchError, ValidationError
from pricewatch.lookups import price_per_ingredient
from pricewatch.models import Price, PriceHistory, Product, Recommendation, utc_now

logger = logging.getLogger(__name__)

CHANGE_REASON_ACCEPTED = "recommendation_accepted"


@dataclass
class BulkAcceptResult:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


class RecommendationApprovals:
    def __init__(self, db: Session, tax_rate: float = 0.19) -> None:
        self.db = db
        self.tax_rate = tax_rate
        self.catalog = CatalogReader(db)

    def get(self, recommendation_id: str) -> Recommendation:
        try:
            recommendation = self.db.get(Recommendation, recommendation_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to load recommendation {recommendation_id}: {exc}") from exc
        if recommendation is None:
            raise NotFoundError("Recommendation not found", details={"recommendation_id": recommendation_id})
        return recommendation

    def accept(self, recommendation_id: str, actor: str) -> Recommendation:
        """Apply the recommended price to the product's first-party price.

        Writes the audit row, the price and the approval in one transaction.
        Accepting an approved recommendation again changes nothing.
        """
        recommendation = self.get(recommendation_id)
        if recommendation.recommendation_status == "approved":
            return recommendation
        if recommendation.recommended_price is None or recommendation.recommended_price <= 0:
            raise ValidationError(
                "No recommended price available", details={"recommendation_id": recommendation_id}
            )
        product = self.db.get(Product, recommendation.product_id)
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": recommendation.product_id})

        new_inc = round(recommendation.recommended_price, 2)
        new_ex = round(new_inc / (1 + self.tax_rate), 2)
        ingredient_content = dict(product.ingredient_content or {})
        per_ingredient = price_per_ingredient(new_ex, ingredient_content)
        now = utc_now()

        try:
            price = self.catalog.current_price(product.id)
            if price is not None:
                old_inc, old_ex = price.price_inc_tax, price.price_ex_tax
            else:
                old_inc = recommendation.current_price or 0.0
                old_ex = round(old_inc / (1 + self.tax_rate), 2)
                price = Price(product_id=product.id, marketplace_id=None, price_inc_tax=old_inc, price_ex_tax=old_ex)
                self.db.add(price)
                self.db.flush()

            existing_audit = self.db.execute(
                select(PriceHistory).where(
                    PriceHistory.price_id == price.id,
                    PriceHistory.recommendation_id == recommendation.id,
                )
            ).scalar_one_or_none()
            if existing_audit is None:
                self.db.add(
                    PriceHistory(
                        price_id=price.id,
                        product_id=product.id,
                        recommendation_id=recommendation.id,
                        old_price_inc_tax=old_inc,
                        new_price_inc_tax=new_inc,
                        old_price_ex_tax=old_ex,
                        new_price_ex_tax=new_ex,
                        change_reason=CHANGE_REASON_ACCEPTED,
                        recommendation=recommendation.recommendation,
                        recommended_price=recommendation.recommended_price,
                        recommendation_reasoning=recommendation.reasoning,
                        changed_by=actor,
                    )
                )
                self.db.flush()

            price.price_inc_tax = new_inc
            price.price_ex_tax = new_ex
            price.ingredient_content = ingredient_content
            price.price_per_ingredient_content = per_ingredient
            price.recommendation = recommendation.recommendation
            price.recommendation_reasoning = recommendation.reasoning
            price.recommended_price = recommendation.recommended_price
            price.recommendation_status = "approved"
            price.recommendation_approved_at = now
            price.recommendation_approved_by = actor

            recommendation.recommendation_status = "approved"
            recommendation.approved_at = now
            recommendation.approved_by = actor
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to accept recommendation {recommendation_id}: {exc}") from exc

        logger.info("Recommendation %s accepted by %s: %s -> %s", recommendation_id, actor, old_inc, new_inc)
        return recommendation

    def reject(self, recommendation_id: str, actor: str) -> Recommendation:
        recommendation = self.get(recommendation_id)
        if recommendation.recommendation_status == "approved":
            raise ValidationError(
                "Recommendation already approved", details={"recommendation_id": recommendation_id}
            )
        recommendation.recommendation_status = "rejected"
        recommendation.approved_at = utc_now()
        recommendation.approved_by = actor
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to reject recommendation {recommendation_id}: {exc}") from exc
        logger.info("Recommendation %s rejected by %s", recommendation_id, actor)
        return recommendation

    def bulk_accept(self, recommendation_ids: list[str], actor: str) -> BulkAcceptResult:
        """Accept each id independently; one failure never aborts the batch."""
        result = BulkAcceptResult()
        for recommendation_id in recommendation_ids:
            try:
                recommendation = self.get(recommendation_id)
                if recommendation.recommendation == "keep":
                    result.skipped += 1
                    continue
                self.accept(recommendation_id, actor)
            except PricewatchError as exc:
                self.db.rollback()
                result.failed += 1
                result.errors.append((recommendation_id, exc.message))
                continue
            except Exception as exc:
                logger.exception("Unexpected failure accepting recommendation %s", recommendation_id)
                self.db.rollback()
                result.failed += 1
                result.errors.append((recommendation_id, str(exc) or exc.__class__.__name__))
                continue
            result.successful += 1
        logger.info(
            "Bulk accept by %s: successful=%s failed=%s skipped=%s",
            actor,
            result.successful,
            result.failed,
            result.skipped,
        )
        return result

    def latest_for_product(self, product_id: str, run_id: str | None = None) -> Recommendation:
        query = select(Recommendation).where(Recommendation.product_id == product_id)
        if run_id is not None:
            query = query.where(Recommendation.ingestion_run_id == run_id)
        recommendation = self.db.execute(
            query.order_by(Recommendation.created_at.desc()).limit(1)
        ).scalar_one_or_none()
        if recommendation is None:
            raise NotFoundError("No recommendation for product", details={"product_id": product_id})
        return recommendation

    def price_history(self, product_id: str) -> list[PriceHistory]:
        if self.db.get(Product, product_id) is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        return list(
            self.db.execute(
                select(PriceHistory)
                .where(PriceHistory.product_id == product_id)
                .order_by(PriceHistory.created_at.desc())
            ).scalars()
        )
