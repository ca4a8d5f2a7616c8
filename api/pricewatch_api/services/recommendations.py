from __future__ import annotations

from sqlalchemy.orm import Session

from pricewatch.approvals import RecommendationApprovals
from pricewatch.models import PriceHistory, Recommendation
from pricewatch_api.schemas.recommendations import (
    BulkAcceptError,
    BulkAcceptResponse,
    PriceHistoryOut,
    RecommendationOut,
)
from pricewatch_api.services.serialization import iso


def recommendation_out(recommendation: Recommendation) -> RecommendationOut:
    return RecommendationOut(
        id=recommendation.id,
        product_id=recommendation.product_id,
        ingestion_run_id=recommendation.ingestion_run_id,
        current_price=recommendation.current_price,
        recommendation=recommendation.recommendation,
        reasoning=recommendation.reasoning,
        recommended_price=recommendation.recommended_price,
        recommendation_status=recommendation.recommendation_status,
        approved_at=iso(recommendation.approved_at),
        approved_by=recommendation.approved_by,
        created_at=iso(recommendation.created_at) or "",
    )


def price_history_out(row: PriceHistory) -> PriceHistoryOut:
    return PriceHistoryOut(
        id=row.id,
        price_id=row.price_id,
        product_id=row.product_id,
        recommendation_id=row.recommendation_id,
        old_price_inc_tax=row.old_price_inc_tax,
        new_price_inc_tax=row.new_price_inc_tax,
        old_price_ex_tax=row.old_price_ex_tax,
        new_price_ex_tax=row.new_price_ex_tax,
        change_reason=row.change_reason,
        recommendation=row.recommendation,
        recommended_price=row.recommended_price,
        recommendation_reasoning=row.recommendation_reasoning,
        changed_by=row.changed_by,
        notes=row.notes,
        created_at=iso(row.created_at) or "",
    )


def latest_recommendation(db: Session, product_id: str, run_id: str | None = None) -> RecommendationOut:
    return recommendation_out(RecommendationApprovals(db).latest_for_product(product_id, run_id=run_id))


def accept_recommendation(db: Session, recommendation_id: str, actor: str, tax_rate: float) -> RecommendationOut:
    approvals = RecommendationApprovals(db, tax_rate=tax_rate)
    return recommendation_out(approvals.accept(recommendation_id, actor))


def reject_recommendation(db: Session, recommendation_id: str, actor: str) -> RecommendationOut:
    return recommendation_out(RecommendationApprovals(db).reject(recommendation_id, actor))


def bulk_accept(db: Session, recommendation_ids: list[str], actor: str, tax_rate: float) -> BulkAcceptResponse:
    result = RecommendationApprovals(db, tax_rate=tax_rate).bulk_accept(recommendation_ids, actor)
    return BulkAcceptResponse(
        success=result.success,
        successful=result.successful,
        failed=result.failed,
        skipped=result.skipped,
        errors=[BulkAcceptError(recommendation_id=item_id, error=error) for item_id, error in result.errors],
    )


def price_history(db: Session, product_id: str) -> list[PriceHistoryOut]:
    return [price_history_out(row) for row in RecommendationApprovals(db).price_history(product_id)]
