from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pricewatch.config import WorkerSettings
from pricewatch_api.api.deps import get_pipeline_settings, require_admin_token
from pricewatch_api.db.session import get_db
from pricewatch_api.schemas.recommendations import (
    ActorRequest,
    BulkAcceptRequest,
    BulkAcceptResponse,
    RecommendationOut,
)
from pricewatch_api.services.recommendations import (
    accept_recommendation,
    bulk_accept,
    latest_recommendation,
    reject_recommendation,
)

router = APIRouter(prefix="/v1/admin/recommendations", tags=["recommendations"], dependencies=[Depends(require_admin_token)])


@router.get("/latest/{product_id}", response_model=RecommendationOut)
def latest(product_id: str, ingestion_run_id: str | None = None, db: Session = Depends(get_db)) -> RecommendationOut:
    return latest_recommendation(db, product_id, run_id=ingestion_run_id)


@router.post("/bulk-accept", response_model=BulkAcceptResponse)
def bulk(
    payload: BulkAcceptRequest,
    db: Session = Depends(get_db),
    settings: WorkerSettings = Depends(get_pipeline_settings),
) -> BulkAcceptResponse:
    return bulk_accept(db, payload.recommendation_ids, payload.actor, tax_rate=settings.default_tax_rate)


@router.post("/{recommendation_id}/accept", response_model=RecommendationOut)
def accept(
    recommendation_id: str,
    payload: ActorRequest,
    db: Session = Depends(get_db),
    settings: WorkerSettings = Depends(get_pipeline_settings),
) -> RecommendationOut:
    return accept_recommendation(db, recommendation_id, payload.actor, tax_rate=settings.default_tax_rate)


@router.post("/{recommendation_id}/reject", response_model=RecommendationOut)
def reject(recommendation_id: str, payload: ActorRequest, db: Session = Depends(get_db)) -> RecommendationOut:
    return reject_recommendation(db, recommendation_id, payload.actor)
