from pydantic import BaseModel, Field


class ActorRequest(BaseModel):
    actor: str = Field(min_length=1)


class BulkAcceptRequest(BaseModel):
    recommendation_ids: list[str] = Field(min_length=1)
    actor: str = Field(min_length=1)


class RecommendationOut(BaseModel):
    id: str
    product_id: str
    ingestion_run_id: str
    current_price: float | None
    recommendation: str
    reasoning: str | None
    recommended_price: float | None
    recommendation_status: str
    approved_at: str | None
    approved_by: str | None
    created_at: str


class BulkAcceptError(BaseModel):
    recommendation_id: str
    error: str


class BulkAcceptResponse(BaseModel):
    success: bool
    successful: int
    failed: int
    skipped: int
    errors: list[BulkAcceptError]


class PriceHistoryOut(BaseModel):
    id: str
    price_id: str
    product_id: str
    recommendation_id: str | None
    old_price_inc_tax: float
    new_price_inc_tax: float
    old_price_ex_tax: float
    new_price_ex_tax: float
    change_reason: str
    recommendation: str | None
    recommended_price: float | None
    recommendation_reasoning: str | None
    changed_by: str | None
    notes: str | None
    created_at: str
