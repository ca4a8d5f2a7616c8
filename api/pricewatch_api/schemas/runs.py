from pydantic import BaseModel


class StartRunRequest(BaseModel):
    product_id: str | None = None
    triggered_by: str = "api"


class StartRunResponse(BaseModel):
    run_id: str
    status: str


class IngestionRunOut(BaseModel):
    id: str
    status: str
    triggered_by: str
    triggered_at: str
    product_id: str | None
    started_at: str | None
    completed_at: str | None
    failed_at: str | None
    total_products: int
    processed_products: int
    total_lookups: int
    completed_lookups: int
    failed_lookups: int
    products_with_prices: int
    products_not_found: int
    products_with_recommendations: int
    error_message: str | None


class RunListResponse(BaseModel):
    items: list[IngestionRunOut]
    total: int
    page: int
    limit: int


class RunProgress(BaseModel):
    total_products: int
    processed_products: int
    total_lookups: int
    completed_lookups: int
    failed_lookups: int
    percent: float


class ResultsSummary(BaseModel):
    success: int
    not_found: int
    error: int
    products_with_prices: int
    products_not_found: int
    products_with_recommendations: int


class LookupResultOut(BaseModel):
    product_id: str
    product_name: str
    product_brand: str
    marketplace_id: str
    marketplace_name: str
    url: str
    url_type: str
    is_canonical_url: bool
    price: float | None
    price_ex_tax: float | None
    price_ex_tax_derived: bool
    price_inc_tax: float | None
    tax_rate: float
    country: str
    ingredient_content: dict[str, float]
    price_per_ingredient_content: dict[str, float]
    currency: str | None
    in_stock: bool
    scraped_at: str
    lookup_status: str
    price_confidence: float
    error_message: str | None


class RunStatusOut(BaseModel):
    id: str
    status: str
    progress: RunProgress
    results_summary: ResultsSummary
    failure_reason: str | None
    results: list[LookupResultOut] | None = None
