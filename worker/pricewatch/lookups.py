from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pricewatch.models import utc_now
from pricewatch.oracles.base import (
    LookupFailure,
    LookupNotFound,
    LookupOutcome,
    LookupReply,
    LookupSuccess,
    MarketplaceRef,
    ProductRef,
)
from pricewatch.scoring.confidence import score_observation
from pricewatch.scoring.urls import normalize_url

SUCCESS = "success"
NOT_FOUND = "not_found"
ERROR = "error"


@dataclass(frozen=True)
class LookupTask:
    product: ProductRef
    marketplace: MarketplaceRef


@dataclass(frozen=True)
class LookupResult:
    product_id: str
    product_name: str
    product_brand: str
    marketplace_id: str
    marketplace_name: str
    url: str
    url_type: str
    is_canonical_url: bool
    tax_rate: float
    country: str
    currency: str | None
    in_stock: bool
    scraped_at: datetime
    lookup_status: str
    price_confidence: float
    price: float | None = None
    price_ex_tax: float | None = None
    price_ex_tax_derived: bool = False
    price_inc_tax: float | None = None
    ingredient_content: dict[str, float] = field(default_factory=dict)
    price_per_ingredient_content: dict[str, float] = field(default_factory=dict)
    error_message: str | None = None

    @property
    def has_price(self) -> bool:
        return self.lookup_status == SUCCESS and self.price is not None


def derive_tax_prices(
    price_inc_tax: float | None, price_ex_tax: float | None, tax_rate: float
) -> tuple[float | None, float | None, bool]:
    """Fill in whichever of the two prices is missing.

    Returns ``(price_inc_tax, price_ex_tax, price_ex_tax_derived)``.
    """
    if price_inc_tax is not None and price_ex_tax is None:
        return round(price_inc_tax, 2), round(price_inc_tax / (1 + tax_rate), 2), True
    if price_ex_tax is not None and price_inc_tax is None:
        return round(price_ex_tax * (1 + tax_rate), 2), round(price_ex_tax, 2), False
    if price_inc_tax is None or price_ex_tax is None:
        return None, None, False
    return round(price_inc_tax, 2), round(price_ex_tax, 2), False


def price_per_ingredient(price: float | None, ingredient_content: dict[str, float] | None) -> dict[str, float]:
    if price is None:
        return {}
    per_unit: dict[str, float] = {}
    for ingredient, content in (ingredient_content or {}).items():
        try:
            quantity = float(content)
        except (TypeError, ValueError):
            continue
        if quantity > 0:
            per_unit[ingredient] = round(price / quantity, 2)
    return per_unit


def currency_matches(reported: str | None, expected: str) -> bool:
    if reported is None or not reported.strip():
        return True
    return reported.strip().upper() == expected.strip().upper()


def build_lookup_result(task: LookupTask, outcome: LookupOutcome, scraped_at: datetime | None = None) -> LookupResult:
    product = task.product
    marketplace = task.marketplace
    scraped_at = scraped_at or utc_now()

    reply: LookupReply | None = None
    status = SUCCESS
    error_message: str | None = None
    if isinstance(outcome, LookupSuccess):
        reply = outcome.reply
    elif isinstance(outcome, LookupNotFound):
        reply = outcome.reply
        status = NOT_FOUND
        error_message = outcome.reason
    elif isinstance(outcome, LookupFailure):
        status = ERROR
        error_message = outcome.reason

    currency = (reply.currency.strip().upper() if reply and reply.currency else None) or marketplace.currency
    price_inc_tax: float | None = None
    price_ex_tax: float | None = None
    derived = False
    if reply is not None and status == SUCCESS:
        if currency_matches(reply.currency, marketplace.currency):
            price_inc_tax, price_ex_tax, derived = derive_tax_prices(
                reply.price_inc_tax, reply.price_ex_tax, marketplace.tax_rate
            )
        else:
            status = NOT_FOUND
            error_message = f"Currency mismatch: expected {marketplace.currency}, got {reply.currency}"

    url = normalize_url(reply.product_url if reply else None) or ""
    in_stock = bool(reply.in_stock) if reply is not None and status != ERROR else False
    url_type, canonical, confidence = score_observation(
        url=url,
        marketplace_url=marketplace.base_url,
        in_stock=in_stock,
        has_price=price_inc_tax is not None,
        price_ex_tax_derived=derived,
    )

    return LookupResult(
        product_id=product.id,
        product_name=product.name,
        product_brand=product.brand,
        marketplace_id=marketplace.id,
        marketplace_name=marketplace.name,
        url=url,
        url_type=url_type,
        is_canonical_url=canonical,
        tax_rate=marketplace.tax_rate,
        country=marketplace.country,
        currency=currency,
        in_stock=in_stock,
        scraped_at=scraped_at,
        lookup_status=status,
        price_confidence=confidence,
        price=price_inc_tax,
        price_ex_tax=price_ex_tax,
        price_ex_tax_derived=derived,
        price_inc_tax=price_inc_tax,
        ingredient_content=dict(product.ingredient_content),
        price_per_ingredient_content=price_per_ingredient(price_ex_tax, product.ingredient_content),
        error_message=error_message,
    )
