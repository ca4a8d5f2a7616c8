from __future__ import annotations

from dataclasses import dataclass

from pricewatch.scoring.urls import belongs_to_marketplace_domain, classify_url, is_canonical

WEIGHT_IN_STOCK = 0.35
WEIGHT_HAS_PRICE = 0.30
WEIGHT_DOMAIN_MATCH = 0.25
WEIGHT_TAX_SOURCE = 0.10

DERIVED_TAX_FACTOR = 0.3
NON_CANONICAL_FACTOR = 0.85
NON_CANONICAL_FLOOR = 0.05


@dataclass(frozen=True)
class ConfidenceInput:
    in_stock: bool
    has_price: bool
    domain_match: bool
    price_ex_tax_derived: bool
    is_canonical_url: bool = True


def raw_confidence(signals: ConfidenceInput) -> float:
    score = 0.0
    if signals.in_stock:
        score += WEIGHT_IN_STOCK
    if signals.has_price:
        score += WEIGHT_HAS_PRICE
    if signals.domain_match:
        score += WEIGHT_DOMAIN_MATCH
    score += WEIGHT_TAX_SOURCE * DERIVED_TAX_FACTOR if signals.price_ex_tax_derived else WEIGHT_TAX_SOURCE
    return max(0.0, min(1.0, score))


def calculate_price_confidence(signals: ConfidenceInput) -> float:
    score = raw_confidence(signals)
    if not signals.is_canonical_url:
        score = max(NON_CANONICAL_FLOOR, score * NON_CANONICAL_FACTOR)
    return round(max(0.0, min(1.0, score)), 2)


def score_observation(
    url: str | None,
    marketplace_url: str | None,
    in_stock: bool,
    has_price: bool,
    price_ex_tax_derived: bool,
) -> tuple[str, bool, float]:
    """Classify ``url`` and score the observation against its marketplace.

    Returns ``(url_type, is_canonical_url, confidence)``.
    """
    url_type = classify_url(url)
    canonical = is_canonical(url_type)
    signals = ConfidenceInput(
        in_stock=in_stock,
        has_price=has_price,
        domain_match=canonical and belongs_to_marketplace_domain(url, marketplace_url),
        price_ex_tax_derived=price_ex_tax_derived,
        is_canonical_url=canonical,
    )
    return url_type, canonical, calculate_price_confidence(signals)
