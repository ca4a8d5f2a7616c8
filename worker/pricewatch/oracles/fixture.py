from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pricewatch.oracles.base import (
    Advice,
    AdviceRequest,
    LookupReply,
    MarketLookupOracle,
    MarketplaceRef,
    ProductRef,
    RecommendationOracle,
)

FIXTURES_DIR = Path(__file__).resolve().parents[1] / "fixtures"


class FixtureLookupOracle(MarketLookupOracle):
    """Serves canned lookup replies keyed by product and marketplace name."""

    def __init__(self, fixture_path: Path | None = None) -> None:
        self.fixture_path = fixture_path or FIXTURES_DIR / "lookups.json"
        payload = json.loads(self.fixture_path.read_text())
        self._replies: dict[tuple[str, str], dict[str, Any]] = {}
        for item in payload.get("lookups", []):
            key = (str(item["product"]).strip().lower(), str(item["marketplace"]).strip().lower())
            self._replies[key] = item.get("reply") or {}

    async def lookup(self, product: ProductRef, marketplace: MarketplaceRef) -> LookupReply | dict[str, Any] | None:
        return self._replies.get((product.name.strip().lower(), marketplace.name.strip().lower()))


class ThresholdRecommendationOracle(RecommendationOracle):
    """Offline advisor: moves the price to the weighted mean when it drifts past ``band``."""

    def __init__(self, band: float = 0.05) -> None:
        self.band = band

    async def advise(self, request: AdviceRequest) -> Advice:
        current = request.current_price or 0.0
        target = round(request.avg_competitor_price, 2)
        if target <= 0 or current <= 0:
            return Advice(recommendation="keep", reasoning="Insufficient pricing data for an automatic suggestion.")

        gap = (current - target) / target
        if gap > self.band:
            return Advice(
                recommendation="lower",
                reasoning=(
                    f"Current price {current:.2f} is {gap:.0%} above the confidence-weighted competitor "
                    f"average of {target:.2f} across {len(request.competitor_prices)} listing(s)."
                ),
                suggested_price=target,
            )
        if gap < -self.band:
            return Advice(
                recommendation="raise",
                reasoning=(
                    f"Current price {current:.2f} is {abs(gap):.0%} below the confidence-weighted competitor "
                    f"average of {target:.2f}; there is room to move up."
                ),
                suggested_price=target,
            )
        return Advice(
            recommendation="keep",
            reasoning=f"Current price {current:.2f} is within {self.band:.0%} of the competitor average {target:.2f}.",
        )
