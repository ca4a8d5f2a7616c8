from __future__ import annotations

from dataclasses import dataclass

from pricewatch.config import WorkerSettings
from pricewatch.errors import ValidationError
from pricewatch.oracles.base import MarketLookupOracle, RecommendationOracle
from pricewatch.oracles.fixture import FixtureLookupOracle, ThresholdRecommendationOracle
from pricewatch.oracles.http import HttpLookupOracle, HttpOracleClient, HttpRecommendationOracle

MODES = ("fixture", "live")


@dataclass(frozen=True)
class OracleSet:
    lookup: MarketLookupOracle
    recommendation: RecommendationOracle

    async def aclose(self) -> None:
        await self.lookup.aclose()
        await self.recommendation.aclose()


def _client(base_url: str, settings: WorkerSettings) -> HttpOracleClient:
    return HttpOracleClient(
        base_url,
        timeout_seconds=settings.oracle_http_timeout,
        max_retries=settings.oracle_max_retries,
        retry_backoff_seconds=settings.oracle_retry_backoff_seconds,
    )


def build_oracles(mode: str, settings: WorkerSettings) -> OracleSet:
    if mode == "fixture":
        return OracleSet(lookup=FixtureLookupOracle(), recommendation=ThresholdRecommendationOracle())
    if mode != "live":
        raise ValidationError(f"Unknown oracle mode: {mode}", details={"allowed": list(MODES)})
    if not settings.lookup_oracle_url or not settings.recommendation_oracle_url:
        raise ValidationError(
            "Live mode needs PRICEWATCH_LOOKUP_ORACLE_URL and PRICEWATCH_RECOMMENDATION_ORACLE_URL"
        )
    return OracleSet(
        lookup=HttpLookupOracle(_client(settings.lookup_oracle_url, settings)),
        recommendation=HttpRecommendationOracle(_client(settings.recommendation_oracle_url, settings)),
    )


def default_mode(settings: WorkerSettings) -> str:
    return "live" if settings.lookup_oracle_url and settings.recommendation_oracle_url else "fixture"
