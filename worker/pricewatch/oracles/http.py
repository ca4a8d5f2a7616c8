from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any

import httpx

from pricewatch.oracles.base import (
    Advice,
    AdviceRequest,
    LookupReply,
    MarketLookupOracle,
    MarketplaceRef,
    ProductRef,
    RecommendationOracle,
)

RETRYABLE_HTTP_STATUSES = {408, 425, 429, 500, 502, 503, 504}
USER_AGENT = "PriceWatchBot/1.0 (competitor-price-monitoring)"

logger = logging.getLogger(__name__)


class HttpOracleClient:
    """JSON-over-HTTP transport shared by the remote oracles."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.6,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.max_retries = max(0, max_retries)
        self.retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    async def post_json(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                response = await self.client.post(path, json=payload)
                if response.status_code in RETRYABLE_HTTP_STATUSES:
                    raise httpx.HTTPStatusError(
                        f"Retryable status {response.status_code} for {path}",
                        request=response.request,
                        response=response,
                    )
                return response
            except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError) as exc:
                if attempt >= attempts - 1:
                    raise
                backoff = self.retry_backoff_seconds * (2**attempt)
                if backoff > 0:
                    await asyncio.sleep(backoff)
                logger.debug("Retrying %s after error (%s), attempt %s/%s", path, exc, attempt + 1, attempts)
        raise RuntimeError(f"Unreachable retry state for {path}")

    async def aclose(self) -> None:
        await self.client.aclose()


class HttpLookupOracle(MarketLookupOracle):
    path = "/lookup"

    def __init__(self, client: HttpOracleClient) -> None:
        self.client = client

    async def lookup(self, product: ProductRef, marketplace: MarketplaceRef) -> LookupReply | dict[str, Any] | None:
        response = await self.client.post_json(
            self.path,
            {"product": asdict(product), "marketplace": asdict(marketplace)},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self.client.aclose()


class HttpRecommendationOracle(RecommendationOracle):
    path = "/advise"

    def __init__(self, client: HttpOracleClient) -> None:
        self.client = client

    async def advise(self, request: AdviceRequest) -> Advice | dict[str, Any] | str:
        response = await self.client.post_json(self.path, request.model_dump(by_alias=True))
        response.raise_for_status()
        if "json" in response.headers.get("content-type", "").lower():
            return response.json()
        return response.text

    async def aclose(self) -> None:
        await self.client.aclose()
