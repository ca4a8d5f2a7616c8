from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class ProductRef:
    id: str
    name: str
    brand: str
    ingredient_content: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class MarketplaceRef:
    id: str
    name: str
    country: str
    base_url: str
    tax_rate: float
    currency: str


class OracleModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class LookupReply(OracleModel):
    price_inc_tax: float | None = Field(default=None, ge=0)
    price_ex_tax: float | None = Field(default=None, ge=0)
    product_url: str | None = None
    product_name: str | None = None
    in_stock: bool = False
    currency: str | None = None


class CompetitorPrice(OracleModel):
    marketplace_name: str
    product_name: str
    brand_name: str
    price_inc_tax: float
    price_ex_tax: float
    price_confidence: float
    ingredient_content: dict[str, float] = Field(default_factory=dict)
    price_per_ingredient_content: dict[str, float] = Field(default_factory=dict)


class AdviceRequest(OracleModel):
    product_name: str
    current_price: float | None
    ingredient_content: dict[str, float] = Field(default_factory=dict)
    competitor_prices: list[CompetitorPrice] = Field(default_factory=list)
    min_competitor_price: float
    max_competitor_price: float
    avg_competitor_price: float
    ingredient_price_averages: dict[str, float] = Field(default_factory=dict)


class Advice(OracleModel):
    recommendation: Literal["raise", "lower", "keep"]
    reasoning: str
    suggested_price: float | None = Field(default=None, gt=0)


@dataclass(frozen=True)
class LookupSuccess:
    reply: LookupReply


@dataclass(frozen=True)
class LookupNotFound:
    reason: str
    reply: LookupReply | None = None


@dataclass(frozen=True)
class LookupFailure:
    reason: str


LookupOutcome = LookupSuccess | LookupNotFound | LookupFailure


class MarketLookupOracle(ABC):
    """Finds a product's listing on one marketplace.

    Implementations return a mapping shaped like :class:`LookupReply` (or the
    model itself), or ``None`` when the product is not listed. They may raise;
    the scheduler converts every failure into a recorded lookup result.
    """

    @abstractmethod
    async def lookup(self, product: ProductRef, marketplace: MarketplaceRef) -> LookupReply | dict[str, Any] | None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class RecommendationOracle(ABC):
    @abstractmethod
    async def advise(self, request: AdviceRequest) -> Advice | dict[str, Any] | str:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
