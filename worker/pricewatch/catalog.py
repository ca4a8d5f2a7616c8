from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricewatch.errors import NotFoundError
from pricewatch.lookups import LookupTask
from pricewatch.models import Marketplace, Price, Product
from pricewatch.oracles.base import MarketplaceRef, ProductRef


@dataclass
class LookupPlan:
    """Snapshot of the catalog slice a run works on."""

    first_party: list[ProductRef] = field(default_factory=list)
    competitors: dict[str, list[ProductRef]] = field(default_factory=dict)
    marketplaces: list[MarketplaceRef] = field(default_factory=list)

    @property
    def competitor_products(self) -> list[ProductRef]:
        return [product for linked in self.competitors.values() for product in linked]

    @property
    def tasks(self) -> list[LookupTask]:
        return [
            LookupTask(product=product, marketplace=marketplace)
            for product in self.competitor_products
            for marketplace in self.marketplaces
        ]

    @property
    def total_products(self) -> int:
        return len(self.competitor_products)

    @property
    def total_lookups(self) -> int:
        return self.total_products * len(self.marketplaces)


def product_ref(product: Product) -> ProductRef:
    return ProductRef(
        id=product.id,
        name=product.name,
        brand=product.brand,
        ingredient_content=dict(product.ingredient_content or {}),
    )


def marketplace_ref(marketplace: Marketplace) -> MarketplaceRef:
    return MarketplaceRef(
        id=marketplace.id,
        name=marketplace.name,
        country=marketplace.country,
        base_url=marketplace.base_url,
        tax_rate=marketplace.tax_rate,
        currency=marketplace.currency,
    )


class CatalogReader:
    def __init__(self, db: Session) -> None:
        self.db = db

    def eligible_marketplaces(self) -> list[MarketplaceRef]:
        rows = self.db.execute(
            select(Marketplace)
            .where(Marketplace.status == "active", Marketplace.google_indexed_products.is_(True))
            .order_by(Marketplace.name)
        ).scalars()
        return [marketplace_ref(row) for row in rows]

    def first_party_products(self, product_id: str | None = None) -> list[Product]:
        if product_id is not None:
            product = self.db.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product not found", details={"product_id": product_id})
            if not product.is_first_party and product.compared_to is not None:
                return [product.compared_to]
            return [product]

        return list(
            self.db.execute(
                select(Product)
                .where(
                    Product.is_first_party.is_(True),
                    Product.compared_to_id.is_(None),
                    Product.status == "active",
                )
                .order_by(Product.name)
            ).scalars()
        )

    def linked_competitors(self, product: Product) -> list[ProductRef]:
        rows = self.db.execute(
            select(Product)
            .where(Product.compared_to_id == product.id, Product.status == "active")
            .order_by(Product.name)
        ).scalars()
        return [product_ref(row) for row in rows]

    def build_plan(self, product_id: str | None = None) -> LookupPlan:
        plan = LookupPlan(marketplaces=self.eligible_marketplaces())
        scope = self.first_party_products(product_id)
        for product in scope:
            plan.first_party.append(product_ref(product))
            competitors = self.linked_competitors(product)
            # A competitor-scoped run only looks that competitor up.
            if product_id is not None and product.id != product_id:
                competitors = [ref for ref in competitors if ref.id == product_id]
            plan.competitors[product.id] = competitors
        return plan

    def current_price(self, product_id: str) -> Price | None:
        """Latest first-party price row for ``product_id``."""
        return self.db.execute(
            select(Price)
            .where(Price.product_id == product_id, Price.marketplace_id.is_(None))
            .order_by(Price.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
