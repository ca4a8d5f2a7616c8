from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricewatch.models import Marketplace, Price, Product
from pricewatch.oracles.fixture import FIXTURES_DIR


def _load(path: Path | None) -> dict[str, Any]:
    return json.loads((path or FIXTURES_DIR / "catalog.json").read_text())


def seed_marketplaces(db: Session, rows: list[dict[str, Any]]) -> None:
    existing = set(db.execute(select(Marketplace.name)).scalars())
    for row in rows:
        if row["name"] not in existing:
            db.add(Marketplace(**row))


def seed_products(db: Session, rows: list[dict[str, Any]], tax_rate: float) -> None:
    existing = {product.name: product for product in db.execute(select(Product)).scalars()}
    for row in rows:
        product = existing.get(row["name"])
        if product is None:
            product = Product(
                name=row["name"],
                brand=row["brand"],
                is_first_party=True,
                ingredient_content=row.get("ingredient_content", {}),
            )
            db.add(product)
            db.flush()
            price_inc_tax = row.get("price_inc_tax")
            if price_inc_tax is not None:
                db.add(
                    Price(
                        product_id=product.id,
                        marketplace_id=None,
                        price_inc_tax=price_inc_tax,
                        price_ex_tax=round(price_inc_tax / (1 + tax_rate), 2),
                        ingredient_content=dict(product.ingredient_content),
                    )
                )

        for competitor in row.get("competitors", []):
            if competitor["name"] in existing:
                continue
            db.add(
                Product(
                    name=competitor["name"],
                    brand=competitor["brand"],
                    is_first_party=False,
                    compared_to_id=product.id,
                    ingredient_content=competitor.get("ingredient_content", {}),
                )
            )


def seed_catalog(db: Session, path: Path | None = None, tax_rate: float = 0.19) -> None:
    """Load the demo catalog; rows that already exist by name are left alone."""
    payload = _load(path)
    seed_marketplaces(db, payload.get("marketplaces", []))
    seed_products(db, payload.get("products", []), tax_rate)
    db.commit()
