import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from pricewatch.config import WorkerSettings
from pricewatch.models import Base, Marketplace, Price, Product
from pricewatch.seed import seed_catalog


@pytest.fixture()
def session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def settings() -> WorkerSettings:
    return WorkerSettings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        lookup_concurrency=4,
        lookup_timeout_seconds=1.0,
        recommendation_timeout_seconds=1.0,
        lookup_oracle_url=None,
        recommendation_oracle_url=None,
    )


@pytest.fixture()
def seeded(session: Session) -> Session:
    seed_catalog(session)
    return session


def add_marketplace(db: Session, name: str, base_url: str, **overrides) -> Marketplace:
    values = {
        "name": name,
        "base_url": base_url,
        "country": "Colombia",
        "tax_rate": 0.19,
        "currency": "COP",
        "status": "active",
        "google_indexed_products": True,
    }
    values.update(overrides)
    marketplace = Marketplace(**values)
    db.add(marketplace)
    db.commit()
    return marketplace


def add_product(
    db: Session,
    name: str,
    brand: str = "Nutribiotics",
    compared_to: Product | None = None,
    ingredient_content: dict[str, float] | None = None,
    current_price: float | None = None,
) -> Product:
    product = Product(
        name=name,
        brand=brand,
        is_first_party=compared_to is None,
        compared_to_id=compared_to.id if compared_to else None,
        ingredient_content=ingredient_content or {},
    )
    db.add(product)
    db.flush()
    if current_price is not None:
        db.add(
            Price(
                product_id=product.id,
                marketplace_id=None,
                price_inc_tax=current_price,
                price_ex_tax=round(current_price / 1.19, 2),
            )
        )
    db.commit()
    return product


@pytest.fixture()
def make_marketplace(session: Session):
    def factory(name: str, base_url: str, **overrides) -> Marketplace:
        return add_marketplace(session, name, base_url, **overrides)

    return factory


@pytest.fixture()
def make_product(session: Session):
    def factory(name: str, **kwargs) -> Product:
        return add_product(session, name, **kwargs)

    return factory
