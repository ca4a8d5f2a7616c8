from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON


JsonDict = dict[str, float]

RUN_STATUSES = ("pending", "running", "completed", "failed", "cancelled")
ACTIVE_RUN_STATUSES = ("pending", "running")
LOOKUP_STATUSES = ("success", "not_found", "error")
RECOMMENDATIONS = ("raise", "lower", "keep")
APPROVAL_STATUSES = ("not_approved", "approved", "rejected")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


MONEY = Numeric(14, 2, asdecimal=False)


class Base(DeclarativeBase):
    pass


class Marketplace(Base):
    __tablename__ = "marketplaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(256), index=True)
    country: Mapped[str] = mapped_column(String(64), default="Colombia")
    tax_rate: Mapped[float] = mapped_column(Float, default=0.19)
    base_url: Mapped[str] = mapped_column(Text)
    currency: Mapped[str] = mapped_column(String(8), default="COP")
    status: Mapped[str] = mapped_column(String(32), index=True, default="active")
    google_indexed_products: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(512), index=True)
    brand: Mapped[str] = mapped_column(String(128), index=True)
    is_first_party: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    compared_to_id: Mapped[str | None] = mapped_column(ForeignKey("products.id"), index=True, nullable=True)
    ingredient_content: Mapped[JsonDict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(32), index=True, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    competitors: Mapped[list[Product]] = relationship(back_populates="compared_to")
    compared_to: Mapped[Product | None] = relationship(back_populates="competitors", remote_side=[id])


class IngestionRun(Base):
    __tablename__ = "ingestion_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    status: Mapped[str] = mapped_column(String(32), index=True, default="pending")
    triggered_by: Mapped[str] = mapped_column(String(256))
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    product_id: Mapped[str | None] = mapped_column(ForeignKey("products.id"), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_products: Mapped[int] = mapped_column(Integer, default=0)
    processed_products: Mapped[int] = mapped_column(Integer, default=0)
    total_lookups: Mapped[int] = mapped_column(Integer, default=0)
    completed_lookups: Mapped[int] = mapped_column(Integer, default=0)
    failed_lookups: Mapped[int] = mapped_column(Integer, default=0)
    products_with_prices: Mapped[int] = mapped_column(Integer, default=0)
    products_not_found: Mapped[int] = mapped_column(Integer, default=0)
    products_with_recommendations: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    error_stack: Mapped[str | None] = mapped_column(Text)

    results: Mapped[list[LookupResultRecord]] = relationship(
        back_populates="run", order_by="LookupResultRecord.sequence", cascade="all, delete-orphan"
    )


class LookupResultRecord(Base):
    __tablename__ = "lookup_results"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ingestion_run_id: Mapped[str] = mapped_column(ForeignKey("ingestion_runs.id"), index=True)
    product_id: Mapped[str] = mapped_column(String(36), index=True)
    product_name: Mapped[str] = mapped_column(String(512))
    product_brand: Mapped[str] = mapped_column(String(128))
    marketplace_id: Mapped[str] = mapped_column(String(36))
    marketplace_name: Mapped[str] = mapped_column(String(256))
    url: Mapped[str] = mapped_column(Text, default="")
    url_type: Mapped[str] = mapped_column(String(32), default="unknown")
    is_canonical_url: Mapped[bool] = mapped_column(Boolean, default=False)
    price: Mapped[float | None] = mapped_column(MONEY, nullable=True)
    price_ex_tax: Mapped[float | None] = mapped_column(MONEY, nullable=True)
    price_ex_tax_derived: Mapped[bool] = mapped_column(Boolean, default=False)
    price_inc_tax: Mapped[float | None] = mapped_column(MONEY, nullable=True)
    tax_rate: Mapped[float] = mapped_column(Float)
    country: Mapped[str] = mapped_column(String(64))
    ingredient_content: Mapped[JsonDict] = mapped_column(JSON, default=dict)
    price_per_ingredient_content: Mapped[JsonDict] = mapped_column(JSON, default=dict)
    currency: Mapped[str | None] = mapped_column(String(8))
    in_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    scraped_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    lookup_status: Mapped[str] = mapped_column(String(16), index=True)
    price_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    error_message: Mapped[str | None] = mapped_column(Text)

    run: Mapped[IngestionRun] = relationship(back_populates="results")


class Price(Base):
    __tablename__ = "prices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), index=True)
    marketplace_id: Mapped[str | None] = mapped_column(ForeignKey("marketplaces.id"), index=True, nullable=True)
    ingestion_run_id: Mapped[str | None] = mapped_column(ForeignKey("ingestion_runs.id"), index=True, nullable=True)
    price_ex_tax: Mapped[float] = mapped_column(MONEY)
    price_inc_tax: Mapped[float] = mapped_column(MONEY)
    ingredient_content: Mapped[JsonDict] = mapped_column(JSON, default=dict)
    price_per_ingredient_content: Mapped[JsonDict] = mapped_column(JSON, default=dict)
    price_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    recommendation: Mapped[str | None] = mapped_column(String(16))
    recommendation_reasoning: Mapped[str | None] = mapped_column(Text)
    recommended_price: Mapped[float | None] = mapped_column(MONEY, nullable=True)
    recommendation_status: Mapped[str | None] = mapped_column(String(32))
    recommendation_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recommendation_approved_by: Mapped[str | None] = mapped_column(String(256))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class PriceHistory(Base):
    __tablename__ = "price_history"
    __table_args__ = (UniqueConstraint("price_id", "recommendation_id", name="uq_price_history_recommendation"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    price_id: Mapped[str] = mapped_column(ForeignKey("prices.id"), index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), index=True)
    recommendation_id: Mapped[str | None] = mapped_column(ForeignKey("recommendations.id"), nullable=True)
    old_price_inc_tax: Mapped[float] = mapped_column(MONEY)
    new_price_inc_tax: Mapped[float] = mapped_column(MONEY)
    old_price_ex_tax: Mapped[float] = mapped_column(MONEY)
    new_price_ex_tax: Mapped[float] = mapped_column(MONEY)
    change_reason: Mapped[str] = mapped_column(String(64))
    recommendation: Mapped[str | None] = mapped_column(String(16))
    recommended_price: Mapped[float | None] = mapped_column(MONEY, nullable=True)
    recommendation_reasoning: Mapped[str | None] = mapped_column(Text)
    changed_by: Mapped[str | None] = mapped_column(String(256))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)


class Recommendation(Base):
    __tablename__ = "recommendations"
    __table_args__ = (UniqueConstraint("product_id", "ingestion_run_id", name="uq_recommendation_product_run"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), index=True)
    ingestion_run_id: Mapped[str] = mapped_column(ForeignKey("ingestion_runs.id"), index=True)
    current_price: Mapped[float | None] = mapped_column(MONEY, nullable=True)
    recommendation: Mapped[str] = mapped_column(String(16))
    reasoning: Mapped[str | None] = mapped_column(Text)
    recommended_price: Mapped[float | None] = mapped_column(MONEY, nullable=True)
    recommendation_status: Mapped[str] = mapped_column(String(32), default="not_approved")
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(256))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
