from __future__ import annotations

import asyncio
import logging
import traceback
from collections.abc import Callable

from sqlalchemy.orm import Session

from pricewatch.catalog import CatalogReader
from pricewatch.config import WorkerSettings
from pricewatch.coordinator import RunCoordinator
from pricewatch.models import IngestionRun, LookupResultRecord
from pricewatch.oracles.registry import OracleSet
from pricewatch.pipeline import IngestionPipeline
from pricewatch_api.schemas.runs import (
    IngestionRunOut,
    LookupResultOut,
    ResultsSummary,
    RunListResponse,
    RunProgress,
    RunStatusOut,
    StartRunRequest,
    StartRunResponse,
)
from pricewatch_api.services.serialization import iso

logger = logging.getLogger(__name__)


def run_out(run: IngestionRun) -> IngestionRunOut:
    return IngestionRunOut(
        id=run.id,
        status=run.status,
        triggered_by=run.triggered_by,
        triggered_at=iso(run.triggered_at) or "",
        product_id=run.product_id,
        started_at=iso(run.started_at),
        completed_at=iso(run.completed_at),
        failed_at=iso(run.failed_at),
        total_products=run.total_products,
        processed_products=run.processed_products,
        total_lookups=run.total_lookups,
        completed_lookups=run.completed_lookups,
        failed_lookups=run.failed_lookups,
        products_with_prices=run.products_with_prices,
        products_not_found=run.products_not_found,
        products_with_recommendations=run.products_with_recommendations,
        error_message=run.error_message,
    )


def lookup_result_out(record: LookupResultRecord) -> LookupResultOut:
    return LookupResultOut(
        product_id=record.product_id,
        product_name=record.product_name,
        product_brand=record.product_brand,
        marketplace_id=record.marketplace_id,
        marketplace_name=record.marketplace_name,
        url=record.url,
        url_type=record.url_type,
        is_canonical_url=record.is_canonical_url,
        price=record.price,
        price_ex_tax=record.price_ex_tax,
        price_ex_tax_derived=record.price_ex_tax_derived,
        price_inc_tax=record.price_inc_tax,
        tax_rate=record.tax_rate,
        country=record.country,
        ingredient_content=record.ingredient_content or {},
        price_per_ingredient_content=record.price_per_ingredient_content or {},
        currency=record.currency,
        in_stock=record.in_stock,
        scraped_at=iso(record.scraped_at) or "",
        lookup_status=record.lookup_status,
        price_confidence=record.price_confidence,
        error_message=record.error_message,
    )


def start_run(db: Session, payload: StartRunRequest) -> StartRunResponse:
    plan = CatalogReader(db).build_plan(payload.product_id)
    run = RunCoordinator(db).create(
        triggered_by=payload.triggered_by,
        total_products=plan.total_products,
        total_lookups=plan.total_lookups,
        product_id=payload.product_id,
    )
    return StartRunResponse(run_id=run.id, status=run.status)


def execute_run(
    run_id: str,
    session_factory: Callable[[], Session],
    settings: WorkerSettings,
    oracle_factory: Callable[[WorkerSettings], OracleSet],
) -> None:
    """Background entry point: runs the whole pipeline for a prepared run.

    Anything that escapes the pipeline fails the run so it never stays pending.
    """

    async def _execute(pipeline: IngestionPipeline, oracles: OracleSet) -> IngestionRun:
        try:
            return await pipeline.execute(run_id)
        finally:
            await oracles.aclose()

    with session_factory() as db:
        try:
            oracles = oracle_factory(settings)
            pipeline = IngestionPipeline(db, oracles.lookup, oracles.recommendation, settings=settings)
            run = asyncio.run(_execute(pipeline, oracles))
        except Exception as exc:
            logger.exception("Background ingestion run %s crashed", run_id)
            RunCoordinator(db).mark_failed(run_id, str(exc) or type(exc).__name__, traceback.format_exc())
            return
        logger.info("Background run %s finished with status %s", run_id, run.status)



def list_runs(db: Session, page: int, limit: int) -> RunListResponse:
    runs, total = RunCoordinator(db).list_runs(page=page, limit=limit)
    return RunListResponse(items=[run_out(run) for run in runs], total=total, page=page, limit=limit)


def recent_runs(db: Session, limit: int) -> list[IngestionRunOut]:
    return [run_out(run) for run in RunCoordinator(db).recent(limit=limit)]


def runs_by_status(db: Session, status: str) -> list[IngestionRunOut]:
    return [run_out(run) for run in RunCoordinator(db).by_status(status)]


def run_status(db: Session, run_id: str, include_results: bool = False) -> RunStatusOut:
    coordinator = RunCoordinator(db)
    report = coordinator.status_report(run_id)
    results = None
    if include_results:
        results = [lookup_result_out(record) for record in coordinator.get(run_id).results]
    return RunStatusOut(
        id=report["id"],
        status=report["status"],
        progress=RunProgress(**report["progress"]),
        results_summary=ResultsSummary(**report["results_summary"]),
        failure_reason=report["failure_reason"],
        results=results,
    )


def cancel_run(db: Session, run_id: str) -> IngestionRunOut:
    return run_out(RunCoordinator(db).cancel(run_id))
