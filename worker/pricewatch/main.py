from __future__ import annotations

import argparse
import asyncio
import logging

from pricewatch.config import get_settings
from pricewatch.db import SessionLocal, engine
from pricewatch.models import Base, IngestionRun
from pricewatch.oracles.registry import MODES, OracleSet, build_oracles, default_mode
from pricewatch.pipeline import IngestionPipeline
from pricewatch.seed import seed_catalog


async def _run(
    pipeline: IngestionPipeline, oracles: OracleSet, triggered_by: str, product_id: str | None
) -> IngestionRun:
    try:
        return await pipeline.run(triggered_by=triggered_by, product_id=product_id)
    finally:
        await oracles.aclose()


def run_once(mode: str, triggered_by: str, product_id: str | None = None, seed: bool = False) -> None:
    settings = get_settings()
    Base.metadata.create_all(bind=engine)
    oracles = build_oracles(mode, settings)

    with SessionLocal() as db:
        if seed:
            seed_catalog(db, tax_rate=settings.default_tax_rate)
        pipeline = IngestionPipeline(db, oracles.lookup, oracles.recommendation, settings=settings)
        run = asyncio.run(_run(pipeline, oracles, triggered_by, product_id))
        print(
            f"run={run.id} status={run.status} lookups={run.total_lookups} "
            f"completed={run.completed_lookups} failed={run.failed_lookups} "
            f"priced={run.products_with_prices} recommendations={run.products_with_recommendations}"
        )


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="PriceWatch competitor price ingestion")
    parser.add_argument("--product-id", default=None, help="Limit the run to one product")
    parser.add_argument("--mode", default=default_mode(settings), choices=list(MODES))
    parser.add_argument("--triggered-by", default="cli")
    parser.add_argument("--seed", action="store_true", help="Load the demo catalog before running")
    parser.add_argument("--log-level", default="INFO")

    args = parser.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_once(mode=args.mode, triggered_by=args.triggered_by, product_id=args.product_id, seed=args.seed)


if __name__ == "__main__":
    main()
