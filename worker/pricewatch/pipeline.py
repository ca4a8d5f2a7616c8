from __future__ import annotations

import logging
import traceback

from sqlalchemy.orm import Session

from pricewatch.aggregator import RecommendationAggregator
from pricewatch.catalog import CatalogReader, LookupPlan
from pricewatch.config import WorkerSettings, get_settings
from pricewatch.coordinator import RunCoordinator
from pricewatch.models import IngestionRun
from pricewatch.oracles.base import MarketLookupOracle, RecommendationOracle
from pricewatch.scheduler import CancellationToken, LookupScheduler, RunRecorder

logger = logging.getLogger(__name__)


class IngestionPipeline:
    def __init__(
        self,
        db: Session,
        lookup_oracle: MarketLookupOracle,
        recommendation_oracle: RecommendationOracle,
        settings: WorkerSettings | None = None,
    ) -> None:
        self.db = db
        self.lookup_oracle = lookup_oracle
        self.recommendation_oracle = recommendation_oracle
        self.settings = settings or get_settings()
        self.catalog = CatalogReader(db)
        self.coordinator = RunCoordinator(db)

    def prepare(self, triggered_by: str, product_id: str | None = None) -> tuple[IngestionRun, LookupPlan]:
        plan = self.catalog.build_plan(product_id)
        run = self.coordinator.create(
            triggered_by=triggered_by,
            total_products=plan.total_products,
            total_lookups=plan.total_lookups,
            product_id=product_id,
        )
        return run, plan

    async def execute(self, run_id: str, plan: LookupPlan | None = None) -> IngestionRun:
        try:
            if not self.coordinator.mark_running(run_id):
                logger.warning("Ingestion run %s is not pending; skipping", run_id)
                return self.coordinator.get(run_id)

            if plan is None:
                plan = self.catalog.build_plan(self.coordinator.get(run_id).product_id)
            tasks = plan.tasks
            logger.info(
                "Run %s: %s products x %s marketplaces = %s lookups",
                run_id,
                plan.total_products,
                len(plan.marketplaces),
                len(tasks),
            )

            token = CancellationToken(probe=lambda: self.coordinator.is_cancelled(run_id))
            recorder = RunRecorder(self.coordinator, run_id, tasks, flush_every=self.settings.progress_flush_every)
            scheduler = LookupScheduler(
                oracle=self.lookup_oracle,
                recorder=recorder,
                token=token,
                concurrency=self.settings.lookup_concurrency,
                timeout_seconds=self.settings.lookup_timeout_seconds,
            )
            await scheduler.run(tasks)

            if token.cancelled or self.coordinator.is_cancelled(run_id):
                logger.info("Run %s cancelled; skipping recommendations", run_id)
                return self.coordinator.get(run_id)

            aggregator = RecommendationAggregator(
                self.db,
                self.recommendation_oracle,
                confidence_threshold=self.settings.confidence_threshold,
                timeout_seconds=self.settings.recommendation_timeout_seconds,
            )
            await aggregator.aggregate(run_id, plan)
            self.coordinator.mark_completed(run_id)
        except Exception as exc:
            logger.exception("Ingestion run %s failed", run_id)
            self.coordinator.mark_failed(run_id, str(exc) or type(exc).__name__, traceback.format_exc())

        return self.coordinator.get(run_id)

    async def run(self, triggered_by: str, product_id: str | None = None) -> IngestionRun:
        run, plan = self.prepare(triggered_by, product_id)
        return await self.execute(run.id, plan)
