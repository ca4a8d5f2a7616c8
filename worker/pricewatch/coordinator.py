"""Run lifecycle: the only writer of ``IngestionRun`` rows.

Status changes are conditional updates so a terminal status (completed,
failed, cancelled) is never overwritten. Counters are incremented in SQL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any

from sqlalchemy import distinct, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pricewatch.errors import NotFoundError, PersistenceError, ValidationError
from pricewatch.lookups import ERROR, NOT_FOUND, SUCCESS, LookupResult
from pricewatch.models import (
    ACTIVE_RUN_STATUSES,
    RUN_STATUSES,
    IngestionRun,
    LookupResultRecord,
    Recommendation,
    utc_now,
)

logger = logging.getLogger(__name__)


class RunCoordinator:
    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _writing(self, action: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to {action}: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise

    def create(
        self,
        triggered_by: str,
        total_products: int,
        total_lookups: int,
        product_id: str | None = None,
    ) -> IngestionRun:
        run = IngestionRun(
            status="pending",
            triggered_by=triggered_by,
            triggered_at=utc_now(),
            product_id=product_id,
            total_products=total_products,
            total_lookups=total_lookups,
            processed_products=0,
            completed_lookups=0,
            failed_lookups=0,
        )
        with self._writing("create ingestion run"):
            self.db.add(run)
        logger.info("Created ingestion run %s (%s lookups)", run.id, total_lookups)
        return run

    def get(self, run_id: str) -> IngestionRun:
        run = self.db.get(IngestionRun, run_id)
        if run is None:
            raise NotFoundError("Ingestion run not found", details={"run_id": run_id})
        return run

    def _transition(self, run_id: str, allowed_from: tuple[str, ...], values: dict[str, Any], action: str) -> bool:
        with self._writing(action):
            result = self.db.execute(
                update(IngestionRun)
                .where(IngestionRun.id == run_id, IngestionRun.status.in_(allowed_from))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        self._expire(run_id)
        if result.rowcount == 0:
            self.get(run_id)
            return False
        return True

    def mark_running(self, run_id: str) -> bool:
        changed = self._transition(
            run_id, ("pending",), {"status": "running", "started_at": utc_now()}, "mark run as running"
        )
        if changed:
            logger.info("Ingestion run %s started", run_id)
        return changed

    def mark_completed(self, run_id: str) -> bool:
        self.get(run_id)
        rows = self.db.execute(
            select(LookupResultRecord.product_id, LookupResultRecord.lookup_status, LookupResultRecord.price).where(
                LookupResultRecord.ingestion_run_id == run_id
            )
        ).all()
        all_products = {row.product_id for row in rows}
        priced = {row.product_id for row in rows if row.lookup_status == SUCCESS and row.price is not None}
        with_recommendations = self.db.execute(
            select(func.count(distinct(Recommendation.product_id))).where(
                Recommendation.ingestion_run_id == run_id,
                Recommendation.recommendation.in_(("raise", "lower")),
            )
        ).scalar_one()

        changed = self._transition(
            run_id,
            ACTIVE_RUN_STATUSES,
            {
                "status": "completed",
                "completed_at": utc_now(),
                "products_with_prices": len(priced),
                "products_not_found": len(all_products - priced),
                "products_with_recommendations": with_recommendations,
            },
            "mark run as completed",
        )
        if changed:
            logger.info("Ingestion run %s completed", run_id)
        return changed

    def mark_failed(self, run_id: str, message: str, stack: str | None = None) -> bool:
        self.db.rollback()
        changed = self._transition(
            run_id,
            ACTIVE_RUN_STATUSES,
            {"status": "failed", "failed_at": utc_now(), "error_message": message, "error_stack": stack},
            "mark run as failed",
        )
        if changed:
            logger.error("Ingestion run %s failed: %s", run_id, message)
        return changed

    def cancel(self, run_id: str) -> IngestionRun:
        run = self.get(run_id)
        if run.status not in ACTIVE_RUN_STATUSES:
            raise ValidationError(
                "Can only cancel pending or running runs", details={"run_id": run_id, "status": run.status}
            )
        if not self._transition(
            run_id, ACTIVE_RUN_STATUSES, {"status": "cancelled", "completed_at": utc_now()}, "cancel run"
        ):
            raise ValidationError("Run finished before it could be cancelled", details={"run_id": run_id})
        logger.info("Ingestion run %s cancelled", run_id)
        return self.get(run_id)

    def is_cancelled(self, run_id: str) -> bool:
        status = self.db.execute(select(IngestionRun.status).where(IngestionRun.id == run_id)).scalar_one_or_none()
        # End the read so the next poll sees cancellations from other sessions.
        self.db.commit()
        return status == "cancelled"

    def add_lookup_result(self, run_id: str, result: LookupResult) -> None:
        counter = IngestionRun.failed_lookups if result.lookup_status == ERROR else IngestionRun.completed_lookups
        with self._writing("record lookup result"):
            outcome = self.db.execute(
                update(IngestionRun)
                .where(
                    IngestionRun.id == run_id,
                    IngestionRun.completed_lookups + IngestionRun.failed_lookups < IngestionRun.total_lookups,
                )
                .values({counter: counter + 1})
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount == 0:
                self.get(run_id)
                raise ValidationError("Run already holds all of its lookup results", details={"run_id": run_id})
            self.db.add(LookupResultRecord(ingestion_run_id=run_id, **asdict(result)))
        self._expire(run_id)

    def update_progress(self, run_id: str, processed_products: int) -> None:
        with self._writing("update run progress"):
            self.db.execute(
                update(IngestionRun)
                .where(IngestionRun.id == run_id, IngestionRun.processed_products < processed_products)
                .values(processed_products=processed_products)
                .execution_options(synchronize_session=False)
            )
        self._expire(run_id)

    def list_runs(self, page: int = 1, limit: int = 10) -> tuple[list[IngestionRun], int]:
        page = max(1, page)
        limit = max(1, limit)
        runs = self.db.execute(
            select(IngestionRun)
            .order_by(IngestionRun.triggered_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        total = self.db.execute(select(func.count()).select_from(IngestionRun)).scalar_one()
        return list(runs), total

    def recent(self, limit: int = 10) -> list[IngestionRun]:
        runs, _ = self.list_runs(page=1, limit=limit)
        return runs

    def by_status(self, status: str) -> list[IngestionRun]:
        if status not in RUN_STATUSES:
            raise ValidationError("Invalid status", details={"status": status, "allowed": list(RUN_STATUSES)})
        return list(
            self.db.execute(
                select(IngestionRun).where(IngestionRun.status == status).order_by(IngestionRun.triggered_at.desc())
            ).scalars()
        )

    def status_report(self, run_id: str) -> dict[str, Any]:
        run = self.get(run_id)
        counts = dict(
            self.db.execute(
                select(LookupResultRecord.lookup_status, func.count())
                .where(LookupResultRecord.ingestion_run_id == run_id)
                .group_by(LookupResultRecord.lookup_status)
            ).all()
        )
        settled = run.completed_lookups + run.failed_lookups
        percent = round(100.0 * settled / run.total_lookups, 1) if run.total_lookups else 0.0
        return {
            "id": run.id,
            "status": run.status,
            "progress": {
                "total_products": run.total_products,
                "processed_products": run.processed_products,
                "total_lookups": run.total_lookups,
                "completed_lookups": run.completed_lookups,
                "failed_lookups": run.failed_lookups,
                "percent": percent,
            },
            "results_summary": {
                "success": counts.get(SUCCESS, 0),
                "not_found": counts.get(NOT_FOUND, 0),
                "error": counts.get(ERROR, 0),
                "products_with_prices": run.products_with_prices,
                "products_not_found": run.products_not_found,
                "products_with_recommendations": run.products_with_recommendations,
            },
            "failure_reason": run.error_message,
        }

    def _expire(self, run_id: str) -> None:
        run = self.db.identity_map.get(self.db.identity_key(IngestionRun, run_id))
        if run is not None:
            self.db.expire(run)
