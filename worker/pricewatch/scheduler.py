"""Bounded-concurrency lookup execution for one ingestion run.

Every task shares one semaphore, so the pool width applies to the whole
product x marketplace matrix. Results flow through a queue to a single
``RunRecorder`` coroutine that owns all database writes for the run.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from pricewatch.coordinator import RunCoordinator
from pricewatch.errors import PricewatchError
from pricewatch.lookups import SUCCESS, LookupResult, LookupTask, build_lookup_result
from pricewatch.models import Price
from pricewatch.oracles.base import LookupFailure, LookupNotFound, LookupOutcome, MarketLookupOracle
from pricewatch.oracles.parsing import validate_lookup_reply

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop signal.

    ``probe`` is consulted on every poll until it reports a cancellation;
    after that the token stays fired.
    """

    def __init__(self, probe: Callable[[], bool] | None = None) -> None:
        self._probe = probe
        self._fired = False

    def cancel(self) -> None:
        self._fired = True

    def poll(self) -> bool:
        if not self._fired and self._probe is not None and self._probe():
            self._fired = True
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._fired


class RunRecorder:
    def __init__(
        self,
        coordinator: RunCoordinator,
        run_id: str,
        tasks: Iterable[LookupTask],
        flush_every: int = 5,
    ) -> None:
        self.coordinator = coordinator
        self.db = coordinator.db
        self.run_id = run_id
        self.flush_every = max(1, flush_every)
        self.pending_per_product: Counter[str] = Counter(task.product.id for task in tasks)
        self.total = sum(self.pending_per_product.values())
        self.completions = 0
        self.processed_products = 0
        self.flushed_at = 0
        self.error: PricewatchError | None = None
        self.queue: asyncio.Queue[LookupResult | None] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def start(self) -> None:
        self._consumer = asyncio.create_task(self._consume())

    def submit(self, result: LookupResult) -> None:
        self.queue.put_nowait(result)

    async def close(self) -> None:
        self.queue.put_nowait(None)
        if self._consumer is not None:
            await self._consumer
        if self.error is None and self.completions != self.flushed_at:
            self.flush()
        if self.error is not None:
            raise self.error

    async def _consume(self) -> None:
        while True:
            result = await self.queue.get()
            if result is None:
                return
            if self.error is not None:
                continue
            try:
                self.record(result)
            except PricewatchError as exc:
                logger.exception("Failed to record lookup result for run %s", self.run_id)
                self.error = exc

    def record(self, result: LookupResult) -> None:
        if result.lookup_status == SUCCESS and result.price_inc_tax is not None and result.price_ex_tax is not None:
            # Staged so the Price row commits together with the result.
            self.db.add(
                Price(
                    product_id=result.product_id,
                    marketplace_id=result.marketplace_id,
                    ingestion_run_id=self.run_id,
                    price_inc_tax=result.price_inc_tax,
                    price_ex_tax=result.price_ex_tax,
                    ingredient_content=dict(result.ingredient_content),
                    price_per_ingredient_content=dict(result.price_per_ingredient_content),
                    price_confidence=result.price_confidence,
                )
            )
        self.coordinator.add_lookup_result(self.run_id, result)

        self.completions += 1
        self.pending_per_product[result.product_id] -= 1
        if self.pending_per_product[result.product_id] == 0:
            self.processed_products += 1
        if self.completions % self.flush_every == 0 or self.completions == self.total:
            self.flush()

    def flush(self) -> None:
        self.coordinator.update_progress(self.run_id, self.processed_products)
        self.flushed_at = self.completions


@dataclass
class SchedulerStats:
    dispatched: int = 0
    skipped: int = 0


class LookupScheduler:
    def __init__(
        self,
        oracle: MarketLookupOracle,
        recorder: RunRecorder,
        token: CancellationToken,
        concurrency: int = 20,
        timeout_seconds: float = 300.0,
    ) -> None:
        self.oracle = oracle
        self.recorder = recorder
        self.token = token
        self.concurrency = max(1, concurrency)
        self.timeout_seconds = timeout_seconds
        self.stats = SchedulerStats()

    def _should_stop(self) -> bool:
        return self.token.poll() or self.recorder.failed

    async def run(self, tasks: list[LookupTask]) -> SchedulerStats:
        semaphore = asyncio.Semaphore(self.concurrency)
        self.recorder.start()
        outcomes = await asyncio.gather(
            *(self._run_task(task, semaphore) for task in tasks),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.error("Lookup task crashed outside its boundary: %r", outcome)
        await self.recorder.close()

        logger.info(
            "Run %s lookups settled: dispatched=%s skipped=%s cancelled=%s",
            self.recorder.run_id,
            self.stats.dispatched,
            self.stats.skipped,
            self.token.cancelled,
        )
        return self.stats

    async def _run_task(self, task: LookupTask, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            if self._should_stop():
                self.stats.skipped += 1
                return
            self.stats.dispatched += 1
            outcome = await self._lookup(task)
            result = build_lookup_result(task, outcome)
            if self._should_stop():
                logger.debug("Committing in-flight lookup %s@%s after stop", task.product.name, task.marketplace.name)
            self.recorder.submit(result)

    async def _lookup(self, task: LookupTask) -> LookupOutcome:
        try:
            raw = await asyncio.wait_for(
                self.oracle.lookup(task.product, task.marketplace),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Lookup timed out for %s on %s after %ss",
                task.product.name,
                task.marketplace.name,
                self.timeout_seconds,
            )
            return LookupNotFound(reason=f"Lookup timed out after {self.timeout_seconds:g}s")
        except Exception as exc:
            logger.warning("Lookup failed for %s on %s: %s", task.product.name, task.marketplace.name, exc)
            return LookupFailure(reason=str(exc) or type(exc).__name__)
        return validate_lookup_reply(raw)
