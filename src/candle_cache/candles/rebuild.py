"""Rebuild orchestrator — regenerates candles for a scope by replaying stored history.

A job never touches the live runtime store while replaying. It runs its own
:class:`CandleAggregator` over a scratch runtime store and an in-memory
repository, and only publishes into the live repository/runtime store once
replay has finished, holding the live aggregator's lock for the whole publish.
A cancelled or failed job publishes nothing.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime, timezone

import structlog
from sqlalchemy.orm import Session

from candle_cache.candles.aggregator import CandleAggregator
from candle_cache.candles.history import Cursor, ObservationHistory, load_market_groups
from candle_cache.candles.repository import InMemoryCandleRepository
from candle_cache.candles.runtime_store import RuntimeCandleStore
from candle_cache.errors import describe_error
from candle_cache.models.status import (
    ALL_SCOPE,
    JobState,
    RebuilderStatus,
    RebuildJob,
    StartResult,
    scope_key,
)

log = structlog.get_logger("candle_rebuild")

SessionFactory = Callable[[], AbstractContextManager[Session]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RebuildOrchestrator:
    """Starts, tracks and cancels rebuild jobs.

    Scopes are ``all`` or ``resource:<slug>``. ``all`` overlaps every scope;
    a resource scope overlaps ``all`` and itself, so rebuilds of different
    resources may run side by side. A finished job stays queryable until a
    new job of the same scope starts running.
    """

    def __init__(
        self,
        aggregator: CandleAggregator,
        session_factory: SessionFactory,
        batch_size: int = 1000,
        batch_log_interval: int = 10_000,
    ) -> None:
        self.aggregator = aggregator
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.batch_log_interval = batch_log_interval
        self._records: dict[str, RebuildJob] = {}
        self._active: dict[str, RebuildJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    # ── Starting ──────────────────────────────────────────────

    def start_rebuild_all(self) -> StartResult:
        return self._start(None)

    def start_rebuild_resource(self, resource_slug: str) -> StartResult:
        if not resource_slug:
            return StartResult(success=False, message="A resource slug is required")
        return self._start(resource_slug)

    def _conflict(self, resource_slug: str | None) -> RebuildJob | None:
        wanted = scope_key(resource_slug)
        for scope, job in self._active.items():
            if resource_slug is None or scope in (ALL_SCOPE, wanted):
                return job
        return None

    def _start(self, resource_slug: str | None) -> StartResult:
        conflict = self._conflict(resource_slug)
        if conflict is not None:
            return StartResult(
                success=False,
                message=f"A rebuild for scope '{conflict.scope}' is already {conflict.state.value}",
                job_id=conflict.id,
            )

        job = RebuildJob(
            id=uuid.uuid4().hex,
            resource_slug=resource_slug,
            created_at=_now(),
            cutoff_timestamp=int(time.time()),
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return StartResult(success=False, message="Failed to start rebuild: no running event loop")

        self._active[job.scope] = job
        task = loop.create_task(self._run(job), name=f"rebuild-{job.scope}")
        task.add_done_callback(lambda t, job=job: self._finish(job, t))
        self._tasks[job.scope] = task
        log.info("rebuild_scheduled", scope=job.scope, job_id=job.id)
        target = "all markets" if resource_slug is None else f"resource {resource_slug}"
        return StartResult(success=True, message=f"Rebuild of {target} started", job_id=job.id)

    # ── Control ───────────────────────────────────────────────

    def cancel(self, scope: str) -> bool:
        """Request cancellation of the active job for *scope*."""
        task = self._tasks.get(scope)
        if task is None or task.done():
            return False
        task.cancel()
        log.info("rebuild_cancel_requested", scope=scope)
        return True

    async def wait(self, scope: str) -> RebuildJob | None:
        """Wait for the active job of *scope* (if any) and return its final record."""
        task = self._tasks.get(scope)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.job(scope)

    # ── Queries ───────────────────────────────────────────────

    def job(self, scope: str) -> RebuildJob | None:
        """Latest job for *scope*: the active one if any, else the retained record."""
        job = self._active.get(scope) or self._records.get(scope)
        return job.model_copy(deep=True) if job is not None else None

    def status(self) -> RebuilderStatus:
        scopes = sorted(set(self._records) | set(self._active))
        jobs = [job for job in (self.job(scope) for scope in scopes) if job is not None]
        return RebuilderStatus(is_active=bool(self._active), jobs=jobs)

    # ── Job body ──────────────────────────────────────────────

    async def _run(self, job: RebuildJob) -> None:
        job.state = JobState.RUNNING
        job.started_at = _now()
        self._records[job.scope] = job
        log.info("rebuild_started", scope=job.scope, job_id=job.id, cutoff=job.cutoff_timestamp)
        try:
            replay = await self._replay(job)
            job.progress.candles_published = self._publish(replay)
            job.state = JobState.COMPLETED
            log.info(
                "rebuild_completed",
                scope=job.scope,
                job_id=job.id,
                observations=job.progress.observations_processed,
                trades=job.progress.trades_processed,
                candles=job.progress.candles_published,
            )
        except asyncio.CancelledError:
            job.state = JobState.FAILED
            job.error = "cancelled"
            log.warning("rebuild_cancelled", scope=job.scope, job_id=job.id)
        except Exception as exc:
            job.state = JobState.FAILED
            job.error = describe_error(exc)
            log.exception("rebuild_failed", scope=job.scope, job_id=job.id)

    def _finish(self, job: RebuildJob, task: asyncio.Task) -> None:
        # Also reached when the task is cancelled before _run ever started.
        if not job.state.is_terminal:
            job.state = JobState.FAILED
            job.error = "cancelled" if task.cancelled() else "stopped unexpectedly"
            log.warning("rebuild_cancelled", scope=job.scope, job_id=job.id, started=False)
        job.finished_at = _now()
        if self._active.get(job.scope) is job:
            del self._active[job.scope]
        if self._tasks.get(job.scope) is task:
            del self._tasks[job.scope]

    async def _replay(self, job: RebuildJob) -> CandleAggregator:
        live = self.aggregator
        replay = CandleAggregator(
            market_info=live.market_info,
            runtime=RuntimeCandleStore(),
            repository=InMemoryCandleRepository(),
            intervals=live.intervals,
        )
        slug = job.resource_slug
        until = job.cutoff_timestamp

        with self.session_factory() as session:
            live.market_info.refresh(load_market_groups(session))
            history = ObservationHistory(session)
            job.progress.observations_total = history.count_resource_prices(
                resource_slug=slug, until=until
            )

            cursor: Cursor | None = None
            while True:
                batch = history.resource_prices(
                    resource_slug=slug, after=cursor, until=until, limit=self.batch_size
                )
                if not batch:
                    break
                for price in batch:
                    replay.process_resource_price(price)
                    job.progress.observations_processed += 1
                    if job.progress.observations_processed % self.batch_log_interval == 0:
                        log.info(
                            "rebuild_progress",
                            scope=job.scope,
                            processed=job.progress.observations_processed,
                            total=job.progress.observations_total,
                        )
                cursor = (batch[-1].timestamp, batch[-1].id or 0)
                await asyncio.sleep(0)

            cursor = None
            while True:
                batch = history.market_prices(after=cursor, until=until, limit=self.batch_size)
                if not batch:
                    break
                for trade in batch:
                    if slug is not None:
                        info = live.market_info.get_by_chain_and_address(
                            trade.chain_id, trade.address, trade.market_id
                        )
                        if info is None or info.resource_slug != slug:
                            continue
                    replay.process_market_price(trade)
                    job.progress.trades_processed += 1
                cursor = (batch[-1].timestamp, batch[-1].id or 0)
                await asyncio.sleep(0)

        return replay

    def _publish(self, replay: CandleAggregator) -> int:
        """Write the replayed candles into the live repository and seed live slots.

        Closed candles overwrite their stored rows. Each still-open replay
        candle seeds the live slot only when the live slot is empty or on an
        earlier bucket; a live slot at the same or a later bucket has seen
        observations newer than the cutoff and is kept.
        """
        live = self.aggregator
        open_candles = list(replay.runtime.candles())
        open_keys = {c.key for c in open_candles}
        published = 0

        with live.lock:
            to_seed = []
            for candle in open_candles:
                current = live.runtime.get(candle.market_idx, candle.interval, candle.candle_type)
                if current is not None and current.timestamp >= candle.timestamp:
                    continue
                if current is not None:
                    live.repository.save(current)
                to_seed.append(candle)

            for candle in replay.repository.list_candles():
                if candle.key in open_keys:
                    continue
                live.repository.save(candle.model_copy(update={"id": None}))
                published += 1

            for candle in to_seed:
                saved = live.repository.save(candle.model_copy(update={"id": None}))
                live.runtime.set(saved.market_idx, saved.interval, saved, saved.candle_type)
                published += 1

        return published
