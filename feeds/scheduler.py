from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.errors import DeliveryFailed, HostCoolingDown
from core.models import CheckOutcome, Destination, Source
from data.store import CacheStore
from feeds.base import RequestJitter
from feeds.dedup import select_new
from feeds.notifier import Notifier
from feeds.pipeline import ParserPipeline

log = logging.getLogger(__name__)

IDLE = "idle"
CHECKING = "checking"


class FeedScheduler:
    """Visits destinations round-robin on a fixed tick and delivers unseen items."""

    def __init__(
        self,
        destinations: Sequence[Destination],
        pipeline: ParserPipeline,
        store: CacheStore,
        notifier: Notifier,
        *,
        tick_seconds: float = 5.0,
        max_concurrency: int = 3,
        jitter: RequestJitter | None = None,
        broadcast_fn: Callable[[dict], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
        drain_seconds: float = 30.0,
    ) -> None:
        self._destinations = list(destinations)
        self._pipeline = pipeline
        self._store = store
        self._notifier = notifier
        self._tick_seconds = tick_seconds
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._jitter = jitter or RequestJitter()
        self._broadcast = broadcast_fn
        self._clock = clock
        self._scheduler = AsyncIOScheduler()
        self._cursor = 0
        self._last_checked: dict[int, float] = {}
        self._last_checked_at: dict[int, datetime] = {}
        self._states: dict[int, str] = {d.index: IDLE for d in self._destinations}
        self._drain_seconds = drain_seconds
        self._cycles: set[asyncio.Task] = set()

    @property
    def destinations(self) -> list[Destination]:
        return list(self._destinations)

    def start(self) -> None:
        self._scheduler.add_job(
            self.tick,
            "interval",
            seconds=self._tick_seconds,
            id="feed_tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self._scheduler.start()
        log.info(
            "Feed scheduler started: %d destinations, tick every %.1fs",
            len(self._destinations),
            self._tick_seconds,
        )

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        if self._cycles:
            log.info("Waiting for %d running check cycles", len(self._cycles))
            _, pending = await asyncio.wait(set(self._cycles), timeout=self._drain_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        try:
            await self._store.flush()
        except Exception:
            log.exception("Failed to flush caches on shutdown")

    def is_due(self, destination: Destination) -> bool:
        last = self._last_checked.get(destination.index)
        return last is None or self._clock() - last >= destination.interval_seconds

    async def tick(self) -> asyncio.Task | None:
        """Advance the round-robin cursor by one and start a check of that destination if due.

        Each cycle runs as its own task; ticks keep serving the other
        destinations while it is in flight.
        """
        if not self._destinations:
            return None
        dest = self._destinations[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._destinations)
        if self._states.get(dest.index) == CHECKING or not self.is_due(dest):
            return None
        self._states[dest.index] = CHECKING
        task = asyncio.create_task(self.check_destination(dest), name=f"check-{dest.index}")
        self._cycles.add(task)
        task.add_done_callback(self._cycle_done)
        return task

    def _cycle_done(self, task: asyncio.Task) -> None:
        self._cycles.discard(task)
        if task.cancelled():
            log.warning("Check cycle %s cancelled", task.get_name())
        elif task.exception() is not None:
            log.error("Check cycle %s crashed", task.get_name(), exc_info=task.exception())

    async def run_destination(self, index: int) -> list[CheckOutcome] | None:
        """Manually trigger a check cycle for one destination."""
        dest = next((d for d in self._destinations if d.index == index), None)
        if dest is None or self._states.get(dest.index) == CHECKING:
            return None
        return await self.check_destination(dest)

    async def check_destination(self, dest: Destination) -> list[CheckOutcome]:
        self._states[dest.index] = CHECKING
        self._last_checked[dest.index] = self._clock()
        self._last_checked_at[dest.index] = datetime.now(timezone.utc)
        log.info("Checking %s (%d sources)", dest.name, len(dest.sources))
        try:
            outcomes = list(
                await asyncio.gather(*(self._guarded_check(dest, s) for s in dest.sources))
            )
        finally:
            self._states[dest.index] = IDLE

        try:
            await self._store.flush_conditional()
        except Exception:
            log.exception("Failed to persist conditional-request cache")

        delivered = sum(o.items_delivered for o in outcomes)
        log.info(
            "Finished %s | %d delivered | %d sources failed",
            dest.name,
            delivered,
            sum(1 for o in outcomes if o.status in ("failed", "delivery_failed")),
        )
        if self._broadcast:
            await self._broadcast(
                {
                    "event": "check_complete",
                    "destination": dest.name,
                    "index": dest.index,
                    "delivered": delivered,
                    "sources": {o.source.url: o.status for o in outcomes},
                }
            )
        return outcomes

    async def _guarded_check(self, dest: Destination, source: Source) -> CheckOutcome:
        async with self._semaphore:
            started_at = datetime.now(timezone.utc)
            t0 = time.monotonic()
            try:
                outcome = await self._check_source(dest, source)
            except Exception as exc:
                log.exception("Check of %s failed", source.url)
                outcome = CheckOutcome(source=source, status="failed", errors=[str(exc)])
            outcome.duration_seconds = time.monotonic() - t0

        try:
            await self._store.log_run(outcome, started_at)
        except Exception as e:
            log.error("Failed to record check run for %s: %s", source.url, e)
        return outcome

    async def _check_source(self, dest: Destination, source: Source) -> CheckOutcome:
        await self._jitter.wait(source)
        result = await self._pipeline.resolve_detailed(source)
        outcome = CheckOutcome(
            source=source,
            status="no_new",
            parser=result.parser,
            items_parsed=len(result.items),
            errors=[str(e) for e in result.errors],
        )

        if result.fetch_error is not None:
            cooling = isinstance(result.fetch_error, HostCoolingDown)
            outcome.status = "cooling_down" if cooling else "failed"
            outcome.errors.append(str(result.fetch_error))
            if not cooling:
                log.warning("Fetch failed for %s: %s", source.url, result.fetch_error)
            return outcome
        if result.not_modified:
            outcome.status = "not_modified"
            return outcome
        if not result.items:
            return outcome

        key = source.key
        seen = self._store.seen.get(key)
        to_deliver, updated = select_new(
            result.items, seen, dest.send_limit, self._store.seen.max_size
        )
        known = set(seen)
        outcome.items_new = len({i.id for i in result.items if i.id not in known})
        if not to_deliver:
            return outcome

        failed: list[str] = []
        for item in to_deliver:
            try:
                await self._notifier.deliver(dest, item)
            except DeliveryFailed as exc:
                log.warning("Delivery to %s failed: %s", dest.name, exc)
                failed.append(item.id)
                outcome.errors.append(str(exc))
                continue
            outcome.items_delivered += 1

        kept = self._store.seen.commit(key, updated, exclude=failed)
        await self._store.save_seen(key, kept)
        if failed:
            # Failed items must be re-read next cycle, so no 304 may cut it short.
            try:
                await self._store.forget_conditional(result.fetched_urls)
            except Exception:
                log.exception("Failed to drop conditional headers for %s", source.url)

        outcome.status = "delivered" if outcome.items_delivered else "delivery_failed"
        log.info(
            "[%s] %d new, %d delivered from %s",
            dest.name,
            outcome.items_new,
            outcome.items_delivered,
            source.url,
        )
        return outcome

    def status(self) -> dict:
        job = self._scheduler.get_job("feed_tick") if self._scheduler.running else None
        return {
            "running": self._scheduler.running,
            "next_tick": job.next_run_time.isoformat() if job and job.next_run_time else None,
            "destinations": [
                {
                    "index": d.index,
                    "name": d.name,
                    "state": self._states.get(d.index, IDLE),
                    "interval_minutes": d.interval_minutes,
                    "send_limit": d.send_limit,
                    "last_checked_at": (
                        self._last_checked_at[d.index].isoformat()
                        if d.index in self._last_checked_at
                        else None
                    ),
                    "sources": [s.url for s in d.sources],
                }
                for d in self._destinations
            ],
        }
