"""Shared fakes and builders for the test suite."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from core.errors import DeliveryFailed
from core.models import Destination, FetchResponse, Item, Source
from feeds.base import RequestJitter
from feeds.dedup import SeenCache
from feeds.pipeline import PipelineResult
from feeds.scheduler import FeedScheduler

USER_AGENTS = ["ua-one", "ua-two", "ua-three"]
BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)
NO_JITTER = RequestJitter(base=0, slow=0, spread=0)


async def no_sleep(_delay: float) -> None:
    return None


# ── fetching ─────────────────────────────────────────────────────────


class StubClient:
    """Stands in for FetchClient; returns canned responses per URL."""

    def __init__(self, responses=None, error=None) -> None:
        self.responses = responses or {}
        self.error = error
        self.calls: list[str] = []
        self.kwargs: list[dict] = []

    async def fetch(self, url, **kwargs):
        self.calls.append(url)
        self.kwargs.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.responses.get(url) or FetchResponse(url=url, status=200, body=b"body")


def json_response(url: str, data) -> FetchResponse:
    return FetchResponse(
        url=url,
        status=200,
        headers={"content-type": "application/json"},
        body=json.dumps(data).encode(),
    )


# ── scheduling ───────────────────────────────────────────────────────


def item(item_id: str, minutes: int) -> Item:
    return Item(
        title=item_id,
        link=f"https://example.com/{item_id}",
        snippet="",
        id=item_id,
        timestamp=BASE + timedelta(minutes=minutes),
    )


def destination(index: int, *urls: str, send_limit: int = 10, interval: float = 1.0) -> Destination:
    return Destination(
        index=index,
        name=f"dest-{index}",
        sources=tuple(Source(url=u, destination_index=index) for u in urls),
        interval_minutes=interval,
        send_limit=send_limit,
        webhook="https://hooks.example.com/x",
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakePipeline:
    def __init__(self, results=None) -> None:
        self.results = results or {}
        self.calls: list[str] = []

    async def resolve_detailed(self, source: Source) -> PipelineResult:
        self.calls.append(source.url)
        result = self.results.get(source.url, [])
        if isinstance(result, Exception):
            raise result
        if isinstance(result, PipelineResult):
            return result
        return PipelineResult(items=list(result), parser="fake", fetched_urls=[source.url])


class FakeStore:
    def __init__(self) -> None:
        self.seen = SeenCache(max_size=50)
        self.saved: dict = {}
        self.runs: list = []
        self.forgotten: list[str] = []
        self.flushed = 0

    async def save_seen(self, key, ids):
        self.saved[key] = list(ids)

    async def log_run(self, outcome, started_at):
        self.runs.append(outcome)

    async def forget_conditional(self, urls):
        self.forgotten.extend(urls)

    async def flush_conditional(self, *, force=False):
        return 0

    async def flush(self):
        self.flushed += 1


class RecordingNotifier:
    def __init__(self, fail_once=()) -> None:
        self.delivered: list[str] = []
        self._fail_once = set(fail_once)

    async def deliver(self, destination, item):
        if item.id in self._fail_once:
            self._fail_once.discard(item.id)
            raise DeliveryFailed(f"rejected {item.id}", item_id=item.id, status=500)
        self.delivered.append(item.id)


def make_scheduler(destinations, pipeline, *, store=None, notifier=None, clock=None, **kwargs):
    return FeedScheduler(
        destinations,
        pipeline,
        store or FakeStore(),
        notifier or RecordingNotifier(),
        jitter=NO_JITTER,
        clock=clock or FakeClock(),
        **kwargs,
    )
