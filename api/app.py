from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from sse_starlette.sse import EventSourceResponse

from api.routers import destinations, hosts, runs

log = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 30.0
LISTENER_BACKLOG = 50


class EventHub:
    """Fans scheduler events out to connected SSE clients."""

    def __init__(self, backlog: int = LISTENER_BACKLOG) -> None:
        self._backlog = backlog
        self._listeners: set[asyncio.Queue] = set()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def broadcast(self, event: dict) -> None:
        for queue in tuple(self._listeners):
            if queue.full():
                # Slow client: its oldest event is dropped.
                queue.get_nowait()
                log.debug("SSE listener backlog full, dropped oldest event")
            queue.put_nowait(event)

    async def listen(self, request: Request) -> AsyncIterator[dict]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._backlog)
        self._listeners.add(queue)
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": ""}
                    continue
                yield {"event": event.get("event", "message"), "data": json.dumps(event)}
        finally:
            self._listeners.discard(queue)


def create_app() -> FastAPI:
    app = FastAPI(title="feedrelay", version="0.1.0")
    hub = EventHub()
    app.state.broadcaster = hub

    app.include_router(destinations.router)
    app.include_router(hosts.router)
    app.include_router(runs.router)

    @app.get("/api/events")
    async def sse_events(request: Request):
        return EventSourceResponse(hub.listen(request))

    @app.get("/health")
    async def health(request: Request):
        scheduler = getattr(request.app.state, "scheduler", None)
        breaker = getattr(request.app.state, "breaker", None)
        return {
            "status": "ok",
            "scheduler_running": bool(scheduler and scheduler.status()["running"]),
            "hosts_cooling_down": sum(1 for h in breaker.snapshot() if h["cooling_down"]) if breaker else 0,
            "event_listeners": hub.listener_count,
        }

    return app
