"""feedrelay entry point."""

from __future__ import annotations

import logging

import uvicorn

from api.app import create_app
from config.destinations import load_destinations
from config.settings import Settings, settings
from core.errors import CacheLoadError, ConfigError
from data.database import Database
from data.store import CacheStore
from feeds.base import RequestJitter
from feeds.breaker import CooldownPolicy, HostBreaker
from feeds.client import FetchClient
from feeds.conditional import ConditionalCache
from feeds.dedup import SeenCache
from feeds.notifier import LogNotifier, WebhookNotifier
from feeds.parsers.builtin import builtin_parsers
from feeds.pipeline import ParserPipeline, ParserRegistry
from feeds.scheduler import FeedScheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
log = logging.getLogger(__name__)

app = create_app()
# Extra parsers (plugins) register here before startup.
app.state.parser_registry = ParserRegistry()


def build_fetch_client(cfg: Settings) -> FetchClient:
    breaker = HostBreaker(
        CooldownPolicy(
            permission=cfg.COOLDOWN_PERMISSION,
            rate_limit=cfg.COOLDOWN_RATE_LIMIT,
            gateway=cfg.COOLDOWN_GATEWAY,
            server=cfg.COOLDOWN_SERVER,
            client=cfg.COOLDOWN_CLIENT,
            network=cfg.COOLDOWN_NETWORK,
            ceiling=cfg.COOLDOWN_CEILING,
            jitter=cfg.COOLDOWN_JITTER,
        )
    )
    return FetchClient(
        breaker=breaker,
        conditional=ConditionalCache(),
        user_agents=cfg.USER_AGENTS,
        max_attempts=cfg.FETCH_ATTEMPTS,
        timeout=cfg.HTTP_TIMEOUT,
        proxy=cfg.PROXY_URL,
        retry_delay=(cfg.RETRY_DELAY_MIN, cfg.RETRY_DELAY_MAX),
    )


@app.on_event("startup")
async def on_startup() -> None:
    try:
        destinations = load_destinations(settings.DESTINATIONS_FILE)
    except ConfigError as exc:
        log.error("Cannot start: %s", exc)
        raise

    client = build_fetch_client(settings)
    store = CacheStore(
        Database(settings.DATABASE_URL),
        SeenCache(settings.SEEN_MAX_IDS),
        client.conditional,
        conditional_flush_seconds=settings.CONDITIONAL_FLUSH_SECONDS,
        legacy_cache_file=settings.LEGACY_CACHE_FILE,
    )
    log.info("Opening cache…")
    try:
        await store.open()
    except CacheLoadError:
        log.exception("Cannot start: cache unusable")
        raise

    pipeline = ParserPipeline(
        builtin_parsers(settings),
        client,
        extra=app.state.parser_registry.parsers,
        snippet_limit=settings.SNIPPET_MAX_LENGTH,
    )
    notifier = LogNotifier() if settings.DRY_RUN else WebhookNotifier(timeout=settings.WEBHOOK_TIMEOUT)

    log.info("Starting feed scheduler…")
    scheduler = FeedScheduler(
        destinations,
        pipeline,
        store,
        notifier,
        tick_seconds=settings.TICK_SECONDS,
        max_concurrency=settings.MAX_CONCURRENT_FETCHES,
        jitter=RequestJitter(
            base=settings.REQUEST_DELAY,
            slow=settings.REQUEST_DELAY_SLOW,
            spread=settings.REQUEST_JITTER,
            slow_hosts=tuple(h.strip() for h in settings.SLOW_HOSTS.split(",") if h.strip()),
        ),
        broadcast_fn=app.state.broadcaster.broadcast,
    )
    app.state.client = client
    app.state.breaker = client.breaker
    app.state.store = store
    app.state.notifier = notifier
    app.state.scheduler = scheduler
    scheduler.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if hasattr(app.state, "scheduler"):
        await app.state.scheduler.stop()
        log.info("Feed scheduler stopped, caches flushed.")
    if hasattr(app.state, "notifier") and hasattr(app.state.notifier, "aclose"):
        await app.state.notifier.aclose()
    if hasattr(app.state, "client"):
        await app.state.client.aclose()
    if hasattr(app.state, "store"):
        await app.state.store.close()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.API_PORT,
        reload=False,
    )
