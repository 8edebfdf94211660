"""Durable side of the seen-id and conditional-request caches.

All writes go through one lock so concurrent source checks never interleave
their rewrites. A database that cannot be read at startup is moved aside and
replaced by an empty one; losing history only risks redelivery, while
refusing to start would stop delivery altogether.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

from sqlalchemy.exc import DatabaseError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import CacheLoadError
from core.models import CheckOutcome
from data.database import Database
from data.repositories import CheckLogRepository, ConditionalRepository, SeenRepository
from feeds.conditional import ConditionalCache
from feeds.dedup import SeenCache, SeenKey

log = logging.getLogger(__name__)


def read_legacy_cache(path: Path) -> dict[SeenKey, list[str]]:
    """Parse ``{"<destIndex>": {"<url>": [ids newest first]}}``; malformed parts are skipped."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("legacy cache must be a JSON object")
    out: dict[SeenKey, list[str]] = {}
    for dest_key, sources in raw.items():
        try:
            index = int(dest_key)
        except (TypeError, ValueError):
            continue
        if not isinstance(sources, dict):
            continue
        for url, ids in sources.items():
            if isinstance(ids, list):
                out[(index, url)] = [str(i) for i in ids if i]
    return out


class CacheStore:
    def __init__(
        self,
        database: Database,
        seen: SeenCache,
        conditional: ConditionalCache,
        *,
        conditional_flush_seconds: float = 30.0,
        legacy_cache_file: str | Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.database = database
        self.seen = seen
        self.conditional = conditional
        self._flush_interval = conditional_flush_seconds
        self._legacy_file = Path(legacy_cache_file) if legacy_cache_file else None
        self._clock = clock
        self._write_lock = asyncio.Lock()
        self._last_conditional_flush = clock()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        async with self.database.session() as session:
            yield session

    async def open(self) -> None:
        try:
            await self._load()
        except DatabaseError as exc:
            log.error("Cache database unreadable (%s); starting with an empty cache", exc)
            await self._recover()
        await self._import_legacy()

    async def close(self) -> None:
        await self.database.dispose()

    async def _load(self) -> None:
        await self.database.init()
        async with self.database.session() as session:
            seen = await SeenRepository(session).load_all()
            conditional = await ConditionalRepository(session).load_all()
        self.seen.load(seen)
        self.conditional.load(conditional)
        log.info(
            "Cache loaded: %d seen lists, %d conditional entries", len(seen), len(conditional)
        )

    async def _recover(self) -> None:
        path = self.database.sqlite_path
        await self.database.dispose()
        if path is None:
            raise CacheLoadError(f"cannot recover non-file database {self.database.url}")
        backup = path.with_name(f"{path.name}.corrupt")
        try:
            path.replace(backup)
            for suffix in ("-wal", "-shm"):
                side = path.with_name(path.name + suffix)
                if side.exists():
                    side.unlink()
        except OSError as exc:
            raise CacheLoadError(f"cannot move corrupt cache {path}: {exc}") from exc
        log.warning("Corrupt cache moved to %s", backup)

        self.database = Database(self.database.url)
        try:
            await self._load()
        except DatabaseError as exc:
            raise CacheLoadError(f"cache database still unreadable: {exc}") from exc

    async def _import_legacy(self) -> None:
        if self._legacy_file is None or not self._legacy_file.is_file() or len(self.seen):
            return
        try:
            legacy = read_legacy_cache(self._legacy_file)
        except (OSError, ValueError) as exc:
            log.warning("Ignoring malformed legacy cache %s: %s", self._legacy_file, exc)
            return
        self.seen.load(legacy)
        for key in legacy:
            await self.save_seen(key, self.seen.get(key))
        log.info("Imported %d seen lists from %s", len(legacy), self._legacy_file)

    async def save_seen(self, key: SeenKey, ids: Sequence[str]) -> None:
        async with self._write_lock:
            async with self.database.session() as session:
                await SeenRepository(session).replace(key[0], key[1], ids)
            self.seen.mark_clean(key)

    async def flush_conditional(self, *, force: bool = False) -> int:
        """Persist changed validators, at most once per flush interval unless forced."""
        if not self.conditional.dirty:
            return 0
        if not force and self._clock() - self._last_conditional_flush < self._flush_interval:
            return 0
        async with self._write_lock:
            entries = self.conditional.take_dirty()
            try:
                async with self.database.session() as session:
                    written = await ConditionalRepository(session).upsert_many(entries)
            except Exception:
                self.conditional.mark_dirty(entries)
                raise
            self._last_conditional_flush = self._clock()
        log.debug("Flushed %d conditional entries", written)
        return written

    async def forget_conditional(self, urls: Sequence[str]) -> None:
        """Drop validators for ``urls`` and persist that at once.

        Used when a delivery failed: the item stays unseen, and the next
        request must return the full body rather than a 304.
        """
        if self.conditional.forget(urls):
            await self.flush_conditional(force=True)

    async def flush(self) -> None:
        """Write everything still pending (shutdown path)."""
        for key, ids in self.seen.take_dirty().items():
            await self.save_seen(key, ids)
        await self.flush_conditional(force=True)

    async def log_run(self, outcome: CheckOutcome, started_at: datetime) -> None:
        async with self._write_lock:
            async with self.database.session() as session:
                await CheckLogRepository(session).log_run(
                    destination_index=outcome.source.destination_index,
                    source_url=outcome.source.url,
                    status=outcome.status,
                    parser=outcome.parser,
                    items_parsed=outcome.items_parsed,
                    items_new=outcome.items_new,
                    items_delivered=outcome.items_delivered,
                    error_message="; ".join(outcome.errors),
                    duration_seconds=outcome.duration_seconds,
                    started_at=started_at,
                )
