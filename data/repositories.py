from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Mapping, Sequence

from sqlalchemy import Integer, delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_upsert
from sqlalchemy.ext.asyncio import AsyncSession

from core.models import ConditionalCacheEntry
from data.schema import DBCheckRun, DBConditionalHeader, DBSeenId

# ── SeenRepository ───────────────────────────────────────────────────


class SeenRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def load_all(self) -> dict[tuple[int, str], list[str]]:
        q = select(DBSeenId).order_by(
            DBSeenId.destination_index, DBSeenId.source_url, DBSeenId.position
        )
        rows = (await self._s.execute(q)).scalars().all()
        out: dict[tuple[int, str], list[str]] = defaultdict(list)
        for row in rows:
            out[(row.destination_index, row.source_url)].append(row.item_id)
        return dict(out)

    async def replace(self, destination_index: int, source_url: str, ids: Sequence[str]) -> None:
        """Rewrite the ordered id list of one (destination, source) pair."""
        await self._s.execute(
            delete(DBSeenId).where(
                DBSeenId.destination_index == destination_index,
                DBSeenId.source_url == source_url,
            )
        )
        self._s.add_all(
            DBSeenId(
                destination_index=destination_index,
                source_url=source_url,
                position=pos,
                item_id=item_id,
            )
            for pos, item_id in enumerate(ids)
        )


# ── ConditionalRepository ────────────────────────────────────────────


class ConditionalRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def load_all(self) -> dict[str, ConditionalCacheEntry]:
        rows = (await self._s.execute(select(DBConditionalHeader))).scalars().all()
        return {
            r.source_url: ConditionalCacheEntry(etag=r.etag, last_modified=r.last_modified)
            for r in rows
        }

    async def upsert_many(self, entries: Mapping[str, ConditionalCacheEntry | None]) -> int:
        """Write changed validators; a ``None`` entry deletes that URL's row."""
        now = datetime.now(timezone.utc)
        forgotten = [url for url, entry in entries.items() if entry is None]
        if forgotten:
            await self._s.execute(
                delete(DBConditionalHeader).where(DBConditionalHeader.source_url.in_(forgotten))
            )
        for url, entry in entries.items():
            if entry is None:
                continue
            stmt = (
                sqlite_upsert(DBConditionalHeader)
                .values(
                    source_url=url,
                    etag=entry.etag,
                    last_modified=entry.last_modified,
                    updated_at=now,
                )
                .on_conflict_do_update(
                    index_elements=["source_url"],
                    set_={
                        "etag": entry.etag,
                        "last_modified": entry.last_modified,
                        "updated_at": now,
                    },
                )
            )
            await self._s.execute(stmt)
        return len(entries)


# ── CheckLogRepository ───────────────────────────────────────────────


class CheckLogRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def log_run(
        self,
        *,
        destination_index: int,
        source_url: str,
        status: str,
        parser: str | None,
        items_parsed: int,
        items_new: int,
        items_delivered: int,
        error_message: str,
        duration_seconds: float,
        started_at: datetime,
    ) -> None:
        run = DBCheckRun(
            destination_index=destination_index,
            source_url=source_url,
            status=status,
            parser=parser,
            items_parsed=items_parsed,
            items_new=items_new,
            items_delivered=items_delivered,
            error_message=error_message[:500],
            duration_seconds=round(duration_seconds, 2),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        self._s.add(run)

    async def recent_runs(self, limit: int = 20) -> list[DBCheckRun]:
        q = select(DBCheckRun).order_by(DBCheckRun.started_at.desc()).limit(limit)
        result = await self._s.execute(q)
        return list(result.scalars().all())

    async def source_stats(self) -> list[dict]:
        """Per source: last run time, total runs, success rate, items delivered."""
        q = select(
            DBCheckRun.destination_index,
            DBCheckRun.source_url,
            func.count(DBCheckRun.id).label("total_runs"),
            func.sum(
                func.cast(DBCheckRun.status.in_(("delivered", "no_new", "not_modified")), Integer)
            ).label("success_count"),
            func.max(DBCheckRun.started_at).label("last_run"),
            func.sum(DBCheckRun.items_delivered).label("total_delivered"),
        ).group_by(DBCheckRun.destination_index, DBCheckRun.source_url)
        rows = (await self._s.execute(q)).all()
        return [
            {
                "destination_index": r[0],
                "source_url": r[1],
                "total_runs": r[2],
                "success_rate": round((r[3] or 0) / max(r[2], 1) * 100, 0),
                "last_run": r[4].isoformat() if r[4] else None,
                "total_delivered": r[5] or 0,
            }
            for r in rows
        ]
