from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from data.repositories import CheckLogRepository

router = APIRouter(prefix="/api/runs", tags=["runs"])


def _store(request: Request):
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(503, "Cache store not initialized")
    return store


@router.get("")
async def recent_runs(request: Request, limit: int = Query(20, ge=1, le=100)):
    async with _store(request).session() as session:
        repo = CheckLogRepository(session)
        runs = await repo.recent_runs(limit=limit)
        return [
            {
                "id": r.id,
                "destination_index": r.destination_index,
                "source_url": r.source_url,
                "status": r.status,
                "parser": r.parser,
                "items_parsed": r.items_parsed,
                "items_new": r.items_new,
                "items_delivered": r.items_delivered,
                "error_message": r.error_message,
                "duration_seconds": r.duration_seconds,
                "started_at": r.started_at.isoformat() if r.started_at else None,
                "finished_at": r.finished_at.isoformat() if r.finished_at else None,
            }
            for r in runs
        ]


@router.get("/stats")
async def source_stats(request: Request):
    async with _store(request).session() as session:
        repo = CheckLogRepository(session)
        return await repo.source_stats()
