from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/api/destinations", tags=["destinations"])


def _scheduler(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(503, "Scheduler not initialized")
    return scheduler


@router.get("")
async def list_destinations(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"running": False, "destinations": []}
    return scheduler.status()


@router.post("/{index}/run")
async def run_destination(index: int, request: Request):
    scheduler = _scheduler(request)
    if not any(d.index == index for d in scheduler.destinations):
        raise HTTPException(404, f"No destination with index {index}")

    outcomes = await scheduler.run_destination(index)
    if outcomes is None:
        raise HTTPException(409, f"Destination {index} is already being checked")

    return {
        "index": index,
        "sources": [
            {
                "url": o.source.url,
                "status": o.status,
                "parser": o.parser,
                "items_new": o.items_new,
                "items_delivered": o.items_delivered,
                "errors": o.errors,
                "duration_seconds": round(o.duration_seconds, 2),
            }
            for o in outcomes
        ],
    }
