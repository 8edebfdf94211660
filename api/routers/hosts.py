from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/api/hosts", tags=["hosts"])


@router.get("")
async def host_states(request: Request):
    breaker = getattr(request.app.state, "breaker", None)
    if breaker is None:
        return []
    return breaker.snapshot()


@router.delete("/{host}")
async def clear_host(host: str, request: Request):
    breaker = getattr(request.app.state, "breaker", None)
    if breaker is None or not breaker.clear(host):
        raise HTTPException(404, f"No state for host: {host}")
    return {"host": host, "cleared": True}
