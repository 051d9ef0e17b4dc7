"""
Dead-Letter Inspection.

GET  /api/v1/dead-letters                   — most recent dead-lettered messages
POST /api/v1/dead-letters/{entry_id}/replay — re-queue one entry for processing

Operator-only (Admin). A replayed entry starts over with delivery count 1.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from creditwatch.api.deps import get_services, require_role
from creditwatch.auth.roles import Principal, Role
from creditwatch.registry import ServiceRegistry

router = APIRouter(prefix="/api/v1/dead-letters", tags=["dead-letters"])


@router.get("")
async def list_dead_letters(
    limit: int = Query(default=100, ge=1, le=1000),
    services: ServiceRegistry = Depends(get_services),
    principal: Principal = Depends(require_role(Role.ADMIN)),
):
    records = await services.queue.dead_letters(limit=limit)
    return {
        "items": [r.to_dict() for r in records],
        "total": len(records),
    }


@router.post("/{entry_id}/replay", status_code=202)
async def replay_dead_letter(
    entry_id: str,
    services: ServiceRegistry = Depends(get_services),
    principal: Principal = Depends(require_role(Role.ADMIN)),
):
    replayed = await services.queue.replay_dead_letter(entry_id)
    if not replayed:
        raise HTTPException(status_code=404, detail="Dead-letter entry not found")
    return {"entry_id": entry_id, "status": "requeued"}
