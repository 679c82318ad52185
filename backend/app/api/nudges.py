# backend/app/api/nudges.py
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.services.call_session_manager import CallSessionManager, get_call_manager
from app.utils.logger import logger

router = APIRouter(prefix="/api/nudges", tags=["nudges"])


class AckRequest(BaseModel):
    sids: List[str] = Field(default_factory=list)


@router.get("/latest")
async def latest_nudges(manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    """Pending nudges, oldest first. Reading does not remove them; ack does."""
    nudges = manager.latest_nudges()
    if nudges:
        logger.debug(f"[Nudges] Serving {len(nudges)} pending nudges to client")
    return {"nudges": nudges}


@router.post("/ack")
async def ack_nudges(
    req: AckRequest,
    manager: CallSessionManager = Depends(get_call_manager),
) -> Dict[str, Any]:
    removed = manager.ack_nudges(req.sids) if req.sids else 0
    return {"ok": True, "removed": removed}


@router.post("/generate")
async def generate_nudges(manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    added = await manager.generate_nudges_now()
    if added is None:
        return {"ok": False, "message": "No active call", "added": []}
    return {"ok": True, "added": [n.to_dict() for n in added]}
