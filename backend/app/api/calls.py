# backend/app/api/calls.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.services.call_session_manager import CallSessionManager, get_call_manager
from app.services.errors import CallConflictError, InvalidRequestError
from app.utils.logger import logger

router = APIRouter(prefix="/api/calls", tags=["calls"])


class CustomerProfileHints(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    zipcode: Optional[str] = None
    phone: Optional[str] = None


class StartCallRequest(BaseModel):
    customer_identifier: Optional[str] = None
    profile: Optional[CustomerProfileHints] = None


@router.post("/start")
async def start_call(
    req: StartCallRequest,
    manager: CallSessionManager = Depends(get_call_manager),
) -> Dict[str, Any]:
    hints = req.profile.model_dump(exclude_none=True) if req.profile else None
    try:
        return await manager.start(req.customer_identifier, hints)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CallConflictError as e:
        logger.warning(f"[Call] Start rejected: {e}")
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/end")
async def end_call(manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    session = await manager.end()
    if session is None:
        return {"ok": False, "message": "No active call to end"}
    return {"ok": True, "call_id": session.call_id, "session": session.to_dict()}


@router.get("/current")
async def current_call(manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    return manager.status()
