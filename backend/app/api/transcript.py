# backend/app/api/transcript.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.services.call_session_manager import CallSessionManager, get_call_manager
from app.services.errors import InvalidRequestError

router = APIRouter(prefix="/api/transcript", tags=["transcript"])


class AppendTurnRequest(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


@router.post("/append")
async def append_turn(
    req: AppendTurnRequest,
    manager: CallSessionManager = Depends(get_call_manager),
) -> Dict[str, Any]:
    try:
        appended = await manager.append_turn(req.role, req.content)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not appended:
        return {"ok": False, "message": "No active call"}
    return {"ok": True}
