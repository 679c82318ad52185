# backend/app/api/sessions.py
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from app.services.call_session_manager import CallSessionManager, get_call_manager

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("")
@router.get("/")
async def list_sessions(manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    return {"sessions": [s.summary() for s in manager.list_sessions()]}


@router.get("/latest")
async def latest_session(manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    session = manager.latest_session()
    if session is None:
        raise HTTPException(status_code=404, detail="No finished sessions")
    return session.to_dict()


@router.get("/{call_id}")
async def get_session(call_id: str, manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    session = manager.get_session(call_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.to_dict()
