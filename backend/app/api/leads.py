# backend/app/api/leads.py
"""Lead score and appointment lookups, independent of any active call."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from app.models.customer import AppointmentStatus
from app.services.call_session_manager import CallSessionManager, get_call_manager
from app.services.lead_scoring import calculate_initial_lead_score
from app.services.profile_generator import ProfileGenerator, get_profile_generator, is_known_identifier

router = APIRouter(prefix="/api", tags=["leads"])


def _require_identifier(identifier: str) -> str:
    identifier = (identifier or "").strip()
    if not identifier:
        raise HTTPException(status_code=400, detail="identifier is required")
    return identifier


@router.get("/lead-score/current")
async def current_lead_score(manager: CallSessionManager = Depends(get_call_manager)) -> Dict[str, Any]:
    return manager.current_lead_score()


@router.get("/customers/{identifier}/lead-score")
async def calculate_lead_score(
    identifier: str,
    profiles: ProfileGenerator = Depends(get_profile_generator),
) -> Dict[str, Any]:
    identifier = _require_identifier(identifier)
    history = profiles.get_history(identifier) if is_known_identifier(identifier) else None
    score, factors = calculate_initial_lead_score(history)
    return {
        "identifier": identifier,
        "score": score,
        "factors": factors,
        "history": history.to_dict() if history else None,
    }


@router.get("/customers/{identifier}/appointments")
async def list_appointments(
    identifier: str,
    status: Optional[str] = None,
    profiles: ProfileGenerator = Depends(get_profile_generator),
) -> Dict[str, Any]:
    identifier = _require_identifier(identifier)

    status_filter = None
    if status:
        try:
            status_filter = AppointmentStatus(status.strip().lower())
        except ValueError:
            allowed = ", ".join(s.value for s in AppointmentStatus)
            raise HTTPException(status_code=400, detail=f"status must be one of: {allowed}")

    profile = profiles.get_profile(identifier)
    if profile is None:
        # "unknown" callers have no calendar
        counts = {s.value: 0 for s in AppointmentStatus}
        return {"identifier": identifier, "appointments": [], "counts": counts}

    appointments = profiles.get_appointments(identifier, status_filter)
    return {
        "identifier": identifier,
        "appointments": [a.to_dict() for a in appointments],
        "counts": profile.status_counts(),
    }
