# backend/app/models/lead_score.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.utils.helpers import clamp, iso, utc_now


MIN_SCORE = 1.0
MAX_SCORE = 10.0
DEFAULT_SCORE = 5.0

# Proposed deltas are clamped to this range before use
MAX_DELTA = 1.0
# Deltas with an absolute value at or below this are ignored
MIN_APPLIED_DELTA = 0.05


def clamp_score(value: float) -> float:
    return round(clamp(value, MIN_SCORE, MAX_SCORE), 1)


@dataclass
class ScoreAdjustment:
    delta: float
    reason: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"delta": self.delta, "reason": self.reason, "timestamp": iso(self.timestamp)}


@dataclass
class LeadScore:
    """Running lead score for the active call. base_score never changes."""
    score: float
    base_score: float
    adjustments: List[ScoreAdjustment] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utc_now)

    @classmethod
    def initial(cls, score: float, now: Optional[datetime] = None) -> "LeadScore":
        score = clamp_score(score)
        return cls(score=score, base_score=score, last_updated=now or utc_now())

    def apply_delta(
        self,
        delta: float,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Optional[ScoreAdjustment]:
        """
        Apply a proposed score delta.

        The delta is clamped into [-1, 1]; deltas with |delta| <= 0.05 are
        dropped. The resulting score stays within [1.0, 10.0], rounded to
        one decimal. Returns the recorded adjustment, or None when skipped.
        """
        try:
            delta = float(delta)
        except (TypeError, ValueError):
            return None
        if delta != delta:  # NaN
            return None

        delta = clamp(delta, -MAX_DELTA, MAX_DELTA)
        if abs(delta) <= MIN_APPLIED_DELTA:
            return None

        now = now or utc_now()
        self.score = clamp_score(self.score + delta)
        self.last_updated = now
        adjustment = ScoreAdjustment(delta=round(delta, 2), reason=reason, timestamp=now)
        self.adjustments.append(adjustment)
        return adjustment

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "base_score": self.base_score,
            "adjustments": [a.to_dict() for a in self.adjustments],
            "last_updated": iso(self.last_updated),
        }

    @staticmethod
    def empty_dict() -> Dict[str, Any]:
        return {"score": None, "base_score": None, "adjustments": [], "last_updated": None}
