# backend/app/models/call.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from app.utils.helpers import iso


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


@dataclass
class TranscriptTurn:
    role: str
    content: str
    timestamp: datetime
    sentiment: Optional[Sentiment] = None
    sentiment_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": iso(self.timestamp),
        }
        if self.sentiment is not None:
            data["sentiment"] = self.sentiment.value
            data["sentiment_score"] = self.sentiment_score
        return data


@dataclass(frozen=True)
class ScoreHistoryEntry:
    score: float
    timestamp: datetime
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "timestamp": iso(self.timestamp), "reason": self.reason}


@dataclass(frozen=True)
class SentimentSummary:
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    average_score: float = 0.5

    @property
    def overall(self) -> Sentiment:
        if self.positive > self.neutral and self.positive > self.negative:
            return Sentiment.POSITIVE
        if self.negative > self.positive and self.negative > self.neutral:
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positive": self.positive,
            "neutral": self.neutral,
            "negative": self.negative,
            "average_score": self.average_score,
            "overall": self.overall.value,
        }


@dataclass(frozen=True)
class CallSession:
    """Archived record of a finished call. Built once at call end."""
    call_id: str
    customer_identifier: str
    start_time: datetime
    end_time: datetime
    duration: int  # seconds
    transcript: Tuple[TranscriptTurn, ...]
    nudges_shown: Tuple[Dict[str, Any], ...]
    lead_score_history: Tuple[ScoreHistoryEntry, ...]
    initial_lead_score: float
    final_lead_score: float
    overall_sentiment: SentimentSummary
    customer_data: Dict[str, Any] = field(default_factory=dict)
    services_discussed: Tuple[str, ...] = ()
    talk_time: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "customer_identifier": self.customer_identifier,
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
            "duration": self.duration,
            "transcript": [t.to_dict() for t in self.transcript],
            "nudges_shown": [dict(n) for n in self.nudges_shown],
            "lead_score_history": [e.to_dict() for e in self.lead_score_history],
            "initial_lead_score": self.initial_lead_score,
            "final_lead_score": self.final_lead_score,
            "overall_sentiment": self.overall_sentiment.to_dict(),
            "customer_data": dict(self.customer_data),
            "services_discussed": list(self.services_discussed),
            "talk_time": dict(self.talk_time),
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "customer_identifier": self.customer_identifier,
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
            "duration": self.duration,
            "initial_lead_score": self.initial_lead_score,
            "final_lead_score": self.final_lead_score,
            "lead_score_change": round(self.final_lead_score - self.initial_lead_score, 1),
            "overall_sentiment": self.overall_sentiment.overall.value,
            "services_discussed": list(self.services_discussed),
        }


def snapshot_turns(turns: List[TranscriptTurn]) -> Tuple[TranscriptTurn, ...]:
    """Copy turns so the archive does not share objects with live state."""
    return tuple(
        TranscriptTurn(
            role=t.role,
            content=t.content,
            timestamp=t.timestamp,
            sentiment=t.sentiment,
            sentiment_score=t.sentiment_score,
        )
        for t in turns
    )
