# backend/app/models/__init__.py
from app.models.customer import (
    Appointment,
    AppointmentStatus,
    CustomerHistory,
    CustomerProfile,
    UNKNOWN_CUSTOMER,
)
from app.models.lead_score import LeadScore, ScoreAdjustment
from app.models.nudge import Nudge, NudgeType, ServerNudge
from app.models.call import CallSession, ScoreHistoryEntry, Sentiment, SentimentSummary, TranscriptTurn

__all__ = [
    'Appointment', 'AppointmentStatus', 'CustomerHistory', 'CustomerProfile', 'UNKNOWN_CUSTOMER',
    'LeadScore', 'ScoreAdjustment',
    'Nudge', 'NudgeType', 'ServerNudge',
    'CallSession', 'ScoreHistoryEntry', 'Sentiment', 'SentimentSummary', 'TranscriptTurn',
]
