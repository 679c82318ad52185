# backend/app/services/lead_scoring.py
"""
Lead score calculation.

Initial score (from booking history):

    base 5.0
    + bookings      min(total * 0.5, 2.0)
    - cancellations min(cancel_rate_pct / 10 * 0.5, 2.0)
    + ticket size   min((avg_ticket - 100) / 50 * 0.1, 1.5)
    + recency       min(bookings_last_90d * 0.3, 1.5)
    + engagement    min(bookings_last_365d * 0.2, 1.0)

clamped to [1.0, 10.0] and rounded to one decimal.

During a call the score is nudged by an LLM reading the last few turns
(ScoreDeltaAnalyzer). Proposed deltas are untrusted and clamped by
LeadScore.apply_delta.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.models.call import TranscriptTurn
from app.models.customer import CustomerHistory
from app.models.lead_score import DEFAULT_SCORE, MAX_DELTA, clamp_score
from app.services.errors import CollaboratorError
from app.utils.helpers import clamp, parse_llm_json, truncate_text
from app.utils.logger import logger

BASE_SCORE = DEFAULT_SCORE

BOOKINGS_WEIGHT, BOOKINGS_CAP = 0.5, 2.0
CANCELLATION_WEIGHT, CANCELLATION_CAP = 0.5, 2.0
TICKET_WEIGHT, TICKET_CAP = 0.1, 1.5
RECENCY_WEIGHT, RECENCY_CAP = 0.3, 1.5
ENGAGEMENT_WEIGHT, ENGAGEMENT_CAP = 0.2, 1.0

RECENCY_WINDOW = timedelta(days=90)
ENGAGEMENT_WINDOW = timedelta(days=365)

# Number of recent turns sent to the delta analyzer
DELTA_CONTEXT_TURNS = 3


def score_factors(history: CustomerHistory, now: Optional[datetime] = None) -> Dict[str, float]:
    """Signed contribution of each history component."""
    now = now or datetime.now(timezone.utc)
    total = history.total_bookings

    bookings = min(total * BOOKINGS_WEIGHT, BOOKINGS_CAP)

    if total > 0:
        cancel_rate_pct = history.cancelled_bookings / total * 100
        cancellations = -min((cancel_rate_pct / 10) * CANCELLATION_WEIGHT, CANCELLATION_CAP)
    else:
        cancellations = 0.0

    ticket = min((history.avg_ticket_size - 100) / 50 * TICKET_WEIGHT, TICKET_CAP)

    recent = sum(1 for d in history.booking_dates if now - d <= RECENCY_WINDOW)
    yearly = sum(1 for d in history.booking_dates if now - d <= ENGAGEMENT_WINDOW)
    recency = min(recent * RECENCY_WEIGHT, RECENCY_CAP)
    engagement = min(yearly * ENGAGEMENT_WEIGHT, ENGAGEMENT_CAP)

    return {
        "bookings": round(bookings, 2),
        "cancellations": round(cancellations, 2),
        "ticket_size": round(ticket, 2),
        "recency": round(recency, 2),
        "engagement": round(engagement, 2),
    }


def calculate_initial_lead_score(
    history: Optional[CustomerHistory],
    now: Optional[datetime] = None,
) -> Tuple[float, Dict[str, float]]:
    """
    Returns (score, factors). With no history the score is the 5.0 default
    and factors is empty.
    """
    if history is None:
        return BASE_SCORE, {}
    factors = score_factors(history, now)
    return clamp_score(BASE_SCORE + sum(factors.values())), factors


def is_adjustment_turn(turn_count: int) -> bool:
    """Score deltas are evaluated on even turn counts only."""
    return turn_count > 0 and turn_count % 2 == 0


SCORE_DELTA_SYSTEM_PROMPT = """You are a B2C lead scoring assistant for a home services company (dryer vent and duct cleaning).
You receive the customer's current lead score (1-10) and the most recent conversation turns between a CSR and the customer.
Decide how the latest turns change the customer's likelihood to book.

Signals that raise the score: booking intent, asking about availability or price acceptance, urgency, safety concerns, agreeing to add-ons.
Signals that lower the score: price objections, "just looking", comparing competitors, wanting to postpone, hostility.

Respond ONLY as JSON: {"delta": <number between -1 and 1>, "reason": "<max 12 words>"}
Use 0 when the turns carry no buying signal."""


def build_score_delta_prompt(
    turns: Sequence[TranscriptTurn],
    current_score: float,
    history: Optional[CustomerHistory] = None,
) -> str:
    lines = "\n".join(f"{t.role}: {t.content}" for t in turns)
    profile = "unknown customer"
    if history is not None:
        profile = (
            f"{history.total_bookings} bookings, {history.cancelled_bookings} cancelled, "
            f"avg ticket ${history.avg_ticket_size:.0f}"
        )
    return (
        f"CURRENT_SCORE: {current_score}\n"
        f"CUSTOMER_PROFILE: {profile}\n\n"
        f"RECENT_TURNS:\n{lines}\n\n"
        "Return the JSON object now."
    )


def parse_score_delta(text: str) -> Tuple[float, str]:
    """
    Parse the analyzer answer into (delta, reason).

    Unparseable answers and non-numeric deltas yield (0.0, reason). The
    delta is clamped into [-1, 1].
    """
    parsed = parse_llm_json(text)
    if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
        parsed = parsed[0]
    if not isinstance(parsed, dict):
        logger.warning(f"[LeadScore] Unparseable delta response: {truncate_text(text or '', 120)!r}")
        return 0.0, "unparseable analyzer response"

    try:
        delta = float(parsed.get("delta", 0.0))
    except (TypeError, ValueError):
        logger.warning(f"[LeadScore] Non-numeric delta: {parsed.get('delta')!r}")
        return 0.0, "non-numeric delta"
    if delta != delta:  # NaN
        return 0.0, "non-numeric delta"

    reason = truncate_text(str(parsed.get("reason") or "conversation signal").strip(), 120)
    return clamp(delta, -MAX_DELTA, MAX_DELTA), reason


class ScoreDeltaAnalyzer:
    """Asks the collaborator how the latest turns move the lead score."""

    def __init__(self, llm: Any):
        self.llm = llm

    async def analyze(
        self,
        turns: List[TranscriptTurn],
        current_score: float,
        history: Optional[CustomerHistory] = None,
    ) -> Tuple[float, str]:
        recent = turns[-DELTA_CONTEXT_TURNS:]
        if not recent:
            return 0.0, "no turns"
        try:
            text = await self.llm.complete_chat(
                SCORE_DELTA_SYSTEM_PROMPT,
                build_score_delta_prompt(recent, current_score, history),
                temperature=0.0,
                max_tokens=120,
            )
        except CollaboratorError as e:
            logger.warning(f"[LeadScore] Delta analysis skipped: {e}")
            return 0.0, "analyzer unavailable"
        return parse_score_delta(text)
