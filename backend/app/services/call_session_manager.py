# backend/app/services/call_session_manager.py
"""
Live call session orchestration.

Owns the single active call (idle -> active -> idle), its transcript,
running lead score and nudge pipeline, the periodic nudge timer, and the
archive of finished sessions.

All mutations of the active call happen under one asyncio.Lock. Collaborator
round-trips (score deltas, nudges, sentiment) run outside the lock and their
results are applied only if the same LiveCall object is still active, so a
late answer can never touch a newer call or revive an ended one.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.config import settings
from app.models.call import (
    CallSession,
    ScoreHistoryEntry,
    TranscriptTurn,
    snapshot_turns,
)
from app.models.customer import SERVICES, CustomerProfile
from app.models.lead_score import LeadScore
from app.models.nudge import ServerNudge
from app.services.errors import CallConflictError, InvalidRequestError
from app.services.lead_scoring import ScoreDeltaAnalyzer, calculate_initial_lead_score, is_adjustment_turn
from app.services.nudge_pipeline import NudgeContext, NudgePipeline
from app.services.profile_generator import ProfileGenerator, get_profile_generator, is_known_identifier
from app.services.sentiment import SentimentClassifier, summarize
from app.utils.helpers import iso, truncate_text, utc_now
from app.utils.logger import logger

CSR_ROLES = frozenset({"assistant", "csr", "agent", "rep"})

EventCallback = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class LiveCall:
    """Mutable working state of the call in progress."""
    call_id: str
    customer_identifier: str
    start_time: datetime
    lead_score: LeadScore
    pipeline: NudgePipeline
    profile: Optional[CustomerProfile] = None
    customer_data: Dict[str, Any] = field(default_factory=dict)
    transcript: List[TranscriptTurn] = field(default_factory=list)
    turn_count: int = 0
    score_history: List[ScoreHistoryEntry] = field(default_factory=list)
    nudge_task: Optional[asyncio.Task] = None

    @property
    def nudge_timer_running(self) -> bool:
        return self.nudge_task is not None and not self.nudge_task.done()

    def nudge_context(self) -> NudgeContext:
        return NudgeContext(
            customer_identifier=self.customer_identifier,
            history=self.profile.history if self.profile else None,
            lead_score=self.lead_score.score,
        )


def _new_call_id() -> str:
    return f"CALL-{uuid.uuid4().hex[:12]}"


def detect_services(turns: List[TranscriptTurn]) -> List[str]:
    text = " ".join(t.content for t in turns).lower()
    return [s for s in SERVICES if s.lower() in text]


def talk_time_ratio(turns: List[TranscriptTurn]) -> Dict[str, Any]:
    csr_words = sum(len(t.content.split()) for t in turns if t.role.lower() in CSR_ROLES)
    customer_words = sum(len(t.content.split()) for t in turns if t.role.lower() not in CSR_ROLES)
    total = csr_words + customer_words
    return {
        "csr_word_count": csr_words,
        "customer_word_count": customer_words,
        "csr_percentage": round(csr_words / total * 100, 1) if total else 0.0,
        "customer_percentage": round(customer_words / total * 100, 1) if total else 0.0,
    }


class CallSessionManager:

    def __init__(
        self,
        llm: Any,
        profiles: Optional[ProfileGenerator] = None,
        clock: Callable[[], float] = time.time,
        nudge_interval_s: Optional[float] = None,
        nudge_throttle_s: Optional[float] = None,
        nudge_cooldown_s: Optional[float] = None,
        start_policy: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.llm = llm
        self.profiles = profiles or get_profile_generator()
        self.clock = clock
        self.nudge_interval_s = nudge_interval_s or settings.NUDGE_INTERVAL_SECONDS
        self.nudge_throttle_s = nudge_throttle_s
        self.nudge_cooldown_s = nudge_cooldown_s
        self.start_policy = (start_policy or settings.CALL_START_POLICY).lower()
        self.on_event = on_event

        self.score_analyzer = ScoreDeltaAnalyzer(llm)
        self.sentiment = SentimentClassifier(llm)

        self._active: Optional[LiveCall] = None
        self._archive: Dict[str, CallSession] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def active_call(self) -> Optional[LiveCall]:
        return self._active

    @property
    def is_active(self) -> bool:
        return self._active is not None

    def status(self) -> Dict[str, Any]:
        call = self._active
        return {
            "active": call is not None,
            "call_id": call.call_id if call else None,
            "customer_identifier": call.customer_identifier if call else None,
            "turn_count": call.turn_count if call else 0,
            "nudge_timer_running": call.nudge_timer_running if call else False,
        }

    async def _emit(self, event: Dict[str, Any]) -> None:
        if not self.on_event:
            return
        try:
            await self.on_event(event)
        except Exception as e:
            logger.error(f"[Call] Event callback failed for type={event.get('type', 'unknown')}: {e}")

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self, identifier: Any, profile_hints: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Start a new call for a customer identifier ("unknown" allowed).

        A call already in progress is force-ended and archived first, or
        refused with CallConflictError under the "reject" policy.
        """
        if not isinstance(identifier, str) or not identifier.strip():
            raise InvalidRequestError("customer_identifier must be a non-empty string")
        if profile_hints is not None and not isinstance(profile_hints, dict):
            raise InvalidRequestError("profile must be an object")
        identifier = identifier.strip()

        profile = self.profiles.get_profile(identifier) if is_known_identifier(identifier) else None
        score, _ = calculate_initial_lead_score(profile.history if profile else None)
        now = utc_now()

        call = LiveCall(
            call_id=_new_call_id(),
            customer_identifier=identifier,
            start_time=now,
            lead_score=LeadScore.initial(score, now),
            pipeline=NudgePipeline(
                self.llm,
                clock=self.clock,
                cooldown_s=self.nudge_cooldown_s,
                throttle_s=self.nudge_throttle_s,
            ),
            profile=profile,
            customer_data={k: v for k, v in (profile_hints or {}).items() if v is not None},
        )
        call.score_history.append(ScoreHistoryEntry(
            score=call.lead_score.score,
            timestamp=now,
            reason="initial score from history" if profile else "default score (no customer profile)",
        ))

        prior = None
        async with self._lock:
            if self._active is not None:
                if self.start_policy == "reject":
                    raise CallConflictError(self._active.call_id)
                prior = self._detach_locked()
            self._active = call

        if prior is not None:
            logger.warning(f"[Call] Start while {prior[0].call_id} active - force-ending it")
            await self._finish(*prior)

        logger.info(
            f"[Call] Started {call.call_id} for {identifier} | initial lead score {call.lead_score.score}"
        )
        await self._emit({
            "type": "call_started",
            "call_id": call.call_id,
            "customer_identifier": identifier,
            "lead_score": call.lead_score.score,
            "timestamp": iso(now),
        })
        return {"call_id": call.call_id, "start_time": iso(now)}

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------

    async def append_turn(self, role: Any, content: Any) -> bool:
        """
        Append one transcript turn. Returns False (nothing changed) when no
        call is active. Even turn counts trigger a score-delta evaluation;
        the second turn starts the nudge timer.
        """
        if not isinstance(role, str) or not role.strip():
            raise InvalidRequestError("role must be a non-empty string")
        if not isinstance(content, str) or not content.strip():
            raise InvalidRequestError("content must be a non-empty string")

        async with self._lock:
            call = self._active
            if call is None:
                logger.info("[Transcript] Append ignored, no active call")
                return False

            call.transcript.append(TranscriptTurn(role=role.strip(), content=content.strip(), timestamp=utc_now()))
            call.turn_count += 1
            turn_count = call.turn_count

            if turn_count >= 2 and not call.nudge_timer_running:
                call.nudge_task = asyncio.create_task(self._nudge_loop(call))
                logger.info(f"[Nudges] Timer started for {call.call_id} (every {self.nudge_interval_s}s)")

        logger.info(
            f'[Transcript] Appended {role}: "{truncate_text(content, 50)}" | Total turns: {turn_count}'
        )

        if is_adjustment_turn(turn_count):
            await self._adjust_score(call)
        return True

    async def _adjust_score(self, call: LiveCall) -> None:
        delta, reason = await self.score_analyzer.analyze(
            list(call.transcript),
            call.lead_score.score,
            call.profile.history if call.profile else None,
        )
        async with self._lock:
            if self._active is not call:
                logger.info(f"[LeadScore] Discarding delta for ended call {call.call_id}")
                return
            adjustment = call.lead_score.apply_delta(delta, reason)
            if adjustment is None:
                return
            call.score_history.append(ScoreHistoryEntry(
                score=call.lead_score.score,
                timestamp=adjustment.timestamp,
                reason=reason,
            ))
            score = call.lead_score.score

        logger.info(f"[LeadScore] {call.call_id}: {adjustment.delta:+.2f} -> {score} ({reason})")
        await self._emit({
            "type": "lead_score",
            "call_id": call.call_id,
            "score": score,
            "delta": adjustment.delta,
            "reason": reason,
            "timestamp": iso(adjustment.timestamp),
        })

    def current_lead_score(self) -> Dict[str, Any]:
        call = self._active
        if call is None:
            return LeadScore.empty_dict()
        return call.lead_score.to_dict()

    # ------------------------------------------------------------------
    # Nudges
    # ------------------------------------------------------------------

    async def _nudge_loop(self, call: LiveCall) -> None:
        try:
            while self._active is call:
                await asyncio.sleep(self.nudge_interval_s)
                if self._active is not call:
                    break
                await self._run_nudge_cycle(call)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"[Nudges] Timer loop crashed for {call.call_id}: {e}")

    async def _run_nudge_cycle(self, call: LiveCall) -> List[ServerNudge]:
        added = await call.pipeline.run_cycle(call.transcript, call.nudge_context())
        if self._active is not call:
            return []
        for nudge in added:
            await self._emit({
                "type": "nudge",
                "call_id": call.call_id,
                "sid": nudge.sid,
                "title": nudge.title,
                "nudge": nudge.nudge.body,
                "priority": nudge.nudge.priority,
                "timestamp": iso(utc_now()),
            })
        return added

    async def generate_nudges_now(self) -> Optional[List[ServerNudge]]:
        """Run one generation cycle on demand; None when no call is active."""
        call = self._active
        if call is None:
            return None
        return await self._run_nudge_cycle(call)

    def latest_nudges(self) -> List[Dict[str, Any]]:
        call = self._active
        if call is None:
            return []
        return [n.to_dict() for n in call.pipeline.latest()]

    def ack_nudges(self, sids: List[str]) -> int:
        call = self._active
        if call is None:
            return 0
        return len(call.pipeline.acknowledge(sids))

    async def _stop_timer(self, call: LiveCall) -> None:
        task = call.nudge_task
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"[Nudges] Timer stopped for {call.call_id}")

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------

    def _detach_locked(self):
        """Take the active call out of service. Caller holds the lock."""
        call = self._active
        self._active = None
        end_time = utc_now()
        nudges_shown = [dict(n.to_dict(), acknowledged=True) for n in call.pipeline.delivered]
        nudges_shown += [dict(n.to_dict(), acknowledged=False) for n in call.pipeline.pending]
        turns = snapshot_turns(call.transcript)
        history = list(call.score_history)
        return call, end_time, nudges_shown, turns, history

    async def end(self) -> Optional[CallSession]:
        """End the active call and archive it. None when nothing is active."""
        async with self._lock:
            if self._active is None:
                logger.info("[Call] End requested with no active call")
                return None
            detached = self._detach_locked()
        return await self._finish(*detached)

    async def _finish(self, call, end_time, nudges_shown, turns, score_history) -> CallSession:
        await self._stop_timer(call)

        results = await self.sentiment.classify_turns(turns)
        for turn, (label, score) in zip(turns, results):
            turn.sentiment = label
            turn.sentiment_score = score
        overall = summarize(results)

        session = CallSession(
            call_id=call.call_id,
            customer_identifier=call.customer_identifier,
            start_time=call.start_time,
            end_time=end_time,
            duration=max(0, int((end_time - call.start_time).total_seconds())),
            transcript=turns,
            nudges_shown=tuple(nudges_shown),
            lead_score_history=tuple(score_history),
            initial_lead_score=call.lead_score.base_score,
            final_lead_score=score_history[-1].score if score_history else call.lead_score.score,
            overall_sentiment=overall,
            customer_data=dict(call.customer_data),
            services_discussed=tuple(detect_services(list(turns))),
            talk_time=talk_time_ratio(list(turns)),
        )
        self._archive[session.call_id] = session

        logger.info(
            f"[Call] Ended {session.call_id} | {session.duration}s, {len(turns)} turns, "
            f"score {session.initial_lead_score} -> {session.final_lead_score}, "
            f"sentiment +{overall.positive}/={overall.neutral}/-{overall.negative}"
        )
        await self._emit({
            "type": "call_ended",
            "call_id": session.call_id,
            "final_lead_score": session.final_lead_score,
            "overall_sentiment": overall.overall.value,
            "timestamp": iso(end_time),
        })
        return session

    async def shutdown(self) -> Optional[CallSession]:
        return await self.end()

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def get_session(self, call_id: str) -> Optional[CallSession]:
        return self._archive.get(call_id)

    def latest_session(self) -> Optional[CallSession]:
        """Session with the latest end_time; equal end times go to the one archived last."""
        if not self._archive:
            return None
        return max(reversed(list(self._archive.values())), key=lambda s: s.end_time)

    def list_sessions(self) -> List[CallSession]:
        """Newest end_time first."""
        return sorted(reversed(list(self._archive.values())), key=lambda s: s.end_time, reverse=True)


_call_manager: Optional[CallSessionManager] = None


def get_call_manager() -> CallSessionManager:
    """Get global call session manager instance."""
    global _call_manager
    if _call_manager is None:
        from app.services.openai_service import OpenAIService
        _call_manager = CallSessionManager(llm=OpenAIService())
    return _call_manager
