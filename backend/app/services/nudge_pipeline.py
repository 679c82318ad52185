# backend/app/services/nudge_pipeline.py
"""
Coaching nudge generation, de-duplication and delivery bookkeeping.

One NudgePipeline belongs to one live call. It keeps:

- pending: generated nudges not yet acknowledged by the CSR screen
- recently_shown: title -> time of acknowledgment (re-show cooldown)
- delivered: acknowledged nudges, in ack order

Titles are the identity used for de-duplication; sids are the identity used
for acknowledgment. A title is never pending twice, and an acknowledged
title stays suppressed for the cooldown window.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from app.config import settings
from app.models.call import TranscriptTurn
from app.models.customer import CustomerHistory
from app.models.nudge import BODY_MAX_CHARS, TITLE_MAX_CHARS, Nudge, ServerNudge
from app.services.errors import CollaboratorError
from app.utils.helpers import parse_llm_json, truncate_text
from app.utils.logger import logger

MAX_CANDIDATES = 2
MAX_AVOID_TITLES = 20
MIN_TURNS_FOR_NUDGES = 2


NUDGE_SYSTEM_PROMPT = f"""You are an expert sales coach for home services. Generate HIGH-QUALITY, CONTEXT-SPECIFIC nudges for a CSR handling dryer vent cleaning/inspection calls.

OUTPUT FORMAT: JSON with up to {MAX_CANDIDATES} nudges (only suggest if highly relevant). Each nudge has: id, type, title, body, priority.

NUDGE TYPES:
1. upsell: enhance the current service with a specific add-on and a concrete benefit.
2. cross_sell: a complementary service with a logical connection and a bundling incentive.
3. tip: a specific question or action for the CSR and why it matters.

STRICT RULES:
- Body: <={BODY_MAX_CHARS} chars. Title: <={TITLE_MAX_CHARS} chars.
- Priority: 1 (urgent/high-value), 2 (good fit), 3 (nice to have)
- NO generic suggestions like "provide good service" or "ask about needs"
- NO repetition: never reuse a title from the avoid list
- If the conversation doesn't warrant quality nudges, return fewer (even 0)

Respond ONLY as JSON {{"nudges": [...]}}."""


@dataclass(frozen=True)
class NudgeContext:
    customer_identifier: str
    history: Optional[CustomerHistory]
    lead_score: Optional[float]


def build_nudge_prompt(
    window: Sequence[TranscriptTurn],
    avoid_titles: Sequence[str],
    context: Optional[NudgeContext] = None,
) -> str:
    convo = "\n".join(f"{t.role}: {t.content}" for t in window)

    profile = ""
    if context is not None:
        if context.history is not None:
            h = context.history
            profile = (
                f"CUSTOMER_PROFILE: {h.total_bookings} past bookings, {h.cancelled_bookings} cancelled, "
                f"avg ticket ${h.avg_ticket_size:.0f}, last service {h.last_booking_date.date().isoformat()}\n"
            )
        else:
            profile = "CUSTOMER_PROFILE: new or unidentified customer\n"
        if context.lead_score is not None:
            profile += f"LEAD_SCORE: {context.lead_score}/10\n"

    avoid = ""
    if avoid_titles:
        avoid = "\n\nAVOID THESE RECENTLY USED TITLES (generate NEW suggestions):\n" + "\n".join(
            f'- "{t}"' for t in avoid_titles
        )

    return (
        f"{profile}\nConversation (recent):\n{convo}{avoid}\n\n"
        f"Analyze the conversation context and generate 0-{MAX_CANDIDATES} HIGH-QUALITY nudges. "
        'Respond ONLY as JSON { "nudges": [...] }.'
    )


def parse_nudge_candidates(text: str) -> Optional[List[Nudge]]:
    """
    Returns the valid candidates (at most two), or None when no JSON could
    be recovered from the answer.
    """
    parsed = parse_llm_json(text)
    if isinstance(parsed, dict):
        raw = parsed.get("nudges")
    elif isinstance(parsed, list):
        raw = parsed
    else:
        return None
    if not isinstance(raw, list):
        return None

    nudges: List[Nudge] = []
    for i, item in enumerate(raw):
        nudge = Nudge.from_candidate(item, fallback_id=f"n{i + 1}")
        if nudge is not None:
            nudges.append(nudge)
        if len(nudges) >= MAX_CANDIDATES:
            break
    return nudges


class NudgePipeline:

    def __init__(
        self,
        llm: Any,
        clock: Callable[[], float] = time.time,
        cooldown_s: Optional[float] = None,
        throttle_s: Optional[float] = None,
        context_turns: Optional[int] = None,
        max_served: Optional[int] = None,
        max_pending: Optional[int] = None,
    ):
        self.llm = llm
        self.clock = clock
        self.cooldown_s = settings.NUDGE_COOLDOWN_SECONDS if cooldown_s is None else cooldown_s
        self.throttle_s = settings.NUDGE_THROTTLE_SECONDS if throttle_s is None else throttle_s
        self.context_turns = context_turns or settings.NUDGE_CONTEXT_TURNS
        self.max_served = max_served or settings.NUDGE_MAX_SERVED
        self.max_pending = max_pending or settings.NUDGE_MAX_PENDING

        self.pending: List[ServerNudge] = []
        self.recently_shown: Dict[str, float] = {}
        self.delivered: List[ServerNudge] = []
        self._counter = 0
        self._last_cycle_at: Optional[float] = None
        self._cycle_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def purge_recently_shown(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        expired = [t for t, ts in self.recently_shown.items() if now - ts >= self.cooldown_s]
        for title in expired:
            del self.recently_shown[title]

    def pending_titles(self) -> List[str]:
        return [n.title for n in self.pending]

    def avoid_titles(self) -> List[str]:
        recent = list(self.recently_shown.keys())[-MAX_AVOID_TITLES:]
        out: List[str] = []
        for title in recent + self.pending_titles():
            if title not in out:
                out.append(title)
        return out

    def is_suppressed(self, title: str, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        if title in self.pending_titles():
            return True
        shown_at = self.recently_shown.get(title)
        return shown_at is not None and now - shown_at < self.cooldown_s

    def _next_sid(self, now: float) -> str:
        self._counter += 1
        return f"{int(now * 1000)}-{self._counter}"

    def add_candidates(self, candidates: Iterable[Nudge]) -> List[ServerNudge]:
        """Filter candidates against pending + cooldown and queue the survivors."""
        now = self.clock()
        self.purge_recently_shown(now)

        added: List[ServerNudge] = []
        dropped = 0
        for nudge in candidates:
            if self.is_suppressed(nudge.title, now):
                dropped += 1
                continue
            wrapped = ServerNudge(nudge=nudge, sid=self._next_sid(now), created_at=now)
            self.pending.append(wrapped)
            added.append(wrapped)

        overflow = len(self.pending) - self.max_pending
        if overflow > 0:
            del self.pending[:overflow]
            logger.info(f"[Nudges] Evicted {overflow} oldest pending nudges")

        if added:
            logger.info(
                f"[Nudges] Added {len(added)} new nudges to pending queue | Total pending: {len(self.pending)} "
                f"| New titles: {', '.join(n.title for n in added)}"
            )
        elif dropped:
            logger.info(f"[Nudges] Generated {dropped} nudges but all were filtered (duplicates or recently shown)")
        return added

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def latest(self) -> List[ServerNudge]:
        """Pending nudges for display. Does not remove anything."""
        return list(self.pending[:self.max_served])

    def acknowledge(self, sids: Iterable[str]) -> List[ServerNudge]:
        wanted = set(s for s in sids if isinstance(s, str))
        if not wanted:
            return []
        now = self.clock()
        acked = [n for n in self.pending if n.sid in wanted]
        for n in acked:
            self.recently_shown[n.title] = now
        self.pending = [n for n in self.pending if n.sid not in wanted]
        self.delivered.extend(acked)
        if acked:
            logger.info(
                f"[Nudges] ACKed {len(acked)} nudges (marked as recently shown) | Remaining: {len(self.pending)}"
            )
        return acked

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @property
    def cycle_in_flight(self) -> bool:
        return self._cycle_lock.locked()

    async def run_cycle(
        self,
        transcript: Sequence[TranscriptTurn],
        context: Optional[NudgeContext] = None,
    ) -> List[ServerNudge]:
        """
        One generation cycle. Skipped (returns []) when fewer than two turns
        exist, another cycle is in flight, or the last cycle started less than
        the throttle interval ago. Collaborator failures yield [].
        """
        if len(transcript) < MIN_TURNS_FOR_NUDGES:
            return []
        if self._cycle_lock.locked():
            logger.debug("[Nudges] Cycle already in flight, skipping")
            return []

        async with self._cycle_lock:
            now = self.clock()
            if self._last_cycle_at is not None and now - self._last_cycle_at < self.throttle_s:
                return []
            self._last_cycle_at = now

            self.purge_recently_shown(now)
            window = list(transcript[-self.context_turns:])
            prompt = build_nudge_prompt(window, self.avoid_titles(), context)

            try:
                text = await self.llm.complete_chat(
                    NUDGE_SYSTEM_PROMPT,
                    prompt,
                    temperature=0.3,
                    max_tokens=400,
                )
            except CollaboratorError as e:
                logger.warning(f"[Nudges] Generation skipped: {e}")
                return []

            candidates = parse_nudge_candidates(text)
            if candidates is None:
                logger.error(f"[Nudges] Parse error, no JSON in response: {truncate_text(text, 160)!r}")
                return []
            return self.add_candidates(candidates)
