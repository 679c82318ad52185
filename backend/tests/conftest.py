# backend/tests/conftest.py
"""
Shared fixtures: a scripted LLM stand-in and a controllable clock.

Settings are read at import time, so environment overrides must happen
before anything under app/ is imported.
"""
import asyncio
import json
import os
from typing import Any, Dict, List, Optional

os.environ["LOG_FILE"] = ""
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from app.services.errors import CollaboratorError
from app.services.lead_scoring import SCORE_DELTA_SYSTEM_PROMPT
from app.services.nudge_pipeline import NUDGE_SYSTEM_PROMPT
from app.services.sentiment import SENTIMENT_SYSTEM_PROMPT


POSITIVE_WORDS = ("great", "book", "perfect", "yes", "sounds good")
NEGATIVE_WORDS = ("expensive", "cancel", "not interested", "angry", "terrible")


def nudge_json(*titles: str, type_: str = "upsell", priority: int = 1) -> str:
    return json.dumps({
        "nudges": [
            {"id": f"n{i + 1}", "type": type_, "title": t, "body": f"Offer {t} while the tech is on site.", "priority": priority}
            for i, t in enumerate(titles)
        ]
    })


class FakeClock:
    """Callable epoch clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeLLM:
    """
    Scripted replacement for OpenAIService.complete_chat.

    Answers are routed by system prompt. Queued answers are consumed in
    order; an Exception instance in a queue is raised instead of returned.
    Sentiment answers come from simple keyword matching on the utterance.
    """

    def __init__(self):
        self.nudge_responses: List[Any] = []
        self.delta_responses: List[Any] = []
        self.sentiment_error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

        # When set, nudge / delta calls wait on these before answering
        self.nudge_gate: Optional[asyncio.Event] = None
        self.delta_gate: Optional[asyncio.Event] = None
        self.sentiment_gate: Optional[asyncio.Event] = None
        self.nudge_entered = asyncio.Event()
        self.delta_entered = asyncio.Event()
        self.sentiment_entered = asyncio.Event()

    def calls_for(self, kind: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind]

    async def complete_chat(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 300,
        timeout_s: Optional[float] = None,
    ) -> str:
        if system_prompt == NUDGE_SYSTEM_PROMPT:
            kind = "nudge"
        elif system_prompt == SCORE_DELTA_SYSTEM_PROMPT:
            kind = "delta"
        elif system_prompt == SENTIMENT_SYSTEM_PROMPT:
            kind = "sentiment"
        else:
            raise AssertionError(f"unexpected system prompt: {system_prompt[:60]!r}")

        self.calls.append({
            "kind": kind,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })

        if kind == "nudge":
            self.nudge_entered.set()
            if self.nudge_gate is not None:
                await self.nudge_gate.wait()
            return self._next(self.nudge_responses, nudge_json())

        if kind == "delta":
            self.delta_entered.set()
            if self.delta_gate is not None:
                await self.delta_gate.wait()
            return self._next(self.delta_responses, '{"delta": 0, "reason": "no signal"}')

        self.sentiment_entered.set()
        if self.sentiment_gate is not None:
            await self.sentiment_gate.wait()
        if self.sentiment_error is not None:
            raise self.sentiment_error
        return self._sentiment_for(user_prompt)

    @staticmethod
    def _next(queue: List[Any], default: str) -> str:
        if not queue:
            return default
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @staticmethod
    def _sentiment_for(user_prompt: str) -> str:
        text = user_prompt.lower()
        if any(w in text for w in NEGATIVE_WORDS):
            return '{"sentiment": "negative", "score": 0.15}'
        if any(w in text for w in POSITIVE_WORDS):
            return '{"sentiment": "positive", "score": 0.9}'
        return '{"sentiment": "neutral", "score": 0.5}'


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def unavailable():
    return CollaboratorError("OPENAI_API_KEY not configured")
