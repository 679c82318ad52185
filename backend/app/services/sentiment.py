# backend/app/services/sentiment.py
"""Per-turn sentiment classification, run once over the transcript at call end."""
from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence, Tuple

from app.config import settings
from app.models.call import Sentiment, SentimentSummary, TranscriptTurn
from app.services.errors import CollaboratorError
from app.utils.helpers import clamp, parse_llm_json
from app.utils.logger import logger

NEUTRAL_SCORE = 0.5
NEGATIVE_BELOW = 0.4
POSITIVE_ABOVE = 0.6

SENTIMENT_SYSTEM_PROMPT = """You classify the sentiment of one utterance from a home services sales call.
Return ONLY JSON: {"sentiment": "positive" | "neutral" | "negative", "score": <number 0..1>}
score: 0 = very negative, 0.5 = neutral, 1 = very positive."""


def label_for_score(score: float) -> Sentiment:
    """The label always follows the score; the model's own label is ignored."""
    if score < NEGATIVE_BELOW:
        return Sentiment.NEGATIVE
    if score > POSITIVE_ABOVE:
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def parse_sentiment(text: str) -> Tuple[Sentiment, float]:
    parsed = parse_llm_json(text)
    if not isinstance(parsed, dict):
        return Sentiment.NEUTRAL, NEUTRAL_SCORE
    try:
        score = float(parsed.get("score"))
    except (TypeError, ValueError):
        return Sentiment.NEUTRAL, NEUTRAL_SCORE
    if score != score:  # NaN
        return Sentiment.NEUTRAL, NEUTRAL_SCORE
    score = round(clamp(score, 0.0, 1.0), 2)
    return label_for_score(score), score


class SentimentClassifier:

    def __init__(self, llm: Any, max_concurrency: Optional[int] = None):
        self.llm = llm
        self.max_concurrency = max_concurrency or settings.SENTIMENT_MAX_CONCURRENCY

    async def classify(self, content: str) -> Tuple[Sentiment, float]:
        try:
            text = await self.llm.complete_chat(
                SENTIMENT_SYSTEM_PROMPT,
                f"UTTERANCE:\n{content}",
                temperature=0.0,
                max_tokens=60,
            )
        except CollaboratorError as e:
            logger.warning(f"[Sentiment] Classification skipped: {e}")
            return Sentiment.NEUTRAL, NEUTRAL_SCORE
        return parse_sentiment(text)

    async def classify_turns(self, turns: Sequence[TranscriptTurn]) -> List[Tuple[Sentiment, float]]:
        """
        One collaborator call per turn, at most max_concurrency in flight,
        results in turn order.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(content: str) -> Tuple[Sentiment, float]:
            async with semaphore:
                return await self.classify(content)

        return list(await asyncio.gather(*(_bounded(t.content) for t in turns)))


def summarize(results: Sequence[Tuple[Sentiment, float]]) -> SentimentSummary:
    if not results:
        return SentimentSummary()
    positive = sum(1 for label, _ in results if label == Sentiment.POSITIVE)
    negative = sum(1 for label, _ in results if label == Sentiment.NEGATIVE)
    neutral = len(results) - positive - negative
    average = round(sum(score for _, score in results) / len(results), 3)
    return SentimentSummary(positive=positive, neutral=neutral, negative=negative, average_score=average)
