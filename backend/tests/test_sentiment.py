# backend/tests/test_sentiment.py
import asyncio
from datetime import datetime, timezone

import pytest

from app.config import settings
from app.models.call import Sentiment, SentimentSummary, TranscriptTurn
from app.services.sentiment import SentimentClassifier, label_for_score, parse_sentiment, summarize


NOW = datetime(2026, 3, 15, 14, 30, tzinfo=timezone.utc)


class TestSentimentLabels:

    def test_thresholds(self):
        assert label_for_score(0.39) == Sentiment.NEGATIVE
        assert label_for_score(0.4) == Sentiment.NEUTRAL
        assert label_for_score(0.6) == Sentiment.NEUTRAL
        assert label_for_score(0.61) == Sentiment.POSITIVE

    def test_label_follows_score(self):
        assert parse_sentiment('{"sentiment": "negative", "score": 0.9}') == (Sentiment.POSITIVE, 0.9)

    def test_score_clamped(self):
        assert parse_sentiment('{"sentiment": "positive", "score": 1.7}') == (Sentiment.POSITIVE, 1.0)
        assert parse_sentiment('{"sentiment": "negative", "score": -3}') == (Sentiment.NEGATIVE, 0.0)

    def test_unparseable_is_neutral(self):
        assert parse_sentiment("positive!") == (Sentiment.NEUTRAL, 0.5)
        assert parse_sentiment('{"sentiment": "positive"}') == (Sentiment.NEUTRAL, 0.5)


class TestSentimentSummary:

    def test_empty(self):
        summary = summarize([])
        assert summary == SentimentSummary(positive=0, neutral=0, negative=0, average_score=0.5)
        assert summary.overall == Sentiment.NEUTRAL

    def test_counts_and_average(self):
        summary = summarize([
            (Sentiment.POSITIVE, 0.9),
            (Sentiment.POSITIVE, 0.8),
            (Sentiment.NEGATIVE, 0.1),
        ])
        assert (summary.positive, summary.neutral, summary.negative) == (2, 0, 1)
        assert summary.average_score == 0.6
        assert summary.overall == Sentiment.POSITIVE
        assert summary.to_dict()["overall"] == "positive"

    def test_ties_are_neutral(self):
        summary = summarize([(Sentiment.POSITIVE, 0.9), (Sentiment.NEGATIVE, 0.1)])
        assert summary.overall == Sentiment.NEUTRAL


class TestSentimentClassifier:

    @pytest.mark.asyncio
    async def test_classify_turns_in_order(self, fake_llm):
        turns = [
            TranscriptTurn(role="user", content="great, let's book it", timestamp=NOW),
            TranscriptTurn(role="user", content="that's too expensive", timestamp=NOW),
            TranscriptTurn(role="assistant", content="We have openings Tuesday.", timestamp=NOW),
        ]
        results = await SentimentClassifier(fake_llm).classify_turns(turns)

        assert [label for label, _ in results] == [Sentiment.POSITIVE, Sentiment.NEGATIVE, Sentiment.NEUTRAL]
        assert results[0][1] > 0.6
        assert len(fake_llm.calls_for("sentiment")) == 3
        assert fake_llm.calls_for("sentiment")[0]["user_prompt"] == "UTTERANCE:\ngreat, let's book it"

    @pytest.mark.asyncio
    async def test_collaborator_failure_is_neutral(self, fake_llm, unavailable):
        fake_llm.sentiment_error = unavailable
        assert await SentimentClassifier(fake_llm).classify("great, let's book it") == (Sentiment.NEUTRAL, 0.5)

    @pytest.mark.asyncio
    async def test_no_turns_no_calls(self, fake_llm):
        assert await SentimentClassifier(fake_llm).classify_turns([]) == []
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_in_flight_requests_bounded(self):
        llm = _SlowLLM()
        turns = [
            TranscriptTurn(role="user", content=f"turn {i}", timestamp=NOW)
            for i in range(20)
        ]

        results = await SentimentClassifier(llm, max_concurrency=4).classify_turns(turns)

        assert llm.max_in_flight == 4
        assert sorted(llm.prompts) == sorted(f"UTTERANCE:\nturn {i}" for i in range(20))
        assert [score for _, score in results] == [round(i / 20, 2) for i in range(20)]

    def test_default_concurrency_from_settings(self, fake_llm):
        assert SentimentClassifier(fake_llm).max_concurrency == settings.SENTIMENT_MAX_CONCURRENCY


class _SlowLLM:
    """Answers after a short sleep, scoring each turn by its number."""

    def __init__(self):
        self.in_flight = 0
        self.max_in_flight = 0
        self.prompts = []

    async def complete_chat(self, system_prompt, user_prompt, temperature=0.3, max_tokens=300, timeout_s=None):
        self.prompts.append(user_prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.in_flight -= 1
        n = int(user_prompt.rsplit(" ", 1)[1])
        return '{"sentiment": "neutral", "score": %s}' % round(n / 20, 2)
