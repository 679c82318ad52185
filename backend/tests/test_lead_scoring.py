# backend/tests/test_lead_scoring.py
"""
Profile synthesis and lead scoring

Covers:
1. Deterministic customer profiles
2. Initial score formula and bounds
3. In-call delta application
4. Delta analyzer parsing and degradation
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.models.call import TranscriptTurn
from app.models.customer import AppointmentStatus, CustomerHistory
from app.models.lead_score import LeadScore
from app.services.errors import CollaboratorError
from app.services.lead_scoring import (
    ScoreDeltaAnalyzer,
    calculate_initial_lead_score,
    is_adjustment_turn,
    parse_score_delta,
    score_factors,
)
from app.services.profile_generator import ProfileGenerator, generate_profile, is_known_identifier


NOW = datetime(2026, 3, 15, 14, 30, tzinfo=timezone.utc)
ANCHOR = datetime(2026, 3, 15, tzinfo=timezone.utc)


def _history(total, cancelled, avg, days_ago):
    dates = tuple(sorted((NOW - timedelta(days=d) for d in days_ago), reverse=True))
    return CustomerHistory(
        total_bookings=total,
        cancelled_bookings=cancelled,
        avg_ticket_size=avg,
        last_booking_date=dates[0],
        booking_dates=dates,
    )


def _turn(role, content):
    return TranscriptTurn(role=role, content=content, timestamp=NOW)


# ============================================================================
# 1. PROFILE GENERATOR
# ============================================================================

class TestProfileGenerator:

    def test_same_identifier_same_profile(self):
        first = generate_profile("555-0100", now=NOW)
        second = generate_profile("555-0100", now=NOW)
        assert first == second
        assert 3 <= first.history.total_bookings <= 8

    def test_history_bounds(self):
        for identifier in ("555-0100", "555-0101", "jane@example.com", "8005551234", "x"):
            history = generate_profile(identifier, now=NOW).history
            assert 3 <= history.total_bookings <= 8
            assert 0 <= history.cancelled_bookings <= 2
            assert 150.0 <= history.avg_ticket_size <= 400.0
            assert history.last_booking_date == history.booking_dates[0]
            assert list(history.booking_dates) == sorted(history.booking_dates, reverse=True)
            for date in history.booking_dates:
                age = ANCHOR - date
                assert timedelta(days=90) < age < timedelta(days=365)

    def test_generated_history_never_recent(self):
        for identifier in ("555-0100", "555-0101", "jane@example.com", "8005551234", "x"):
            for at in (ANCHOR, NOW, ANCHOR + timedelta(hours=23, minutes=59)):
                history = generate_profile(identifier, now=at).history
                assert all(at - d > timedelta(days=90) for d in history.booking_dates)
                assert score_factors(history, at)["recency"] == 0.0

    def test_appointments_partition_history(self):
        profile = generate_profile("555-0100", now=NOW)
        history = profile.history
        past = profile.appointments_with_status(AppointmentStatus.PAST)
        cancelled = profile.appointments_with_status(AppointmentStatus.CANCELLED)
        pending = profile.appointments_with_status(AppointmentStatus.PENDING)

        assert len(past) == history.total_bookings - history.cancelled_bookings
        assert len(history.booking_dates) == len(past)
        assert sorted(a.date for a in past) == sorted(history.booking_dates)
        assert len(cancelled) == history.cancelled_bookings
        assert 1 <= len(pending) <= 3
        assert all(a.date > ANCHOR for a in pending)
        assert all(a.date < ANCHOR for a in cancelled)

    def test_appointments_sorted_and_unique(self):
        profile = generate_profile("555-0142", now=NOW)
        dates = [a.date for a in profile.appointments]
        assert dates == sorted(dates, reverse=True)
        ids = [a.id for a in profile.appointments]
        assert len(ids) == len(set(ids))
        assert all(a.customer_identifier == "555-0142" for a in profile.appointments)

    def test_status_counts(self):
        profile = generate_profile("555-0100", now=NOW)
        counts = profile.status_counts()
        assert set(counts) == {"pending", "past", "cancelled"}
        assert sum(counts.values()) == len(profile.appointments)

    def test_cache_returns_same_object(self):
        generator = ProfileGenerator()
        first = generator.get_profile("555-0100")
        second = generator.get_profile(" 555-0100 ")
        assert first is second
        assert len(generator) == 1

    def test_unknown_identifiers_have_no_profile(self):
        generator = ProfileGenerator()
        assert generator.get_profile("unknown") is None
        assert generator.get_profile("UNKNOWN") is None
        assert generator.get_profile("") is None
        assert generator.get_profile(None) is None
        assert generator.get_appointments("unknown") == []
        assert len(generator) == 0

    def test_is_known_identifier(self):
        assert is_known_identifier("555-0100")
        assert not is_known_identifier("  ")
        assert not is_known_identifier("Unknown")

    def test_get_appointments_filter(self):
        generator = ProfileGenerator()
        pending = generator.get_appointments("555-0100", AppointmentStatus.PENDING)
        assert pending
        assert all(a.status == AppointmentStatus.PENDING for a in pending)


# ============================================================================
# 2. INITIAL SCORE
# ============================================================================

class TestInitialLeadScore:

    def test_no_history_defaults_to_five(self):
        assert calculate_initial_lead_score(None) == (5.0, {})

    def test_strong_customer_caps_at_ten(self):
        history = _history(8, 0, 400.0, [5, 10, 15, 20, 25, 30, 35, 40])
        factors = score_factors(history, NOW)
        assert factors["bookings"] == 2.0
        assert factors["ticket_size"] == 0.6
        assert factors["recency"] == 1.5
        assert factors["engagement"] == 1.0

        score, _ = calculate_initial_lead_score(history, NOW)
        assert score == 10.0

    def test_cancellation_heavy_customer(self):
        history = _history(3, 2, 150.0, [200])
        score, factors = calculate_initial_lead_score(history, NOW)
        assert factors == {
            "bookings": 1.5,
            "cancellations": -2.0,
            "ticket_size": 0.1,
            "recency": 0.0,
            "engagement": 0.2,
        }
        assert score == 4.8

    def test_generated_profiles_stay_in_range(self):
        for i in range(50):
            history = generate_profile(f"555-{i:04d}", now=NOW).history
            score, _ = calculate_initial_lead_score(history, NOW)
            assert 1.0 <= score <= 10.0
            assert score == round(score, 1)

    def test_adjustment_turns_are_even(self):
        assert [n for n in range(7) if is_adjustment_turn(n)] == [2, 4, 6]


# ============================================================================
# 3. DELTA APPLICATION
# ============================================================================

class TestApplyDelta:

    def test_delta_is_clamped(self):
        lead = LeadScore.initial(5.0, NOW)
        adjustment = lead.apply_delta(3.0, "strong booking intent", NOW)
        assert adjustment.delta == 1.0
        assert lead.score == 6.0
        assert lead.base_score == 5.0

    def test_small_delta_is_ignored(self):
        lead = LeadScore.initial(5.0, NOW)
        assert lead.apply_delta(0.05, "noise", NOW) is None
        assert lead.apply_delta(-0.05, "noise", NOW) is None
        assert lead.score == 5.0
        assert lead.adjustments == []

    def test_just_above_threshold_applies(self):
        lead = LeadScore.initial(5.0, NOW)
        adjustment = lead.apply_delta(-0.06, "mild price concern", NOW)
        assert adjustment is not None
        assert adjustment.delta == -0.06
        assert lead.score == 4.9

    def test_score_stays_in_bounds(self):
        lead = LeadScore.initial(9.8, NOW)
        lead.apply_delta(1.0, "ready", NOW)
        assert lead.score == 10.0

        low = LeadScore.initial(1.3, NOW)
        low.apply_delta(-1.0, "hung up", NOW)
        assert low.score == 1.0

    def test_garbage_delta_is_ignored(self):
        lead = LeadScore.initial(5.0, NOW)
        assert lead.apply_delta("lots", "?", NOW) is None
        assert lead.apply_delta(float("nan"), "?", NOW) is None
        assert lead.apply_delta(None, "?", NOW) is None
        assert lead.score == 5.0

    def test_empty_dict_shape(self):
        assert LeadScore.empty_dict()["score"] is None


# ============================================================================
# 4. DELTA ANALYZER
# ============================================================================

class TestScoreDeltaParsing:

    def test_parse_valid(self):
        assert parse_score_delta('{"delta": 0.4, "reason": "asked about availability"}') == (
            0.4,
            "asked about availability",
        )

    def test_parse_clamps(self):
        delta, _ = parse_score_delta('{"delta": -7, "reason": "hostile"}')
        assert delta == -1.0

    def test_parse_fenced(self):
        delta, reason = parse_score_delta('```json\n{"delta": 0.3, "reason": "urgency"}\n```')
        assert (delta, reason) == (0.3, "urgency")

    def test_parse_failures_mean_no_change(self):
        assert parse_score_delta("The customer seems keen.")[0] == 0.0
        assert parse_score_delta('{"delta": "big", "reason": "x"}')[0] == 0.0
        assert parse_score_delta("")[0] == 0.0


class TestScoreDeltaAnalyzer:

    @pytest.mark.asyncio
    async def test_only_recent_turns_are_sent(self, fake_llm):
        fake_llm.delta_responses.append('{"delta": 0.5, "reason": "wants to book"}')
        turns = [
            _turn("user", "first thing I said"),
            _turn("assistant", "second"),
            _turn("user", "third"),
            _turn("assistant", "fourth"),
        ]
        delta, reason = await ScoreDeltaAnalyzer(fake_llm).analyze(turns, 5.0)

        assert (delta, reason) == (0.5, "wants to book")
        prompt = fake_llm.calls_for("delta")[0]["user_prompt"]
        assert "first thing I said" not in prompt
        assert "fourth" in prompt
        assert "CURRENT_SCORE: 5.0" in prompt

    @pytest.mark.asyncio
    async def test_collaborator_failure_means_no_change(self, fake_llm):
        fake_llm.delta_responses.append(CollaboratorError("timeout"))
        delta, _ = await ScoreDeltaAnalyzer(fake_llm).analyze([_turn("user", "hi")], 5.0)
        assert delta == 0.0

    @pytest.mark.asyncio
    async def test_no_turns_skips_collaborator(self, fake_llm):
        delta, _ = await ScoreDeltaAnalyzer(fake_llm).analyze([], 5.0)
        assert delta == 0.0
        assert fake_llm.calls == []
