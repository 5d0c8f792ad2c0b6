"""
Tests for safety screening: corroboration scoring, risk levels, sticky flags.
"""

import pytest

from intake_backend.services.safety_screening import (
    SafetyScreeningEngine,
    category_score,
    risk_level,
    score_signals,
)
from intake_backend.services.turn_extractor import SafetySignal
from tests.conftest import create_mock_conversation, create_mock_turn
from tests.invariants import assert_screening_consistent


def signal(category, severity, evidence="quoted evidence"):
    return SafetySignal(category=category, severity=severity, evidence=evidence)


class TestScoring:
    @pytest.mark.parametrize("score,expected", [
        (0, "green"),
        (19.9, "green"),
        (20, "yellow"),
        (39.9, "yellow"),
        (40, "orange"),
        (70, "orange"),
        (70.1, "red"),
        (100, "red"),
    ])
    def test_risk_level_bands(self, score, expected):
        assert risk_level(score) == expected

    def test_single_signal_is_its_severity(self):
        assert category_score([55]) == 55.0
        assert category_score([]) == 0.0

    def test_corroborating_signals_raise_the_score(self):
        # 100 - 40 * (1 - 0.5 * 50 / 100)
        assert category_score([60, 50]) == 70.0

    def test_weak_signals_do_not_corroborate(self):
        assert category_score([60, 30, 10]) == 60.0

    def test_score_is_order_independent(self):
        assert category_score([45, 80, 60]) == category_score([60, 45, 80])

    def test_score_signals_groups_every_category(self):
        scored = score_signals([
            {"category": "narcissism", "severity": 30},
            {"category": "narcissism", "severity": 20},
            {"category": "unknown", "severity": 99},
        ])
        assert scored["narcissism"] == {"score": 30.0, "count": 2}
        assert scored["psychopathy"] == {"score": 0.0, "count": 0}
        assert "unknown" not in scored


class TestSafetyScreeningEngine:
    @pytest.mark.asyncio
    async def test_severe_signal_flags_user_red(self, store):
        conversation = create_mock_conversation(user_id="user-red")
        turn = create_mock_turn(conversation.id, 2)
        await store.add_turn(turn)

        screening = await SafetyScreeningEngine(store).record_signals(
            "user-red", turn, [signal("psychopathy", 90, "I don't feel bad about hurting people")]
        )

        assert screening.category_scores["psychopathy"] == 90.0
        assert screening.overall_risk_level == "red"
        assert screening.flagged_for_review is True
        assert screening.flagged_at is not None
        assert screening.evidence[0]["turn_id"] == str(turn.id)
        assert_screening_consistent(screening)

    @pytest.mark.asyncio
    async def test_yellow_is_not_flagged(self, store):
        conversation = create_mock_conversation(user_id="user-yellow")
        turn = create_mock_turn(conversation.id, 2)

        screening = await SafetyScreeningEngine(store).record_signals(
            "user-yellow", turn, [signal("attached", 25)]
        )

        assert screening.overall_risk_level == "yellow"
        assert screening.flagged_for_review is False

    @pytest.mark.asyncio
    async def test_scores_never_decrease(self, store):
        engine = SafetyScreeningEngine(store)
        conversation = create_mock_conversation(user_id="user-mono")
        turn = create_mock_turn(conversation.id, 2)

        await engine.record_signals("user-mono", turn, [signal("narcissism", 80)])
        screening = await engine.record_signals("user-mono", turn, [signal("narcissism", 10)])

        assert screening.category_scores["narcissism"] == 80.0
        assert screening.max_severity == 80.0
        assert screening.overall_risk_level == "red"
        assert screening.signal_counts["narcissism"] == 1

    @pytest.mark.asyncio
    async def test_flag_is_sticky(self, store):
        engine = SafetyScreeningEngine(store)
        conversation = create_mock_conversation(user_id="user-sticky")
        turn = create_mock_turn(conversation.id, 2)

        first = await engine.record_signals("user-sticky", turn, [signal("machiavellianism", 50)])
        flagged_at = first.flagged_at
        second = await engine.record_signals("user-sticky", turn, [])

        assert second.flagged_for_review is True
        assert second.flagged_at == flagged_at

    @pytest.mark.asyncio
    async def test_replaying_signals_is_a_no_op(self, store):
        engine = SafetyScreeningEngine(store)
        conversation = create_mock_conversation(user_id="user-replay")
        turn = create_mock_turn(conversation.id, 2)
        signals = [signal("inconsistency", 45), signal("inconsistency", 50)]

        first = await engine.record_signals("user-replay", turn, signals)
        scores = dict(first.category_scores)
        second = await engine.record_signals("user-replay", turn, signals)

        assert second.category_scores == scores
        assert len(second.evidence) == 2
        assert second.signal_counts["inconsistency"] == 2

    @pytest.mark.asyncio
    async def test_no_screening_until_first_signal(self, store):
        engine = SafetyScreeningEngine(store)
        conversation = create_mock_conversation(user_id="user-quiet")
        turn = create_mock_turn(conversation.id, 2)

        assert await engine.record_signals("user-quiet", turn, []) is None
        assert await store.get_safety_screening("user-quiet") is None

        screening = await engine.record_signals("user-quiet", turn, [signal("attached", 15)])
        assert screening.overall_risk_level == "green"
        assert await store.get_safety_screening("user-quiet") is screening
