"""Tests for the Intervention Policy."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from scaffold_kernel.models.child import ChildState, EmotionalState
from scaffold_kernel.models.reasoning import (
    InterventionAction,
    NudgeSituation,
    ReasoningResult,
)
from scaffold_kernel.policy.intervention import (
    InterventionPolicy,
    PolicyContext,
    compute_delay,
)
from scaffold_kernel.reasoning.estimator import PROLONGED_SILENCE

NOW = datetime(2025, 10, 2, 14, 0, 0, tzinfo=timezone.utc)


def _make_reasoning(**fields) -> ReasoningResult:
    fields.setdefault("should_intervene", True)
    fields.setdefault("confidence_score", 0.9)
    fields.setdefault("analyzed_at", NOW)
    return ReasoningResult(**fields)


def _make_context(*seconds_ago) -> PolicyContext:
    return PolicyContext(
        now=NOW,
        recent_interventions=[NOW - timedelta(seconds=s) for s in seconds_ago],
    )


class TestConfidenceGate:
    def setup_method(self):
        self.policy = InterventionPolicy(rng=random.Random(3))
        self.state = ChildState(engagement_score=60)

    def test_no_recommendation_observes(self):
        decision = self.policy.decide(
            _make_reasoning(should_intervene=False), self.state, _make_context()
        )
        assert decision.action == InterventionAction.OBSERVE
        assert decision.delay_ms == 0

    @pytest.mark.parametrize("confidence", [0.0, 0.3, 0.69])
    def test_low_confidence_always_observes(self, confidence):
        reasoning = _make_reasoning(
            confidence_score=confidence,
            emotional_state=EmotionalState.FRUSTRATED,
            struggle_indicators=["a", "b", "c", "d"],
        )
        decision = self.policy.decide(reasoning, self.state, _make_context())
        assert decision.action == InterventionAction.OBSERVE
        assert decision.delay_ms == 0

    def test_threshold_is_inclusive(self):
        decision = self.policy.decide(
            _make_reasoning(confidence_score=0.7), self.state, _make_context()
        )
        assert decision.action == InterventionAction.SPEAK

    def test_rule_confidence_passes_gate_over_zero_inference(self):
        reasoning = _make_reasoning(confidence_score=0.0, override_confidence=0.75)
        decision = self.policy.decide(reasoning, self.state, _make_context())
        assert decision.action == InterventionAction.SPEAK
        assert reasoning.confidence_score == 0.0


class TestGates:
    def setup_method(self):
        self.policy = InterventionPolicy(rng=random.Random(3))
        self.state = ChildState(engagement_score=60)

    def test_frustration_encourages(self):
        decision = self.policy.decide(
            _make_reasoning(emotional_state=EmotionalState.FRUSTRATED), self.state, _make_context()
        )
        assert decision.action == InterventionAction.ENCOURAGE
        assert decision.situation == NudgeSituation.ENCOURAGEMENT
        assert 2000 <= decision.delay_ms <= 3000

    def test_many_struggle_indicators_speak(self):
        decision = self.policy.decide(
            _make_reasoning(struggle_indicators=["a", "b", "c"]), self.state, _make_context()
        )
        assert decision.action == InterventionAction.SPEAK
        assert 4000 <= decision.delay_ms <= 6000

    def test_default_speaks(self):
        decision = self.policy.decide(_make_reasoning(), self.state, _make_context())
        assert decision.action == InterventionAction.SPEAK
        assert decision.situation == NudgeSituation.THINKING
        assert 5000 <= decision.delay_ms <= 7000

    def test_confused_uses_state_delay(self):
        decision = self.policy.decide(
            _make_reasoning(emotional_state=EmotionalState.CONFUSED), self.state, _make_context()
        )
        assert decision.situation == NudgeSituation.CONFUSION
        assert 2000 <= decision.delay_ms <= 4000

    def test_silence_situation(self):
        decision = self.policy.decide(
            _make_reasoning(intervention_reason=PROLONGED_SILENCE), self.state, _make_context()
        )
        assert decision.situation == NudgeSituation.SILENCE

    def test_vocabulary_situation(self):
        decision = self.policy.decide(
            _make_reasoning(vocabulary_gaps=["chrysalis"]), self.state, _make_context()
        )
        assert decision.situation == NudgeSituation.VOCABULARY


class TestRateLimit:
    def setup_method(self):
        self.policy = InterventionPolicy(rng=random.Random(3))
        self.state = ChildState(engagement_score=60)

    def test_three_in_window_suppresses_fourth(self):
        decision = self.policy.decide(_make_reasoning(), self.state, _make_context(30, 70, 110))
        assert decision.action == InterventionAction.OBSERVE
        assert "Rate limited" in decision.reasoning

    def test_old_interventions_do_not_count(self):
        decision = self.policy.decide(_make_reasoning(), self.state, _make_context(30, 130, 200))
        assert decision.action == InterventionAction.SPEAK

    def test_minimum_spacing(self):
        decision = self.policy.decide(_make_reasoning(), self.state, _make_context(10))
        assert decision.action == InterventionAction.OBSERVE
        assert "Cooldown" in decision.reasoning

    def test_high_engagement_stays_patient(self):
        decision = self.policy.decide(
            _make_reasoning(), ChildState(engagement_score=85), _make_context()
        )
        assert decision.action == InterventionAction.OBSERVE

    def test_rate_limit_beats_frustration(self):
        decision = self.policy.decide(
            _make_reasoning(emotional_state=EmotionalState.FRUSTRATED),
            self.state,
            _make_context(25, 60, 100),
        )
        assert decision.action == InterventionAction.OBSERVE


class TestComputeDelay:
    def test_deterministic_with_seed(self):
        first = compute_delay(6000, 1000, 2000, 10000, random.Random(42))
        second = compute_delay(6000, 1000, 2000, 10000, random.Random(42))
        assert first == second

    def test_jitter_bounds(self):
        rng = random.Random(0)
        delays = [compute_delay(6000, 1000, 2000, 10000, rng) for _ in range(200)]
        assert all(5000 <= d <= 7000 for d in delays)
        assert len(set(delays)) > 1

    def test_clamped(self):
        rng = random.Random(0)
        assert all(compute_delay(500, 1000, 2000, 10000, rng) == 2000 for _ in range(20))
        assert all(compute_delay(12000, 1000, 2000, 10000, rng) == 10000 for _ in range(20))
