"""Tests for the core data models."""

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from scaffold_kernel.models import (
    ChildState,
    EmotionalState,
    InterventionAction,
    InterventionDecision,
    ReasoningResult,
    ReasoningSource,
    StreamEvent,
    StreamEventKind,
)


class TestChildState:
    def test_defaults(self):
        state = ChildState()
        assert state.engagement_score == 70.0
        assert state.emotional_state == EmotionalState.ENGAGED
        assert state.hesitation_count == 0
        assert state.last_speech_at is None

    def test_engagement_clamped_on_construction(self):
        assert ChildState(engagement_score=140).engagement_score == 100.0
        assert ChildState(engagement_score=-5).engagement_score == 0.0

    def test_engagement_clamped_on_assignment(self):
        state = ChildState()
        state.engagement_score = 250
        assert state.engagement_score == 100.0

    def test_invalid_emotional_state_becomes_engaged(self):
        assert ChildState(emotional_state="sleepy").emotional_state == EmotionalState.ENGAGED
        assert ChildState(emotional_state="confused").emotional_state == EmotionalState.CONFUSED

    def test_windows_are_bounded(self):
        state = ChildState(
            recent_utterances=[f"u{i}" for i in range(25)],
            recent_vocabulary=[f"w{i}" for i in range(80)],
        )
        assert len(state.recent_utterances) == 10
        assert state.recent_utterances[-1] == "u24"
        assert len(state.recent_vocabulary) == 50
        assert state.recent_vocabulary[0] == "w30"

    def test_hesitation_cannot_go_negative(self):
        with pytest.raises(ValidationError):
            ChildState(hesitation_count=-1)

    def test_reset_hesitation(self):
        state = ChildState(hesitation_count=4)
        assert state.reset_hesitation().hesitation_count == 0
        assert state.hesitation_count == 4


class TestReasoningResult:
    def test_fallback_is_the_safe_default(self):
        result = ReasoningResult.fallback()
        assert result.should_intervene is False
        assert result.confidence_score == 0.0
        assert result.emotional_state == EmotionalState.ENGAGED
        assert result.source == ReasoningSource.FALLBACK

    def test_confidence_is_on_the_unit_scale(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            ReasoningResult(confidence_score=85, analyzed_at=now)


class TestInterventionDecision:
    def test_observe_does_not_speak(self):
        decision = InterventionDecision(action=InterventionAction.OBSERVE, reasoning="quiet")
        assert not decision.speaks

    def test_encourage_speaks(self):
        decision = InterventionDecision(
            action=InterventionAction.ENCOURAGE, delay_ms=2500, reasoning="frustrated"
        )
        assert decision.speaks

    def test_action_is_a_closed_set(self):
        with pytest.raises(ValidationError):
            InterventionDecision(action="shout", reasoning="no")


class TestStreamEvent:
    def test_word_event_sse_frame(self):
        frame = StreamEvent.word(" there", 1).to_sse()
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        payload = json.loads(frame[len("data: "):])
        assert payload == {"type": "word", "content": " there", "index": 1}

    def test_error_event_is_generic(self):
        payload = json.loads(StreamEvent.error().to_sse()[len("data: "):])
        assert payload == {"type": "error", "content": "unavailable"}

    def test_terminal_kinds(self):
        assert StreamEvent.end().is_terminal
        assert StreamEvent.silent().is_terminal
        assert StreamEvent.cancelled().is_terminal
        assert not StreamEvent.start().is_terminal
        assert StreamEvent.word("hi", 0).kind == StreamEventKind.WORD
