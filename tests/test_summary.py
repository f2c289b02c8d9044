"""Tests for the session summary generator."""

from datetime import datetime, timedelta, timezone

import pytest

from scaffold_kernel.models.records import ChildRecord, SessionRecord, Speaker, Utterance
from scaffold_kernel.safety.gate import REDACTED_TEXT, ContentSafetyGate, find_violations
from scaffold_kernel.summary.generator import DEFAULT_THINKING_QUESTION, SessionSummaryGenerator

from fakes import FailingClient, ScriptedClient

T0 = datetime(2025, 10, 2, 14, 0, 0, tzinfo=timezone.utc)


def _make_fixtures():
    child = ChildRecord(id="child_1", name="Maya", age=6, created_at=T0)
    session = SessionRecord(
        id="session_1", child_id="child_1", scenario="nature_walk", started_at=T0
    )
    lines = [
        (Speaker.CHILD, "I found a caterpillar on the leaf"),
        (Speaker.AI_VOICE, "What do you notice about it?"),
        (Speaker.CHILD, "It is fuzzy and green and slowly crawling"),
    ]
    utterances = [
        Utterance(
            id=f"utt_{i}",
            session_id="session_1",
            speaker=speaker,
            text=text,
            timestamp=T0 + timedelta(seconds=10 * i),
        )
        for i, (speaker, text) in enumerate(lines)
    ]
    return child, session, utterances


class TestSummaryGenerator:
    @pytest.mark.asyncio
    async def test_inference_summary(self):
        client = ScriptedClient({
            "what_we_talked_about": "We explored a fuzzy caterpillar on a walk.",
            "vocabulary_highlights": ["caterpillar", "fuzzy", "crawling"],
            "thinking_question": "What will the caterpillar become?",
            "parent_notes": "Maya described textures and colors with care.",
        })
        generator = SessionSummaryGenerator(client, ContentSafetyGate())
        summary = await generator.generate(*_make_fixtures(), now=T0)
        assert summary.source == "inference"
        assert summary.vocabulary_highlights == ["caterpillar", "fuzzy", "crawling"]
        assert summary.thinking_question == "What will the caterpillar become?"
        assert "I found a caterpillar" in client.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_child_facing_fields_are_sanitized(self):
        client = ScriptedClient({
            "what_we_talked_about": "Maya was struggling with bugs.",
            "vocabulary_highlights": ["caterpillar", "weapon"],
            "thinking_question": "Why was your answer wrong?",
            "parent_notes": "Analysis shows low engagement score at times.",
        })
        generator = SessionSummaryGenerator(client, ContentSafetyGate())
        summary = await generator.generate(*_make_fixtures(), now=T0)
        assert find_violations(summary.what_we_talked_about) == []
        assert find_violations(summary.thinking_question) == []
        assert summary.vocabulary_highlights == ["caterpillar"]
        # parent notes are adult-facing; only personal data is redacted
        assert summary.parent_notes == "Analysis shows low engagement score at times."

    @pytest.mark.asyncio
    async def test_parent_notes_redact_personal_data(self):
        client = ScriptedClient({
            "what_we_talked_about": "Bugs!",
            "vocabulary_highlights": [],
            "thinking_question": "Where do bugs sleep?",
            "parent_notes": "Maya said the home phone is 555-123-4567.",
        })
        generator = SessionSummaryGenerator(client, ContentSafetyGate())
        summary = await generator.generate(*_make_fixtures(), now=T0)
        assert summary.parent_notes == REDACTED_TEXT

    @pytest.mark.asyncio
    async def test_failure_gives_default_summary(self):
        generator = SessionSummaryGenerator(FailingClient(), ContentSafetyGate())
        summary = await generator.generate(*_make_fixtures(), now=T0)
        assert summary.source == "default"
        assert summary.thinking_question == DEFAULT_THINKING_QUESTION
        assert "nature walk" in summary.what_we_talked_about
        assert "crawling" in summary.vocabulary_highlights
        assert "2 ideas" in summary.parent_notes

    @pytest.mark.asyncio
    async def test_transport_error_gives_default_summary(self):
        generator = SessionSummaryGenerator(
            ScriptedClient(ConnectionError("socket reset")), ContentSafetyGate()
        )
        summary = await generator.generate(*_make_fixtures(), now=T0)
        assert summary.source == "default"
        assert summary.thinking_question == DEFAULT_THINKING_QUESTION

    @pytest.mark.asyncio
    async def test_incomplete_summary_gives_default(self):
        generator = SessionSummaryGenerator(
            ScriptedClient({"what_we_talked_about": "Bugs"}), ContentSafetyGate()
        )
        summary = await generator.generate(*_make_fixtures(), now=T0)
        assert summary.source == "default"
