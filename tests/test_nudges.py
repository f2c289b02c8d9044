"""Tests for the Nudge Generator."""

import random

import pytest

from scaffold_kernel.models.reasoning import NudgeSituation
from scaffold_kernel.nudges.generator import (
    TEMPLATE_BANK,
    NudgeContext,
    NudgeGenerator,
    word_count,
)
from scaffold_kernel.safety.gate import find_violations

from fakes import FailingClient, ScriptedClient

LONG_NUDGE = " ".join(["word"] * 16)


class TestCandidates:
    @pytest.mark.asyncio
    async def test_suggested_nudge_wins(self):
        client = ScriptedClient("Should not be asked")
        generator = NudgeGenerator(client)
        nudge = await generator.generate(NudgeContext(suggested_nudge="  What else lives there?  "))
        assert nudge == "What else lives there?"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_long_suggestion_falls_through_to_completion(self):
        client = ScriptedClient('"What do you think the bird will do?"')
        generator = NudgeGenerator(client)
        nudge = await generator.generate(NudgeContext(suggested_nudge=LONG_NUDGE))
        assert nudge == "What do you think the bird will do?"
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_fifteen_words_is_allowed(self):
        generator = NudgeGenerator(FailingClient())
        text = " ".join(["tree"] * 15)
        assert generator.accepts(text)
        assert not generator.accepts(LONG_NUDGE)
        assert not generator.accepts("   ")
        assert not generator.accepts('""')

    @pytest.mark.asyncio
    async def test_long_completion_uses_template(self):
        generator = NudgeGenerator(ScriptedClient(LONG_NUDGE), rng=random.Random(5))
        nudge = await generator.generate(NudgeContext(situation=NudgeSituation.VOCABULARY))
        assert nudge in TEMPLATE_BANK[NudgeSituation.VOCABULARY]

    @pytest.mark.asyncio
    async def test_dependency_failure_uses_template(self):
        generator = NudgeGenerator(FailingClient(), rng=random.Random(5))
        nudge = await generator.generate(NudgeContext(situation=NudgeSituation.SILENCE))
        assert nudge in TEMPLATE_BANK[NudgeSituation.SILENCE]

    @pytest.mark.asyncio
    async def test_transport_error_uses_template(self):
        client = ScriptedClient(ConnectionError("socket reset"))
        generator = NudgeGenerator(client, rng=random.Random(5))
        nudge = await generator.generate(NudgeContext(situation=NudgeSituation.CONFUSION))
        assert nudge in TEMPLATE_BANK[NudgeSituation.CONFUSION]

    @pytest.mark.asyncio
    async def test_prompt_carries_recent_history(self):
        client = ScriptedClient("What color was it?")
        generator = NudgeGenerator(client)
        await generator.generate(NudgeContext(
            recent_utterances=["I saw a frog", "it jumped"],
            latest_utterance="it was big",
        ))
        assert "I saw a frog" in client.calls[0]["system"]
        assert client.calls[0]["user"] == "it was big"


class TestTemplateBank:
    def test_every_situation_has_templates(self):
        for situation in NudgeSituation:
            assert TEMPLATE_BANK[situation]

    def test_templates_fit_budget_and_pass_fast_path(self):
        for templates in TEMPLATE_BANK.values():
            for text in templates:
                assert word_count(text) <= 15
                assert find_violations(text) == []
