"""
Nudge Generator — short, warm, open-ended child-facing prompts.

Candidates are tried in order and the first that fits the word budget wins:
  1. The estimator's own suggested nudge, if it made one
  2. One completion from the inference client
  3. A template from the per-situation bank (always available)
"""

import logging
import random
from typing import Dict, List, Optional

from pydantic import BaseModel

from scaffold_kernel.errors import InferenceError
from scaffold_kernel.inference.client import CompletionClient, guarded_complete
from scaffold_kernel.models.child import VocabularyLevel
from scaffold_kernel.models.config import NudgeConfig
from scaffold_kernel.models.reasoning import NudgeSituation

logger = logging.getLogger(__name__)

TEMPLATE_BANK: Dict[NudgeSituation, List[str]] = {
    NudgeSituation.SILENCE: [
        "Let's take a moment to think!",
        "What do you notice?",
        "I wonder what happens next?",
        "Tell me what you're thinking!",
    ],
    NudgeSituation.CONFUSION: [
        "Hmm, what part should we look at together?",
        "Let's explore this together! What do you see first?",
        "What if we try it one small step at a time?",
        "Can you tell me what you think it means?",
    ],
    NudgeSituation.ENCOURAGEMENT: [
        "You're doing great! Let's think together.",
        "I love how you keep trying!",
        "What a great idea! Tell me more!",
        "You're thinking so carefully. What comes next?",
    ],
    NudgeSituation.VOCABULARY: [
        "What's another word we could use for that?",
        "Can you describe it in your own words?",
        "How would you tell a friend about it?",
        "What does that word make you think of?",
    ],
    NudgeSituation.THINKING: [
        "I wonder what you're thinking?",
        "What do you notice? Tell me more!",
        "Why do you think that happened?",
        "What would you do next?",
    ],
}

_SITUATION_GUIDANCE = {
    NudgeSituation.SILENCE: "The child has gone quiet. Invite them back in gently.",
    NudgeSituation.CONFUSION: "The child seems unsure. Offer a gentle way in, never the answer.",
    NudgeSituation.ENCOURAGEMENT: "The child seems frustrated. Be warm and reassuring.",
    NudgeSituation.VOCABULARY: "The child is reaching for words. Invite them to describe or name things.",
    NudgeSituation.THINKING: "Prompt the child to think a little further.",
}

_NUDGE_SYSTEM = """You are a warm, encouraging learning companion for a {age}-year-old child.

Scenario: {scenario}
Vocabulary level: {vocabulary_level}
Situation: {guidance}

Your reply must:
- Be at most {max_words} words
- Be one open-ended question or invitation
- Use age-appropriate vocabulary
- Be warm, curious, and encouraging
- NEVER mention analysis, reasoning, scores, or how you decided to speak
- NEVER be negative or corrective
- Build on what the child said

Recent conversation:
{history}"""


class NudgeContext(BaseModel):
    situation: NudgeSituation = NudgeSituation.THINKING
    child_age: int = 6
    vocabulary_level: VocabularyLevel = VocabularyLevel.BEGINNER
    scenario: str = "general_learning"
    recent_utterances: List[str] = []
    latest_utterance: str = ""
    suggested_nudge: Optional[str] = None


def word_count(text: str) -> int:
    return len(text.split())


class NudgeGenerator:
    """Produces child-facing candidate text within the word budget."""

    def __init__(
        self,
        client: CompletionClient,
        config: Optional[NudgeConfig] = None,
        timeout: float = 8.0,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.config = config or NudgeConfig()
        self.timeout = timeout
        self._rng = rng or random.Random()

    def template(self, situation: NudgeSituation) -> str:
        return self._rng.choice(TEMPLATE_BANK[situation])

    def accepts(self, candidate: Optional[str]) -> bool:
        if not candidate or not _clean(candidate):
            return False
        return word_count(_clean(candidate)) <= self.config.max_words

    async def generate(self, context: NudgeContext) -> str:
        if self.accepts(context.suggested_nudge):
            return _clean(context.suggested_nudge)

        try:
            candidate = await self._complete(context)
        except InferenceError as exc:
            logger.warning("Nudge generation failed, using template: %s", exc)
            return self.template(context.situation)

        if self.accepts(candidate):
            return _clean(candidate)
        logger.info(
            "Discarded %d-word nudge candidate (budget %d)",
            word_count(candidate), self.config.max_words,
        )
        return self.template(context.situation)

    async def _complete(self, context: NudgeContext) -> str:
        history = context.recent_utterances[-self.config.context_utterances:]
        system = _NUDGE_SYSTEM.format(
            age=context.child_age,
            scenario=context.scenario,
            vocabulary_level=context.vocabulary_level.value,
            guidance=_SITUATION_GUIDANCE[context.situation],
            max_words=self.config.max_words,
            history="\n".join(history) or "(nothing yet)",
        )
        return await guarded_complete(
            self.client,
            system,
            context.latest_utterance or "(the child is quiet)",
            timeout=self.timeout,
            temperature=0.8,
            max_tokens=60,
        )


def _clean(text: str) -> str:
    return text.strip().strip('"').strip()
