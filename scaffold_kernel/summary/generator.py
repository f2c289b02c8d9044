"""
Session Summary — one reflective summary per session, written at session end.

Child-facing fields (topics, highlights, thinking question) go through the
safety gate's fast path. Parent notes go through the parent filter instead.
Any inference failure yields the default summary.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from scaffold_kernel.errors import InferenceError
from scaffold_kernel.inference.client import (
    CompletionClient,
    guarded_complete,
    parse_json_payload,
)
from scaffold_kernel.models.records import (
    ChildRecord,
    SessionRecord,
    SessionSummary,
    Speaker,
    Utterance,
)
from scaffold_kernel.reasoning.estimator import extract_vocabulary
from scaffold_kernel.safety.gate import ContentSafetyGate, find_violations

logger = logging.getLogger(__name__)

MAX_HIGHLIGHTS = 5

DEFAULT_THINKING_QUESTION = "What was your favorite part of today?"

_SUMMARY_SYSTEM = """You are creating a warm, encouraging summary of a learning session for a {age}-year-old child.

Return JSON only:
{{
  "what_we_talked_about": "2-3 sentences about the main topics explored",
  "vocabulary_highlights": ["word1", "word2", "word3"],
  "thinking_question": "An open-ended question to extend learning",
  "parent_notes": "Brief pedagogical insights for the parent"
}}

Focus on positive framing, vocabulary growth, critical thinking moments,
curiosity and engagement. Never mention scores or how the companion decided to speak.

Scenario: {scenario}
Child said: {child_lines}
Companion said: {ai_lines}"""


class SessionSummaryGenerator:
    def __init__(
        self,
        client: CompletionClient,
        gate: ContentSafetyGate,
        timeout: float = 20.0,
    ):
        self.client = client
        self.gate = gate
        self.timeout = timeout

    async def generate(
        self,
        child: ChildRecord,
        session: SessionRecord,
        utterances: List[Utterance],
        now: Optional[datetime] = None,
    ) -> SessionSummary:
        now = now or datetime.now(timezone.utc)
        try:
            data = await self._complete(child, session, utterances)
            return self._build(data, now)
        except InferenceError as exc:
            logger.warning("Summary generation failed for %s, using default: %s", session.id, exc)
            return self.default_summary(session, utterances, now)

    def default_summary(
        self,
        session: SessionRecord,
        utterances: List[Utterance],
        now: datetime,
    ) -> SessionSummary:
        child_lines = [u.text for u in utterances if u.speaker == Speaker.CHILD]
        highlights = [
            w for w in extract_vocabulary(child_lines, limit=MAX_HIGHLIGHTS * 4)
            if not find_violations(w)
        ][-MAX_HIGHLIGHTS:]
        topic = session.scenario.replace("_", " ")
        return SessionSummary(
            what_we_talked_about=f"We had a great conversation about {topic}!",
            vocabulary_highlights=highlights,
            thinking_question=DEFAULT_THINKING_QUESTION,
            parent_notes=(
                f"Your child shared {len(child_lines)} "
                f"{'idea' if len(child_lines) == 1 else 'ideas'} during this session."
            ),
            generated_at=now,
            source="default",
        )

    async def _complete(
        self,
        child: ChildRecord,
        session: SessionRecord,
        utterances: List[Utterance],
    ) -> dict:
        child_lines = [u.text for u in utterances if u.speaker == Speaker.CHILD]
        ai_lines = [u.text for u in utterances if u.speaker == Speaker.AI_VOICE]
        raw = await guarded_complete(
            self.client,
            _SUMMARY_SYSTEM.format(
                age=child.age,
                scenario=session.scenario,
                child_lines=" | ".join(child_lines) or "(nothing)",
                ai_lines=" | ".join(ai_lines) or "(nothing)",
            ),
            "Generate the session summary.",
            json_mode=True,
            timeout=self.timeout,
            temperature=0.7,
        )
        return parse_json_payload(raw)

    def _build(self, data: dict, now: datetime) -> SessionSummary:
        topics = data.get("what_we_talked_about")
        question = data.get("thinking_question")
        notes = data.get("parent_notes")
        for name, value in (("what_we_talked_about", topics),
                            ("thinking_question", question),
                            ("parent_notes", notes)):
            if not isinstance(value, str) or not value.strip():
                raise InferenceError(f"summary field {name} missing")

        highlights = data.get("vocabulary_highlights")
        if not isinstance(highlights, list):
            highlights = []
        highlights = [
            str(w).strip() for w in highlights
            if isinstance(w, str) and w.strip() and not find_violations(w)
        ][:MAX_HIGHLIGHTS]

        return SessionSummary(
            what_we_talked_about=self.gate.fast_check(topics.strip()).sanitized_text,
            vocabulary_highlights=highlights,
            thinking_question=self.gate.fast_check(question.strip()).sanitized_text,
            parent_notes=self.gate.filter_for_parent(notes.strip()).text,
            generated_at=now,
            source="inference",
        )
