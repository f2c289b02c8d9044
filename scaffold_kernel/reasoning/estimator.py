"""
State Estimator — infers what is going on with the child, server-side only.

Two layers:
  Probabilistic: the inference client classifies the utterance in context
  Deterministic: rule-based watchers (struggle markers, prolonged silence)
                 that apply regardless of what inference said

Behavioral Contract:
- analyze() never raises on dependency failure; it returns the safe default
- The silence override always fires past its threshold
- update() is a pure function of (ChildState, ReasoningResult)
- Nothing produced here is ever child-facing
"""

import logging
import re
from typing import Callable, Dict, List, Optional

from scaffold_kernel.errors import InferenceError
from scaffold_kernel.inference.client import (
    CompletionClient,
    guarded_complete,
    parse_json_payload,
)
from scaffold_kernel.models.child import (
    ChildState,
    EmotionalState,
    clamp_engagement,
)
from scaffold_kernel.models.config import EstimatorConfig
from scaffold_kernel.models.reasoning import (
    ComplexityLevel,
    ReasoningResult,
    ReasoningSource,
    SessionContext,
)

logger = logging.getLogger(__name__)

PROLONGED_SILENCE = "prolonged_silence"

TONE_TO_STATE: Dict[str, EmotionalState] = {
    "excited": EmotionalState.EXCITED,
    "frustrated": EmotionalState.FRUSTRATED,
    "confused": EmotionalState.CONFUSED,
    "confident": EmotionalState.CONFIDENT,
    "engaged": EmotionalState.ENGAGED,
    "neutral": EmotionalState.ENGAGED,
}

_HESITATION_MARKERS = re.compile(r"\b(?:u+m+|u+h+|h+m+|e+r+m*)\b", re.IGNORECASE)
_WORD = re.compile(r"[a-zA-Z']+")

_ANALYST_SYSTEM = """You are a pedagogical analyst for a gentle learning companion for young children.
Analyze the child's utterance for internal tracking only. DO NOT write anything addressed to the child, except the short "suggested_nudge".

Child context:
- Age: {age}
- Scenario: {scenario}
- Vocabulary level: {vocabulary_level}
- Recent vocabulary: {recent_vocabulary}
- Hesitations so far this session: {hesitation_count}
- Engagement score: {engagement_score}/100
- Current emotional state: {emotional_state}
- Seconds of silence before this utterance: {silence:.1f}

Previous utterances: {previous}

Return JSON only:
{{
  "new_words": ["words not in recent vocabulary"],
  "vocabulary_gaps": ["words or ideas the child reached for but lacked"],
  "complexity_level": "simple|moderate|advanced",
  "hesitation_detected": boolean,
  "engagement_indicators": ["used details", "asked question"],
  "struggle_indicators": ["repeated words", "incomplete sentences"],
  "emotional_tone": "excited|neutral|frustrated|confused|confident",
  "should_intervene": boolean,
  "intervention_reason": "why or why not",
  "suggested_nudge": "gentle open-ended prompt of at most 15 words, or null",
  "confidence_score": number between 0.0 and 1.0
}}"""


def map_tone(tone: str) -> EmotionalState:
    """Map an inferred tone onto a state tag. Unmapped tones become ENGAGED."""
    return TONE_TO_STATE.get(str(tone).strip().lower(), EmotionalState.ENGAGED)


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def detect_struggle_markers(utterance: str, previous: List[str]) -> List[str]:
    """Deterministic struggle markers in the latest utterance."""
    markers = []
    if _HESITATION_MARKERS.search(utterance):
        markers.append("hesitation_markers")
    if len(utterance.split()) < 3:
        markers.append("minimal_response")
    if previous and utterance.strip().lower() == previous[-1].strip().lower():
        markers.append("repetitive_language")
    return markers


class StateEstimator:
    """
    Produces a ReasoningResult per utterance and folds it into ChildState.
    """

    def __init__(
        self,
        client: CompletionClient,
        config: Optional[EstimatorConfig] = None,
        timeout: float = 8.0,
    ):
        self.client = client
        self.config = config or EstimatorConfig()
        self.timeout = timeout
        self._overrides: List[Callable] = []
        self._register_default_overrides()

    def _register_default_overrides(self) -> None:
        """Register deterministic overrides, applied after inference."""
        self._overrides.append(self._silence_override)

    # --- Analysis ---

    async def analyze(
        self,
        utterance: str,
        child_state: ChildState,
        session_context: SessionContext,
    ) -> ReasoningResult:
        silence = self.silence_seconds(child_state, session_context)
        try:
            result = await self._infer(utterance, child_state, session_context, silence)
        except InferenceError as exc:
            logger.warning(
                "Inference failed for session %s, using safe default: %s",
                session_context.session_id, exc,
            )
            result = ReasoningResult.fallback(
                analyzed_at=session_context.now,
                silence_seconds=silence,
            )

        for override in self._overrides:
            result = override(result, child_state)
        return result

    def silence_seconds(self, child_state: ChildState, context: SessionContext) -> float:
        if context.silence_seconds is not None:
            return max(0.0, context.silence_seconds)
        if child_state.last_speech_at is None:
            return 0.0
        return max(0.0, (context.now - child_state.last_speech_at).total_seconds())

    def silence_threshold(self, emotional_state: EmotionalState) -> float:
        if self.config.adaptive_silence:
            return self.config.state_silence_thresholds.get(
                emotional_state.value, self.config.silence_threshold_seconds
            )
        return self.config.silence_threshold_seconds

    async def _infer(
        self,
        utterance: str,
        child_state: ChildState,
        context: SessionContext,
        silence: float,
    ) -> ReasoningResult:
        previous = child_state.recent_utterances[-self.config.context_utterances:]
        system = _ANALYST_SYSTEM.format(
            age=context.child_age,
            scenario=context.scenario,
            vocabulary_level=child_state.vocabulary_level.value,
            recent_vocabulary=", ".join(child_state.recent_vocabulary[-20:]) or "(none yet)",
            hesitation_count=child_state.hesitation_count,
            engagement_score=round(child_state.engagement_score),
            emotional_state=child_state.emotional_state.value,
            silence=silence,
            previous=" | ".join(previous) or "(none)",
        )
        raw = await guarded_complete(
            self.client,
            system,
            f'Child\'s utterance: "{utterance}"',
            json_mode=True,
            timeout=self.timeout,
            temperature=0.4,
        )
        data = parse_json_payload(raw)
        return self._build_result(data, utterance, previous, context, silence)

    def _build_result(
        self,
        data: dict,
        utterance: str,
        previous: List[str],
        context: SessionContext,
        silence: float,
    ) -> ReasoningResult:
        confidence = data.get("confidence_score", 0.0)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise InferenceError("confidence_score is not a number")
        if not 0.0 <= confidence <= 1.0:
            raise InferenceError(f"confidence_score {confidence} outside 0-1")

        try:
            complexity = ComplexityLevel(str(data.get("complexity_level", "simple")).lower())
        except ValueError:
            complexity = ComplexityLevel.SIMPLE

        struggles = _string_list(data.get("struggle_indicators"))
        markers = detect_struggle_markers(utterance, previous)
        for marker in markers:
            if marker not in struggles:
                struggles.append(marker)

        tone = str(data.get("emotional_tone") or "neutral")
        nudge = data.get("suggested_nudge")
        reason = data.get("intervention_reason")

        return ReasoningResult(
            should_intervene=bool(data.get("should_intervene", False)),
            intervention_reason=str(reason) if reason else None,
            confidence_score=float(confidence),
            emotional_state=map_tone(tone),
            vocabulary_gaps=_string_list(data.get("vocabulary_gaps")),
            new_words=[w.lower() for w in _string_list(data.get("new_words"))],
            complexity_level=complexity,
            hesitation_detected=(
                bool(data.get("hesitation_detected", False))
                or "hesitation_markers" in markers
            ),
            engagement_indicators=_string_list(data.get("engagement_indicators")),
            struggle_indicators=struggles,
            emotional_tone=tone,
            suggested_nudge=nudge.strip() if isinstance(nudge, str) and nudge.strip() else None,
            silence_seconds=silence,
            analyzed_at=context.now,
            source=ReasoningSource.INFERENCE,
        )

    def _silence_override(
        self, result: ReasoningResult, child_state: ChildState
    ) -> ReasoningResult:
        """Prolonged silence forces an intervention recommendation."""
        threshold = self.silence_threshold(child_state.emotional_state)
        if result.silence_seconds < threshold:
            return result
        logger.debug(
            "Silence override: %.1fs >= %.1fs threshold", result.silence_seconds, threshold
        )
        return result.model_copy(update={
            "should_intervene": True,
            "intervention_reason": PROLONGED_SILENCE,
            "override_confidence": self.config.silence_override_confidence,
        })

    # --- State update ---

    def update(self, child_state: ChildState, result: ReasoningResult) -> ChildState:
        """Fold one ReasoningResult into a new ChildState. Pure."""
        new_words = []
        for word in result.new_words:
            word = word.lower()
            if word and word not in new_words:
                new_words.append(word)
        vocabulary = [w for w in child_state.recent_vocabulary if w not in new_words]
        vocabulary = (vocabulary + new_words)[-self.config.vocabulary_window:]

        delta = 0.0
        if result.engagement_indicators:
            delta += self.config.positive_delta
        if result.struggle_indicators:
            delta += self.config.struggle_delta
        if result.hesitation_detected:
            delta += self.config.hesitation_delta

        return ChildState(
            vocabulary_level=child_state.vocabulary_level,
            recent_utterances=list(child_state.recent_utterances),
            recent_vocabulary=vocabulary,
            hesitation_count=(
                child_state.hesitation_count + (1 if result.hesitation_detected else 0)
            ),
            engagement_score=clamp_engagement(child_state.engagement_score + delta),
            last_speech_at=result.analyzed_at,
            emotional_state=map_tone(result.emotional_tone),
        )


def extract_vocabulary(utterances: List[str], limit: int = 50) -> List[str]:
    """Unique longer words from history, most recent last. Used on rehydration."""
    seen: Dict[str, None] = {}
    for text in utterances:
        for word in _WORD.findall(text.lower()):
            if len(word) > 3:
                seen.pop(word, None)
                seen[word] = None
    return list(seen)[-limit:]
