"""Reasoning Result and Intervention Decision — transient, internal-only outputs."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from scaffold_kernel.models.child import EmotionalState, coerce_emotional_state

# One scale for the whole system: confidence is always 0.0-1.0.
CONFIDENCE_MIN = 0.0
CONFIDENCE_MAX = 1.0


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    ADVANCED = "advanced"


class ReasoningSource(str, Enum):
    INFERENCE = "inference"
    FALLBACK = "fallback"


class ReasoningResult(BaseModel):
    """
    What the State Estimator concluded about one utterance.

    Never reaches the child-facing channel. It may be copied into utterance
    metadata and the audit log for parent/operator review.
    """

    should_intervene: bool = False
    intervention_reason: Optional[str] = None          # Internal only
    confidence_score: float = Field(ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX, default=0.0)
    # Set by a deterministic rule, never by inference
    override_confidence: Optional[float] = Field(
        ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX, default=None
    )
    emotional_state: EmotionalState = EmotionalState.ENGAGED
    vocabulary_gaps: List[str] = []

    new_words: List[str] = []
    complexity_level: ComplexityLevel = ComplexityLevel.SIMPLE
    hesitation_detected: bool = False
    engagement_indicators: List[str] = []
    struggle_indicators: List[str] = []
    emotional_tone: str = "neutral"
    suggested_nudge: Optional[str] = None
    silence_seconds: float = 0.0
    analyzed_at: datetime
    source: ReasoningSource = ReasoningSource.INFERENCE

    @field_validator("emotional_state", mode="before")
    @classmethod
    def _coerce_state(cls, value):
        return coerce_emotional_state(value)

    @property
    def effective_confidence(self) -> float:
        """Inferred confidence, or a deterministic rule's own when that is higher."""
        if self.override_confidence is None:
            return self.confidence_score
        return max(self.confidence_score, self.override_confidence)

    @classmethod
    def fallback(
        cls,
        analyzed_at: Optional[datetime] = None,
        silence_seconds: float = 0.0,
    ) -> "ReasoningResult":
        """Safe default used whenever inference cannot be trusted."""
        return cls(
            should_intervene=False,
            intervention_reason="inference_unavailable",
            confidence_score=0.0,
            emotional_state=EmotionalState.ENGAGED,
            silence_seconds=silence_seconds,
            analyzed_at=analyzed_at or datetime.now(timezone.utc),
            source=ReasoningSource.FALLBACK,
        )


class SessionContext(BaseModel):
    """Per-utterance facts the estimator needs beyond the child state."""

    session_id: str
    child_age: int = 6
    scenario: str = "general_learning"
    now: datetime
    silence_seconds: Optional[float] = None   # Reported by the client; else derived


class InterventionAction(str, Enum):
    SPEAK = "speak"
    OBSERVE = "observe"
    ENCOURAGE = "encourage"


class NudgeSituation(str, Enum):
    SILENCE = "silence"
    CONFUSION = "confusion"
    ENCOURAGEMENT = "encouragement"
    VOCABULARY = "vocabulary"
    THINKING = "thinking"


class InterventionDecision(BaseModel):
    """The Intervention Policy's ruling for one utterance."""

    action: InterventionAction
    message: Optional[str] = None
    delay_ms: int = Field(ge=0, default=0)
    reasoning: str                                      # Internal only
    situation: Optional[NudgeSituation] = None

    @property
    def speaks(self) -> bool:
        return self.action != InterventionAction.OBSERVE
