"""Child State — the orchestrator-owned snapshot of a child within one session."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

ENGAGEMENT_MIN = 0
ENGAGEMENT_MAX = 100
RECENT_UTTERANCE_WINDOW = 10
VOCABULARY_WINDOW = 50


class VocabularyLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class EmotionalState(str, Enum):
    ENGAGED = "engaged"
    CONFUSED = "confused"
    FRUSTRATED = "frustrated"
    EXCITED = "excited"
    CONFIDENT = "confident"


def clamp_engagement(value: float) -> float:
    return max(ENGAGEMENT_MIN, min(ENGAGEMENT_MAX, value))


def coerce_emotional_state(value) -> EmotionalState:
    """Any unknown tag collapses to ENGAGED."""
    if isinstance(value, EmotionalState):
        return value
    try:
        return EmotionalState(str(value).strip().lower())
    except ValueError:
        return EmotionalState.ENGAGED


class ChildState(BaseModel):
    """
    Pedagogical/emotional snapshot for one child in one session.

    Passed into and returned from each pipeline step; never shared between
    sessions. Only the State Estimator's update step produces a new one.
    """

    vocabulary_level: VocabularyLevel = VocabularyLevel.BEGINNER
    recent_utterances: List[str] = []       # Most recent last, bounded
    recent_vocabulary: List[str] = []       # Unique, most recent last, bounded
    hesitation_count: int = Field(ge=0, default=0)
    engagement_score: float = 70.0
    last_speech_at: Optional[datetime] = None
    emotional_state: EmotionalState = EmotionalState.ENGAGED

    model_config = {"validate_assignment": True}

    @field_validator("engagement_score", mode="before")
    @classmethod
    def _clamp_engagement(cls, value):
        return clamp_engagement(float(value))

    @field_validator("emotional_state", mode="before")
    @classmethod
    def _coerce_state(cls, value):
        return coerce_emotional_state(value)

    @field_validator("recent_utterances")
    @classmethod
    def _bound_utterances(cls, value: List[str]) -> List[str]:
        return value[-RECENT_UTTERANCE_WINDOW:]

    @field_validator("recent_vocabulary")
    @classmethod
    def _bound_vocabulary(cls, value: List[str]) -> List[str]:
        return value[-VOCABULARY_WINDOW:]

    def reset_hesitation(self) -> "ChildState":
        return self.model_copy(update={"hesitation_count": 0})
