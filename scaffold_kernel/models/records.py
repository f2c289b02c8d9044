"""Persisted records — children, sessions, utterances, summaries."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from scaffold_kernel.models.child import VocabularyLevel


class Speaker(str, Enum):
    CHILD = "child"
    AI_VOICE = "ai_voice"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class ChildRecord(BaseModel):
    id: str
    name: str
    age: int = Field(ge=1, le=18)
    vocabulary_level: VocabularyLevel = VocabularyLevel.BEGINNER
    ai_voice_enabled: bool = False          # Parent-controlled opt-in
    created_at: datetime


class SessionRecord(BaseModel):
    id: str
    child_id: str
    scenario: str = "general_learning"
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime
    completed_at: Optional[datetime] = None


class Utterance(BaseModel):
    """
    One turn of text. Immutable after creation except metadata enrichment.
    `metadata` is internal and never leaves through the child channel.
    """

    id: str
    session_id: str
    speaker: Speaker
    text: str
    timestamp: datetime
    metadata: dict = {}


class SessionSummary(BaseModel):
    """Reflective end-of-session summary for the child and the parent."""

    what_we_talked_about: str
    vocabulary_highlights: List[str] = []
    thinking_question: str
    parent_notes: str
    generated_at: datetime
    source: str = "inference"               # "inference" | "default"
