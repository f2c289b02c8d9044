"""Safety Verdict — output of the Content Safety Gate."""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from scaffold_kernel.models.child import VocabularyLevel


class ChildContext(BaseModel):
    """Who the text is for. Feeds the contextual review."""

    age: int = Field(ge=1, le=18, default=6)
    vocabulary_level: VocabularyLevel = VocabularyLevel.BEGINNER


class ViolationCategory(str, Enum):
    INTERNAL_PROCESS = "internal_process"
    NEGATIVE_FRAMING = "negative_framing"
    PRIVATE_INFORMATION = "private_information"
    UNSAFE_TOPIC = "unsafe_topic"
    CONTEXTUAL = "contextual"              # Raised by the slow path
    REVIEW_UNAVAILABLE = "review_unavailable"


class SafetyLayer(str, Enum):
    FAST = "fast"
    SLOW = "slow"
    FALLBACK = "fallback"


class SafetyViolation(BaseModel):
    category: ViolationCategory
    term: str                              # Matched term or short reason
    layer: SafetyLayer


class SafetyVerdict(BaseModel):
    """
    Transient. Only the violation descriptors are ever stored (audit log);
    the verdict itself is never persisted verbatim.
    """

    is_safe: bool
    violations: List[SafetyViolation] = []
    sanitized_text: str
    layer: SafetyLayer

    def describe_violations(self) -> List[str]:
        return [f"{v.layer.value}:{v.category.value}:{v.term}" for v in self.violations]


class ParentFilterResult(BaseModel):
    """Adult-facing redaction outcome. Redaction replaces the whole text."""

    redacted: bool
    text: str
    categories: List[str] = []
