"""Scaffold Kernel data models."""

from scaffold_kernel.models.audit import AuditRecord
from scaffold_kernel.models.child import ChildState, EmotionalState, VocabularyLevel
from scaffold_kernel.models.config import (
    DeliveryConfig,
    EstimatorConfig,
    NudgeConfig,
    PipelineConfig,
    PolicyConfig,
)
from scaffold_kernel.models.reasoning import (
    ComplexityLevel,
    InterventionAction,
    InterventionDecision,
    NudgeSituation,
    ReasoningResult,
    ReasoningSource,
    SessionContext,
)
from scaffold_kernel.models.records import (
    ChildRecord,
    SessionRecord,
    SessionStatus,
    SessionSummary,
    Speaker,
    Utterance,
)
from scaffold_kernel.models.safety import (
    ChildContext,
    ParentFilterResult,
    SafetyLayer,
    SafetyVerdict,
    SafetyViolation,
    ViolationCategory,
)
from scaffold_kernel.models.stream import StreamEvent, StreamEventKind

__all__ = [
    "AuditRecord",
    "ChildRecord",
    "ChildContext",
    "ChildState",
    "ComplexityLevel",
    "DeliveryConfig",
    "EmotionalState",
    "EstimatorConfig",
    "InterventionAction",
    "InterventionDecision",
    "NudgeConfig",
    "NudgeSituation",
    "ParentFilterResult",
    "PipelineConfig",
    "PolicyConfig",
    "ReasoningResult",
    "ReasoningSource",
    "SafetyLayer",
    "SafetyVerdict",
    "SafetyViolation",
    "SessionContext",
    "SessionRecord",
    "SessionStatus",
    "SessionSummary",
    "Speaker",
    "StreamEvent",
    "StreamEventKind",
    "Utterance",
    "ViolationCategory",
    "VocabularyLevel",
]
