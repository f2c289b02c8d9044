"""Audit Record — one entry per processed child utterance."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AuditRecord(BaseModel):
    """
    The accountability entry for one turn. Answers: what did the child say,
    what did the system conclude, what did it decide, what did the safety
    gate catch, and what (if anything) was said back.
    """

    id: str
    session_id: str
    child_utterance_id: str

    # WHAT WAS CONCLUDED
    reasoning_source: str
    intervention_reason: Optional[str] = None
    confidence_score: float = Field(ge=0.0, le=1.0, default=0.0)
    override_confidence: Optional[float] = None     # From the silence rule, not inference
    emotional_state: str

    # WHAT WAS DECIDED
    action: str
    delay_ms: int = 0
    decision_reasoning: str

    # WHAT SAFETY CAUGHT
    safety_layer: Optional[str] = None
    violations: List[str] = []

    # WHAT WAS SAID
    ai_utterance_id: Optional[str] = None

    created_at: datetime

    # INTEGRITY
    signature: str = ""
    prior_record_hash: Optional[str] = None
