"""
Intervention Policy — decides whether the AI speaks, and when.

Gates, evaluated in order (first match wins):
  1. Confidence:   no recommendation, or confidence below threshold → observe
  2. Rate limit:   window budget spent, too soon after the last one,
                   or engagement already high → observe
  3. Emotion:      frustrated → encourage, fast relief
  4. Struggle:     many struggle indicators → speak, with processing time
  5. Default:      speak

Behavioral Contract:
- Below-threshold confidence is always observe, whatever else is true
- Delay is a pure function of (base, jitter bounds, rng), clamped to floor/ceiling
- decide() holds no state; the caller supplies the intervention history
"""

import random
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel

from scaffold_kernel.models.child import ChildState, EmotionalState
from scaffold_kernel.models.config import PolicyConfig
from scaffold_kernel.models.reasoning import (
    InterventionAction,
    InterventionDecision,
    NudgeSituation,
    ReasoningResult,
)
from scaffold_kernel.reasoning.estimator import PROLONGED_SILENCE


class PolicyContext(BaseModel):
    """Caller-supplied facts: the clock and this session's delivered interventions."""

    now: datetime
    recent_interventions: List[datetime] = []


def compute_delay(
    base_ms: int,
    jitter_ms: int,
    floor_ms: int,
    ceiling_ms: int,
    rng: random.Random,
) -> int:
    """Base delay plus uniform jitter in [-jitter, +jitter], clamped."""
    delay = base_ms + rng.uniform(-jitter_ms, jitter_ms)
    return int(max(floor_ms, min(ceiling_ms, delay)))


def select_situation(
    reasoning: ReasoningResult, action: InterventionAction
) -> NudgeSituation:
    """Pick the nudge situation type for a speaking action."""
    if reasoning.intervention_reason == PROLONGED_SILENCE:
        return NudgeSituation.SILENCE
    if action == InterventionAction.ENCOURAGE:
        return NudgeSituation.ENCOURAGEMENT
    if reasoning.emotional_state == EmotionalState.CONFUSED:
        return NudgeSituation.CONFUSION
    if reasoning.vocabulary_gaps:
        return NudgeSituation.VOCABULARY
    return NudgeSituation.THINKING


class InterventionPolicy:
    """
    The decision half of the pipeline. Stateless apart from its rng.
    """

    def __init__(
        self,
        config: Optional[PolicyConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or PolicyConfig()
        self._rng = rng or random.Random()

    def decide(
        self,
        reasoning: ReasoningResult,
        child_state: ChildState,
        context: PolicyContext,
    ) -> InterventionDecision:
        cfg = self.config

        # 1. Confidence gate
        if not reasoning.should_intervene:
            return self._observe("No intervention recommended; child is progressing")
        if reasoning.effective_confidence < cfg.confidence_threshold:
            return self._observe(
                f"Low confidence ({reasoning.effective_confidence:.2f} < "
                f"{cfg.confidence_threshold:.2f}); waiting for a clearer signal"
            )

        # 2. Rate limit
        suppression = self.rate_limit_reason(child_state, context)
        if suppression:
            return self._observe(suppression)

        # 3. Emotional priority
        if reasoning.emotional_state == EmotionalState.FRUSTRATED:
            return self._intervene(
                InterventionAction.ENCOURAGE,
                reasoning,
                cfg.encourage_delay_ms,
                "Frustration detected; offering quick encouragement",
            )

        # 4. Struggle volume
        if len(reasoning.struggle_indicators) > cfg.struggle_indicator_limit:
            return self._intervene(
                InterventionAction.SPEAK,
                reasoning,
                cfg.struggle_delay_ms,
                "Multiple struggle indicators: "
                + ", ".join(reasoning.struggle_indicators),
            )

        # 5. Default gentle prompt
        return self._intervene(
            InterventionAction.SPEAK,
            reasoning,
            cfg.default_delay_ms,
            reasoning.intervention_reason or "Gentle nudge based on engagement patterns",
        )

    def rate_limit_reason(
        self, child_state: ChildState, context: PolicyContext
    ) -> Optional[str]:
        """Return why an intervention must be suppressed, or None."""
        cfg = self.config

        if child_state.engagement_score > cfg.high_engagement_threshold:
            return (
                f"Engagement {child_state.engagement_score:.0f} above "
                f"{cfg.high_engagement_threshold:.0f}; staying patient"
            )

        window_start = context.now - timedelta(seconds=cfg.window_seconds)
        in_window = [t for t in context.recent_interventions if t > window_start]
        if len(in_window) >= cfg.max_interventions_per_window:
            return (
                f"Rate limited: {len(in_window)} interventions in the last "
                f"{cfg.window_seconds}s"
            )

        if context.recent_interventions:
            last = max(context.recent_interventions)
            since = (context.now - last).total_seconds()
            if since < cfg.min_spacing_seconds:
                return f"Cooldown: last intervention {since:.0f}s ago"

        return None

    def delay_for(self, emotional_state: EmotionalState, gate_delay_ms: int) -> int:
        cfg = self.config
        base = cfg.state_delays_ms.get(emotional_state.value, gate_delay_ms)
        return compute_delay(
            base, cfg.jitter_ms, cfg.min_delay_ms, cfg.max_delay_ms, self._rng
        )

    def _intervene(
        self,
        action: InterventionAction,
        reasoning: ReasoningResult,
        gate_delay_ms: int,
        why: str,
    ) -> InterventionDecision:
        return InterventionDecision(
            action=action,
            delay_ms=self.delay_for(reasoning.emotional_state, gate_delay_ms),
            reasoning=why,
            situation=select_situation(reasoning, action),
        )

    def _observe(self, why: str) -> InterventionDecision:
        return InterventionDecision(
            action=InterventionAction.OBSERVE,
            delay_ms=0,
            reasoning=why,
        )
