"""Pipeline configuration — tuning knobs for each component."""

from typing import Dict

from pydantic import BaseModel, Field


class EstimatorConfig(BaseModel):
    """Configuration for the State Estimator."""

    silence_threshold_seconds: float = 8.0
    adaptive_silence: bool = False
    state_silence_thresholds: Dict[str, float] = {
        "engaged": 12.0,
        "confused": 8.0,
        "frustrated": 5.0,
        "excited": 15.0,
    }
    silence_override_confidence: float = Field(ge=0.0, le=1.0, default=0.75)
    vocabulary_window: int = 50
    positive_delta: float = 5.0
    struggle_delta: float = -3.0
    hesitation_delta: float = -2.0
    context_utterances: int = 3


class PolicyConfig(BaseModel):
    """Configuration for the Intervention Policy and its rate limiter."""

    confidence_threshold: float = Field(ge=0.0, le=1.0, default=0.7)
    struggle_indicator_limit: int = 2
    state_delays_ms: Dict[str, int] = {
        "confused": 3000,
        "frustrated": 2000,
        "confident": 8000,
    }
    encourage_delay_ms: int = 2500
    struggle_delay_ms: int = 5000
    default_delay_ms: int = 6000
    jitter_ms: int = 1000
    min_delay_ms: int = 2000
    max_delay_ms: int = 10000
    max_interventions_per_window: int = 3
    window_seconds: int = 120
    min_spacing_seconds: int = 20
    high_engagement_threshold: float = 80.0


class NudgeConfig(BaseModel):
    """Configuration for the Nudge Generator."""

    max_words: int = 15
    context_utterances: int = 6


class DeliveryConfig(BaseModel):
    """Configuration for the Delivery Streamer."""

    word_interval_min_ms: int = 200
    word_interval_max_ms: int = 300


class PipelineConfig(BaseModel):
    """All component configuration, bundled for the orchestrator."""

    estimator: EstimatorConfig = EstimatorConfig()
    policy: PolicyConfig = PolicyConfig()
    nudges: NudgeConfig = NudgeConfig()
    delivery: DeliveryConfig = DeliveryConfig()
    history_window: int = 10
    intervention_history_window: int = 20
