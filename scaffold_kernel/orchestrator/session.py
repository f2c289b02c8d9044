"""
Session Orchestrator — the per-utterance control loop.

Per turn:
  1. Opt-in and per-child AI-voice flag; either off → silent, nothing stored
  2. Persist the child's utterance
  3. Rehydrate / refresh ChildState from the bounded history
  4. State Estimator → Intervention Policy
  5. Speaking: Nudge Generator → Safety Gate → final fast check
  6. Persist the AI utterance (failure → PersistenceError, never speak)
  7. Hand message and delay to the Delivery Streamer
  8. Update and persist ChildState

Concurrency:
  Sessions share no mutable state. Within a session a new utterance
  cancels the in-flight delivery (cancel-and-replace). A superseded turn
  that has not yet stored an AI utterance goes silent. A superseded turn
  never writes ChildState: only the newest turn of a session does.
  Completed sessions accept no further turns.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel

from scaffold_kernel.audit.log import AuditLog
from scaffold_kernel.delivery.streamer import (
    CancellationToken,
    DeliveryStream,
    DeliveryStreamer,
)
from scaffold_kernel.errors import PersistenceError, UnknownRecordError
from scaffold_kernel.models.audit import AuditRecord
from scaffold_kernel.models.child import ChildState
from scaffold_kernel.models.config import PipelineConfig
from scaffold_kernel.models.reasoning import (
    InterventionAction,
    InterventionDecision,
    ReasoningResult,
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
from scaffold_kernel.models.safety import ChildContext, SafetyVerdict
from scaffold_kernel.nudges.generator import NudgeContext, NudgeGenerator
from scaffold_kernel.policy.intervention import InterventionPolicy, PolicyContext
from scaffold_kernel.reasoning.estimator import StateEstimator, extract_vocabulary
from scaffold_kernel.safety.gate import ContentSafetyGate
from scaffold_kernel.store.transcript import TranscriptStore
from scaffold_kernel.summary.generator import SessionSummaryGenerator

logger = logging.getLogger(__name__)

SUPERSEDED = "superseded"
SESSION_COMPLETED = "session_completed"


class TurnRequest(BaseModel):
    session_id: str
    child_id: str
    utterance: str
    parent_opt_in: bool = False
    silence_seconds: Optional[float] = None


class TurnOutcome:
    """What one turn produced. `stream` is always iterable; silent turns yield one `silent` event."""

    def __init__(
        self,
        action: InterventionAction,
        stream: DeliveryStream,
        message: Optional[str] = None,
        delay_ms: int = 0,
        child_utterance_id: Optional[str] = None,
        ai_utterance_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.action = action
        self.stream = stream
        self.message = message
        self.delay_ms = delay_ms
        self.child_utterance_id = child_utterance_id
        self.ai_utterance_id = ai_utterance_id
        self.reason = reason

    @property
    def speaks(self) -> bool:
        return self.message is not None


class SessionRuntime:
    """In-memory per-session state. Owned by exactly one orchestrator."""

    def __init__(self):
        self.child_state: Optional[ChildState] = None
        self.active_token: Optional[CancellationToken] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionOrchestrator:
    def __init__(
        self,
        store: TranscriptStore,
        estimator: StateEstimator,
        policy: InterventionPolicy,
        nudges: NudgeGenerator,
        gate: ContentSafetyGate,
        streamer: DeliveryStreamer,
        audit: Optional[AuditLog] = None,
        summaries: Optional[SessionSummaryGenerator] = None,
        config: Optional[PipelineConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.estimator = estimator
        self.policy = policy
        self.nudges = nudges
        self.gate = gate
        self.streamer = streamer
        self.audit = audit
        self.summaries = summaries
        self.config = config or PipelineConfig()
        self._clock = clock
        self._runtimes: Dict[str, SessionRuntime] = {}

    def runtime(self, session_id: str) -> SessionRuntime:
        if session_id not in self._runtimes:
            self._runtimes[session_id] = SessionRuntime()
        return self._runtimes[session_id]

    def _silent(self, reason: str, child_utterance_id: Optional[str] = None) -> TurnOutcome:
        return TurnOutcome(
            action=InterventionAction.OBSERVE,
            stream=self.streamer.silent(),
            child_utterance_id=child_utterance_id,
            reason=reason,
        )

    # --- The turn ---

    async def handle_utterance(self, request: TurnRequest) -> TurnOutcome:
        if not request.parent_opt_in:
            return self._silent("parent_opt_in_missing")

        child = await asyncio.to_thread(self.store.get_child, request.child_id)
        if child is None:
            raise UnknownRecordError("child", request.child_id)
        session = await asyncio.to_thread(self.store.get_session, request.session_id)
        if session is None or session.child_id != child.id:
            raise UnknownRecordError("session", request.session_id)
        if not child.ai_voice_enabled:
            return self._silent("ai_voice_disabled")
        if session.status == SessionStatus.COMPLETED:
            return self._silent(SESSION_COMPLETED)

        runtime = self.runtime(session.id)
        if runtime.active_token is not None:
            runtime.active_token.cancel()
        token = CancellationToken()
        runtime.active_token = token

        now = self._clock()
        child_utterance = await asyncio.to_thread(
            self.store.append_utterance,
            session.id, Speaker.CHILD, request.utterance, None, now,
        )

        state = await self._refresh_state(runtime, child, session, child_utterance)

        reasoning = await self.estimator.analyze(
            request.utterance,
            state,
            SessionContext(
                session_id=session.id,
                child_age=child.age,
                scenario=session.scenario,
                now=now,
                silence_seconds=request.silence_seconds,
            ),
        )
        if token.cancelled:
            return self._superseded(child_utterance)

        history = await asyncio.to_thread(
            self.store.recent_utterances,
            session.id, self.config.intervention_history_window, Speaker.AI_VOICE,
        )
        decision = self.policy.decide(
            reasoning,
            state,
            PolicyContext(now=now, recent_interventions=[u.timestamp for u in history]),
        )

        verdict = None
        ai_utterance = None
        if decision.speaks:
            message, verdict = await self._approved_message(
                decision, reasoning, state, child, session, request.utterance
            )
            if token.cancelled:
                return self._superseded(child_utterance)
            decision = decision.model_copy(update={"message": message})
            ai_utterance = await self._persist_ai_utterance(session, decision, reasoning, verdict)
            stream = self.streamer.stream(message, decision.delay_ms, token)
        else:
            logger.debug("Observing in session %s: %s", session.id, decision.reasoning)
            stream = self.streamer.silent()

        # A newer turn owns the ChildState once this token is cancelled
        if token.cancelled and ai_utterance is None:
            return self._superseded(child_utterance)
        owns_state = not token.cancelled

        new_state = self.estimator.update(state, reasoning)
        if owns_state:
            runtime.child_state = new_state
        else:
            logger.info(
                "Turn for %s superseded after speaking; leaving ChildState to the newer turn",
                session.id,
            )
        await self._record_turn(
            session, child_utterance, reasoning, decision, verdict, ai_utterance,
            new_state, owns_state,
        )

        return TurnOutcome(
            action=decision.action,
            stream=stream,
            message=decision.message,
            delay_ms=decision.delay_ms if decision.speaks else 0,
            child_utterance_id=child_utterance.id,
            ai_utterance_id=ai_utterance.id if ai_utterance else None,
            reason=decision.reasoning,
        )

    def _superseded(self, child_utterance: Utterance) -> TurnOutcome:
        logger.info("Turn for %s superseded by a newer utterance", child_utterance.session_id)
        return self._silent(SUPERSEDED, child_utterance.id)

    async def _refresh_state(
        self,
        runtime: SessionRuntime,
        child: ChildRecord,
        session: SessionRecord,
        current: Utterance,
    ) -> ChildState:
        """Current ChildState with recent history, excluding the utterance being handled."""
        window = self.config.history_window
        history = await asyncio.to_thread(
            self.store.recent_utterances, session.id, window + 1, Speaker.CHILD
        )
        previous = [u for u in history if u.id != current.id][-window:]
        texts = [u.text for u in previous]

        state = runtime.child_state
        if state is None:
            state = await asyncio.to_thread(self.store.read_session_state, session.id)
        if state is None:
            state = ChildState(
                vocabulary_level=child.vocabulary_level,
                recent_vocabulary=extract_vocabulary(texts, self.config.estimator.vocabulary_window),
                last_speech_at=previous[-1].timestamp if previous else None,
            )

        return state.model_copy(update={
            "recent_utterances": texts,
            "vocabulary_level": child.vocabulary_level,
        })

    async def _approved_message(
        self,
        decision: InterventionDecision,
        reasoning: ReasoningResult,
        state: ChildState,
        child: ChildRecord,
        session: SessionRecord,
        utterance: str,
    ):
        candidate = await self.nudges.generate(NudgeContext(
            situation=decision.situation,
            child_age=child.age,
            vocabulary_level=child.vocabulary_level,
            scenario=session.scenario,
            recent_utterances=state.recent_utterances,
            latest_utterance=utterance,
            suggested_nudge=reasoning.suggested_nudge,
        ))

        verdict = await self.gate.evaluate(
            candidate,
            ChildContext(age=child.age, vocabulary_level=child.vocabulary_level),
        )
        message = candidate if verdict.is_safe else verdict.sanitized_text

        final = self.gate.fast_check(message)
        if not final.is_safe:
            message = final.sanitized_text
        return message, verdict

    async def _persist_ai_utterance(
        self,
        session: SessionRecord,
        decision: InterventionDecision,
        reasoning: ReasoningResult,
        verdict: Optional[SafetyVerdict],
    ) -> Utterance:
        metadata = {
            "action": decision.action.value,
            "reasoning": decision.reasoning,
            "confidence": reasoning.confidence_score,
            "override_confidence": reasoning.override_confidence,
            "delay_ms": decision.delay_ms,
            "situation": decision.situation.value if decision.situation else None,
            "safety_layer": verdict.layer.value if verdict else None,
            "sanitized": bool(verdict and not verdict.is_safe),
        }
        try:
            return await asyncio.to_thread(
                self.store.append_utterance,
                session.id, Speaker.AI_VOICE, decision.message, metadata, self._clock(),
            )
        except PersistenceError:
            logger.error("Could not persist AI utterance for %s; staying silent", session.id)
            raise

    async def _record_turn(
        self,
        session: SessionRecord,
        child_utterance: Utterance,
        reasoning: ReasoningResult,
        decision: InterventionDecision,
        verdict: Optional[SafetyVerdict],
        ai_utterance: Optional[Utterance],
        new_state: ChildState,
        owns_state: bool = True,
    ) -> None:
        """Side records of the turn. Failures here never block delivery."""
        if owns_state:
            try:
                await asyncio.to_thread(self.store.write_session_state, session.id, new_state)
            except PersistenceError as exc:
                logger.error("Session state write failed for %s: %s", session.id, exc)

        analysis = {
            "analysis": {
                "source": reasoning.source.value,
                "emotional_tone": reasoning.emotional_tone,
                "complexity_level": reasoning.complexity_level.value,
                "new_words": reasoning.new_words,
                "vocabulary_gaps": reasoning.vocabulary_gaps,
                "engagement_indicators": reasoning.engagement_indicators,
                "struggle_indicators": reasoning.struggle_indicators,
                "hesitation_detected": reasoning.hesitation_detected,
                "silence_seconds": reasoning.silence_seconds,
            },
            "engagement_score": new_state.engagement_score,
        }
        try:
            await asyncio.to_thread(self.store.enrich_metadata, child_utterance.id, analysis)
        except (PersistenceError, UnknownRecordError) as exc:
            logger.error("Metadata enrichment failed for %s: %s", child_utterance.id, exc)

        if self.audit is None:
            return
        record = AuditRecord(
            id=f"audit_{uuid4().hex[:12]}",
            session_id=session.id,
            child_utterance_id=child_utterance.id,
            reasoning_source=reasoning.source.value,
            intervention_reason=reasoning.intervention_reason,
            confidence_score=reasoning.confidence_score,
            override_confidence=reasoning.override_confidence,
            emotional_state=reasoning.emotional_state.value,
            action=decision.action.value,
            delay_ms=decision.delay_ms,
            decision_reasoning=decision.reasoning,
            safety_layer=verdict.layer.value if verdict else None,
            violations=verdict.describe_violations() if verdict else [],
            ai_utterance_id=ai_utterance.id if ai_utterance else None,
            created_at=self._clock(),
        )
        try:
            await asyncio.to_thread(self.audit.append, record)
        except PersistenceError as exc:
            logger.error("Audit append failed for %s: %s", session.id, exc)

    # --- Session end ---

    async def end_session(self, session_id: str) -> SessionSummary:
        """Stop any delivery, write the summary, mark completed, drop the runtime."""
        session = await asyncio.to_thread(self.store.get_session, session_id)
        if session is None:
            raise UnknownRecordError("session", session_id)
        child = await asyncio.to_thread(self.store.get_child, session.child_id)
        if child is None:
            raise UnknownRecordError("child", session.child_id)

        runtime = self._runtimes.pop(session_id, None)
        if runtime and runtime.active_token is not None:
            runtime.active_token.cancel()

        utterances: List[Utterance] = await asyncio.to_thread(
            self.store.all_utterances, session_id
        )
        summaries = self.summaries or SessionSummaryGenerator(
            self.estimator.client, self.gate
        )
        summary = await summaries.generate(child, session, utterances, self._clock())
        await asyncio.to_thread(self.store.write_session_summary, session_id, summary)
        return summary
