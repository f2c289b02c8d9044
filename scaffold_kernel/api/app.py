"""
Scaffold Kernel API — FastAPI endpoints.

Exposes:
- The child-facing speech stream (Server-Sent Events)
- Children and sessions (thin CRUD)
- Parent-facing transcript and session summary
- Audit queries and chain verification
"""

import random
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from scaffold_kernel.audit.log import AuditLog
from scaffold_kernel.config import configure_logging, settings
from scaffold_kernel.delivery.streamer import DeliveryStreamer
from scaffold_kernel.errors import PersistenceError, UnknownRecordError
from scaffold_kernel.inference.client import CompletionClient, build_completion_client
from scaffold_kernel.models.child import VocabularyLevel
from scaffold_kernel.models.config import PipelineConfig
from scaffold_kernel.models.stream import StreamEvent
from scaffold_kernel.nudges.generator import NudgeGenerator
from scaffold_kernel.orchestrator.session import SessionOrchestrator, TurnRequest
from scaffold_kernel.policy.intervention import InterventionPolicy
from scaffold_kernel.reasoning.estimator import StateEstimator
from scaffold_kernel.safety.gate import ContentSafetyGate
from scaffold_kernel.store.transcript import TranscriptStore
from scaffold_kernel.summary.generator import SessionSummaryGenerator

SSE_MEDIA_TYPE = "text/event-stream"


# --- Request/Response Models ---

class StreamRequest(BaseModel):
    # Optional so a missing id is a 400 from us, not a framework 422
    session_id: Optional[str] = None
    child_id: Optional[str] = None
    utterance: str = ""
    parent_opt_in: bool = False
    silence_seconds: Optional[float] = None


class ChildCreateRequest(BaseModel):
    name: str
    age: int
    vocabulary_level: VocabularyLevel = VocabularyLevel.BEGINNER
    ai_voice_enabled: bool = False


class AIVoiceRequest(BaseModel):
    enabled: bool


class VocabularyLevelRequest(BaseModel):
    vocabulary_level: VocabularyLevel


class SessionCreateRequest(BaseModel):
    child_id: str
    scenario: str = "general_learning"


async def _single_event(event: StreamEvent) -> AsyncIterator[str]:
    yield event.to_sse()


# --- Application Factory ---

def create_app(
    store: Optional[TranscriptStore] = None,
    audit: Optional[AuditLog] = None,
    client: Optional[CompletionClient] = None,
    streamer: Optional[DeliveryStreamer] = None,
    pipeline_config: Optional[PipelineConfig] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Scaffold Kernel API",
        description="Mediated AI speech for children's learning sessions",
        version="0.1.0-alpha",
    )

    # Initialize components
    ts = store or TranscriptStore(settings.DATABASE_PATH)
    al = audit or AuditLog(settings.AUDIT_DATABASE_PATH)
    cc = client or build_completion_client(settings.OPENAI_API_KEY, settings.OPENAI_MODEL)
    config = pipeline_config or PipelineConfig()
    rng = rng or random.Random()

    gate = ContentSafetyGate(cc, review_timeout=settings.SAFETY_TIMEOUT_SECONDS, rng=rng)
    orchestrator = SessionOrchestrator(
        store=ts,
        estimator=StateEstimator(cc, config.estimator, settings.INFERENCE_TIMEOUT_SECONDS),
        policy=InterventionPolicy(config.policy, rng=rng),
        nudges=NudgeGenerator(cc, config.nudges, settings.INFERENCE_TIMEOUT_SECONDS, rng=rng),
        gate=gate,
        streamer=streamer or DeliveryStreamer(config.delivery, rng=rng),
        audit=al,
        summaries=SessionSummaryGenerator(cc, gate, settings.SUMMARY_TIMEOUT_SECONDS),
        config=config,
    )

    # Store components on app state for access in endpoints
    app.state.store = ts
    app.state.audit = al
    app.state.gate = gate
    app.state.orchestrator = orchestrator
    app.state.pipeline_config = config

    # === SPEECH STREAM ===

    @app.post("/ai/stream")
    async def ai_stream(req: StreamRequest):
        """Run one turn and stream whatever the AI says (or a silent signal)."""
        if not req.session_id or not req.child_id:
            raise HTTPException(400, "session_id and child_id are required")

        try:
            outcome = await orchestrator.handle_utterance(TurnRequest(
                session_id=req.session_id,
                child_id=req.child_id,
                utterance=req.utterance,
                parent_opt_in=req.parent_opt_in,
                silence_seconds=req.silence_seconds,
            ))
        except UnknownRecordError as exc:
            raise HTTPException(404, str(exc))
        except PersistenceError:
            return StreamingResponse(
                _single_event(StreamEvent.error()),
                status_code=503,
                media_type=SSE_MEDIA_TYPE,
            )

        return StreamingResponse(
            outcome.stream.sse(),
            media_type=SSE_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # === CHILDREN ===

    @app.post("/children")
    def create_child(req: ChildCreateRequest):
        """Register a child. AI voice stays off until a parent enables it."""
        child = ts.create_child(
            name=req.name,
            age=req.age,
            vocabulary_level=req.vocabulary_level,
            ai_voice_enabled=req.ai_voice_enabled,
        )
        return child.model_dump(mode="json")

    @app.get("/children/{child_id}")
    def get_child(child_id: str):
        child = ts.get_child(child_id)
        if not child:
            raise HTTPException(404, "Child not found")
        return child.model_dump(mode="json")

    @app.put("/children/{child_id}/ai-voice")
    def set_ai_voice(child_id: str, req: AIVoiceRequest):
        """Parent toggle for the AI voice."""
        try:
            ts.set_ai_voice_enabled(child_id, req.enabled)
        except UnknownRecordError:
            raise HTTPException(404, "Child not found")
        return {"child_id": child_id, "ai_voice_enabled": req.enabled}

    @app.put("/children/{child_id}/vocabulary-level")
    def set_vocabulary_level(child_id: str, req: VocabularyLevelRequest):
        try:
            ts.set_vocabulary_level(child_id, req.vocabulary_level)
        except UnknownRecordError:
            raise HTTPException(404, "Child not found")
        return {"child_id": child_id, "vocabulary_level": req.vocabulary_level.value}

    # === SESSIONS ===

    @app.post("/sessions")
    def create_session(req: SessionCreateRequest):
        try:
            session = ts.create_session(req.child_id, req.scenario)
        except UnknownRecordError:
            raise HTTPException(404, "Child not found")
        return session.model_dump(mode="json")

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str):
        session = ts.get_session(session_id)
        if not session:
            raise HTTPException(404, "Session not found")
        return session.model_dump(mode="json")

    @app.get("/sessions/{session_id}/transcript")
    def get_transcript(session_id: str):
        """Parent-facing transcript. Internal metadata never leaves the server."""
        if not ts.get_session(session_id):
            raise HTTPException(404, "Session not found")
        transcript = []
        for u in ts.all_utterances(session_id):
            filtered = gate.filter_for_parent(u.text)
            transcript.append({
                "id": u.id,
                "speaker": u.speaker.value,
                "text": filtered.text,
                "redacted": filtered.redacted,
                "timestamp": u.timestamp.isoformat(),
            })
        return transcript

    @app.post("/sessions/{session_id}/end")
    async def end_session(session_id: str):
        """Generate the reflective summary and close the session."""
        try:
            summary = await orchestrator.end_session(session_id)
        except UnknownRecordError:
            raise HTTPException(404, "Session not found")
        except PersistenceError:
            raise HTTPException(503, "Summary could not be saved")
        return {"summary": summary.model_dump(mode="json")}

    @app.get("/sessions/{session_id}/summary")
    def get_summary(session_id: str):
        if not ts.get_session(session_id):
            raise HTTPException(404, "Session not found")
        summary = ts.read_session_summary(session_id)
        if not summary:
            raise HTTPException(404, "Summary not yet generated")
        return {"summary": summary.model_dump(mode="json")}

    # === AUDIT ===

    @app.get("/audit/verify")
    def verify_audit():
        """Verify chain integrity."""
        return {
            "integrity_valid": al.verify_chain_integrity(),
            "total_records": al.count(),
        }

    @app.get("/audit/{session_id}")
    def get_audit(session_id: str):
        """Per-turn decisions for a session. Operator/parent-facing only."""
        return [r.model_dump(mode="json") for r in al.query_by_session(session_id)]

    # === OPERATIONS ===

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/config")
    def get_config():
        """Current pipeline tuning (read-only)."""
        return config.model_dump()

    return app


# Default application instance
app = create_app()
