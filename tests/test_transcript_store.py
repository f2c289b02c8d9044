"""Tests for the Transcript Store."""

from datetime import datetime, timedelta, timezone

import pytest

from scaffold_kernel.errors import PersistenceError, UnknownRecordError
from scaffold_kernel.models.child import ChildState, EmotionalState, VocabularyLevel
from scaffold_kernel.models.records import SessionStatus, SessionSummary, Speaker
from scaffold_kernel.store.transcript import TranscriptStore

T0 = datetime(2025, 10, 2, 14, 0, 0, tzinfo=timezone.utc)


class TestChildren:
    def setup_method(self):
        self.store = TranscriptStore(":memory:")

    def test_create_and_get(self):
        child = self.store.create_child("Maya", 6)
        fetched = self.store.get_child(child.id)
        assert fetched.name == "Maya"
        assert fetched.age == 6
        assert fetched.ai_voice_enabled is False
        assert fetched.vocabulary_level == VocabularyLevel.BEGINNER

    def test_unknown_child(self):
        assert self.store.get_child("child_nope") is None

    def test_flags(self):
        child = self.store.create_child("Maya", 6)
        self.store.set_ai_voice_enabled(child.id, True)
        self.store.set_vocabulary_level(child.id, VocabularyLevel.ADVANCED)
        fetched = self.store.get_child(child.id)
        assert fetched.ai_voice_enabled is True
        assert fetched.vocabulary_level == VocabularyLevel.ADVANCED

    def test_flag_on_unknown_child(self):
        with pytest.raises(UnknownRecordError):
            self.store.set_ai_voice_enabled("child_nope", True)


class TestSessions:
    def setup_method(self):
        self.store = TranscriptStore(":memory:")
        self.child = self.store.create_child("Leo", 7)

    def test_create_session(self):
        session = self.store.create_session(self.child.id, "nature_walk")
        fetched = self.store.get_session(session.id)
        assert fetched.child_id == self.child.id
        assert fetched.scenario == "nature_walk"
        assert fetched.status == SessionStatus.ACTIVE

    def test_session_for_unknown_child(self):
        with pytest.raises(UnknownRecordError):
            self.store.create_session("child_nope")

    def test_state_blob_round_trip(self):
        session = self.store.create_session(self.child.id)
        assert self.store.read_session_state(session.id) is None
        state = ChildState(engagement_score=42, emotional_state=EmotionalState.EXCITED)
        self.store.write_session_state(session.id, state)
        assert self.store.read_session_state(session.id) == state

    def test_summary_marks_completed(self):
        session = self.store.create_session(self.child.id)
        summary = SessionSummary(
            what_we_talked_about="Frogs and ponds",
            vocabulary_highlights=["tadpole"],
            thinking_question="Where do frogs sleep?",
            parent_notes="Curious about life cycles",
            generated_at=T0,
        )
        self.store.write_session_summary(session.id, summary)
        assert self.store.read_session_summary(session.id) == summary
        fetched = self.store.get_session(session.id)
        assert fetched.status == SessionStatus.COMPLETED
        assert fetched.completed_at is not None


class TestUtterances:
    def setup_method(self):
        self.store = TranscriptStore(":memory:")
        child = self.store.create_child("Ava", 5)
        self.session = self.store.create_session(child.id)

    def test_recent_is_bounded_and_oldest_first(self):
        for i in range(15):
            self.store.append_utterance(
                self.session.id, Speaker.CHILD, f"line {i}", timestamp=T0 + timedelta(seconds=i)
            )
        recent = self.store.recent_utterances(self.session.id, limit=10)
        assert [u.text for u in recent] == [f"line {i}" for i in range(5, 15)]

    def test_recent_by_speaker(self):
        self.store.append_utterance(self.session.id, Speaker.CHILD, "hi", timestamp=T0)
        self.store.append_utterance(
            self.session.id, Speaker.AI_VOICE, "hello!", {"confidence": 0.8},
            timestamp=T0 + timedelta(seconds=5),
        )
        ai = self.store.recent_utterances(self.session.id, limit=5, speaker=Speaker.AI_VOICE)
        assert [u.text for u in ai] == ["hello!"]
        assert ai[0].metadata == {"confidence": 0.8}

    def test_enrich_metadata_keeps_text(self):
        utterance = self.store.append_utterance(self.session.id, Speaker.CHILD, "a big tree")
        self.store.enrich_metadata(utterance.id, {"analysis": {"new_words": ["tree"]}})
        self.store.enrich_metadata(utterance.id, {"engagement_score": 72})
        stored = self.store.all_utterances(self.session.id)[0]
        assert stored.text == "a big tree"
        assert stored.metadata == {"analysis": {"new_words": ["tree"]}, "engagement_score": 72}

    def test_enrich_unknown_utterance(self):
        with pytest.raises(UnknownRecordError):
            self.store.enrich_metadata("utt_nope", {"x": 1})

    def test_sqlite_failure_raises_persistence_error(self):
        self.store._conn.execute("DROP TABLE utterances")
        with pytest.raises(PersistenceError):
            self.store.append_utterance(self.session.id, Speaker.CHILD, "hello")
