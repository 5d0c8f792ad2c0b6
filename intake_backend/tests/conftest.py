"""
Pytest configuration and shared fixtures for the intake backend tests.

This module provides:
- An in-memory RecordStore (no database needed)
- A scripted stand-in for the language model client
- Factories for conversations, turns and extraction payloads
- Invariant checking hooks
"""

import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest

from intake_backend.models import (
    Conversation,
    ExtractionJob,
    Profile,
    SafetyScreening,
    ScoredRecord,
    Turn,
    TurnExtraction,
    TurnSafetySignal,
    UserAccount,
)
from intake_backend.services.errors import LLMCallError
from intake_backend.services.record_store import UNSETTLED_JOB_STATUSES, RecordStore


# ============================================================================
# Mock Record Store (for tests without a real DB)
# ============================================================================

class MockRecordStore(RecordStore):
    """
    In-memory RecordStore. Stores ORM instances in dictionaries, so services
    see the same objects they would get back from a session.
    """

    def __init__(self):
        self.users: Dict[str, UserAccount] = {}
        self.conversations: Dict[uuid.UUID, Conversation] = {}
        self.turns: Dict[uuid.UUID, Turn] = {}
        self.extractions: Dict[uuid.UUID, List[TurnExtraction]] = {}
        self.safety_signals: Dict[uuid.UUID, List[TurnSafetySignal]] = {}
        self.jobs: Dict[uuid.UUID, ExtractionJob] = {}
        self.profiles: Dict[str, Profile] = {}
        self.screenings: Dict[str, SafetyScreening] = {}
        self.scored: Dict[tuple, ScoredRecord] = {}
        self.settings: Dict[str, Any] = {}
        self.commits = 0

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def put_user(self, user):
        self.users[user.id] = user

    async def get_conversation(self, conversation_id):
        return self.conversations.get(conversation_id)

    async def find_conversation_for_user(self, user_id, mode):
        candidates = [
            c for c in self.conversations.values()
            if c.user_id == user_id and c.mode == mode and c.status != 'abandoned'
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.started_at)

    async def put_conversation(self, conversation):
        self.conversations[conversation.id] = conversation

    async def advance_conversation(self, conversation, expected_question_number, changes):
        stored = self.conversations.get(conversation.id)
        if (
            stored is None
            or stored.status != 'in_progress'
            or stored.current_question_number != expected_question_number
        ):
            return False
        for key, value in changes.items():
            setattr(stored, key, value)
            setattr(conversation, key, value)
        return True

    async def add_turn(self, turn):
        self.turns[turn.id] = turn

    async def get_turn(self, turn_id):
        return self.turns.get(turn_id)

    async def list_turns(self, conversation_id):
        return sorted(
            (t for t in self.turns.values() if t.conversation_id == conversation_id),
            key=lambda t: t.sequence_number,
        )

    async def count_turns_for_question(self, conversation_id, question_number):
        return sum(
            1 for t in self.turns.values()
            if t.conversation_id == conversation_id and t.question_number == question_number
        )

    async def replace_turn_extractions(self, turn_id, rows):
        self.extractions[turn_id] = list(rows)

    async def list_extractions_for_user(self, user_id):
        rows = [r for group in self.extractions.values() for r in group if r.user_id == user_id]
        return sorted(rows, key=lambda r: (r.turn_sequence, str(r.turn_id), r.framework))

    async def replace_turn_safety_signals(self, turn_id, rows):
        self.safety_signals[turn_id] = list(rows)

    async def list_safety_signals_for_user(self, user_id):
        rows = [r for group in self.safety_signals.values() for r in group if r.user_id == user_id]
        return sorted(rows, key=lambda r: (r.turn_sequence, str(r.turn_id), r.signal_index))

    async def get_extraction_job(self, turn_id):
        return self.jobs.get(turn_id)

    async def put_extraction_job(self, job):
        self.jobs[job.turn_id] = job

    async def count_unsettled_jobs(self, conversation_id):
        return sum(
            1 for j in self.jobs.values()
            if j.conversation_id == conversation_id and j.status in UNSETTLED_JOB_STATUSES
        )

    async def list_unsettled_jobs(self):
        return [j for j in self.jobs.values() if j.status in UNSETTLED_JOB_STATUSES]

    async def get_profile(self, user_id):
        return self.profiles.get(user_id)

    async def put_profile(self, profile):
        self.profiles[profile.user_id] = profile

    async def get_safety_screening(self, user_id):
        return self.screenings.get(user_id)

    async def put_safety_screening(self, screening):
        self.screenings[screening.user_id] = screening

    async def get_scored_record(self, entity_id, scorer):
        return self.scored.get((entity_id, scorer))

    async def put_scored_record(self, record):
        self.scored[(record.entity_id, record.scorer)] = record

    async def get_setting(self, key):
        return self.settings.get(key)

    async def commit(self):
        self.commits += 1


def make_store_scope(store: MockRecordStore):
    """A store scope that always hands out the same in-memory store."""

    @asynccontextmanager
    async def scope():
        yield store

    return scope


@pytest.fixture
def store():
    return MockRecordStore()


# ============================================================================
# Scripted LLM
# ============================================================================

class FakeLLM:
    """
    Stand-in for LLMClient.complete. Responses are consumed in order; an
    Exception instance in the script is raised instead of returned. Once the
    script is exhausted `default` is returned.
    """

    def __init__(self, responses: Sequence[Any] = (), default: Any = "Thanks for sharing that."):
        self.responses = list(responses)
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system_prompt, user_prompt, **kwargs):
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt, **kwargs})
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return response


class FailingLLM(FakeLLM):
    def __init__(self, message: str = "LLM call timed out after 30s"):
        super().__init__(default=LLMCallError(message))


@pytest.fixture
def fake_llm():
    return FakeLLM()


# ============================================================================
# Test Data Factories
# ============================================================================

def reading(value, confidence=0.8, evidence=("quoted evidence",)):
    return {"value": value, "confidence": confidence, "evidence": list(evidence)}


def extraction_payload(**frameworks) -> str:
    """JSON text shaped like the extractor model reply."""
    payload = dict(frameworks)
    payload.setdefault("safety_flags", [])
    payload.setdefault("needs_follow_up", False)
    return json.dumps(payload)


def create_mock_conversation(
    user_id: str = "user-1",
    mode: str = "interview",
    total_questions: int = 49,
    current_question_number: int = 1,
    current_question_id: Optional[str] = "q1",
    status: str = "in_progress",
) -> Conversation:
    now = datetime.now(timezone.utc)
    return Conversation(
        id=uuid.uuid4(),
        user_id=user_id,
        mode=mode,
        status=status,
        current_chapter=1,
        current_question_number=current_question_number,
        current_question_id=current_question_id,
        questions_answered=current_question_number - 1,
        total_questions=total_questions,
        hints_used=0,
        started_at=now,
        updated_at=now,
    )


def create_mock_turn(
    conversation_id: uuid.UUID,
    sequence_number: int,
    content: str = "I love long hikes with close friends.",
    role: str = "user",
    question_id: Optional[str] = "q1",
    question_number: Optional[int] = 1,
) -> Turn:
    return Turn(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        sequence_number=sequence_number,
        role=role,
        kind="message",
        content=content,
        question_id=question_id,
        question_number=question_number,
        chapter=1,
        created_at=datetime.now(timezone.utc) + timedelta(seconds=sequence_number),
    )


def create_mock_extraction(
    user_id: str,
    turn_sequence: int,
    framework: str,
    traits: Dict[str, Any],
    turn_id: Optional[uuid.UUID] = None,
    turn_created_at: Optional[datetime] = None,
    conversation_id: Optional[uuid.UUID] = None,
) -> TurnExtraction:
    return TurnExtraction(
        id=uuid.uuid4(),
        turn_id=turn_id or uuid.uuid4(),
        conversation_id=conversation_id or uuid.uuid4(),
        user_id=user_id,
        turn_sequence=turn_sequence,
        turn_created_at=turn_created_at,
        framework=framework,
        traits=traits,
        source="llm",
    )


# ============================================================================
# Invariant Checking Hooks
# ============================================================================

@pytest.fixture
def check_invariants(store):
    """
    Usage:
        async def test_something(check_invariants):
            ...
            await check_invariants(conversation_id)
    """
    from tests.invariants import check_all_invariants

    async def _check(conversation_id):
        await check_all_invariants(store, conversation_id)

    return _check


# ============================================================================
# Pytest Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that run several services together"
    )
