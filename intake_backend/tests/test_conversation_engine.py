"""
Tests for the conversation state machine.

Uses the in-memory store and a scripted LLM. A reply containing a transition
cue ("let's talk about") makes every interview answer advance, which keeps
full-interview walks short.
"""

import asyncio
import gc
import uuid

import pytest

from intake_backend.services.conversation_engine import (
    _CONVERSATION_LOCKS,
    ConversationEngine,
    question_context,
)
from intake_backend.services.errors import (
    ConversationClosedError,
    ConversationNotFoundError,
    InvalidInputError,
)
from intake_backend.services.user_status import ActivationGate
from tests.conftest import FailingLLM, FakeLLM

CUE_REPLY = "Love that. Let's talk about what comes next."


def cue_llm():
    return FakeLLM(default=CUE_REPLY)


async def answer_all_interview_questions(engine, conversation_id, total=49):
    snapshot = None
    for index in range(total):
        snapshot = await engine.answer(conversation_id, text=f"Answer number {index + 1}")
    return snapshot


# ============================================================================
# start
# ============================================================================

class TestStart:
    @pytest.mark.asyncio
    async def test_start_creates_opening(self, store):
        engine = ConversationEngine(store)

        snapshot = await engine.start_conversation("user-1", user_name="Sam")

        assert snapshot.status == "in_progress"
        assert snapshot.current_question_number == 1
        assert snapshot.current_question_id == "ch1_q1"
        assert snapshot.total_questions == 49
        assert snapshot.progress == 0.0
        assert snapshot.message.startswith("Hey Sam! 👋")
        assert snapshot.message.endswith(
            "Let's begin with Chapter 1: Your World.\n\n"
            "Let's start with the basics - what does a typical day look like for you?"
        )

        turns = await store.list_turns(snapshot.conversation_id)
        assert [(t.role, t.kind, t.question_id) for t in turns] == [("assistant", "opening", "ch1_q1")]
        assert store.users["user-1"].status == "pending"
        assert store.users["user-1"].first_name == "Sam"
        assert store.commits == 1

    @pytest.mark.asyncio
    async def test_start_twice_resumes(self, store):
        engine = ConversationEngine(store)
        first = await engine.start_conversation("user-1")

        again = await engine.start_conversation("user-1")

        assert again.conversation_id == first.conversation_id
        assert again.resumed is True
        assert again.message == first.message
        assert len(store.conversations) == 1

    @pytest.mark.asyncio
    async def test_start_after_abandon_creates_new(self, store):
        engine = ConversationEngine(store)
        first = await engine.start_conversation("user-1")
        await engine.abandon(first.conversation_id)

        second = await engine.start_conversation("user-1")

        assert second.conversation_id != first.conversation_id
        assert second.resumed is False

    @pytest.mark.asyncio
    async def test_start_requires_user_id(self, store):
        with pytest.raises(InvalidInputError):
            await ConversationEngine(store).start_conversation("   ")

    @pytest.mark.asyncio
    async def test_unknown_mode(self, store):
        with pytest.raises(InvalidInputError):
            await ConversationEngine(store).start_conversation("user-1", mode="speed_dating")
        assert store.conversations == {}


# ============================================================================
# answer (interview)
# ============================================================================

class TestInterviewAnswer:
    @pytest.mark.asyncio
    async def test_first_answer_advances(self, store, check_invariants):
        engine = ConversationEngine(store, llm=FakeLLM(["What part of your day do you enjoy most?"]))
        started = await engine.start_conversation("user-1")

        snapshot = await engine.answer(started.conversation_id, text="Work, gym, then cooking dinner.")

        assert snapshot.current_question_number == 2
        assert snapshot.current_question_id == "ch1_q2"
        assert snapshot.questions_answered == 1
        assert snapshot.progress == pytest.approx(2.0)
        assert snapshot.message == "What part of your day do you enjoy most?"
        assert snapshot.chapter_transition is False
        await check_invariants(started.conversation_id)

    @pytest.mark.asyncio
    async def test_answer_records_turns_and_job(self, store):
        enqueued = []
        engine = ConversationEngine(store, llm=cue_llm(), enqueue_extraction=enqueued.append)
        started = await engine.start_conversation("user-1")

        await engine.answer(started.conversation_id, text="  I teach high school chemistry.  ")

        turns = await store.list_turns(started.conversation_id)
        user_turn = turns[1]
        assert user_turn.role == "user"
        assert user_turn.content == "I teach high school chemistry."
        assert user_turn.question_number == 1
        assert turns[2].role == "assistant"
        assert enqueued == [user_turn.id]
        assert store.jobs[user_turn.id].status == "pending"

    @pytest.mark.asyncio
    async def test_reply_prompt_includes_transcript(self, store):
        llm = cue_llm()
        engine = ConversationEngine(store, llm=llm, reply_timeout_seconds=12)
        started = await engine.start_conversation("user-1", user_name="Sam")

        await engine.answer(started.conversation_id, text="Mostly spreadsheets.")

        call = llm.calls[0]
        assert "User: Mostly spreadsheets." in call["user_prompt"]
        assert "typical day" in call["system_prompt"]
        assert call["timeout_seconds"] == 12
        assert call["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_stays_on_question_without_cue(self, store):
        engine = ConversationEngine(store, llm=FakeLLM(default="Tell me more."))
        started = await engine.start_conversation("user-1")
        await engine.answer(started.conversation_id, text="Answer one")

        snapshot = await engine.answer(started.conversation_id, text="I live in Denver.")

        assert snapshot.current_question_number == 2
        assert snapshot.message == "Tell me more."

        snapshot = await engine.answer(started.conversation_id, text="I love the mountains.")
        assert snapshot.current_question_number == 3

    @pytest.mark.asyncio
    async def test_llm_failure_falls_back_to_hint(self, store):
        engine = ConversationEngine(store, llm=FailingLLM())
        started = await engine.start_conversation("user-1")

        snapshot = await engine.answer(started.conversation_id, text="Answer one")

        assert snapshot.current_question_number == 2
        assert snapshot.message == (
            "That sounds interesting! What part of your day do you look forward to most?"
            "\n\n"
            "Where are you currently based, and how do you feel about where you live?"
        )
        turns = await store.list_turns(started.conversation_id)
        assert turns[-1].role == "assistant"
        assert turns[-1].question_id == "ch1_q2"
        assert turns[-1].question_number == 2

    @pytest.mark.asyncio
    async def test_no_llm_uses_hints(self, store):
        engine = ConversationEngine(store)
        started = await engine.start_conversation("user-1")

        snapshot = await engine.answer(started.conversation_id, text="Busy days.")

        assert snapshot.message.startswith(
            "That sounds interesting! What part of your day do you look forward to most?"
        )
        conversation = await store.get_conversation(started.conversation_id)
        assert conversation.hints_used == 0

    @pytest.mark.asyncio
    async def test_no_llm_interview_asks_each_question_before_recording_answers(self, store, check_invariants):
        engine = ConversationEngine(store)
        started = await engine.start_conversation("user-1")

        messages = []
        for text in ("Busy days.", "Denver, and I love it.", "I'm a nurse."):
            messages.append((await engine.answer(started.conversation_id, text=text)).message)

        assert messages[0].endswith("Where are you currently based, and how do you feel about where you live?")
        assert messages[1].startswith("What do you love most about living there?")
        assert messages[1].endswith("Tell me about your work or what keeps you busy these days.")

        turns = await store.list_turns(started.conversation_id)
        asked = {t.question_id for t in turns if t.role == "assistant"}
        answered = [t.question_id for t in turns if t.role == "user"]
        assert answered == ["ch1_q1", "ch1_q2", "ch1_q3"]
        assert set(answered) <= asked
        await check_invariants(started.conversation_id)

    @pytest.mark.asyncio
    async def test_chapter_transition_inserted_once(self, store, check_invariants):
        engine = ConversationEngine(store, llm=cue_llm())
        started = await engine.start_conversation("user-1")

        snapshot = None
        for index in range(7):
            snapshot = await engine.answer(started.conversation_id, text=f"Answer {index}")

        assert snapshot.current_question_number == 8
        assert snapshot.current_question_id == "ch2_q1"
        assert snapshot.current_chapter == 2
        assert snapshot.chapter_transition is True
        assert "📖 **Chapter 2: Your Story**" in snapshot.message

        snapshot = await engine.answer(started.conversation_id, text="Grew up in Ohio.")
        assert snapshot.chapter_transition is False

        turns = await store.list_turns(started.conversation_id)
        transitions = [t for t in turns if t.kind == "chapter_transition"]
        assert len(transitions) == 1
        assert transitions[0].chapter == 2
        await check_invariants(started.conversation_id)

    @pytest.mark.asyncio
    async def test_empty_answer_is_rejected_without_side_effects(self, store):
        engine = ConversationEngine(store, llm=cue_llm())
        started = await engine.start_conversation("user-1")
        commits = store.commits

        with pytest.raises(InvalidInputError):
            await engine.answer(started.conversation_id, text="   ")

        assert len(await store.list_turns(started.conversation_id)) == 1
        assert store.jobs == {}
        assert store.commits == commits

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, store):
        with pytest.raises(ConversationNotFoundError):
            await ConversationEngine(store).answer(uuid.uuid4(), text="hello")

    @pytest.mark.asyncio
    async def test_closed_conversation_rejects_answers(self, store):
        engine = ConversationEngine(store, llm=cue_llm())
        started = await engine.start_conversation("user-1")
        await engine.abandon(started.conversation_id)

        with pytest.raises(ConversationClosedError):
            await engine.answer(started.conversation_id, text="Still here")

        assert len(await store.list_turns(started.conversation_id)) == 1

    @pytest.mark.asyncio
    async def test_abandon_twice_raises(self, store):
        engine = ConversationEngine(store)
        started = await engine.start_conversation("user-1")
        snapshot = await engine.abandon(started.conversation_id)
        assert snapshot.status == "abandoned"

        with pytest.raises(ConversationClosedError):
            await engine.abandon(started.conversation_id)

    @pytest.mark.asyncio
    async def test_concurrent_answers_are_serialized(self, store, check_invariants):
        engine = ConversationEngine(store, llm=cue_llm())
        started = await engine.start_conversation("user-1")

        await asyncio.gather(
            engine.answer(started.conversation_id, text="First"),
            engine.answer(started.conversation_id, text="Second"),
        )

        conversation = await store.get_conversation(started.conversation_id)
        assert conversation.current_question_number == 3
        assert len(await store.list_turns(started.conversation_id)) == 5
        await check_invariants(started.conversation_id)

    @pytest.mark.asyncio
    async def test_conversation_locks_are_released(self, store):
        engine = ConversationEngine(store, llm=cue_llm())
        conversation_ids = []
        for index in range(20):
            started = await engine.start_conversation(f"user-{index}")
            await engine.answer(started.conversation_id, text="Hello there")
            await engine.abandon(started.conversation_id)
            conversation_ids.append(started.conversation_id)

        gc.collect()
        assert not any(conversation_id in _CONVERSATION_LOCKS for conversation_id in conversation_ids)


# ============================================================================
# completion
# ============================================================================

class TestCompletion:
    @pytest.mark.asyncio
    async def test_full_interview_completes(self, store, check_invariants):
        engine = ConversationEngine(store, llm=cue_llm())
        started = await engine.start_conversation("user-1", user_name="Sam")

        snapshot = await answer_all_interview_questions(engine, started.conversation_id)

        assert snapshot.status == "completed"
        assert snapshot.is_complete is True
        assert snapshot.current_question_number == 50
        assert snapshot.current_question_id is None
        assert snapshot.questions_answered == 49
        assert snapshot.progress == 100.0
        assert "Thank you so much for sharing all of that with me, Sam! 🎉" in snapshot.message

        turns = await store.list_turns(started.conversation_id)
        assert len(turns) == 1 + 49 * 2 + 6 + 1
        assert turns[-1].kind == "completion"
        assert len([t for t in turns if t.kind == "chapter_transition"]) == 6
        await check_invariants(started.conversation_id)

    @pytest.mark.asyncio
    async def test_answer_after_completion_is_rejected(self, store):
        engine = ConversationEngine(store, llm=cue_llm())
        started = await engine.start_conversation("user-1")
        await answer_all_interview_questions(engine, started.conversation_id)

        with pytest.raises(ConversationClosedError):
            await engine.answer(started.conversation_id, text="One more thing")

    @pytest.mark.asyncio
    async def test_activation_waits_for_extraction_jobs(self, store):
        engine = ConversationEngine(store, llm=cue_llm())
        started = await engine.start_conversation("user-1")
        await answer_all_interview_questions(engine, started.conversation_id)

        assert store.users["user-1"].status == "pending"
        status = await engine.status(started.conversation_id)
        assert status.message == "49 extraction jobs pending"

        for job in store.jobs.values():
            job.status = "applied"
        assert await ActivationGate(store).try_activate(started.conversation_id) is True
        assert store.users["user-1"].status == "active"


# ============================================================================
# questionnaire mode
# ============================================================================

class TestQuestionnaire:
    @pytest.mark.asyncio
    async def test_start_offers_answer_options(self, store):
        snapshot = await ConversationEngine(store).start_conversation("user-1", mode="questionnaire")

        assert snapshot.current_question_id == "intro_energy"
        assert snapshot.total_questions == 11
        assert snapshot.message.endswith("How do you typically recharge after a long week?")
        assert [o["id"] for o in snapshot.answer_options] == [
            "social_recharge", "quiet_recharge", "mixed_recharge",
        ]

    @pytest.mark.asyncio
    async def test_answer_branches_and_applies_traits(self, store):
        enqueued = []
        engine = ConversationEngine(store, enqueue_extraction=enqueued.append)
        started = await engine.start_conversation("user-1", mode="questionnaire")

        snapshot = await engine.answer(started.conversation_id, answer_id="quiet_recharge")

        assert snapshot.current_question_id == "alone_activities"
        assert snapshot.message == "What do you enjoy doing in your alone time?"
        assert len(snapshot.answer_options) == 4
        assert enqueued == []

        profile = store.profiles["user-1"]
        assert profile.frameworks["big_five"]["extraversion"]["value"] == 25.0
        assert "user-1" not in store.screenings

    @pytest.mark.asyncio
    async def test_invalid_option_is_rejected(self, store):
        engine = ConversationEngine(store)
        started = await engine.start_conversation("user-1", mode="questionnaire")

        with pytest.raises(InvalidInputError):
            await engine.answer(started.conversation_id, answer_id="party_animal")
        assert len(await store.list_turns(started.conversation_id)) == 1

    @pytest.mark.asyncio
    async def test_full_questionnaire_completes_and_activates(self, store, check_invariants):
        engine = ConversationEngine(store)
        started = await engine.start_conversation("user-1", mode="questionnaire")
        conversation_id = started.conversation_id

        for answer_id in ("quiet_recharge", "learning_solo", "plan_ahead", "organized_minimal"):
            snapshot = await engine.answer(conversation_id, answer_id=answer_id)

        snapshot = await engine.answer(conversation_id, answer_id="pattern_secure")
        assert snapshot.current_question_id == "conflict_style"
        assert snapshot.chapter_transition is False

        snapshot = await engine.answer(conversation_id, answer_id="direct_conflict")
        assert snapshot.current_question_id == "values_family"
        assert snapshot.chapter_transition is True
        assert [o["id"] for o in snapshot.answer_options] == [str(n) for n in range(1, 11)]

        snapshot = await engine.answer(conversation_id, answer_id="8")
        assert snapshot.current_question_id == "children_desire"

        snapshot = await engine.answer(conversation_id, answer_id="definitely_want")
        assert snapshot.current_question_id == "life_priorities"
        assert snapshot.answer_options == []

        snapshot = await engine.answer(conversation_id, text="Family, health, travel")

        assert snapshot.status == "completed"
        assert snapshot.current_question_number == 12
        assert snapshot.progress == 100.0
        assert store.users["user-1"].status == "active"

        turns = await store.list_turns(conversation_id)
        scale_turn = next(t for t in turns if t.question_id == "values_family" and t.role == "user")
        assert scale_turn.content == "8 / 10"
        assert scale_turn.answer_id == "8"

        profile = store.profiles["user-1"]
        assert profile.frameworks["mbti"]["j_p"]["value"] == "j"
        assert profile.frameworks["attachment"]["style"]["value"] == "secure"
        await check_invariants(conversation_id)


def test_question_context_searches_all_catalogs():
    text, targets = question_context("ch1_q4")
    assert text == "Outside of work, what do you do for fun?"
    assert "interests" in targets

    assert question_context("weekend_plans")[0] == "When you have a free weekend, do you..."
    assert question_context("nope") == ("", ())
    assert question_context(None) == ("", ())
