"""
Conversation State Machine

States: in_progress(chapter, question) -> completed | abandoned.

start     create the conversation at question 1 and emit the opening message
answer    append the user turn, hand extraction to the background queue,
          reply, then let the AdvancePolicy decide whether to move on
advance   compare-and-set on current_question_number, so a chapter transition
          is written at most once per boundary
complete  when the catalog has no next question: status=completed,
          current_question_number = total + 1, closing message, final
          aggregation and an activation attempt

Answers for one conversation are serialized by a per-conversation lock that
lives only while a request holds or awaits it; different conversations proceed
in parallel. Across processes the compare-and-set in advance is the guard.
The user-visible reply never waits on extraction.
"""

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from intake_backend.config import REPLY_MAX_TOKENS, REPLY_TIMEOUT_SECONDS
from intake_backend.models import Conversation, Turn, UserAccount
from intake_backend.services.advance_policy import (
    AdvancePolicy,
    AlwaysAdvancePolicy,
    MessageCountPolicy,
)
from intake_backend.services.aggregation_engine import ProfileAggregator
from intake_backend.services.conversation_messages import (
    chapter_transition_message,
    completion_message,
    interviewer_system_prompt,
    opening_message,
)
from intake_backend.services.errors import (
    ConversationClosedError,
    ConversationNotFoundError,
    InvalidInputError,
    LLMCallError,
    UnknownQuestionError,
)
from intake_backend.services.extraction_queue import apply_extraction, new_extraction_job
from intake_backend.services.question_catalog import LinearCatalog, QuestionCatalog
from intake_backend.services.questionnaire import (
    ConditionalCatalog,
    answer_to_extractions,
    calculate_traits_from_answers,
)
from intake_backend.services.record_store import RecordStore
from intake_backend.services.turn_extractor import ExtractionResult
from intake_backend.services.user_status import ActivationGate

logger = logging.getLogger(__name__)

INTERVIEW = "interview"
QUESTIONNAIRE = "questionnaire"

CATALOGS: Dict[str, QuestionCatalog] = {
    INTERVIEW: LinearCatalog(),
    QUESTIONNAIRE: ConditionalCatalog(),
}

_CONVERSATION_LOCKS: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


def conversation_lock(conversation_id: uuid.UUID) -> asyncio.Lock:
    lock = _CONVERSATION_LOCKS.get(conversation_id)
    if lock is None:
        lock = _CONVERSATION_LOCKS[conversation_id] = asyncio.Lock()
    return lock


def question_context(question_id: Optional[str]) -> Tuple[str, Tuple[str, ...]]:
    """Question text and extraction targets for any catalog question id."""
    if question_id:
        for catalog in CATALOGS.values():
            try:
                question = catalog.get_question(question_id)
            except UnknownQuestionError:
                continue
            return question.text, tuple(question.extraction_targets)
    return "", ()


def default_policy(mode: str) -> AdvancePolicy:
    return AlwaysAdvancePolicy() if mode == QUESTIONNAIRE else MessageCountPolicy()


@dataclass
class ConversationSnapshot:
    conversation_id: uuid.UUID
    user_id: str
    mode: str
    status: str
    message: str
    is_complete: bool
    current_question_number: int
    total_questions: int
    current_chapter: int
    current_question_id: Optional[str]
    questions_answered: int
    progress: float
    chapter_transition: bool = False
    resumed: bool = False
    answer_options: List[Dict[str, Any]] = field(default_factory=list)


def _progress(conversation: Conversation) -> float:
    if not conversation.total_questions:
        return 0.0
    return round(conversation.questions_answered / conversation.total_questions * 100, 1)


class ConversationEngine:
    def __init__(
        self,
        store: RecordStore,
        llm=None,
        enqueue_extraction: Optional[Callable[[uuid.UUID], None]] = None,
        policy: Optional[AdvancePolicy] = None,
        catalogs: Optional[Dict[str, QuestionCatalog]] = None,
        activation_gate: Optional[ActivationGate] = None,
        reply_timeout_seconds: float = REPLY_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.llm = llm
        self.enqueue_extraction = enqueue_extraction
        self.policy = policy
        self.catalogs = catalogs or CATALOGS
        self.activation_gate = activation_gate or ActivationGate(store)
        self.reply_timeout_seconds = reply_timeout_seconds

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def catalog_for(self, mode: str) -> QuestionCatalog:
        catalog = self.catalogs.get(mode)
        if catalog is None:
            raise InvalidInputError(f"Unknown conversation mode: {mode}")
        return catalog

    def policy_for(self, mode: str) -> AdvancePolicy:
        return self.policy or default_policy(mode)

    async def _user_name(self, user_id: str) -> Optional[str]:
        user = await self.store.get_user(user_id)
        return user.first_name if user else None

    async def _next_sequence(self, conversation_id: uuid.UUID) -> int:
        turns = await self.store.list_turns(conversation_id)
        return turns[-1].sequence_number + 1 if turns else 1

    async def _append_turn(self, conversation: Conversation, role: str, content: str, kind: str = 'message',
                           question_id: Optional[str] = None, question_number: Optional[int] = None,
                           chapter: Optional[int] = None, answer_id: Optional[str] = None) -> Turn:
        turn = Turn(
            id=uuid.uuid4(),
            conversation_id=conversation.id,
            sequence_number=await self._next_sequence(conversation.id),
            role=role,
            kind=kind,
            content=content,
            question_id=question_id,
            question_number=question_number,
            chapter=chapter,
            answer_id=answer_id,
            created_at=datetime.now(timezone.utc),
        )
        await self.store.add_turn(turn)
        return turn

    def _answer_options(self, conversation: Conversation) -> List[Dict[str, Any]]:
        if conversation.mode != QUESTIONNAIRE or not conversation.current_question_id:
            return []
        question = self.catalog_for(conversation.mode).get_question(conversation.current_question_id)
        if question.kind == 'scale':
            return [{"id": str(value), "text": str(value)}
                    for value in range(question.scale_min, question.scale_max + 1)]
        return [{"id": answer.id, "text": answer.text} for answer in question.answers]

    def _snapshot(self, conversation: Conversation, message: str, **extra) -> ConversationSnapshot:
        return ConversationSnapshot(
            conversation_id=conversation.id,
            user_id=conversation.user_id,
            mode=conversation.mode,
            status=conversation.status,
            message=message,
            is_complete=conversation.status == 'completed',
            current_question_number=conversation.current_question_number,
            total_questions=conversation.total_questions,
            current_chapter=conversation.current_chapter,
            current_question_id=conversation.current_question_id,
            questions_answered=conversation.questions_answered,
            progress=_progress(conversation),
            answer_options=self._answer_options(conversation),
            **extra,
        )

    async def get_conversation(self, conversation_id: uuid.UUID) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start_conversation(self, user_id: str, mode: str = INTERVIEW,
                                 user_name: Optional[str] = None) -> ConversationSnapshot:
        user_id = (user_id or "").strip()
        if not user_id:
            raise InvalidInputError("user_id is required")
        catalog = self.catalog_for(mode)

        existing = await self.store.find_conversation_for_user(user_id, mode)
        if existing is not None:
            turns = await self.store.list_turns(existing.id)
            last_assistant = next((t.content for t in reversed(turns) if t.role == 'assistant'), "")
            return self._snapshot(existing, last_assistant, resumed=True)

        now = datetime.now(timezone.utc)
        user = await self.store.get_user(user_id)
        if user is None:
            user = UserAccount(id=user_id, first_name=user_name, status='pending', created_at=now)
            await self.store.put_user(user)
        elif user_name and not user.first_name:
            user.first_name = user_name
            await self.store.put_user(user)

        first_id = catalog.first_question_id()
        first_chapter = catalog.chapter_of(first_id)
        conversation = Conversation(
            id=uuid.uuid4(),
            user_id=user_id,
            mode=mode,
            status='in_progress',
            current_chapter=first_chapter.number,
            current_question_number=1,
            current_question_id=first_id,
            questions_answered=0,
            total_questions=catalog.total_questions,
            hints_used=0,
            started_at=now,
            updated_at=now,
        )
        await self.store.put_conversation(conversation)

        message = (
            opening_message(catalog.chapters(), user.first_name)
            + "\n\n"
            + catalog.get_question(first_id).text
        )
        await self._append_turn(
            conversation, 'assistant', message, kind='opening',
            question_id=first_id, question_number=1, chapter=first_chapter.number,
        )
        await self.store.commit()

        logger.info("[CONVERSATION] Started %s conversation %s for user %s", mode, conversation.id, user_id)
        return self._snapshot(conversation, message)

    # ------------------------------------------------------------------
    # answer
    # ------------------------------------------------------------------

    async def answer(self, conversation_id: uuid.UUID, text: Optional[str] = None,
                     answer_id: Optional[str] = None) -> ConversationSnapshot:
        conversation = await self.get_conversation(conversation_id)
        self._validate_answer(conversation, text, answer_id)

        async with conversation_lock(conversation.id):
            # Re-check under the lock; a concurrent answer may have completed it
            conversation = await self.get_conversation(conversation_id)
            if conversation.status != 'in_progress':
                raise ConversationClosedError(conversation.id, conversation.status)

            if conversation.mode == QUESTIONNAIRE:
                snapshot, job_turn_id = await self._answer_questionnaire(conversation, text, answer_id)
            else:
                snapshot, job_turn_id = await self._answer_interview(conversation, text.strip())
            await self.store.commit()

        if job_turn_id is not None and self.enqueue_extraction is not None:
            self.enqueue_extraction(job_turn_id)
        return snapshot

    def _validate_answer(self, conversation: Conversation, text: Optional[str], answer_id: Optional[str]) -> None:
        if conversation.status != 'in_progress':
            raise ConversationClosedError(conversation.id, conversation.status)
        if conversation.mode == QUESTIONNAIRE:
            catalog = self.catalog_for(QUESTIONNAIRE)
            catalog.resolve_answer(conversation.current_question_id, answer_id, text)
        elif not (text or "").strip():
            raise InvalidInputError("message text is required")

    async def _answer_interview(self, conversation: Conversation, text: str) -> Tuple[ConversationSnapshot, Optional[uuid.UUID]]:
        catalog = self.catalog_for(INTERVIEW)
        question = catalog.get_question(conversation.current_question_id)
        chapter = catalog.chapter_of(question.id)
        number = conversation.current_question_number

        user_turn = await self._append_turn(
            conversation, 'user', text,
            question_id=question.id, question_number=number, chapter=chapter.number,
        )
        await self.store.put_extraction_job(new_extraction_job(user_turn, conversation.user_id))

        reply, scripted = await self._generate_reply(conversation, question, chapter)
        await self.store.put_conversation(conversation)
        await self._append_turn(
            conversation, 'assistant', reply,
            question_id=question.id, question_number=number, chapter=chapter.number,
        )

        message_count = await self.store.count_turns_for_question(conversation.id, number)
        if not self.policy_for(INTERVIEW).should_advance(message_count, reply):
            return self._snapshot(conversation, reply), user_turn.id

        snapshot = await self._advance(
            conversation, catalog, question.id, None, chapter.number, reply, ask_next=scripted
        )
        return snapshot, user_turn.id

    async def _answer_questionnaire(self, conversation: Conversation, text: Optional[str],
                                    answer_id: Optional[str]) -> Tuple[ConversationSnapshot, Optional[uuid.UUID]]:
        catalog = self.catalog_for(QUESTIONNAIRE)
        question = catalog.get_question(conversation.current_question_id)
        chapter = catalog.chapter_of(question.id)
        number = conversation.current_question_number
        option, display_text = catalog.resolve_answer(question.id, answer_id, text)

        user_turn = await self._append_turn(
            conversation, 'user', display_text,
            question_id=question.id, question_number=number, chapter=chapter.number,
            answer_id=option.id if option else (str(answer_id) if answer_id else None),
        )
        if option is not None:
            extractions = [
                ExtractionResult(framework=framework, traits=traits)
                for framework, traits in sorted(answer_to_extractions(question, option).items())
            ]
            if extractions:
                await apply_extraction(
                    self.store, user_turn, conversation.user_id, extractions, [], source='questionnaire'
                )

        message_count = await self.store.count_turns_for_question(conversation.id, number)
        if not self.policy_for(QUESTIONNAIRE).should_advance(message_count, ""):
            return self._snapshot(conversation, ""), None
        snapshot = await self._advance(
            conversation, catalog, question.id, option.id if option else None, chapter.number, "", ask_next=True
        )
        return snapshot, None

    # ------------------------------------------------------------------
    # reply generation
    # ------------------------------------------------------------------

    async def _generate_reply(self, conversation: Conversation, question, chapter) -> Tuple[str, bool]:
        """Interviewer reply, and whether it came from the scripted fallback."""
        if self.llm is None:
            return self._fallback_reply(conversation, question), True

        turns = await self.store.list_turns(conversation.id)
        transcript = "\n".join(
            f"{'User' if t.role == 'user' else 'Assistant'}: {t.content}" for t in turns
        )
        system_prompt = interviewer_system_prompt(
            question.text,
            chapter,
            conversation.current_question_number,
            conversation.total_questions,
            await self._user_name(conversation.user_id),
        )
        user_prompt = (
            f"Conversation so far:\n{transcript}\n\n"
            "Reply as the interviewer to the user's latest message."
        )
        try:
            reply = await self.llm.complete(
                system_prompt,
                user_prompt,
                timeout_seconds=self.reply_timeout_seconds,
                max_tokens=REPLY_MAX_TOKENS,
                temperature=0.7,
            )
            return reply.strip(), False
        except LLMCallError as exc:
            logger.warning(
                "[CONVERSATION] Reply generation failed for %s, using fallback: %s",
                conversation.id, exc,
            )
            return self._fallback_reply(conversation, question), True

    def _fallback_reply(self, conversation: Conversation, question) -> str:
        hints = tuple(getattr(question, "follow_up_hints", ()) or ())
        used = conversation.hints_used or 0
        if used < len(hints):
            conversation.hints_used = used + 1
            return hints[used]
        return question.text

    # ------------------------------------------------------------------
    # advance / complete
    # ------------------------------------------------------------------

    async def _advance(self, conversation: Conversation, catalog: QuestionCatalog, question_id: str,
                       answer_id: Optional[str], chapter_number: int, reply: str,
                       ask_next: bool = False) -> ConversationSnapshot:
        number = conversation.current_question_number
        next_id = catalog.next_question(question_id, answer_id)
        if next_id is None:
            return await self._complete(conversation, number, reply)

        next_chapter = catalog.chapter_of(next_id)
        next_number = min(number + 1, conversation.total_questions)
        advanced = await self.store.advance_conversation(conversation, number, {
            "current_question_number": next_number,
            "current_question_id": next_id,
            "current_chapter": next_chapter.number,
            "questions_answered": number,
            "hints_used": 0,
            "updated_at": datetime.now(timezone.utc),
        })
        if not advanced:
            logger.info("[CONVERSATION] %s already advanced past question %d", conversation.id, number)
            return self._snapshot(conversation, reply)

        parts = [reply] if reply else []
        transition = next_chapter.number != chapter_number
        if transition:
            transition_text = chapter_transition_message(next_chapter)
            await self._append_turn(
                conversation, 'assistant', transition_text, kind='chapter_transition',
                question_id=next_id, question_number=next_number, chapter=next_chapter.number,
            )
            parts.append(transition_text)

        # Scripted replies never introduce the next question themselves
        if ask_next:
            next_text = catalog.get_question(next_id).text
            await self._append_turn(
                conversation, 'assistant', next_text,
                question_id=next_id, question_number=next_number, chapter=next_chapter.number,
            )
            parts.append(next_text)

        return self._snapshot(conversation, "\n\n".join(parts), chapter_transition=transition)

    async def _complete(self, conversation: Conversation, number: int, reply: str) -> ConversationSnapshot:
        now = datetime.now(timezone.utc)
        completed = await self.store.advance_conversation(conversation, number, {
            "status": 'completed',
            "current_question_number": conversation.total_questions + 1,
            "current_question_id": None,
            "questions_answered": conversation.total_questions,
            "completed_at": now,
            "updated_at": now,
        })
        if not completed:
            return self._snapshot(conversation, reply)

        closing = completion_message(await self._user_name(conversation.user_id))
        await self._append_turn(conversation, 'assistant', closing, kind='completion')
        logger.info("[CONVERSATION] Completed %s for user %s", conversation.id, conversation.user_id)

        await ProfileAggregator(self.store).reaggregate(conversation.user_id)
        await self.activation_gate.try_activate(conversation.id)

        message = "\n\n".join(part for part in (reply, closing) if part)
        return self._snapshot(conversation, message)

    # ------------------------------------------------------------------
    # admin / read side
    # ------------------------------------------------------------------

    async def abandon(self, conversation_id: uuid.UUID) -> ConversationSnapshot:
        conversation = await self.get_conversation(conversation_id)
        async with conversation_lock(conversation.id):
            if conversation.status != 'in_progress':
                raise ConversationClosedError(conversation.id, conversation.status)
            conversation.status = 'abandoned'
            conversation.updated_at = datetime.now(timezone.utc)
            await self.store.put_conversation(conversation)
            await self.store.commit()
        logger.info("[CONVERSATION] Abandoned %s", conversation.id)
        return self._snapshot(conversation, "")

    async def status(self, conversation_id: uuid.UUID) -> ConversationSnapshot:
        conversation = await self.get_conversation(conversation_id)
        pending = await self.store.count_unsettled_jobs(conversation.id)
        snapshot = self._snapshot(conversation, "")
        snapshot.message = f"{pending} extraction jobs pending" if pending else ""
        return snapshot

    async def history(self, conversation_id: uuid.UUID) -> List[Turn]:
        conversation = await self.get_conversation(conversation_id)
        return await self.store.list_turns(conversation.id)

    async def questionnaire_traits(self, conversation_id: uuid.UUID) -> Dict[str, Dict[str, float]]:
        """Raw trait scores averaged over the options chosen so far."""
        conversation = await self.get_conversation(conversation_id)
        if conversation.mode != QUESTIONNAIRE:
            raise InvalidInputError(f"Conversation {conversation.id} is not a questionnaire")
        turns = await self.store.list_turns(conversation.id)
        answers = {
            t.question_id: t.answer_id
            for t in turns
            if t.role == 'user' and t.question_id and t.answer_id
        }
        return calculate_traits_from_answers(answers, self.catalog_for(QUESTIONNAIRE))
