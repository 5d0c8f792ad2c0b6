"""
Record store contract used by every intake service, plus the SQLAlchemy
implementation backing the API.

Services only see `RecordStore`; tests run against the in-memory store in
tests/conftest.py.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional, Sequence
import uuid

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from intake_backend.models import (
    AppSetting,
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

UNSETTLED_JOB_STATUSES = ("pending", "running")


class RecordStore(ABC):
    """Simple get/put/upsert access to intake records."""

    # Users
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserAccount]: ...

    @abstractmethod
    async def put_user(self, user: UserAccount) -> None: ...

    # Conversations
    @abstractmethod
    async def get_conversation(self, conversation_id: uuid.UUID) -> Optional[Conversation]: ...

    @abstractmethod
    async def find_conversation_for_user(self, user_id: str, mode: str) -> Optional[Conversation]:
        """Most recent non-abandoned conversation of a user in a mode."""

    @abstractmethod
    async def put_conversation(self, conversation: Conversation) -> None: ...

    @abstractmethod
    async def advance_conversation(self, conversation: Conversation, expected_question_number: int,
                                   changes: Dict[str, Any]) -> bool:
        """Apply `changes` only if the conversation is still in progress at
        `expected_question_number`. Returns False when another writer got there first."""

    # Turns
    @abstractmethod
    async def add_turn(self, turn: Turn) -> None: ...

    @abstractmethod
    async def get_turn(self, turn_id: uuid.UUID) -> Optional[Turn]: ...

    @abstractmethod
    async def list_turns(self, conversation_id: uuid.UUID) -> List[Turn]:
        """Turns ordered by sequence number."""

    @abstractmethod
    async def count_turns_for_question(self, conversation_id: uuid.UUID, question_number: int) -> int: ...

    # Raw extraction records (source of truth)
    @abstractmethod
    async def replace_turn_extractions(self, turn_id: uuid.UUID, rows: Sequence[TurnExtraction]) -> None: ...

    @abstractmethod
    async def list_extractions_for_user(self, user_id: str) -> List[TurnExtraction]: ...

    @abstractmethod
    async def replace_turn_safety_signals(self, turn_id: uuid.UUID, rows: Sequence[TurnSafetySignal]) -> None: ...

    @abstractmethod
    async def list_safety_signals_for_user(self, user_id: str) -> List[TurnSafetySignal]: ...

    # Extraction jobs
    @abstractmethod
    async def get_extraction_job(self, turn_id: uuid.UUID) -> Optional[ExtractionJob]: ...

    @abstractmethod
    async def put_extraction_job(self, job: ExtractionJob) -> None: ...

    @abstractmethod
    async def count_unsettled_jobs(self, conversation_id: uuid.UUID) -> int: ...

    @abstractmethod
    async def list_unsettled_jobs(self) -> List[ExtractionJob]: ...

    # Derived caches
    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    @abstractmethod
    async def put_profile(self, profile: Profile) -> None: ...

    @abstractmethod
    async def get_safety_screening(self, user_id: str) -> Optional[SafetyScreening]: ...

    @abstractmethod
    async def put_safety_screening(self, screening: SafetyScreening) -> None: ...

    # Scoring
    @abstractmethod
    async def get_scored_record(self, entity_id: str, scorer: str) -> Optional[ScoredRecord]: ...

    @abstractmethod
    async def put_scored_record(self, record: ScoredRecord) -> None: ...

    # Settings
    @abstractmethod
    async def get_setting(self, key: str) -> Optional[Any]: ...

    @abstractmethod
    async def commit(self) -> None: ...


StoreScope = Callable[[], AsyncContextManager[RecordStore]]


class SqlAlchemyRecordStore(RecordStore):
    def __init__(self, session: AsyncSession):
        self.db = session

    async def _add(self, obj) -> None:
        self.db.add(obj)
        await self.db.flush()

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        return await self.db.get(UserAccount, user_id)

    async def put_user(self, user: UserAccount) -> None:
        await self._add(user)

    async def get_conversation(self, conversation_id: uuid.UUID) -> Optional[Conversation]:
        return await self.db.get(Conversation, conversation_id)

    async def find_conversation_for_user(self, user_id: str, mode: str) -> Optional[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(
                Conversation.user_id == user_id,
                Conversation.mode == mode,
                Conversation.status != 'abandoned',
            )
            .order_by(Conversation.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def put_conversation(self, conversation: Conversation) -> None:
        await self._add(conversation)

    async def advance_conversation(self, conversation: Conversation, expected_question_number: int,
                                   changes: Dict[str, Any]) -> bool:
        result = await self.db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation.id,
                Conversation.current_question_number == expected_question_number,
                Conversation.status == 'in_progress',
            )
            .values(**changes)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def add_turn(self, turn: Turn) -> None:
        await self._add(turn)

    async def get_turn(self, turn_id: uuid.UUID) -> Optional[Turn]:
        return await self.db.get(Turn, turn_id)

    async def list_turns(self, conversation_id: uuid.UUID) -> List[Turn]:
        result = await self.db.execute(
            select(Turn)
            .where(Turn.conversation_id == conversation_id)
            .order_by(Turn.sequence_number)
        )
        return list(result.scalars().all())

    async def count_turns_for_question(self, conversation_id: uuid.UUID, question_number: int) -> int:
        result = await self.db.execute(
            select(func.count(Turn.id)).where(
                Turn.conversation_id == conversation_id,
                Turn.question_number == question_number,
            )
        )
        return int(result.scalar_one())

    async def replace_turn_extractions(self, turn_id: uuid.UUID, rows: Sequence[TurnExtraction]) -> None:
        await self.db.execute(delete(TurnExtraction).where(TurnExtraction.turn_id == turn_id))
        self.db.add_all(list(rows))
        await self.db.flush()

    async def list_extractions_for_user(self, user_id: str) -> List[TurnExtraction]:
        result = await self.db.execute(
            select(TurnExtraction)
            .where(TurnExtraction.user_id == user_id)
            .order_by(TurnExtraction.turn_sequence, TurnExtraction.framework)
        )
        return list(result.scalars().all())

    async def replace_turn_safety_signals(self, turn_id: uuid.UUID, rows: Sequence[TurnSafetySignal]) -> None:
        await self.db.execute(delete(TurnSafetySignal).where(TurnSafetySignal.turn_id == turn_id))
        self.db.add_all(list(rows))
        await self.db.flush()

    async def list_safety_signals_for_user(self, user_id: str) -> List[TurnSafetySignal]:
        result = await self.db.execute(
            select(TurnSafetySignal)
            .where(TurnSafetySignal.user_id == user_id)
            .order_by(TurnSafetySignal.turn_sequence, TurnSafetySignal.signal_index)
        )
        return list(result.scalars().all())

    async def get_extraction_job(self, turn_id: uuid.UUID) -> Optional[ExtractionJob]:
        return await self.db.get(ExtractionJob, turn_id)

    async def put_extraction_job(self, job: ExtractionJob) -> None:
        await self._add(job)

    async def count_unsettled_jobs(self, conversation_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(ExtractionJob.turn_id)).where(
                ExtractionJob.conversation_id == conversation_id,
                ExtractionJob.status.in_(UNSETTLED_JOB_STATUSES),
            )
        )
        return int(result.scalar_one())

    async def list_unsettled_jobs(self) -> List[ExtractionJob]:
        result = await self.db.execute(
            select(ExtractionJob)
            .where(ExtractionJob.status.in_(UNSETTLED_JOB_STATUSES))
            .order_by(ExtractionJob.enqueued_at)
        )
        return list(result.scalars().all())

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return await self.db.get(Profile, user_id)

    async def put_profile(self, profile: Profile) -> None:
        await self._add(profile)

    async def get_safety_screening(self, user_id: str) -> Optional[SafetyScreening]:
        return await self.db.get(SafetyScreening, user_id)

    async def put_safety_screening(self, screening: SafetyScreening) -> None:
        await self._add(screening)

    async def get_scored_record(self, entity_id: str, scorer: str) -> Optional[ScoredRecord]:
        result = await self.db.execute(
            select(ScoredRecord).where(
                ScoredRecord.entity_id == entity_id,
                ScoredRecord.scorer == scorer,
            )
        )
        return result.scalar_one_or_none()

    async def put_scored_record(self, record: ScoredRecord) -> None:
        await self._add(record)

    async def get_setting(self, key: str) -> Optional[Any]:
        result = await self.db.execute(select(AppSetting).where(AppSetting.key == key))
        setting = result.scalar_one_or_none()
        return setting.value if setting else None

    async def commit(self) -> None:
        await self.db.commit()


@asynccontextmanager
async def sql_store_scope() -> AsyncIterator[RecordStore]:
    """Session-scoped store for background work; commits on success."""
    from intake_backend.db_session import get_async_session_context

    async with get_async_session_context() as session:
        store = SqlAlchemyRecordStore(session)
        try:
            yield store
            await session.commit()
        except Exception:
            await session.rollback()
            raise
