"""
Background extraction queue.

The conversation engine records an ExtractionJob (keyed by the user turn id)
and enqueues the id; workers run the Turn Extractor and apply the results.
Applying is idempotent: a turn's readings and signals are replaced, never
appended, and an already-applied job is skipped. The LLM call happens outside
any database session.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from intake_backend.config import EXTRACTION_WORKERS
from intake_backend.models import ExtractionJob, Turn, TurnExtraction
from intake_backend.services.aggregation_engine import ProfileAggregator
from intake_backend.services.record_store import RecordStore, StoreScope
from intake_backend.services.safety_screening import SafetyScreeningEngine
from intake_backend.services.turn_extractor import (
    ExtractionOutcome,
    ExtractionResult,
    SafetySignal,
    TurnExtractor,
)
from intake_backend.services.user_status import ActivationGate

logger = logging.getLogger(__name__)

ExtractorFactory = Callable[[RecordStore], Awaitable[TurnExtractor]]
# question id -> (question text, extraction targets)
QuestionLookup = Callable[[Optional[str]], Tuple[str, Tuple[str, ...]]]


@dataclass
class ExtractionRequest:
    turn_id: uuid.UUID
    conversation_id: uuid.UUID
    user_id: str
    turn_text: str
    question_text: str
    extraction_targets: Tuple[str, ...]
    history: List[Tuple[str, str]]


def new_extraction_job(turn: Turn, user_id: str) -> ExtractionJob:
    return ExtractionJob(
        turn_id=turn.id,
        conversation_id=turn.conversation_id,
        user_id=user_id,
        status='pending',
        attempts=0,
        needs_follow_up=False,
        enqueued_at=datetime.now(timezone.utc),
    )


def build_history(turns: Sequence[Turn], before_sequence: int,
                  question_lookup: QuestionLookup) -> List[Tuple[str, str]]:
    """Prior (question, answer) pairs for the user turns before `before_sequence`."""
    history = []
    for turn in turns:
        if turn.sequence_number >= before_sequence:
            break
        if turn.role == 'user':
            history.append((question_lookup(turn.question_id)[0], turn.content))
    return history


async def apply_extraction(store: RecordStore, turn: Turn, user_id: str,
                           extractions: Sequence[ExtractionResult],
                           safety_flags: Sequence[SafetySignal],
                           source: str = 'llm') -> None:
    """Write one turn's readings and signals, then rebuild the derived caches."""
    rows = [
        TurnExtraction(
            id=uuid.uuid4(),
            turn_id=turn.id,
            conversation_id=turn.conversation_id,
            user_id=user_id,
            turn_sequence=turn.sequence_number,
            turn_created_at=turn.created_at,
            framework=result.framework,
            traits=result.traits,
            source=source,
        )
        for result in extractions
    ]
    await store.replace_turn_extractions(turn.id, rows)
    await SafetyScreeningEngine(store).record_signals(user_id, turn, safety_flags)
    await ProfileAggregator(store).reaggregate(user_id)


class ExtractionQueue:
    def __init__(
        self,
        store_scope: StoreScope,
        extractor_factory: ExtractorFactory,
        question_lookup: QuestionLookup,
        workers: int = EXTRACTION_WORKERS,
        gate_factory: Optional[Callable[[RecordStore], ActivationGate]] = None,
    ):
        self.store_scope = store_scope
        self.extractor_factory = extractor_factory
        self.question_lookup = question_lookup
        self.workers = max(1, workers)
        self.gate_factory = gate_factory or ActivationGate
        self._queue: "asyncio.Queue[uuid.UUID]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self, recover: bool = True) -> None:
        if self._tasks:
            logger.warning("[EXTRACTION] Queue already running")
            return
        if recover:
            await self._recover_unsettled()
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"extraction-worker-{index}")
            for index in range(self.workers)
        ]
        logger.info("[EXTRACTION] Started %d workers", self.workers)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("[EXTRACTION] Workers stopped")

    def enqueue(self, turn_id: uuid.UUID) -> None:
        self._queue.put_nowait(turn_id)

    async def drain(self) -> None:
        """Wait until every enqueued job has been handled."""
        await self._queue.join()

    async def _recover_unsettled(self) -> None:
        async with self.store_scope() as store:
            jobs = await store.list_unsettled_jobs()
        for job in jobs:
            self._queue.put_nowait(job.turn_id)
        if jobs:
            logger.info("[EXTRACTION] Re-enqueued %d unsettled jobs", len(jobs))

    async def _worker(self, index: int) -> None:
        while True:
            turn_id = await self._queue.get()
            try:
                await self.process(turn_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("[EXTRACTION] Worker %d failed on turn %s", index, turn_id)
                await self._settle_failed(turn_id, repr(exc))
            finally:
                self._queue.task_done()

    async def _settle_failed(self, turn_id: uuid.UUID, error: str) -> None:
        try:
            async with self.store_scope() as store:
                job = await store.get_extraction_job(turn_id)
                if job is None or job.status == 'applied':
                    return
                job.status = 'failed'
                job.error_message = error
                job.completed_at = datetime.now(timezone.utc)
                await store.put_extraction_job(job)
                await self.gate_factory(store).try_activate(job.conversation_id)
        except Exception:
            logger.exception("[EXTRACTION] Could not settle failed job for turn %s", turn_id)

    async def _claim(self, turn_id: uuid.UUID) -> Optional[ExtractionRequest]:
        async with self.store_scope() as store:
            job = await store.get_extraction_job(turn_id)
            if job is None or job.status in ('applied', 'failed'):
                return None
            turn = await store.get_turn(turn_id)
            if turn is None:
                logger.warning("[EXTRACTION] Turn %s vanished; dropping job", turn_id)
                return None
            turns = await store.list_turns(turn.conversation_id)
            job.status = 'running'
            job.attempts = (job.attempts or 0) + 1
            await store.put_extraction_job(job)
            question_text, targets = self.question_lookup(turn.question_id)
            return ExtractionRequest(
                turn_id=turn.id,
                conversation_id=turn.conversation_id,
                user_id=job.user_id,
                turn_text=turn.content,
                question_text=question_text,
                extraction_targets=tuple(targets),
                history=build_history(turns, turn.sequence_number, self.question_lookup),
            )

    async def process(self, turn_id: uuid.UUID) -> Optional[ExtractionOutcome]:
        """Idempotent handler for one job."""
        request = await self._claim(turn_id)
        if request is None:
            return None

        async with self.store_scope() as store:
            extractor = await self.extractor_factory(store)
        outcome = await extractor.extract(
            request.turn_text,
            request.history,
            question_text=request.question_text,
            extraction_targets=request.extraction_targets,
        )

        async with self.store_scope() as store:
            turn = await store.get_turn(request.turn_id)
            job = await store.get_extraction_job(request.turn_id)
            if turn is None or job is None:
                return outcome
            await apply_extraction(store, turn, request.user_id, outcome.extractions, outcome.safety_flags)

            job.status = 'failed' if outcome.failed else 'applied'
            job.error_message = outcome.error
            job.needs_follow_up = outcome.needs_follow_up
            job.follow_up_suggestion = outcome.follow_up_suggestion
            job.completed_at = datetime.now(timezone.utc)
            await store.put_extraction_job(job)

            if outcome.failed:
                logger.warning(
                    "[EXTRACTION] conversation=%s turn=%s failed open: %s",
                    request.conversation_id, request.turn_id, outcome.error,
                )
            else:
                logger.info(
                    "[EXTRACTION] conversation=%s turn=%s frameworks=%d flags=%d",
                    request.conversation_id, request.turn_id,
                    len(outcome.extractions), len(outcome.safety_flags),
                )

            await self.gate_factory(store).try_activate(request.conversation_id)
        return outcome
