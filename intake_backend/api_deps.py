"""FastAPI dependencies and error translation shared by the intake routers."""

import uuid
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from intake_backend.db_session import get_async_session
from intake_backend.services.errors import (
    ConversationClosedError,
    ConversationNotFoundError,
    IntakeError,
    ScorerConfigError,
)
from intake_backend.services.llm_client import LLMClient
from intake_backend.services.llm_config import load_llm_config
from intake_backend.services.record_store import RecordStore, SqlAlchemyRecordStore


async def get_record_store(db: AsyncSession = Depends(get_async_session)) -> RecordStore:
    return SqlAlchemyRecordStore(db)


async def get_llm_client(store: RecordStore = Depends(get_record_store)) -> LLMClient:
    return LLMClient(await load_llm_config(store))


def get_extraction_enqueue(request: Request) -> Optional[Callable[[uuid.UUID], None]]:
    """The running worker pool's enqueue, or None (jobs stay pending until the next start)."""
    queue = getattr(request.app.state, "extraction_queue", None)
    if queue is None or not queue.running:
        return None
    return queue.enqueue


def to_http_error(exc: IntakeError) -> HTTPException:
    if isinstance(exc, ConversationNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConversationClosedError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ScorerConfigError):
        return HTTPException(status_code=404, detail=str(exc))
    # InvalidInputError, UnknownQuestionError
    return HTTPException(status_code=400, detail=str(exc))
