"""
API endpoints for the conversational intake.

Provides endpoints for:
- Starting (or resuming) an interview / questionnaire conversation
- Answering the current question
- Conversation status and full turn history
- Questionnaire trait summary
- Abandoning a conversation
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException

from intake_backend.api_deps import (
    get_extraction_enqueue,
    get_llm_client,
    get_record_store,
    to_http_error,
)
from intake_backend.schemas import (
    AnswerRequest,
    ConversationResponse,
    HistoryResponse,
    QuestionnaireTraitsResponse,
    StartConversationRequest,
    TurnResponse,
)
from intake_backend.services.conversation_engine import ConversationEngine, ConversationSnapshot
from intake_backend.services.errors import IntakeError
from intake_backend.services.llm_client import LLMClient
from intake_backend.services.record_store import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversation", tags=["conversation"])


def _to_response(snapshot: ConversationSnapshot) -> ConversationResponse:
    return ConversationResponse(
        conversation_id=str(snapshot.conversation_id),
        user_id=snapshot.user_id,
        mode=snapshot.mode,
        status=snapshot.status,
        message=snapshot.message,
        is_complete=snapshot.is_complete,
        current_question_number=snapshot.current_question_number,
        total_questions=snapshot.total_questions,
        current_chapter=snapshot.current_chapter,
        current_question_id=snapshot.current_question_id,
        questions_answered=snapshot.questions_answered,
        progress=snapshot.progress,
        chapter_transition=snapshot.chapter_transition,
        resumed=snapshot.resumed,
        answer_options=snapshot.answer_options,
    )


@router.get("/health", tags=["health"])
async def health_check():
    return {
        "status": "healthy",
        "service": "conversation_api",
        "timestamp": datetime.now().isoformat(),
    }


@router.post("/start", response_model=ConversationResponse)
async def start_conversation(
    request: StartConversationRequest,
    store: RecordStore = Depends(get_record_store),
):
    """Start a conversation for a user, or resume the one already in progress."""
    try:
        engine = ConversationEngine(store)
        snapshot = await engine.start_conversation(request.user_id, request.mode, request.user_name)
        return _to_response(snapshot)
    except IntakeError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("[CONVERSATION] Failed to start conversation for %s", request.user_id)
        raise HTTPException(status_code=500, detail=f"Failed to start conversation: {str(e)}")


@router.post("/{conversation_id}/answer", response_model=ConversationResponse)
async def answer_question(
    conversation_id: uuid.UUID,
    request: AnswerRequest,
    store: RecordStore = Depends(get_record_store),
    llm: LLMClient = Depends(get_llm_client),
    enqueue: Optional[Callable[[uuid.UUID], None]] = Depends(get_extraction_enqueue),
):
    """
    Submit the user's answer to the current question.

    Interview mode takes `message`; questionnaire mode takes `answer_id`
    (or `message` for free-text questions). The reply never waits on
    trait extraction.
    """
    try:
        engine = ConversationEngine(store, llm=llm, enqueue_extraction=enqueue)
        snapshot = await engine.answer(conversation_id, request.message, request.answer_id)
        return _to_response(snapshot)
    except IntakeError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("[CONVERSATION] Failed to process answer for %s", conversation_id)
        raise HTTPException(status_code=500, detail=f"Failed to process answer: {str(e)}")


@router.get("/{conversation_id}/status", response_model=ConversationResponse)
async def conversation_status(
    conversation_id: uuid.UUID,
    store: RecordStore = Depends(get_record_store),
):
    try:
        snapshot = await ConversationEngine(store).status(conversation_id)
        return _to_response(snapshot)
    except IntakeError as e:
        raise to_http_error(e)


@router.get("/{conversation_id}/history", response_model=HistoryResponse)
async def conversation_history(
    conversation_id: uuid.UUID,
    store: RecordStore = Depends(get_record_store),
):
    try:
        turns = await ConversationEngine(store).history(conversation_id)
    except IntakeError as e:
        raise to_http_error(e)

    return HistoryResponse(
        conversation_id=str(conversation_id),
        turns=[
            TurnResponse(
                id=str(t.id),
                sequence_number=t.sequence_number,
                role=t.role,
                kind=t.kind,
                content=t.content,
                question_id=t.question_id,
                question_number=t.question_number,
                chapter=t.chapter,
                answer_id=t.answer_id,
                created_at=t.created_at,
            )
            for t in turns
        ],
        count=len(turns),
    )


@router.get("/{conversation_id}/traits", response_model=QuestionnaireTraitsResponse)
async def questionnaire_traits(
    conversation_id: uuid.UUID,
    store: RecordStore = Depends(get_record_store),
):
    """Trait scores averaged over the questionnaire options chosen so far."""
    try:
        traits = await ConversationEngine(store).questionnaire_traits(conversation_id)
    except IntakeError as e:
        raise to_http_error(e)
    return QuestionnaireTraitsResponse(conversation_id=str(conversation_id), traits=traits)

@router.post("/{conversation_id}/abandon", response_model=ConversationResponse)
async def abandon_conversation(
    conversation_id: uuid.UUID,
    store: RecordStore = Depends(get_record_store),
):
    try:
        snapshot = await ConversationEngine(store).abandon(conversation_id)
        return _to_response(snapshot)
    except IntakeError as e:
        raise to_http_error(e)
