"""Shared Pydantic request/response models used across the intake routers."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# --- Conversation ---

class StartConversationRequest(BaseModel):
    user_id: str
    mode: str = "interview"  # 'interview' | 'questionnaire'
    user_name: Optional[str] = None

class AnswerRequest(BaseModel):
    message: Optional[str] = None
    answer_id: Optional[str] = None  # questionnaire mode

class AnswerOptionModel(BaseModel):
    id: str
    text: str

class ConversationResponse(BaseModel):
    conversation_id: str
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
    answer_options: List[AnswerOptionModel] = Field(default_factory=list)

class TurnResponse(BaseModel):
    id: str
    sequence_number: int
    role: str
    kind: str
    content: str
    question_id: Optional[str]
    question_number: Optional[int]
    chapter: Optional[int]
    answer_id: Optional[str] = None
    created_at: Optional[datetime] = None

class HistoryResponse(BaseModel):
    conversation_id: str
    turns: List[TurnResponse]
    count: int

class QuestionnaireTraitsResponse(BaseModel):
    conversation_id: str
    traits: Dict[str, Dict[str, float]]  # "framework:trait" -> {score, confidence}


# --- Profile / safety ---

class ProfileResponse(BaseModel):
    user_id: str
    frameworks: Dict[str, Any]
    framework_confidence: Dict[str, float]
    extraction_count: int
    audit: Optional[Dict[str, Any]] = None
    updated_at: Optional[datetime] = None

class ExtractionRecord(BaseModel):
    turn_id: str
    turn_sequence: int
    framework: str
    source: str
    traits: Dict[str, Any]

class ExtractionListResponse(BaseModel):
    user_id: str
    extractions: List[ExtractionRecord]
    count: int

class SafetyScreeningResponse(BaseModel):
    user_id: str
    overall_risk_level: str
    flagged_for_review: bool
    max_severity: float
    category_scores: Dict[str, float]
    signal_counts: Dict[str, int]
    evidence: List[Dict[str, Any]]
    flagged_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None


# --- Scoring ---

class ScoreRequest(BaseModel):
    entity_id: Optional[str] = None
    record: Dict[str, Any]
    persist: bool = True

class BatchScoreRequest(BaseModel):
    records: List[Dict[str, Any]]

class ScoreResponse(BaseModel):
    entity_id: Optional[str]
    scorer: str
    total: float
    breakdown: Dict[str, float]
    priority: str
    disqualified_by: Optional[str] = None

class BatchScoreResponse(BaseModel):
    scorer: str
    results: List[ScoreResponse]
    count: int

class ScorerInfo(BaseModel):
    name: str
    max_total: float
    high_threshold: float
    low_threshold: float
    sub_scorers: Dict[str, float]
    disqualifiers: List[str]

class ScorerListResponse(BaseModel):
    scorers: List[ScorerInfo]
