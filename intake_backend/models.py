"""
SQLAlchemy models for the conversational intake backend.

Raw records (turns, per-turn extractions, per-turn safety signals) are the
source of truth. Profile and SafetyScreening rows are caches rebuilt from them.
Portable column types are used so the schema runs on Postgres and SQLite.
"""

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Text, DateTime, JSON, Uuid,
    ForeignKey, Index, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()


class UserAccount(Base):
    """Minimal user record; the status sink flips it to active"""
    __tablename__ = "user_accounts"

    id = Column(Text, primary_key=True)
    first_name = Column(Text)
    status = Column(Text, nullable=False, default='pending')  # 'pending', 'active', 'suspended'
    activated_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'suspended')",
            name='valid_user_status'
        ),
    )


class Conversation(Base):
    """One interview session; the current question pointer lives here"""
    __tablename__ = "conversations"

    # Identity
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    mode = Column(Text, nullable=False, default='interview')  # 'interview', 'questionnaire'

    # Lifecycle
    status = Column(Text, nullable=False, default='in_progress')  # 'in_progress', 'completed', 'abandoned'

    # Progress
    current_chapter = Column(Integer, nullable=False, default=1)
    current_question_number = Column(Integer, nullable=False, default=1)
    current_question_id = Column(Text)
    questions_answered = Column(Integer, nullable=False, default=0)
    total_questions = Column(Integer, nullable=False)

    # Follow-up hints already used for the current question
    hints_used = Column(Integer, nullable=False, default=0)

    # Temporal
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True))
    activated_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'abandoned')",
            name='valid_conversation_status'
        ),
        CheckConstraint(
            "mode IN ('interview', 'questionnaire')",
            name='valid_conversation_mode'
        ),
        CheckConstraint(
            'current_question_number >= 1 AND current_question_number <= total_questions + 1',
            name='check_question_number_bounds'
        ),
        Index('idx_conversations_user', 'user_id'),
        Index('idx_conversations_status', 'status'),
    )


class Turn(Base):
    """A single message in a conversation, tagged with the question it belongs to"""
    __tablename__ = "turns"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    sequence_number = Column(Integer, nullable=False)

    role = Column(Text, nullable=False)  # 'user', 'assistant'
    kind = Column(Text, nullable=False, default='message')  # 'message', 'opening', 'chapter_transition', 'completion'
    content = Column(Text, nullable=False)

    # Question context
    question_id = Column(Text)
    question_number = Column(Integer)
    chapter = Column(Integer)
    answer_id = Column(Text)  # questionnaire mode only

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name='valid_turn_role'),
        UniqueConstraint('conversation_id', 'sequence_number', name='uq_turn_sequence'),
        Index('idx_turns_conversation', 'conversation_id', 'sequence_number'),
        Index('idx_turns_question', 'conversation_id', 'question_number'),
    )


class TurnExtraction(Base):
    """One framework reading taken from one user turn"""
    __tablename__ = "turn_extractions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    turn_id = Column(Uuid, ForeignKey('turns.id', ondelete='CASCADE'), nullable=False)
    conversation_id = Column(Uuid, ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Text, nullable=False)
    turn_sequence = Column(Integer, nullable=False)
    turn_created_at = Column(DateTime(timezone=True), nullable=True)  # when the user sent the turn

    framework = Column(Text, nullable=False)  # e.g. 'big_five', 'attachment'
    traits = Column(JSON, nullable=False)  # {trait: {value, confidence, evidence}}
    source = Column(Text, nullable=False, default='llm')  # 'llm', 'questionnaire'

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('turn_id', 'framework', name='uq_extraction_turn_framework'),
        Index('idx_extractions_user', 'user_id'),
        Index('idx_extractions_turn', 'turn_id'),
    )


class TurnSafetySignal(Base):
    """One safety signal raised while reading one user turn"""
    __tablename__ = "turn_safety_signals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    turn_id = Column(Uuid, ForeignKey('turns.id', ondelete='CASCADE'), nullable=False)
    conversation_id = Column(Uuid, ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Text, nullable=False)
    turn_sequence = Column(Integer, nullable=False)
    signal_index = Column(Integer, nullable=False)

    category = Column(Text, nullable=False)
    severity = Column(Float, nullable=False)  # 0-100
    evidence = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "category IN ('attached', 'narcissism', 'machiavellianism', 'psychopathy', 'inconsistency')",
            name='valid_safety_category'
        ),
        CheckConstraint('severity >= 0 AND severity <= 100', name='check_safety_severity'),
        UniqueConstraint('turn_id', 'signal_index', name='uq_safety_turn_index'),
        Index('idx_safety_signals_user', 'user_id'),
    )


class ExtractionJob(Base):
    """Background extraction task, keyed by the user turn it reads"""
    __tablename__ = "extraction_jobs"

    turn_id = Column(Uuid, ForeignKey('turns.id', ondelete='CASCADE'), primary_key=True)
    conversation_id = Column(Uuid, ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Text, nullable=False)

    status = Column(Text, nullable=False, default='pending')  # 'pending', 'running', 'applied', 'failed'
    attempts = Column(Integer, nullable=False, default=0)
    needs_follow_up = Column(Boolean, default=False)
    follow_up_suggestion = Column(Text)
    error_message = Column(Text)

    enqueued_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'applied', 'failed')",
            name='valid_job_status'
        ),
        Index('idx_jobs_conversation_status', 'conversation_id', 'status'),
    )


class Profile(Base):
    """Aggregated psychometric profile (cache rebuilt from turn_extractions)"""
    __tablename__ = "profiles"

    user_id = Column(Text, primary_key=True)

    frameworks = Column(JSON, nullable=False)  # {framework: {trait: {value, confidence, ...}}}
    framework_confidence = Column(JSON, nullable=False)  # {framework: 0.0-1.0}
    raw_extractions = Column(JSON, nullable=False)  # audit trail of every contributing reading
    audit = Column(JSON, nullable=False)  # per-trait contributors
    extraction_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SafetyScreening(Base):
    """Accumulated safety risk per user (cache rebuilt from turn_safety_signals)"""
    __tablename__ = "safety_screenings"

    user_id = Column(Text, primary_key=True)

    category_scores = Column(JSON, nullable=False)  # {category: 0-100}
    signal_counts = Column(JSON, nullable=False)  # {category: int}
    evidence = Column(JSON, nullable=False)  # [{category, severity, evidence, turn_id}]
    max_severity = Column(Float, nullable=False, default=0.0)
    overall_risk_level = Column(Text, nullable=False, default='green')

    # Sticky hold, cleared only by a human reviewer
    flagged_for_review = Column(Boolean, nullable=False, default=False)
    flagged_at = Column(DateTime(timezone=True))
    reviewed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "overall_risk_level IN ('green', 'yellow', 'orange', 'red')",
            name='valid_risk_level'
        ),
    )


class ScoredRecord(Base):
    """Result of running a record through a weighted heuristic scorer"""
    __tablename__ = "scored_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_id = Column(Text, nullable=False)
    scorer = Column(Text, nullable=False)  # 'lead', 'partner'

    total_score = Column(Float, nullable=False)
    breakdown = Column(JSON, nullable=False)
    priority = Column(Text, nullable=False)
    disqualified_by = Column(Text)

    scored_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("priority IN ('high', 'medium', 'low')", name='valid_priority'),
        UniqueConstraint('entity_id', 'scorer', name='uq_scored_entity'),
        Index('idx_scored_priority', 'scorer', 'priority'),
    )


class AppSetting(Base):
    """Key/value runtime settings (e.g. LLM mode overrides)"""
    __tablename__ = "app_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    key = Column(String(128), nullable=False, unique=True)
    value = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
