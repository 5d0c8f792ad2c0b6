"""Intake schema: conversations, turns, per-turn readings, caches and scores

Revision ID: intake_schema_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'intake_schema_0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'user_accounts' not in existing_tables:
        op.create_table(
            'user_accounts',
            sa.Column('id', sa.Text, primary_key=True),
            sa.Column('first_name', sa.Text),
            sa.Column('status', sa.Text, nullable=False, server_default='pending'),
            sa.Column('activated_at', sa.DateTime(timezone=True)),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("status IN ('pending', 'active', 'suspended')", name='valid_user_status'),
        )

    if 'conversations' not in existing_tables:
        op.create_table(
            'conversations',
            sa.Column('id', sa.Uuid, primary_key=True),
            sa.Column('user_id', sa.Text, nullable=False),
            sa.Column('mode', sa.Text, nullable=False, server_default='interview'),
            sa.Column('status', sa.Text, nullable=False, server_default='in_progress'),
            sa.Column('current_chapter', sa.Integer, nullable=False, server_default='1'),
            sa.Column('current_question_number', sa.Integer, nullable=False, server_default='1'),
            sa.Column('current_question_id', sa.Text),
            sa.Column('questions_answered', sa.Integer, nullable=False, server_default='0'),
            sa.Column('total_questions', sa.Integer, nullable=False),
            sa.Column('hints_used', sa.Integer, nullable=False, server_default='0'),
            sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('completed_at', sa.DateTime(timezone=True)),
            sa.Column('activated_at', sa.DateTime(timezone=True)),
            sa.CheckConstraint("status IN ('in_progress', 'completed', 'abandoned')", name='valid_conversation_status'),
            sa.CheckConstraint("mode IN ('interview', 'questionnaire')", name='valid_conversation_mode'),
            sa.CheckConstraint(
                'current_question_number >= 1 AND current_question_number <= total_questions + 1',
                name='check_question_number_bounds',
            ),
        )
        op.create_index('idx_conversations_user', 'conversations', ['user_id'])
        op.create_index('idx_conversations_status', 'conversations', ['status'])

    if 'turns' not in existing_tables:
        op.create_table(
            'turns',
            sa.Column('id', sa.Uuid, primary_key=True),
            sa.Column('conversation_id', sa.Uuid, sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
            sa.Column('sequence_number', sa.Integer, nullable=False),
            sa.Column('role', sa.Text, nullable=False),
            sa.Column('kind', sa.Text, nullable=False, server_default='message'),
            sa.Column('content', sa.Text, nullable=False),
            sa.Column('question_id', sa.Text),
            sa.Column('question_number', sa.Integer),
            sa.Column('chapter', sa.Integer),
            sa.Column('answer_id', sa.Text),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("role IN ('user', 'assistant')", name='valid_turn_role'),
            sa.UniqueConstraint('conversation_id', 'sequence_number', name='uq_turn_sequence'),
        )
        op.create_index('idx_turns_conversation', 'turns', ['conversation_id', 'sequence_number'])
        op.create_index('idx_turns_question', 'turns', ['conversation_id', 'question_number'])

    if 'turn_extractions' not in existing_tables:
        op.create_table(
            'turn_extractions',
            sa.Column('id', sa.Uuid, primary_key=True),
            sa.Column('turn_id', sa.Uuid, sa.ForeignKey('turns.id', ondelete='CASCADE'), nullable=False),
            sa.Column('conversation_id', sa.Uuid, sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
            sa.Column('user_id', sa.Text, nullable=False),
            sa.Column('turn_sequence', sa.Integer, nullable=False),
            sa.Column('turn_created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('framework', sa.Text, nullable=False),
            sa.Column('traits', sa.JSON, nullable=False),
            sa.Column('source', sa.Text, nullable=False, server_default='llm'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.UniqueConstraint('turn_id', 'framework', name='uq_extraction_turn_framework'),
        )
        op.create_index('idx_extractions_user', 'turn_extractions', ['user_id'])
        op.create_index('idx_extractions_turn', 'turn_extractions', ['turn_id'])

    if 'turn_safety_signals' not in existing_tables:
        op.create_table(
            'turn_safety_signals',
            sa.Column('id', sa.Uuid, primary_key=True),
            sa.Column('turn_id', sa.Uuid, sa.ForeignKey('turns.id', ondelete='CASCADE'), nullable=False),
            sa.Column('conversation_id', sa.Uuid, sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
            sa.Column('user_id', sa.Text, nullable=False),
            sa.Column('turn_sequence', sa.Integer, nullable=False),
            sa.Column('signal_index', sa.Integer, nullable=False),
            sa.Column('category', sa.Text, nullable=False),
            sa.Column('severity', sa.Float, nullable=False),
            sa.Column('evidence', sa.Text, nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint(
                "category IN ('attached', 'narcissism', 'machiavellianism', 'psychopathy', 'inconsistency')",
                name='valid_safety_category',
            ),
            sa.CheckConstraint('severity >= 0 AND severity <= 100', name='check_safety_severity'),
            sa.UniqueConstraint('turn_id', 'signal_index', name='uq_safety_turn_index'),
        )
        op.create_index('idx_safety_signals_user', 'turn_safety_signals', ['user_id'])

    if 'extraction_jobs' not in existing_tables:
        op.create_table(
            'extraction_jobs',
            sa.Column('turn_id', sa.Uuid, sa.ForeignKey('turns.id', ondelete='CASCADE'), primary_key=True),
            sa.Column('conversation_id', sa.Uuid, sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
            sa.Column('user_id', sa.Text, nullable=False),
            sa.Column('status', sa.Text, nullable=False, server_default='pending'),
            sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
            sa.Column('needs_follow_up', sa.Boolean, server_default=sa.false()),
            sa.Column('follow_up_suggestion', sa.Text),
            sa.Column('error_message', sa.Text),
            sa.Column('enqueued_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('completed_at', sa.DateTime(timezone=True)),
            sa.CheckConstraint("status IN ('pending', 'running', 'applied', 'failed')", name='valid_job_status'),
        )
        op.create_index('idx_jobs_conversation_status', 'extraction_jobs', ['conversation_id', 'status'])

    if 'profiles' not in existing_tables:
        op.create_table(
            'profiles',
            sa.Column('user_id', sa.Text, primary_key=True),
            sa.Column('frameworks', sa.JSON, nullable=False),
            sa.Column('framework_confidence', sa.JSON, nullable=False),
            sa.Column('raw_extractions', sa.JSON, nullable=False),
            sa.Column('audit', sa.JSON, nullable=False),
            sa.Column('extraction_count', sa.Integer, nullable=False, server_default='0'),
            *_timestamps(),
        )

    if 'safety_screenings' not in existing_tables:
        op.create_table(
            'safety_screenings',
            sa.Column('user_id', sa.Text, primary_key=True),
            sa.Column('category_scores', sa.JSON, nullable=False),
            sa.Column('signal_counts', sa.JSON, nullable=False),
            sa.Column('evidence', sa.JSON, nullable=False),
            sa.Column('max_severity', sa.Float, nullable=False, server_default='0'),
            sa.Column('overall_risk_level', sa.Text, nullable=False, server_default='green'),
            sa.Column('flagged_for_review', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('flagged_at', sa.DateTime(timezone=True)),
            sa.Column('reviewed_at', sa.DateTime(timezone=True)),
            *_timestamps(),
            sa.CheckConstraint("overall_risk_level IN ('green', 'yellow', 'orange', 'red')", name='valid_risk_level'),
        )

    if 'scored_records' not in existing_tables:
        op.create_table(
            'scored_records',
            sa.Column('id', sa.Uuid, primary_key=True),
            sa.Column('entity_id', sa.Text, nullable=False),
            sa.Column('scorer', sa.Text, nullable=False),
            sa.Column('total_score', sa.Float, nullable=False),
            sa.Column('breakdown', sa.JSON, nullable=False),
            sa.Column('priority', sa.Text, nullable=False),
            sa.Column('disqualified_by', sa.Text),
            sa.Column('scored_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("priority IN ('high', 'medium', 'low')", name='valid_priority'),
            sa.UniqueConstraint('entity_id', 'scorer', name='uq_scored_entity'),
        )
        op.create_index('idx_scored_priority', 'scored_records', ['scorer', 'priority'])

    if 'app_settings' not in existing_tables:
        op.create_table(
            'app_settings',
            sa.Column('id', sa.Uuid, primary_key=True),
            sa.Column('key', sa.String(128), nullable=False, unique=True),
            sa.Column('value', sa.JSON, nullable=False),
            *_timestamps(),
        )


def downgrade():
    op.drop_table('app_settings')
    op.drop_table('scored_records')
    op.drop_table('safety_screenings')
    op.drop_table('profiles')
    op.drop_table('extraction_jobs')
    op.drop_table('turn_safety_signals')
    op.drop_table('turn_extractions')
    op.drop_table('turns')
    op.drop_table('conversations')
    op.drop_table('user_accounts')
