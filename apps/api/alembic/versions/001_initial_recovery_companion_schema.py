"""initial recovery companion schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'conversations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('stage', sa.String(32), nullable=False, server_default='greeting'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('stage_entered_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "stage IN ('greeting', 'check_in', 'journal_prompt', 'affirmation', 'reflection', 'milestone_review')",
            name='ck_conversation_stage',
        ),
    )
    op.create_index('ix_conversations_user_id', 'conversations', ['user_id'])
    op.create_index('ix_conversation_user_updated', 'conversations', ['user_id', 'updated_at'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('conversation_id', sa.Uuid(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(16), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("role IN ('user', 'assistant')", name='ck_message_role'),
    )
    op.create_index('ix_message_conversation_created', 'messages', ['conversation_id', 'created_at'])

    op.create_table(
        'check_ins',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('mood', sa.String(255), nullable=False),
        sa.Column('sleep_quality', sa.Integer(), nullable=False),
        sa.Column('energy_level', sa.Integer(), nullable=False),
        sa.Column('intentions', sa.Text(), nullable=True),
        sa.Column('conversation_id', sa.Uuid(), sa.ForeignKey('conversations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('source_message_id', sa.Uuid(), sa.ForeignKey('messages.id', ondelete='SET NULL'), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('sleep_quality BETWEEN 1 AND 5', name='ck_check_in_sleep_quality'),
        sa.CheckConstraint('energy_level BETWEEN 1 AND 5', name='ck_check_in_energy_level'),
    )
    op.create_index('ix_check_in_user_created', 'check_ins', ['user_id', 'created_at'])

    op.create_table(
        'journal_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('word_count', sa.Integer(), nullable=False),
        sa.Column('ai_insights', JSON_TYPE, nullable=True),
        sa.Column('conversation_id', sa.Uuid(), sa.ForeignKey('conversations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('source_message_id', sa.Uuid(), sa.ForeignKey('messages.id', ondelete='SET NULL'), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_journal_entry_user_created', 'journal_entries', ['user_id', 'created_at'])

    op.create_table(
        'milestones',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unlocked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('unlocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'type', name='uq_milestone_user_type'),
        sa.CheckConstraint('progress BETWEEN 0 AND 100', name='ck_milestone_progress'),
        sa.CheckConstraint(
            'NOT unlocked OR (progress = 100 AND unlocked_at IS NOT NULL)',
            name='ck_milestone_unlocked_complete',
        ),
    )
    op.create_index('ix_milestone_user_created', 'milestones', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_milestone_user_created', table_name='milestones')
    op.drop_table('milestones')
    op.drop_index('ix_journal_entry_user_created', table_name='journal_entries')
    op.drop_table('journal_entries')
    op.drop_index('ix_check_in_user_created', table_name='check_ins')
    op.drop_table('check_ins')
    op.drop_index('ix_message_conversation_created', table_name='messages')
    op.drop_table('messages')
    op.drop_index('ix_conversation_user_updated', table_name='conversations')
    op.drop_index('ix_conversations_user_id', table_name='conversations')
    op.drop_table('conversations')
    op.drop_table('users')
