"""Initial schema: users, tasks, messages, billing and milestones

Revision ID: 5a1c9e2d7b40
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5a1c9e2d7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def _user_fk():
    return sa.Column(
        'user_id', sa.String(length=255),
        sa.ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        'app_users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('auth_method', sa.String(length=50), nullable=True),
        sa.Column('subscription', sa.String(length=20), nullable=True),
        sa.Column('subscription_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_app_users_user_id'), 'app_users', ['user_id'], unique=True)
    op.create_index(op.f('ix_app_users_email'), 'app_users', ['email'], unique=False)
    op.create_index(op.f('ix_app_users_stripe_customer_id'), 'app_users', ['stripe_customer_id'], unique=False)

    op.create_table(
        'folders',
        sa.Column('id', sa.Uuid(), nullable=False),
        _user_fk(),
        sa.Column('name', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_folders_user_id'), 'folders', ['user_id'], unique=False)

    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid(), nullable=False),
        _user_fk(),
        sa.Column('folder_id', sa.Uuid(), sa.ForeignKey('folders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_repeating', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('repeat_rule', sa.String(length=255), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_tasks_user_id'), 'tasks', ['user_id'], unique=False)
    op.create_index(op.f('ix_tasks_folder_id'), 'tasks', ['folder_id'], unique=False)
    op.create_index(op.f('ix_tasks_due_date'), 'tasks', ['due_date'], unique=False)
    op.create_index(op.f('ix_tasks_completed_at'), 'tasks', ['completed_at'], unique=False)
    op.create_index(op.f('ix_tasks_deleted_at'), 'tasks', ['deleted_at'], unique=False)

    op.create_table(
        'subtasks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('task_id', sa.Uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        _user_fk(),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_subtasks_task_id'), 'subtasks', ['task_id'], unique=False)
    op.create_index(op.f('ix_subtasks_user_id'), 'subtasks', ['user_id'], unique=False)

    op.create_table(
        'notes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('task_id', sa.Uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True),
        _user_fk(),
        sa.Column('content', sa.Text(), nullable=False),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_notes_task_id'), 'notes', ['task_id'], unique=False)
    op.create_index(op.f('ix_notes_user_id'), 'notes', ['user_id'], unique=False)

    op.create_table(
        'task_ai_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('task_id', sa.Uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        _user_fk(),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('from_user', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('from_ai', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_task_ai_messages_task_id'), 'task_ai_messages', ['task_id'], unique=False)
    op.create_index(op.f('ix_task_ai_messages_user_id'), 'task_ai_messages', ['user_id'], unique=False)
    op.create_index(op.f('ix_task_ai_messages_created_at'), 'task_ai_messages', ['created_at'], unique=False)

    op.create_table(
        'assistant_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        _user_fk(),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('from_user', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('from_ai', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_assistant_messages_user_id'), 'assistant_messages', ['user_id'], unique=False)
    op.create_index(op.f('ix_assistant_messages_created_at'), 'assistant_messages', ['created_at'], unique=False)

    op.create_table(
        'suggested_tasks',
        sa.Column('id', sa.Uuid(), nullable=False),
        _user_fk(),
        sa.Column('suggestion_batch_id', sa.Uuid(), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('is_added', sa.Boolean(), nullable=True),
        sa.Column('suggested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('declined_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_suggested_tasks_user_id'), 'suggested_tasks', ['user_id'], unique=False)
    op.create_index(op.f('ix_suggested_tasks_suggestion_batch_id'), 'suggested_tasks', ['suggestion_batch_id'], unique=False)

    op.create_table(
        'integrations',
        sa.Column('id', sa.Uuid(), nullable=False),
        _user_fk(),
        sa.Column('gmail', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='inactive'),
        sa.Column('gmail_scope_granted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('gmail_last_sync', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_integrations_user_id'), 'integrations', ['user_id'], unique=True)

    op.create_table(
        'user_milestones',
        sa.Column('id', sa.Uuid(), nullable=False),
        _user_fk(),
        sa.Column('milestone_type', sa.String(length=100), nullable=False),
        sa.Column('achieved_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'milestone_type', name='uq_user_milestones_user_type'),
    )
    op.create_index(op.f('ix_user_milestones_user_id'), 'user_milestones', ['user_id'], unique=False)


def downgrade() -> None:
    op.drop_table('user_milestones')
    op.drop_table('integrations')
    op.drop_table('suggested_tasks')
    op.drop_table('assistant_messages')
    op.drop_table('task_ai_messages')
    op.drop_table('notes')
    op.drop_table('subtasks')
    op.drop_table('tasks')
    op.drop_table('folders')
    op.drop_table('app_users')
