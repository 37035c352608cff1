"""Initial schema with projects, stages, tasks and history tables.

Revision ID: 001
Revises:
Create Date: 2026-03-02

Stages are flagged as review stages by a boolean and tasks track the
"parked in review" state with is_in_specific_stage. Both are replaced by
explicit enums in 002.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TASK_STATUS = sa.Enum('pending', 'in-progress', 'complete', name='taskstatus')
TASK_PRIORITY = sa.Enum('low', 'medium', 'high', name='taskpriority')


def upgrade() -> None:
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), unique=True),
        sa.Column('role', sa.String(50), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_name', 'users', ['name'], unique=True)

    op.create_table(
        'stages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('color', sa.String(50)),
        sa.Column('order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_review_stage', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('linked_review_stage_id', sa.Uuid(), sa.ForeignKey('stages.id', ondelete='SET NULL')),
        sa.Column('approved_target_stage_id', sa.Uuid(), sa.ForeignKey('stages.id', ondelete='SET NULL')),
        sa.Column('parent_stage_id', sa.Uuid(), sa.ForeignKey('stages.id', ondelete='SET NULL')),
        sa.Column('main_responsible_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_stages_project_id', 'stages', ['project_id'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('parent_id', sa.Uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE')),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status', TASK_STATUS, nullable=False, server_default='pending'),
        sa.Column('priority', TASK_PRIORITY, nullable=False, server_default='medium'),
        sa.Column('tags', sa.JSON, nullable=False),
        sa.Column('due_date', sa.DateTime),
        sa.Column('stage_id', sa.Uuid(), sa.ForeignKey('stages.id'), nullable=False),
        sa.Column('assignee_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('is_assignee_locked', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('is_in_specific_stage', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('previous_stage_id', sa.Uuid(), sa.ForeignKey('stages.id', ondelete='SET NULL')),
        sa.Column('original_assignee_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('revision_comment', sa.Text),
        sa.Column('start_stage_id', sa.Uuid(), sa.ForeignKey('stages.id', ondelete='SET NULL')),
        sa.Column('start_date', sa.DateTime),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('deleted_at', sa.DateTime),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_parent_id', 'tasks', ['parent_id'])
    op.create_index('ix_tasks_stage_id', 'tasks', ['stage_id'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])
    op.create_index('ix_tasks_deleted_at', 'tasks', ['deleted_at'])

    op.create_table(
        'task_assignees',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('task_id', sa.Uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', TASK_STATUS, nullable=False, server_default='pending'),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('assigned_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('task_id', 'user_id', name='uq_task_assignee'),
    )
    op.create_index('ix_task_assignees_task_id', 'task_assignees', ['task_id'])
    op.create_index('ix_task_assignees_user_id', 'task_assignees', ['user_id'])

    op.create_table(
        'revision_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('task_id', sa.Uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('comment', sa.Text, nullable=False),
        sa.Column('requested_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('requested_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('resolved_at', sa.DateTime),
    )
    op.create_index('ix_revision_entries_task_id', 'revision_entries', ['task_id'])

    op.create_table(
        'suggested_tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('default_stage_id', sa.Uuid(), sa.ForeignKey('stages.id', ondelete='SET NULL')),
        sa.Column('default_assignee_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('source', sa.String(100)),
        sa.Column('suggested_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_suggested_tasks_project_id', 'suggested_tasks', ['project_id'])

    op.create_table(
        'history_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False, server_default='task'),
        sa.Column('project_id', sa.Uuid()),
        sa.Column('actor_id', sa.Uuid()),
        sa.Column('details', sa.JSON),
        sa.Column('timestamp', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_history_entries_action', 'history_entries', ['action'])
    op.create_index('ix_history_entries_entity_id', 'history_entries', ['entity_id'])
    op.create_index('ix_history_entries_project_id', 'history_entries', ['project_id'])
    op.create_index('ix_history_entries_timestamp', 'history_entries', ['timestamp'])


def downgrade() -> None:
    op.drop_table('history_entries')
    op.drop_table('suggested_tasks')
    op.drop_table('revision_entries')
    op.drop_table('task_assignees')
    op.drop_table('tasks')
    op.drop_table('stages')
    op.drop_table('users')
    op.drop_table('projects')

    # Drop enums (no-op outside PostgreSQL)
    TASK_PRIORITY.drop(op.get_bind(), checkfirst=True)
    TASK_STATUS.drop(op.get_bind(), checkfirst=True)
