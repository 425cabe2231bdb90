"""initial_schema

Revision ID: 3b9e2d7a41c6
Revises:
Create Date: 2026-10-18 09:12:41.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b9e2d7a41c6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # members
    op.create_table(
        'members',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('member_id', sa.String(), nullable=False),
        sa.Column('line_id', sa.String(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('picture_url', sa.Text(), nullable=True),
        sa.Column('status_message', sa.Text(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('member_level', sa.String(), nullable=False, server_default='basic'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('preferences', JSONType, nullable=True),
        sa.Column('notification_settings', JSONType, nullable=True),
        sa.Column('total_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('login_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('member_id', name='uq_members_member_id'),
        sa.UniqueConstraint('line_id', name='uq_members_line_id'),
        sa.CheckConstraint("member_level IN ('basic', 'premium', 'vip')", name='ck_members_level'),
    )
    op.create_index('idx_members_level_active', 'members', ['member_level', 'is_active'])

    # tasks
    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('task_id', sa.String(), nullable=False),
        sa.Column('line_user_id', sa.String(), nullable=False),
        sa.Column('member_id', sa.String(), nullable=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('task_date', sa.Date(), nullable=True),
        sa.Column('task_time', sa.String(), nullable=True),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('priority', sa.SmallInteger(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('task_id', name='uq_tasks_task_id'),
        sa.CheckConstraint("status IN ('pending', 'completed')", name='ck_tasks_status'),
        sa.CheckConstraint(
            "(completed AND status = 'completed') OR (NOT completed AND status = 'pending')",
            name='ck_tasks_completed_status',
        ),
    )
    op.create_index('idx_tasks_user_date', 'tasks', ['line_user_id', 'task_date'])
    op.create_index('idx_tasks_user_created', 'tasks', ['line_user_id', sa.text('created_at DESC')])

    # task_history
    op.create_table(
        'task_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('task_id', sa.String(), nullable=False),
        sa.Column('member_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('changes', JSONType, nullable=True),
        sa.Column('created_by', sa.String(), nullable=False, server_default='system'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('idx_task_history_task', 'task_history', ['task_id', sa.text('created_at DESC')])

    # member_login_logs
    op.create_table(
        'member_login_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('member_id', sa.String(), nullable=False),
        sa.Column('login_method', sa.String(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('idx_member_login_logs_member', 'member_login_logs', ['member_id', sa.text('created_at DESC')])

    # task_reminders
    op.create_table(
        'task_reminders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.task_id', ondelete='CASCADE'), nullable=False),
        sa.Column('member_id', sa.String(), nullable=True),
        sa.Column('reminder_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('idx_task_reminders_pending', 'task_reminders', ['is_sent', 'reminder_time'])

    # system_settings
    op.create_table(
        'system_settings',
        sa.Column('key', sa.String(), primary_key=True),
        sa.Column('value', JSONType, nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )


def downgrade() -> None:
    op.drop_table('system_settings')
    op.drop_index('idx_task_reminders_pending', table_name='task_reminders')
    op.drop_table('task_reminders')
    op.drop_index('idx_member_login_logs_member', table_name='member_login_logs')
    op.drop_table('member_login_logs')
    op.drop_index('idx_task_history_task', table_name='task_history')
    op.drop_table('task_history')
    op.drop_index('idx_tasks_user_created', table_name='tasks')
    op.drop_index('idx_tasks_user_date', table_name='tasks')
    op.drop_table('tasks')
    op.drop_index('idx_members_level_active', table_name='members')
    op.drop_table('members')
