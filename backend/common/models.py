from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON, Boolean, Column, Integer, String, Text, DateTime, Date, ForeignKey,
    Index, SmallInteger, CheckConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

# --- Enums ---

class TaskStatus(PyEnum):
    pending = "pending"
    completed = "completed"

class MemberLevel(PyEnum):
    basic = "basic"
    premium = "premium"
    vip = "vip"

# --- Models ---

class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(String, nullable=False, unique=True)
    line_id = Column(String, nullable=False, unique=True)
    display_name = Column(Text, nullable=True)
    picture_url = Column(Text, nullable=True)
    status_message = Column(Text, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    member_level = Column(String, CheckConstraint("member_level IN ('basic', 'premium', 'vip')"), nullable=False, default=MemberLevel.basic.value)
    is_active = Column(Boolean, nullable=False, default=True)
    preferences = Column(JSONType, nullable=True)
    notification_settings = Column(JSONType, nullable=True)
    total_tasks = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)
    login_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_members_level_active", "member_level", "is_active"),
    )

class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String, nullable=False, unique=True)
    line_user_id = Column(String, nullable=False)
    member_id = Column(String, nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    task_date = Column(Date, nullable=True)
    task_time = Column(String, nullable=True)
    completed = Column(Boolean, nullable=False, default=False)
    status = Column(String, CheckConstraint("status IN ('pending', 'completed')"), nullable=False, default=TaskStatus.pending.value)
    priority = Column(SmallInteger, nullable=True)
    category = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("(completed AND status = 'completed') OR (NOT completed AND status = 'pending')", name="ck_tasks_completed_status"),
        Index("idx_tasks_user_date", "line_user_id", "task_date"),
        Index("idx_tasks_user_created", "line_user_id", created_at.desc()),
    )

class TaskHistory(Base):
    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String, nullable=False)
    member_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    changes = Column(JSONType, nullable=True)
    created_by = Column(String, nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_task_history_task", "task_id", created_at.desc()),
    )

class MemberLoginLog(Base):
    __tablename__ = "member_login_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(String, nullable=False)
    login_method = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_member_login_logs_member", "member_id", created_at.desc()),
    )

class TaskReminder(Base):
    __tablename__ = "task_reminders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String, ForeignKey("tasks.task_id", ondelete="CASCADE"), nullable=False)
    member_id = Column(String, nullable=True)
    reminder_time = Column(DateTime(timezone=True), nullable=False)
    is_sent = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_task_reminders_pending", "is_sent", "reminder_time"),
    )

class SystemSetting(Base):
    __tablename__ = "system_settings"

    key = Column(String, primary_key=True)
    value = Column(JSONType, nullable=True)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
