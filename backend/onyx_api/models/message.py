"""
Conversation turns with the AI assistant.

There is no conversation aggregate: turns are ordered by ``created_at``.
``from_user``/``from_ai`` describe a single row's origin; both false marks a
system-authored row.
"""
import uuid

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Boolean, Uuid
from sqlalchemy.sql import func

from onyx_api.core.database import Base
from onyx_api.core.timeutil import utcnow


class TaskAIMessage(Base):
    """Turn in a task-scoped conversation."""

    __tablename__ = "task_ai_messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), ForeignKey("app_users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    message = Column(Text, nullable=False)
    from_user = Column(Boolean, default=False, nullable=False)
    from_ai = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<TaskAIMessage(id={self.id}, task_id={self.task_id}, from_user={self.from_user})>"


class AssistantMessage(Base):
    """Turn in the general assistant conversation."""

    __tablename__ = "assistant_messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("app_users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    message = Column(Text, nullable=False)
    from_user = Column(Boolean, default=False, nullable=False)
    from_ai = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<AssistantMessage(id={self.id}, from_user={self.from_user})>"
