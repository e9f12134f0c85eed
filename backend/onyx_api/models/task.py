"""
Task model. Completion is a timestamp; deletion is a soft-delete marker.
"""
import uuid

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Boolean, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from onyx_api.core.database import Base
from onyx_api.core.timeutil import utcnow, as_utc


class Task(Base):
    """User-owned to-do item, optionally filed in a folder."""

    __tablename__ = "tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id = Column(String(255), ForeignKey("app_users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    folder_id = Column(Uuid, ForeignKey("folders.id", ondelete="SET NULL"), nullable=True, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    is_repeating = Column(Boolean, default=False, nullable=False)
    repeat_rule = Column(String(255), nullable=True)  # e.g. "every Monday"

    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)  # null = incomplete

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    # Relationships
    folder = relationship("Folder", back_populates="tasks")
    subtasks = relationship("Subtask", back_populates="task", passive_deletes=True)
    notes = relationship("Note", back_populates="task", passive_deletes=True)

    def __repr__(self):
        return f"<Task(id={self.id}, title='{self.title[:30]}...', completed={self.is_completed})>"

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_overdue(self) -> bool:
        """Due date in the past and not completed."""
        if self.due_date is None or self.completed_at is not None:
            return False
        return as_utc(self.due_date) < utcnow()
