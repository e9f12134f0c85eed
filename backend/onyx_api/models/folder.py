"""
Folder model for grouping tasks.
"""
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from onyx_api.core.database import Base
from onyx_api.core.timeutil import utcnow


class Folder(Base):
    """User-owned folder of tasks."""

    __tablename__ = "folders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("app_users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    tasks = relationship("Task", back_populates="folder")

    def __repr__(self):
        return f"<Folder(id={self.id}, name='{self.name}')>"
