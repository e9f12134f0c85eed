"""
AI-suggested task awaiting the user's accept/decline decision.
"""
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Uuid
from sqlalchemy.sql import func

from onyx_api.core.database import Base
from onyx_api.core.timeutil import utcnow


class SuggestedTask(Base):
    __tablename__ = "suggested_tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("app_users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    suggestion_batch_id = Column(Uuid, nullable=True, index=True)

    title = Column(String(200), nullable=False)
    is_added = Column(Boolean, nullable=True)  # null = undecided
    suggested_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    declined_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<SuggestedTask(id={self.id}, title='{self.title[:30]}', is_added={self.is_added})>"
