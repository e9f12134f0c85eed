"""
One-time user achievements; (user_id, milestone_type) is unique.
"""
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from onyx_api.core.database import Base
from onyx_api.core.timeutil import utcnow


class UserMilestone(Base):
    __tablename__ = "user_milestones"
    __table_args__ = (
        UniqueConstraint("user_id", "milestone_type", name="uq_user_milestones_user_type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("app_users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    milestone_type = Column(String(100), nullable=False)
    achieved_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    user = relationship("AppUser", back_populates="milestones")

    def __repr__(self):
        return f"<UserMilestone(user_id='{self.user_id}', type='{self.milestone_type}')>"
