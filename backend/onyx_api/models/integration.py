"""
External integrations, one record per user.
"""
import uuid
from enum import Enum

from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from onyx_api.core.database import Base
from onyx_api.core.timeutil import utcnow


class IntegrationStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class Integration(Base):
    """Per-user integration aggregate (currently Gmail only)."""

    __tablename__ = "integrations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        String(255), ForeignKey("app_users.user_id", ondelete="CASCADE"),
        unique=True, nullable=False, index=True,
    )

    gmail = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default=IntegrationStatus.INACTIVE.value, nullable=False)
    gmail_scope_granted = Column(Boolean, default=False, nullable=False)
    gmail_last_sync = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    user = relationship("AppUser", back_populates="integration")

    def __repr__(self):
        return f"<Integration(user_id='{self.user_id}', gmail={self.gmail}, status={self.status})>"
