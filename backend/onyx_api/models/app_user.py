"""
Application user keyed by the identity issuer's subject id.
"""
import uuid
from enum import Enum

from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from onyx_api.core.database import Base
from onyx_api.core.timeutil import utcnow


class SubscriptionTier(str, Enum):
    """Subscription levels controlling AI quota and model routing."""
    FREE = "free"
    PREMIUM = "premium"
    PLAID = "plaid"


class AppUser(Base):
    """Application user with subscription and billing state."""

    __tablename__ = "app_users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Opaque subject identifier from the identity issuer; every other table scopes by it
    user_id = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), nullable=True, index=True)
    auth_method = Column(String(50), nullable=True)

    # Stored as plain text so unknown values fall back to free instead of failing to load
    subscription = Column(String(20), nullable=True, default=SubscriptionTier.FREE.value)
    subscription_updated_at = Column(DateTime(timezone=True), nullable=True)

    # Stripe
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    integration = relationship("Integration", back_populates="user", uselist=False, passive_deletes=True)
    milestones = relationship("UserMilestone", back_populates="user", passive_deletes=True)

    def __repr__(self):
        return f"<AppUser(user_id='{self.user_id}', subscription={self.subscription})>"
