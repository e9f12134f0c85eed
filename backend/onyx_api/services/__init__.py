# Services module
from .subscription_service import SubscriptionService
from .milestone_service import MilestoneService
from .ai_assistant_service import AIAssistantService
from .billing_service import BillingService
from .integration_service import IntegrationService
from .task_assist_service import TaskAssistService

__all__ = [
    "SubscriptionService",
    "MilestoneService",
    "AIAssistantService",
    "BillingService",
    "IntegrationService",
    "TaskAssistService",
]
