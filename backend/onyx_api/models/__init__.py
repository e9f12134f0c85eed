# Database models
from onyx_api.models.app_user import AppUser, SubscriptionTier
from onyx_api.models.folder import Folder
from onyx_api.models.task import Task
from onyx_api.models.subtask import Subtask
from onyx_api.models.note import Note
from onyx_api.models.message import TaskAIMessage, AssistantMessage
from onyx_api.models.suggested_task import SuggestedTask
from onyx_api.models.integration import Integration, IntegrationStatus
from onyx_api.models.milestone import UserMilestone

__all__ = [
    "AppUser", "SubscriptionTier", "Folder", "Task", "Subtask", "Note",
    "TaskAIMessage", "AssistantMessage", "SuggestedTask", "Integration",
    "IntegrationStatus", "UserMilestone",
]
