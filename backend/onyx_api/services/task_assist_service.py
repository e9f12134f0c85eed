"""
Small LLM helpers around tasks: suggestions, natural-language due dates and
onboarding seed tasks.
"""
import json
import logging
import re
import uuid
from datetime import datetime
from typing import List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.errors import AppError
from onyx_api.core.timeutil import utcnow
from onyx_api.models.task import Task
from onyx_api.services.llm_factory import get_llm

logger = logging.getLogger(__name__)


ONBOARDING_TASKS = [
    {
        "title": "Create 5 tasks in Onyx",
        "description": (
            "Get familiar with Onyx by creating your first 5 tasks. Try different types of "
            "tasks like work items, personal goals, or daily activities."
        ),
    },
    {
        "title": "Test adding notes to tasks - document your work!",
        "description": (
            "Learn how to add detailed notes to your tasks. This helps you track progress, "
            "add context, and remember important details."
        ),
    },
    {
        "title": "Ask a question to the AI assistant",
        "description": (
            "Try out the AI assistant feature! Ask for task suggestions, help with planning, "
            "or any questions about productivity."
        ),
    },
]


class TaskSuggestion(BaseModel):
    title: str
    description: str
    is_ai_generated: bool = True


class ParsedDueDate(BaseModel):
    """``due_date`` is ISO-8601 for one-off dates, descriptive text when repeating."""
    due_date: Optional[str]
    is_repeating: bool = False
    confidence: str = "medium"
    original_input: str

    def as_datetime(self) -> Optional[datetime]:
        if self.is_repeating or not self.due_date:
            return None
        return datetime.fromisoformat(self.due_date.replace("Z", "+00:00"))


DATE_PARSE_SYSTEM = """You are a date parsing assistant. Given a user's natural language date input, you need to:
1. If the input is a specific date (like "friday at 4pm", "tomorrow at 2pm", "December 25th"), convert it to ISO format and set repeating to false
2. If the input sounds repeating (like "Mondays at 4pm", "every Tuesday", "daily at 9am"), keep it as descriptive text and set repeating to true

Current date and time: {now}

Response format (JSON only):
{{
  "formatted_date": "YYYY-MM-DDTHH:mm:ss.sssZ" or "descriptive text for repeating",
  "is_repeating": true/false,
  "confidence": "high/medium/low"
}}"""


class TaskAssistService:
    def __init__(self, llm: Optional[BaseChatModel] = None):
        self._llm = llm

    def _get_llm(self, max_tokens: int, temperature: float) -> BaseChatModel:
        return self._llm or get_llm(max_tokens=max_tokens, temperature=temperature)

    async def generate_task_suggestion(self) -> TaskSuggestion:
        """One healthy, productive task suggestion."""
        try:
            response = await self._get_llm(max_tokens=50, temperature=0.8).ainvoke([
                SystemMessage(content=(
                    "You are a helpful assistant that suggests healthy, user-friendly daily "
                    "tasks to improve productivity and well-being."
                )),
                HumanMessage(content=(
                    "Suggest one healthy, productive task like 'go for a run', 'read a book for "
                    "30 minutes', or 'call a friend'. Return only the task title, nothing else."
                )),
            ])
        except Exception as e:
            logger.error(f"Task suggestion failed: {e}", exc_info=True)
            raise AppError("Failed to generate task suggestion", 500) from e

        title = re.sub(r"^[-•*]\s*", "", str(response.content).strip()).strip("\"'")
        if not title:
            raise AppError("No suggestion generated", 500)
        return TaskSuggestion(title=title, description=f"AI-generated suggestion: {title}")

    async def parse_due_date(self, date_input: str) -> ParsedDueDate:
        """Turn "friday at 4pm" or "every Monday" into a due date."""
        try:
            response = await self._get_llm(max_tokens=200, temperature=0.3).ainvoke([
                SystemMessage(content=DATE_PARSE_SYSTEM.format(now=utcnow().isoformat())),
                HumanMessage(content=f'Parse this date input: "{date_input}"'),
            ])
        except Exception as e:
            logger.error(f"Due date parsing failed: {e}", exc_info=True)
            raise AppError("Failed to parse due date", 500) from e

        content = str(response.content).strip()
        try:
            match = re.search(r"\{.*\}", content, re.DOTALL)
            parsed = json.loads(match.group() if match else content)
            result = ParsedDueDate(
                due_date=parsed.get("formatted_date"),
                is_repeating=bool(parsed.get("is_repeating", False)),
                confidence=parsed.get("confidence") or "medium",
                original_input=date_input,
            )
            # Reject unusable one-off dates here rather than at insert time
            result.as_datetime()
            return result
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            logger.error(f"Invalid date parsing response: {content!r}")
            raise AppError("Invalid date format returned", 500) from e


async def create_onboarding_tasks(
    db: AsyncSession, user_id: str, folder_id: Optional[uuid.UUID] = None
) -> List[Task]:
    """Seed the starter tasks for a new user. Caller commits."""
    tasks = [
        Task(user_id=user_id, folder_id=folder_id, title=t["title"], description=t["description"])
        for t in ONBOARDING_TASKS
    ]
    db.add_all(tasks)
    await db.flush()
    return tasks
