"""
Response generation strategies for the AI assistant.

Each strategy implements ``ResponseGenerator.generate``: context in, text out.
Which one runs is decided by the caller from the subscription tier and, for
standard tiers, the question classification.
"""
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.config import settings
from onyx_api.models.folder import Folder
from onyx_api.models.message import AssistantMessage, TaskAIMessage
from onyx_api.models.note import Note
from onyx_api.models.task import Task
from onyx_api.services.context_service import AssistantContext, TaskContext
from onyx_api.services.llm_factory import get_llm_for_tier
from onyx_api.services.prompt_utils import (
    format_assistant_context,
    format_retrieved_context,
    format_task_context,
)
from onyx_api.services.subscription_service import ProcessingConfig

logger = logging.getLogger(__name__)

STRATEGY_RAG = "rag"
STRATEGY_INTERNET = "internet_search"
STRATEGY_FINE_TUNED = "fine_tuned"


@dataclass
class GenerationRequest:
    user_id: str
    message: str
    message_type: str  # task_specific | general_assistant
    config: ProcessingConfig
    task_context: Optional[TaskContext] = None
    assistant_context: Optional[AssistantContext] = None

    @property
    def context_text(self) -> str:
        if self.task_context is not None:
            return format_task_context(self.task_context)
        return format_assistant_context(self.assistant_context)


@dataclass
class GenerationResult:
    text: str
    strategy: str
    model: str
    tokens_used: int = 0
    extras: Dict[str, Any] = field(default_factory=dict)


class QuestionClassification(BaseModel):
    type: str = Field(..., pattern="^(PERSONAL|GENERAL)$")
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    reasoning: str = ""


def _extract_json(text: str) -> Any:
    """Parse JSON from an LLM reply, tolerating prose or code fences around it."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"(\{.*\}|\[.*\])", text, re.DOTALL)
        if not match:
            raise
        return json.loads(match.group(1))


def _contains(column, term: str):
    """Case-insensitive substring match with LIKE wildcards in the term escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


def _tokens_used(response: Any) -> int:
    usage = getattr(response, "usage_metadata", None) or {}
    return int(usage.get("total_tokens", 0))


def _content_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Some providers return content blocks
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block) for block in content
        )
    return str(content).strip()


class ResponseGenerator(ABC):
    """Strategy producing an assistant reply for one request."""

    strategy: str = ""

    def __init__(self, llm: Optional[BaseChatModel] = None):
        self._llm = llm

    def model_name(self, config: ProcessingConfig) -> str:
        return config.model

    def get_llm(self, config: ProcessingConfig) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_llm_for_tier(config, model_override=self.model_name(config))
        return self._llm

    async def _complete(self, config: ProcessingConfig, system: str, prompt: str):
        llm = self.get_llm(config)
        return await llm.ainvoke([SystemMessage(content=system), HumanMessage(content=prompt)])

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        ...


class QuestionClassifier:
    """Decides whether a question needs the user's own data or general knowledge."""

    PROMPT = """Analyze this user question and determine if it's:
1. PERSONAL - About their tasks, work, personal productivity, or requires context from their data
2. GENERAL - A general knowledge question, current events, or internet search needed

Question: "{message}"

Respond with JSON only:
{{
  "type": "PERSONAL" | "GENERAL",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation"
}}"""

    def __init__(self, llm: Optional[BaseChatModel] = None):
        self._llm = llm

    async def classify(self, message: str, config: ProcessingConfig) -> QuestionClassification:
        """Classify the question; any failure defaults to PERSONAL."""
        try:
            llm = self._llm or get_llm_for_tier(config, max_tokens=150, temperature=0.1)
            response = await llm.ainvoke([HumanMessage(content=self.PROMPT.format(message=message))])
            return QuestionClassification(**_extract_json(_content_text(response)))
        except Exception as e:
            logger.warning(f"Question classification failed, defaulting to PERSONAL: {e}")
            return QuestionClassification(
                type="PERSONAL",
                confidence=0.5,
                reasoning="Classification failed, defaulting to personal",
            )


class RAGGenerator(ResponseGenerator):
    """Answers from the user's own tasks, notes and past conversations."""

    strategy = STRATEGY_RAG

    SYSTEM = "You are a helpful AI assistant for a task management app."
    PROMPT = """Answer the user's question using ONLY the provided context from their personal tasks, notes, and messages.

CURRENT VIEW:
{current_context}

CONTEXT FROM USER'S TASKS AND NOTES:
{retrieved_context}

USER QUESTION: "{message}"

INSTRUCTIONS:
- Answer based ONLY on the provided context
- If the context doesn't contain relevant information, say so
- Be specific and reference their actual tasks/notes when relevant
- Keep responses helpful and concise
- If you can suggest actions based on their existing tasks, do so"""

    TERMS_PROMPT = """Extract the most important keywords and phrases from this user question for searching their task history.
Focus on nouns, important verbs, dates, and specific topics.

Question: "{message}"

Return JSON array of 3-8 key terms:
["term1", "term2", "term3"]"""

    def __init__(self, db: AsyncSession, llm: Optional[BaseChatModel] = None, search_limit: int = 10):
        super().__init__(llm)
        self.db = db
        self.search_limit = search_limit

    async def extract_search_terms(self, message: str, config: ProcessingConfig) -> List[str]:
        try:
            response = await self._complete(
                config, self.SYSTEM, self.TERMS_PROMPT.format(message=message)
            )
            terms = _extract_json(_content_text(response))
            if isinstance(terms, list) and terms:
                return [str(t) for t in terms if str(t).strip()][:8]
            return [message]
        except Exception as e:
            logger.warning(f"Search term extraction failed, using keyword fallback: {e}")
            return fallback_search_terms(message)

    async def search_tasks(self, user_id: str, terms: List[str], limit: int) -> List[Dict[str, Any]]:
        conditions = [
            or_(_contains(Task.title, term), _contains(Task.description, term)) for term in terms
        ]
        result = await self.db.execute(
            select(Task, Folder.name)
            .outerjoin(Folder, Task.folder_id == Folder.id)
            .where(Task.user_id == user_id, Task.deleted_at.is_(None), or_(*conditions))
            .order_by(Task.updated_at.desc())
            .limit(limit)
        )
        return [
            {
                "title": task.title,
                "description": task.description,
                "folder_name": folder_name,
                "completed_at": task.completed_at,
            }
            for task, folder_name in result.all()
        ]

    async def search_notes(self, user_id: str, terms: List[str], limit: int) -> List[Dict[str, Any]]:
        conditions = [_contains(Note.content, term) for term in terms]
        result = await self.db.execute(
            select(Note.content, Task.title)
            .outerjoin(Task, Note.task_id == Task.id)
            .where(Note.user_id == user_id, Note.deleted_at.is_(None), or_(*conditions))
            .order_by(Note.updated_at.desc())
            .limit(limit)
        )
        return [{"content": content, "task_title": title} for content, title in result.all()]

    async def search_messages(self, user_id: str, terms: List[str], limit: int) -> List[Dict[str, Any]]:
        task_rows = await self.db.execute(
            select(TaskAIMessage.message, TaskAIMessage.created_at, Task.title)
            .join(Task, TaskAIMessage.task_id == Task.id)
            .where(
                TaskAIMessage.user_id == user_id,
                or_(*[_contains(TaskAIMessage.message, term) for term in terms]),
            )
            .order_by(TaskAIMessage.created_at.desc())
            .limit(limit)
        )
        assistant_rows = await self.db.execute(
            select(AssistantMessage.message, AssistantMessage.created_at)
            .where(
                AssistantMessage.user_id == user_id,
                or_(*[_contains(AssistantMessage.message, term) for term in terms]),
            )
            .order_by(AssistantMessage.created_at.desc())
            .limit(limit)
        )
        hits = [
            {"message": message, "created_at": created_at, "task_title": title, "source": "task_ai"}
            for message, created_at, title in task_rows.all()
        ]
        hits += [
            {"message": message, "created_at": created_at, "task_title": None, "source": "assistant"}
            for message, created_at in assistant_rows.all()
        ]
        hits.sort(key=lambda hit: hit["created_at"], reverse=True)
        return hits[:limit]

    async def search_user_context(self, user_id: str, message: str, config: ProcessingConfig) -> Dict[str, Any]:
        """Split the result budget 60/30/10 across tasks, notes and messages."""
        terms = await self.extract_search_terms(message, config)
        if not terms:
            return {"relevant_tasks": [], "relevant_notes": [], "relevant_messages": [], "search_terms": []}

        tasks = await self.search_tasks(user_id, terms, math.ceil(self.search_limit * 0.6))
        notes = await self.search_notes(user_id, terms, math.ceil(self.search_limit * 0.3))
        messages = await self.search_messages(user_id, terms, math.ceil(self.search_limit * 0.1))
        return {
            "relevant_tasks": tasks,
            "relevant_notes": notes,
            "relevant_messages": messages,
            "search_terms": terms,
        }

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        retrieved = await self.search_user_context(request.user_id, request.message, request.config)
        prompt = self.PROMPT.format(
            current_context=request.context_text or "None",
            retrieved_context=format_retrieved_context(retrieved),
            message=request.message,
        )
        response = await self._complete(request.config, self.SYSTEM, prompt)
        return GenerationResult(
            text=_content_text(response),
            strategy=self.strategy,
            model=self.model_name(request.config),
            tokens_used=_tokens_used(response),
            extras={"search_terms": retrieved["search_terms"]},
        )


class InternetSearchGenerator(ResponseGenerator):
    """General-knowledge answers from the model itself."""

    strategy = STRATEGY_INTERNET

    SYSTEM = (
        "You are a helpful AI assistant with access to current information. The user is "
        "asking a general knowledge question that requires world knowledge."
    )
    PROMPT = """USER QUESTION: "{message}"

Please provide a comprehensive, accurate, and up-to-date answer. If the question involves:
- Current events: Mention that information may be outdated and suggest checking recent sources
- Specific data/numbers: Provide what you know but note the information date
- How-to questions: Give step-by-step guidance
- General knowledge: Provide a thorough explanation

Keep your response informative but concise, and acknowledge any limitations in your knowledge cutoff."""

    KNOWLEDGE_NOTE = (
        "*Note: This response is based on my training data. For the most current "
        "information, you may want to check recent online sources.*"
    )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        response = await self._complete(
            request.config, self.SYSTEM, self.PROMPT.format(message=request.message)
        )
        return GenerationResult(
            text=f"{_content_text(response)}\n\n{self.KNOWLEDGE_NOTE}",
            strategy=self.strategy,
            model=self.model_name(request.config),
            tokens_used=_tokens_used(response),
        )


class FineTunedGenerator(ResponseGenerator):
    """Expert answers from the fine-tuned models (plaid tier)."""

    strategy = STRATEGY_FINE_TUNED

    TASK_SYSTEM = (
        "You are a specialized AI assistant for task management. You have been fine-tuned on "
        "productivity and task management patterns. Provide expert-level insights and "
        "suggestions based on the task context."
    )
    GENERAL_SYSTEM = (
        "You are an expert productivity and task management AI assistant. You have been "
        "fine-tuned on advanced productivity methodologies, task optimization, and personal "
        "effectiveness strategies. Provide sophisticated insights and actionable advice."
    )

    def __init__(self, message_type: str = "general_assistant", llm: Optional[BaseChatModel] = None):
        super().__init__(llm)
        self.message_type = message_type

    def model_name(self, config: ProcessingConfig) -> str:
        if self.message_type == "task_specific":
            return settings.finetuned_task_model_id or config.model
        return settings.finetuned_general_model_id or config.model

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if request.message_type == "task_specific":
            system = self.TASK_SYSTEM
            prompt = (
                f"TASK CONTEXT:\n{request.context_text}\n\nUSER QUESTION: {request.message}\n\n"
                "Please provide a detailed, expert response with specific recommendations."
            )
        else:
            system = self.GENERAL_SYSTEM
            prompt = (
                f"USER CONTEXT:\n{request.context_text}\n\nUSER QUESTION: {request.message}\n\n"
                "Provide an expert-level response with advanced strategies and personalized recommendations."
            )

        response = await self._complete(request.config, system, prompt)
        return GenerationResult(
            text=_content_text(response),
            strategy=self.strategy,
            model=self.model_name(request.config),
            tokens_used=_tokens_used(response),
        )


def fallback_search_terms(message: str) -> List[str]:
    """Lowercased words longer than three characters, at most five."""
    return [word for word in message.lower().split() if len(word) > 3][:5]
