"""
AI message orchestration.

One call to ``process_message`` walks:

    RECEIVED -> QUOTA_CHECKED -> DENIED
                              -> CONTEXT_GATHERED -> GENERATED -> PERSISTED
                                                  -> PERSISTED_USER_ONLY

The quota is checked before any generation is attempted. A user message is
never lost: if generation fails it is stored on its own and the caller gets a
degraded reply.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from langchain_core.language_models.chat_models import BaseChatModel
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.core.errors import AppError
from onyx_api.core.timeutil import utcnow
from onyx_api.models.app_user import SubscriptionTier
from onyx_api.models.message import AssistantMessage, TaskAIMessage
from onyx_api.services.context_service import (
    AssistantContext,
    ContextService,
    TaskContext,
    ViewContext,
)
from onyx_api.services.generators import (
    FineTunedGenerator,
    GenerationRequest,
    GenerationResult,
    InternetSearchGenerator,
    QuestionClassifier,
    RAGGenerator,
    ResponseGenerator,
)
from onyx_api.services.premium_insights import PremiumInsightsService
from onyx_api.services.subscription_service import (
    ProcessingConfig,
    Subscription,
    SubscriptionService,
    UsageStatus,
    get_ai_processing_config,
    log_ai_usage,
)

logger = logging.getLogger(__name__)

MESSAGE_TYPE_TASK = "task_specific"
MESSAGE_TYPE_GENERAL = "general_assistant"
MESSAGE_TYPES = (MESSAGE_TYPE_TASK, MESSAGE_TYPE_GENERAL)
MAX_MESSAGE_LENGTH = 2000

AI_UNAVAILABLE_MESSAGE = (
    "AI processing is temporarily unavailable. Your message has been saved."
)

MessageRow = Union[TaskAIMessage, AssistantMessage]


class ProcessingState(str, Enum):
    RECEIVED = "received"
    QUOTA_CHECKED = "quota_checked"
    DENIED = "denied"
    CONTEXT_GATHERED = "context_gathered"
    GENERATED = "generated"
    PERSISTED = "persisted"
    PERSISTED_USER_ONLY = "persisted_user_only"


TERMINAL_STATES = {
    ProcessingState.DENIED,
    ProcessingState.PERSISTED,
    ProcessingState.PERSISTED_USER_ONLY,
}


@dataclass
class MessageOutcome:
    """Result of one message-processing call."""
    state: ProcessingState
    subscription: Subscription
    usage: UsageStatus
    config: Optional[ProcessingConfig] = None
    user_message: Optional[MessageRow] = None
    ai_message: Optional[MessageRow] = None
    result: Optional[GenerationResult] = None
    premium_features: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    transitions: List[ProcessingState] = field(default_factory=list)

    @property
    def remaining_after(self) -> Optional[int]:
        """Quota left once this request is counted."""
        if self.usage.remaining is None:
            return None
        return max(0, self.usage.remaining - 1)


class AIAssistantService:
    """Runs AI message requests for one database session."""

    def __init__(self, db: AsyncSession, llm: Optional[BaseChatModel] = None):
        self.db = db
        self.llm = llm
        self.subscriptions = SubscriptionService(db)
        self.contexts = ContextService(db)
        self.classifier = QuestionClassifier(llm)

    async def process_message(
        self,
        user_id: str,
        message: str,
        message_type: str,
        task_id: Optional[uuid.UUID] = None,
        view_context: Optional[ViewContext] = None,
    ) -> MessageOutcome:
        transitions = [ProcessingState.RECEIVED]
        message = self._validate(message, message_type, task_id)

        validation = await self.subscriptions.validate_ai_request(user_id)
        transitions.append(ProcessingState.QUOTA_CHECKED)

        if not validation.allowed:
            user_row = await self._save_denied_message(user_id, message, message_type, task_id)
            transitions.append(ProcessingState.DENIED)
            return MessageOutcome(
                state=ProcessingState.DENIED,
                subscription=validation.subscription,
                usage=validation.usage,
                user_message=user_row,
                error=validation.error,
                transitions=transitions,
            )

        subscription = validation.subscription
        config = get_ai_processing_config(subscription.tier)

        task_context: Optional[TaskContext] = None
        assistant_context: Optional[AssistantContext] = None
        if message_type == MESSAGE_TYPE_TASK:
            task_context = await self.contexts.gather_task_context(user_id, task_id, config.context_depth)
        else:
            assistant_context = await self.contexts.gather_assistant_context(
                user_id, view_context, config.context_depth
            )
        transitions.append(ProcessingState.CONTEXT_GATHERED)

        request = GenerationRequest(
            user_id=user_id,
            message=message,
            message_type=message_type,
            config=config,
            task_context=task_context,
            assistant_context=assistant_context,
        )

        try:
            generator, classification = await self.select_generator(request, subscription)
            result = await generator.generate(request)
            if classification is not None:
                result.extras["classification"] = classification
        except Exception as e:
            logger.error(f"AI generation failed for user {user_id}: {e}", exc_info=True)
            # A failed query leaves the transaction aborted; start clean so the message is kept
            await self.db.rollback()
            user_row = self._build_message(user_id, message_type, task_id, message, from_user=True)
            self.db.add(user_row)
            await self.db.commit()
            transitions.append(ProcessingState.PERSISTED_USER_ONLY)
            return MessageOutcome(
                state=ProcessingState.PERSISTED_USER_ONLY,
                subscription=subscription,
                usage=validation.usage,
                config=config,
                user_message=user_row,
                error=AI_UNAVAILABLE_MESSAGE,
                transitions=transitions,
            )

        premium_features = None
        if subscription.processing_type == "premium":
            premium_features = await self._premium_enhancements(user_id, task_context)
        transitions.append(ProcessingState.GENERATED)

        user_row, ai_row = await self._save_exchange(user_id, message_type, task_id, message, result.text)
        transitions.append(ProcessingState.PERSISTED)

        self._log_usage(user_id, subscription.tier, message_type, result.tokens_used)

        return MessageOutcome(
            state=ProcessingState.PERSISTED,
            subscription=subscription,
            usage=validation.usage,
            config=config,
            user_message=user_row,
            ai_message=ai_row,
            result=result,
            premium_features=premium_features,
            transitions=transitions,
        )

    async def select_generator(self, request: GenerationRequest, subscription: Subscription):
        """
        Pick the strategy for this request.

        Plaid goes straight to the fine-tuned models. Other tiers classify the
        question first: personal questions use retrieval over the user's
        history, general ones the model's own knowledge.
        """
        if subscription.tier == SubscriptionTier.PLAID.value:
            return FineTunedGenerator(request.message_type, llm=self.llm), None

        classification = await self.classifier.classify(request.message, request.config)
        generator: ResponseGenerator
        if classification.type == "GENERAL":
            generator = InternetSearchGenerator(llm=self.llm)
        else:
            generator = RAGGenerator(self.db, llm=self.llm)
        return generator, classification.model_dump()

    def _validate(self, message: str, message_type: str, task_id: Optional[uuid.UUID]) -> str:
        message = (message or "").strip()
        if not message or len(message) > MAX_MESSAGE_LENGTH:
            raise AppError(f"message_content must be between 1 and {MAX_MESSAGE_LENGTH} characters", 400)
        if message_type not in MESSAGE_TYPES:
            raise AppError('message_type must be either "task_specific" or "general_assistant"', 400)
        if message_type == MESSAGE_TYPE_TASK and task_id is None:
            raise AppError("task_id is required for task_specific messages", 400)
        return message

    def _build_message(
        self,
        user_id: str,
        message_type: str,
        task_id: Optional[uuid.UUID],
        text: str,
        from_user: bool,
        created_at=None,
    ) -> MessageRow:
        created_at = created_at or utcnow()
        if message_type == MESSAGE_TYPE_TASK:
            return TaskAIMessage(
                task_id=task_id,
                user_id=user_id,
                message=text,
                from_user=from_user,
                from_ai=not from_user,
                created_at=created_at,
                updated_at=created_at,
            )
        return AssistantMessage(
            user_id=user_id,
            message=text,
            from_user=from_user,
            from_ai=not from_user,
            created_at=created_at,
            updated_at=created_at,
        )

    async def _save_denied_message(
        self, user_id: str, message: str, message_type: str, task_id: Optional[uuid.UUID]
    ) -> Optional[MessageRow]:
        """Keep the user's text even when over quota, if its task is theirs."""
        if message_type == MESSAGE_TYPE_TASK:
            if await self.contexts.get_owned_task(user_id, task_id) is None:
                return None
        row = self._build_message(user_id, message_type, task_id, message, from_user=True)
        self.db.add(row)
        await self.db.commit()
        return row

    async def _save_exchange(
        self, user_id: str, message_type: str, task_id: Optional[uuid.UUID], message: str, reply: str
    ):
        """Write the user turn and the AI turn in one commit, strictly ordered."""
        now = utcnow()
        user_row = self._build_message(user_id, message_type, task_id, message, from_user=True, created_at=now)
        ai_row = self._build_message(
            user_id, message_type, task_id, reply, from_user=False,
            created_at=now + timedelta(microseconds=1),
        )
        self.db.add_all([user_row, ai_row])
        await self.db.commit()
        return user_row, ai_row

    async def _premium_enhancements(
        self, user_id: str, task_context: Optional[TaskContext]
    ) -> Optional[Dict[str, Any]]:
        try:
            return await PremiumInsightsService(self.db, user_id).build(task_context)
        except Exception as e:
            logger.error(f"Premium enhancements failed for user {user_id}: {e}", exc_info=True)
            await self.db.rollback()
            return None

    def _log_usage(self, user_id: str, tier: str, message_type: str, tokens_used: int) -> None:
        try:
            log_ai_usage(user_id, tier, message_type, tokens_used)
        except Exception as e:
            logger.warning(f"Failed to log AI usage for {user_id}: {e}")
