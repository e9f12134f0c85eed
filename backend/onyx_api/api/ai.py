"""
AI endpoints: assistant messages, subscription status and small task helpers.
"""
import logging
import uuid
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.messages import MessageResponse, TaskMessageResponse
from onyx_api.api.responses import envelope
from onyx_api.api.tasks import TaskResponse, ensure_folder_owned
from onyx_api.core.database import get_db
from onyx_api.core.errors import AppError
from onyx_api.core.timeutil import as_utc, utcnow
from onyx_api.models.message import AssistantMessage, TaskAIMessage
from onyx_api.models.task import Task
from onyx_api.services.ai_assistant_service import (
    AIAssistantService,
    MessageOutcome,
    ProcessingState,
)
from onyx_api.services.context_service import ViewContext
from onyx_api.services.subscription_service import (
    AIRequestValidation,
    SubscriptionService,
    get_ai_processing_config,
)
from onyx_api.services.task_assist_service import TaskAssistService, create_onboarding_tasks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class AIMessageRequest(BaseModel):
    message_content: str = Field(..., description="User's message, 1-2000 characters")
    message_type: str = Field(..., description="task_specific or general_assistant")
    task_id: Optional[uuid.UUID] = None
    view_context: Optional[ViewContext] = None

    class Config:
        json_schema_extra = {
            "example": {
                "message_content": "How should I break this task down?",
                "message_type": "task_specific",
                "task_id": "3fa85f64-5717-4562-b3fc-2c963f66afa6",
            }
        }


class ParseDateRequest(BaseModel):
    date_input: str = Field(..., min_length=1, max_length=200)


class OnboardingRequest(BaseModel):
    folder_id: Optional[uuid.UUID] = None


class SmartTaskRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    due_date_input: Optional[str] = Field(None, max_length=200)
    folder_id: Optional[uuid.UUID] = None


def _message_payload(row: Optional[Union[TaskAIMessage, AssistantMessage]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    schema = TaskMessageResponse if isinstance(row, TaskAIMessage) else MessageResponse
    return schema.model_validate(row).model_dump(mode="json")


def _subscription_info(outcome: MessageOutcome) -> Dict[str, Any]:
    usage = outcome.usage
    # A stored user message counts toward today's usage, even when denied
    counted = usage.usage
    if usage.limit is not None and outcome.user_message is not None:
        counted += 1
    return {
        "tier": outcome.subscription.tier,
        "processing_type": outcome.subscription.processing_type,
        "daily_limit": usage.limit,
        "usage_today": counted,
        "remaining_requests": outcome.remaining_after,
        "unlimited": outcome.subscription.limits.unlimited,
    }


def _quota_denied(validation: AIRequestValidation, data: Optional[Dict[str, Any]] = None) -> HTTPException:
    detail: Dict[str, Any] = {
        "error": validation.error,
        "subscription_info": {
            "tier": validation.subscription.tier,
            "daily_limit": validation.usage.limit,
            "usage_today": validation.usage.usage,
            "remaining_requests": validation.usage.remaining,
        },
    }
    if data is not None:
        detail["data"] = data
    return HTTPException(status_code=429, detail=detail)


async def _require_quota(db: AsyncSession, user_id: str) -> AIRequestValidation:
    validation = await SubscriptionService(db).validate_ai_request(user_id)
    if not validation.allowed:
        raise _quota_denied(validation)
    return validation


@router.post("/message", status_code=201)
async def send_ai_message(
    body: AIMessageRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Send a message to the AI assistant.

    - 201 with ``user_message`` and ``ai_response`` on success
    - 201 with only ``user_message`` when generation failed
    - 429 with ``data.user_message`` when the daily quota is exhausted
    """
    outcome = await AIAssistantService(db).process_message(
        user_id,
        body.message_content,
        body.message_type,
        task_id=body.task_id,
        view_context=body.view_context,
    )

    if outcome.state == ProcessingState.DENIED:
        detail = {
            "error": outcome.error,
            "data": {"user_message": _message_payload(outcome.user_message)},
            "subscription_info": _subscription_info(outcome),
        }
        raise HTTPException(status_code=429, detail=detail)

    if outcome.state == ProcessingState.PERSISTED_USER_ONLY:
        return envelope(
            data={"user_message": _message_payload(outcome.user_message), "ai_response": None},
            message=outcome.error,
            subscription_info=_subscription_info(outcome),
        )

    result = outcome.result
    metadata = {
        "strategy": result.strategy,
        "model": result.model,
        "tokens_used": result.tokens_used,
        "context_depth": outcome.config.context_depth,
        **result.extras,
    }
    return envelope(
        data={
            "user_message": _message_payload(outcome.user_message),
            "ai_response": _message_payload(outcome.ai_message),
            "premium_features": outcome.premium_features,
        },
        message="AI response generated successfully",
        subscription_info=_subscription_info(outcome),
        metadata=metadata,
    )


@router.get("/subscription-status")
async def subscription_status(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    service = SubscriptionService(db)
    subscription = await service.get_user_subscription(user_id)
    usage = await service.check_daily_usage(user_id, subscription.tier)
    config = get_ai_processing_config(subscription.tier)
    return envelope(data={
        "subscription": subscription.tier,
        "processing_type": subscription.processing_type,
        "limits": subscription.limits.model_dump(),
        "usage": usage.model_dump(),
        "features": config.features,
        "model": config.model,
        "context_depth": config.context_depth,
    })


@router.get("/suggestion")
async def task_suggestion(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await _require_quota(db, user_id)
    suggestion = await TaskAssistService().generate_task_suggestion()
    return envelope(data=suggestion.model_dump())


@router.post("/parse-date")
async def parse_date(
    body: ParseDateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await _require_quota(db, user_id)
    parsed = await TaskAssistService().parse_due_date(body.date_input.strip())
    return envelope(data=parsed.model_dump())


@router.post("/onboarding-tasks", status_code=201)
async def onboarding_tasks(
    body: Optional[OnboardingRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    folder_id = body.folder_id if body else None
    await ensure_folder_owned(db, folder_id, user_id)
    tasks = await create_onboarding_tasks(db, user_id, folder_id)
    await db.commit()
    for task in tasks:
        await db.refresh(task)
    logger.info(f"Created {len(tasks)} onboarding tasks for {user_id}")
    return envelope(
        data=[TaskResponse.model_validate(t) for t in tasks],
        message=f"Created {len(tasks)} onboarding tasks",
    )


@router.post("/create-task-smart", status_code=201)
async def create_task_smart(
    body: SmartTaskRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a task, reading ``due_date_input`` as natural language.

    When parsing fails, or lands in the past, the task is still created
    without a due date.
    """
    title = body.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required and cannot be empty")
    await ensure_folder_owned(db, body.folder_id, user_id)

    task = Task(
        user_id=user_id,
        folder_id=body.folder_id,
        title=title,
        description=body.description.strip() if body.description else None,
    )

    parsed_date = None
    if body.due_date_input and body.due_date_input.strip():
        try:
            parsed_date = await TaskAssistService().parse_due_date(body.due_date_input.strip())
        except AppError as e:
            logger.warning(f"Creating task without due date; could not parse {body.due_date_input!r}: {e.message}")

    if parsed_date is not None:
        if parsed_date.is_repeating:
            task.is_repeating = True
            task.repeat_rule = (parsed_date.due_date or body.due_date_input)[:255]
        else:
            due_date = parsed_date.as_datetime()
            if due_date and as_utc(due_date) < utcnow():
                logger.warning(f"Creating task without due date; {body.due_date_input!r} parsed to past {due_date}")
                parsed_date = None
            else:
                task.due_date = due_date

    db.add(task)
    await db.commit()
    await db.refresh(task)

    return envelope(
        data=TaskResponse.model_validate(task),
        message="Task created successfully",
        parsed_date=parsed_date.model_dump() if parsed_date else None,
    )
