"""
Milestone endpoints.
"""
import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from onyx_api.api.deps import get_current_user_id
from onyx_api.api.responses import envelope
from onyx_api.core.database import get_db
from onyx_api.services.milestone_service import MilestoneService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/milestones", tags=["milestones"])


class MilestoneResponse(BaseModel):
    id: uuid.UUID
    milestone_type: str
    achieved_at: datetime

    class Config:
        from_attributes = True


@router.get("")
async def list_milestones(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    milestones = await MilestoneService(db).get_user_milestones(user_id)
    return envelope(data=[MilestoneResponse.model_validate(m) for m in milestones])


@router.get("/check")
async def check_milestones(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Run the milestone checks; newly reached milestones are returned once."""
    milestones = await MilestoneService(db).check_all_milestones(user_id)
    return envelope(data={"milestones": milestones, "has_pending": bool(milestones)})


@router.post("/{milestone_type}/dismiss")
async def dismiss_milestone(
    milestone_type: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Mark a milestone as seen so it is never offered again."""
    inserted = await MilestoneService(db).mark_milestone_as_seen(user_id, milestone_type)
    if inserted:
        logger.info(f"User {user_id} dismissed milestone {milestone_type}")
    return envelope(message="Milestone dismissed")


@router.get("/stats")
async def milestone_stats(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return envelope(data=await MilestoneService(db).get_milestone_stats(user_id))
