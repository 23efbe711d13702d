from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from ajarin.course_service import access
from ajarin.db.database import get_db
from ajarin.user_service.security import Identity, get_current_identity
from .. import engine, schemas

router = APIRouter(tags=["Progress"])

logger = logging.getLogger("progress_service")


@router.get("/material/{material_id}")
async def get_or_create_progress(
    material_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    material = await access.get_material_or_404(db, material_id)
    await access.require_course_access(db, identity.user_id, material.course_id, "track progress")
    progress = await engine.get_or_create(db, identity.user_id, material.id, material.course_id)
    return {"progress": schemas.ProgressOut.model_validate(progress)}


@router.post("/material/{material_id}/toggle")
async def toggle_completion(
    material_id: int,
    data: schemas.ToggleCompletionRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    material = await access.get_material_or_404(db, material_id)
    await access.require_course_access(db, identity.user_id, material.course_id, "track progress")
    progress = await engine.set_completion(db, identity.user_id, material, data.completed)
    return {"progress": schemas.ProgressOut.model_validate(progress)}


@router.post("/material/{material_id}/rate")
async def rate_material(
    material_id: int,
    data: schemas.RateMaterialRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    material = await access.get_material_or_404(db, material_id)
    await access.require_course_access(db, identity.user_id, material.course_id, "rate materials")
    progress = await engine.rate_material(db, identity.user_id, material, data.rating, data.feedback)
    return {"progress": schemas.ProgressOut.model_validate(progress)}


@router.get("/course/{course_id}", response_model=schemas.CourseProgressOut)
async def get_course_progress(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    await access.require_course_access(db, identity.user_id, course_id, "view progress")
    return await engine.course_progress(db, identity.user_id, course_id)


@router.get("/course/{course_id}/leaderboard", response_model=List[schemas.LeaderboardEntry])
async def get_course_leaderboard(
    course_id: int,
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    await access.require_course_access(db, identity.user_id, course_id, "view the leaderboard")
    return await engine.course_leaderboard(db, course_id, limit)


@router.get("/stats", response_model=schemas.UserStatsOut)
async def get_user_stats(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.user_stats(db, identity.user_id)
