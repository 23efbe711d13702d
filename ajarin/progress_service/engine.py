"""Per-learner material completion and sequential unlock.

Completion is binary. Unlocking is never stored: whether a material is
reachable is recomputed from the ordered catalog and the learner's progress
rows on every read.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import case, distinct, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm.exc import StaleDataError

from ajarin.course_service.access import ordered_course_materials
from ajarin.db import models
from ajarin.errors import ConflictError, ValidationError
from .models import MaterialProgress

logger = logging.getLogger("progress_service")

MAX_FEEDBACK_LENGTH = 500


@dataclass
class CourseCompletion:
    percentage: int
    completed_count: int
    total_count: int
    no_materials: bool = False

    @property
    def is_complete(self) -> bool:
        return not self.no_materials and self.percentage == 100


async def find_progress(db: AsyncSession, user_id: int, material_id: int) -> Optional[MaterialProgress]:
    result = await db.execute(
        select(MaterialProgress).filter_by(user_id=user_id, material_id=material_id)
    )
    return result.scalars().first()


async def get_or_create(db: AsyncSession, user_id: int, material_id: int, course_id: int) -> MaterialProgress:
    progress = await find_progress(db, user_id, material_id)
    if progress:
        return progress

    now = datetime.utcnow()
    progress = MaterialProgress(
        user_id=user_id,
        material_id=material_id,
        course_id=course_id,
        is_completed=False,
        marked_completed_at=None,
        feedback="",
        created_at=now,
        updated_at=now,
    )
    db.add(progress)
    try:
        await db.commit()
    except IntegrityError:
        # Another request inserted the same (user, material) first; use its row
        await db.rollback()
        logger.warning(f"Progress race for user {user_id} material {material_id}, fetching existing row")
        progress = await find_progress(db, user_id, material_id)
        if progress is None:
            raise ConflictError("Could not create progress record")
        return progress

    logger.info(f"Created progress for user {user_id} material {material_id}")
    return progress


def mark_completed(progress: MaterialProgress, now: Optional[datetime] = None) -> MaterialProgress:
    now = now or datetime.utcnow()
    progress.is_completed = True
    # Keep the first completion time on repeated calls
    if progress.marked_completed_at is None:
        progress.marked_completed_at = now
    progress.updated_at = now
    return progress


def mark_incomplete(progress: MaterialProgress, now: Optional[datetime] = None) -> MaterialProgress:
    progress.is_completed = False
    progress.marked_completed_at = None
    progress.updated_at = now or datetime.utcnow()
    return progress


def validate_rating(rating, feedback: Optional[str] = "") -> str:
    if isinstance(rating, bool) or not isinstance(rating, int) or rating < 1 or rating > 5:
        raise ValidationError("Rating must be between 1 and 5")
    feedback = (feedback or "").strip()
    if len(feedback) > MAX_FEEDBACK_LENGTH:
        raise ValidationError(f"Feedback cannot exceed {MAX_FEEDBACK_LENGTH} characters")
    return feedback


def rate(progress: MaterialProgress, rating: int, feedback: Optional[str] = "") -> MaterialProgress:
    feedback = validate_rating(rating, feedback)
    progress.rating = rating
    progress.feedback = feedback
    progress.updated_at = datetime.utcnow()
    return progress


async def save(db: AsyncSession, progress: MaterialProgress) -> MaterialProgress:
    progress_id = progress.id
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.warning(f"Concurrent update on progress {progress_id}")
        raise ConflictError("Progress was modified by another request, please retry")
    return progress


async def set_completion(db: AsyncSession, user_id: int, material: models.Material, completed: bool) -> MaterialProgress:
    # A lost insert race rolls back the session and expires `material`
    material_id, course_id = material.id, material.course_id
    progress = await get_or_create(db, user_id, material_id, course_id)
    if completed:
        mark_completed(progress)
    else:
        mark_incomplete(progress)
    await save(db, progress)
    logger.info(f"User {user_id} marked material {material_id} as {'completed' if completed else 'incomplete'}")
    return progress


async def rate_material(db: AsyncSession, user_id: int, material: models.Material, rating: int, feedback: str = "") -> MaterialProgress:
    # Validate before the lazy create so a bad rating leaves nothing behind
    validate_rating(rating, feedback)
    material_id, course_id = material.id, material.course_id
    progress = await get_or_create(db, user_id, material_id, course_id)
    rate(progress, rating, feedback)
    await save(db, progress)
    logger.info(f"User {user_id} rated material {material_id} with {rating}")
    return progress


def completion_from_counts(completed_count: int, total_count: int) -> CourseCompletion:
    if total_count <= 0:
        return CourseCompletion(percentage=0, completed_count=0, total_count=0, no_materials=True)
    # Half rounds up
    percentage = int(math.floor(completed_count * 100 / total_count + 0.5))
    return CourseCompletion(percentage=percentage, completed_count=completed_count, total_count=total_count)


async def compute_course_completion(db: AsyncSession, user_id: int, course_id: int) -> CourseCompletion:
    result = await db.execute(
        select(func.count(models.Material.id)).filter(models.Material.course_id == course_id)
    )
    total = result.scalar() or 0

    # Only rows whose material still belongs to the course count
    result = await db.execute(
        select(func.count(MaterialProgress.id))
        .join(models.Material, models.Material.id == MaterialProgress.material_id)
        .filter(
            MaterialProgress.user_id == user_id,
            MaterialProgress.course_id == course_id,
            MaterialProgress.is_completed == True,  # noqa: E712
            models.Material.course_id == course_id,
        )
    )
    completed = result.scalar() or 0
    return completion_from_counts(completed, total)


def order_materials(materials: Sequence[models.Material]) -> List[models.Material]:
    return sorted(materials, key=lambda m: (m.order, m.id))


def is_unlocked(
    material: models.Material,
    ordered_materials: Sequence[models.Material],
    progress_by_material_id: Dict[int, MaterialProgress],
) -> bool:
    ids = [m.id for m in ordered_materials]
    if material.id not in ids:
        return False
    index = ids.index(material.id)
    if index == 0:
        return True
    previous = progress_by_material_id.get(ids[index - 1])
    return bool(previous and previous.is_completed)


async def progress_by_material(db: AsyncSession, user_id: int, course_id: int) -> Dict[int, MaterialProgress]:
    result = await db.execute(
        select(MaterialProgress).filter_by(user_id=user_id, course_id=course_id)
    )
    return {p.material_id: p for p in result.scalars().all()}


async def materials_with_access(db: AsyncSession, user_id: int, course_id: int, unlock_all: bool = False) -> List[dict]:
    """Ordered catalog of a course with each material's progress and lock state."""
    materials = await ordered_course_materials(db, course_id)
    progress_map = await progress_by_material(db, user_id, course_id)
    items = []
    for material in materials:
        items.append({
            "material": material,
            "progress": progress_map.get(material.id),
            "is_unlocked": unlock_all or is_unlocked(material, materials, progress_map),
        })
    return items


async def course_progress(db: AsyncSession, user_id: int, course_id: int) -> dict:
    completion = await compute_course_completion(db, user_id, course_id)
    materials = await ordered_course_materials(db, course_id)
    progress_map = await progress_by_material(db, user_id, course_id)
    records = [progress_map[m.id] for m in materials if m.id in progress_map]
    return {
        "overview": {
            "course_id": course_id,
            "total": completion.total_count,
            "completed": completion.completed_count,
            "percentage": completion.percentage,
            "no_materials": completion.no_materials,
        },
        "material_progress": records,
        "updated_at": datetime.utcnow(),
    }


async def course_leaderboard(db: AsyncSession, course_id: int, limit: int = 10) -> List[dict]:
    result = await db.execute(
        select(func.count(models.Material.id)).filter(models.Material.course_id == course_id)
    )
    total = result.scalar() or 0

    completed_expr = func.sum(case((MaterialProgress.is_completed == True, 1), else_=0))  # noqa: E712
    result = await db.execute(
        select(
            MaterialProgress.user_id,
            models.User.name,
            completed_expr,
            func.max(MaterialProgress.marked_completed_at),
            func.avg(MaterialProgress.rating),
        )
        .join(models.Material, models.Material.id == MaterialProgress.material_id)
        .join(models.User, models.User.id == MaterialProgress.user_id)
        .filter(MaterialProgress.course_id == course_id, models.Material.course_id == course_id)
        .group_by(MaterialProgress.user_id, models.User.name)
    )

    entries = []
    for user_id, name, completed, latest, avg_rating in result.all():
        completion = completion_from_counts(int(completed or 0), total)
        entries.append({
            "user_id": user_id,
            "user_name": name,
            "completed_materials": completion.completed_count,
            "total_materials": total,
            "completion_percentage": completion.percentage,
            "average_rating": round(float(avg_rating), 2) if avg_rating is not None else None,
            "latest_completion": latest,
        })

    entries.sort(
        key=lambda e: (e["completion_percentage"], e["completed_materials"], e["latest_completion"] or datetime.min),
        reverse=True,
    )
    return entries[:limit]


async def user_stats(db: AsyncSession, user_id: int) -> dict:
    completed_expr = func.sum(case((MaterialProgress.is_completed == True, 1), else_=0))  # noqa: E712
    result = await db.execute(
        select(
            func.count(MaterialProgress.id),
            completed_expr,
            func.count(distinct(MaterialProgress.course_id)),
            func.avg(MaterialProgress.rating),
            func.max(MaterialProgress.updated_at),
        ).filter(MaterialProgress.user_id == user_id)
    )
    total, completed, courses, avg_rating, latest = result.one()
    total = total or 0
    completed = int(completed or 0)

    result = await db.execute(
        select(MaterialProgress, models.Material.title, models.Course.title)
        .join(models.Material, models.Material.id == MaterialProgress.material_id)
        .join(models.Course, models.Course.id == MaterialProgress.course_id)
        .filter(MaterialProgress.user_id == user_id, MaterialProgress.is_completed == True)  # noqa: E712
        .order_by(MaterialProgress.marked_completed_at.desc())
        .limit(5)
    )
    recent = [
        {
            "material_id": progress.material_id,
            "material_title": material_title,
            "course_id": progress.course_id,
            "course_title": course_title,
            "marked_completed_at": progress.marked_completed_at,
        }
        for progress, material_title, course_title in result.all()
    ]

    return {
        "stats": {
            "total_materials": total,
            "completed_materials": completed,
            "completion_rate": round(completed / total * 100, 2) if total else 0,
            "courses_count": courses or 0,
            "average_rating_given": round(float(avg_rating), 2) if avg_rating is not None else None,
            "latest_activity": latest,
        },
        "recent_completions": recent,
    }
