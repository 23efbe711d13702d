"""Enrollment and ownership checks the core engines depend on."""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ajarin.db import models
from ajarin.errors import NotFoundError, PermissionDenied

logger = logging.getLogger("course_service")


async def get_course(db: AsyncSession, course_id: int) -> Optional[models.Course]:
    result = await db.execute(select(models.Course).filter(models.Course.id == course_id))
    return result.scalars().first()


async def get_course_or_404(db: AsyncSession, course_id: int) -> models.Course:
    course = await get_course(db, course_id)
    if not course:
        raise NotFoundError("Course not found")
    return course


async def get_material_or_404(db: AsyncSession, material_id: int) -> models.Material:
    result = await db.execute(select(models.Material).filter(models.Material.id == material_id))
    material = result.scalars().first()
    if not material:
        raise NotFoundError("Material not found")
    return material


async def get_user_or_404(db: AsyncSession, user_id: int) -> models.User:
    result = await db.execute(select(models.User).filter(models.User.id == user_id))
    user = result.scalars().first()
    if not user:
        raise NotFoundError("User not found")
    return user


async def is_enrolled(db: AsyncSession, user_id: int, course_id: int) -> bool:
    result = await db.execute(
        select(models.Enrollment.id).filter(
            models.Enrollment.user_id == user_id,
            models.Enrollment.course_id == course_id,
            models.Enrollment.status == "active",
        )
    )
    return result.first() is not None


async def is_course_owner(db: AsyncSession, user_id: int, course_id: int) -> bool:
    result = await db.execute(
        select(models.Course.id).filter(models.Course.id == course_id, models.Course.mentor_id == user_id)
    )
    return result.first() is not None


async def require_course_owner(db: AsyncSession, user_id: int, course_id: int, action: str = "manage this course"):
    # Same answer whether the course is missing or owned by someone else
    if not await is_course_owner(db, user_id, course_id):
        logger.warning(f"User {user_id} is not the mentor of course {course_id}")
        raise PermissionDenied(f"You don't have permission to {action}")


async def require_enrollment(db: AsyncSession, user_id: int, course_id: int, action: str = "access this course"):
    if not await is_enrolled(db, user_id, course_id):
        logger.warning(f"User {user_id} is not enrolled in course {course_id}")
        raise PermissionDenied(f"You need to enroll in this course to {action}")


async def require_course_access(db: AsyncSession, user_id: int, course_id: int, action: str = "access this course") -> bool:
    """Owner or enrolled learner. Returns True when the caller is the owner."""
    if await is_course_owner(db, user_id, course_id):
        return True
    await require_enrollment(db, user_id, course_id, action)
    return False


async def ordered_course_materials(db: AsyncSession, course_id: int) -> List[models.Material]:
    result = await db.execute(
        select(models.Material)
        .filter(models.Material.course_id == course_id)
        .order_by(models.Material.order.asc(), models.Material.id.asc())
    )
    return list(result.scalars().all())
