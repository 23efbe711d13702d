from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from datetime import datetime
from typing import List, Optional
import logging

from ajarin.db import models
from ajarin.db.database import get_db
from ajarin.errors import ConflictError, ValidationError
from ajarin.progress_service import engine as progress_engine
from ajarin.progress_service.models import MaterialProgress
from ajarin.storage import FileStorage, get_storage
from ajarin.user_service.security import Identity, get_current_identity
from .. import access, schemas

course_router = APIRouter(tags=["Courses"])
material_router = APIRouter(tags=["Materials"])

logger = logging.getLogger("course_service")

MATERIAL_TYPES = ("video", "document", "image", "link")


@course_router.post("/", response_model=schemas.CourseOut, status_code=201)
async def create_course(
    course_data: schemas.CourseCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    if not identity.is_mentor:
        raise HTTPException(status_code=403, detail="Only mentors can create courses")

    result = await db.execute(select(models.Course).filter(models.Course.slug == course_data.slug))
    if result.scalars().first():
        raise HTTPException(status_code=400, detail="Course slug already exists")

    new_course = models.Course(
        slug=course_data.slug,
        title=course_data.title,
        description=course_data.description,
        category=course_data.category,
        level=course_data.level,
        mentor_id=identity.user_id,
        is_published=True,
        created_at=datetime.utcnow(),
    )
    db.add(new_course)
    await db.commit()
    await db.refresh(new_course)
    logger.info(f"Mentor {identity.user_id} created course {new_course.id}")
    return new_course


@course_router.get("/{course_id}", response_model=schemas.CourseOut)
async def get_course_detail(course_id: int, db: AsyncSession = Depends(get_db)):
    return await access.get_course_or_404(db, course_id)


@course_router.post("/{course_id}/enroll", response_model=schemas.EnrollmentOut, status_code=201)
async def enroll(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    course = await access.get_course_or_404(db, course_id)
    if course.mentor_id == identity.user_id:
        raise ValidationError("Mentors cannot enroll in their own course")

    result = await db.execute(select(models.Enrollment).filter_by(user_id=identity.user_id, course_id=course_id))
    enrollment = result.scalars().first()
    if enrollment and enrollment.status == "active":
        raise ConflictError("Already enrolled in this course")

    if enrollment:
        enrollment.status = "active"
        enrollment.enrolled_at = datetime.utcnow()
    else:
        enrollment = models.Enrollment(
            user_id=identity.user_id, course_id=course_id, status="active", enrolled_at=datetime.utcnow()
        )
        db.add(enrollment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Already enrolled in this course")

    logger.info(f"User {identity.user_id} enrolled in course {course_id}")
    return enrollment


@course_router.delete("/{course_id}/enroll")
async def unenroll(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    await access.require_enrollment(db, identity.user_id, course_id)
    result = await db.execute(select(models.Enrollment).filter_by(user_id=identity.user_id, course_id=course_id))
    enrollment = result.scalars().first()
    enrollment.status = "dropped"
    await db.commit()
    logger.info(f"User {identity.user_id} left course {course_id}")
    return {"detail": "Unenrolled from course"}


@course_router.get("/{course_id}/enrollment")
async def check_enrollment(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return {
        "course_id": course_id,
        "is_enrolled": await access.is_enrolled(db, identity.user_id, course_id),
        "is_owner": await access.is_course_owner(db, identity.user_id, course_id),
    }


@material_router.post("/", response_model=schemas.MaterialOut, status_code=201)
async def create_material(
    course_id: int = Form(...),
    title: str = Form(...),
    type: str = Form(...),
    description: Optional[str] = Form(None),
    chapter: str = Form("General"),
    content_url: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
):
    await access.require_course_owner(db, identity.user_id, course_id, "add materials")
    if type not in MATERIAL_TYPES:
        raise ValidationError(f"Material type must be one of: {', '.join(MATERIAL_TYPES)}")
    if not title.strip():
        raise ValidationError("Material title is required")
    if file is None and not content_url:
        raise ValidationError("Provide either a file or a content URL")

    file_info = None
    if file is not None:
        data = await file.read()
        file_info = await storage.store(data, file.filename, file.content_type, f"materials/{course_id}")
        content_url = file_info["url"]

    try:
        result = await db.execute(select(func.max(models.Material.order)).filter(models.Material.course_id == course_id))
        next_order = (result.scalar() or 0) + 1

        material = models.Material(
            course_id=course_id,
            mentor_id=identity.user_id,
            title=title.strip(),
            description=description,
            type=type,
            content_url=content_url,
            file_info=file_info,
            chapter=chapter,
            order=next_order,
            created_at=datetime.utcnow(),
        )
        db.add(material)
        await db.commit()
    except Exception:
        if file_info is not None:
            await storage.delete(file_info["id"])
        raise
    await db.refresh(material)
    logger.info(f"Mentor {identity.user_id} added material {material.id} to course {course_id}")
    return material


@material_router.get("/course/{course_id}", response_model=List[schemas.MaterialAccessOut])
async def list_course_materials(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    is_owner = await access.require_course_access(db, identity.user_id, course_id, "view materials")
    # Computed on every call; lock state is never persisted
    return await progress_engine.materials_with_access(db, identity.user_id, course_id, unlock_all=is_owner)


@material_router.patch("/course/{course_id}/reorder", response_model=List[schemas.MaterialOut])
async def reorder_materials(
    course_id: int,
    data: schemas.ReorderRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    await access.require_course_owner(db, identity.user_id, course_id, "reorder materials")
    if len(set(data.material_ids)) != len(data.material_ids):
        raise ValidationError("Material ids must be unique")

    materials = {m.id: m for m in await access.ordered_course_materials(db, course_id)}
    if any(material_id not in materials for material_id in data.material_ids):
        raise ValidationError("Some material ids are invalid or don't belong to this course")

    for position, material_id in enumerate(data.material_ids, start=1):
        materials[material_id].order = position
    await db.commit()
    return await access.ordered_course_materials(db, course_id)


@material_router.delete("/{material_id}")
async def delete_material(
    material_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
):
    material = await access.get_material_or_404(db, material_id)
    await access.require_course_owner(db, identity.user_id, material.course_id, "delete this material")

    if material.file_info and material.file_info.get("id"):
        await storage.delete(material.file_info["id"])

    await db.execute(delete(MaterialProgress).where(MaterialProgress.material_id == material_id))
    await db.delete(material)
    await db.commit()
    logger.info(f"Mentor {identity.user_id} deleted material {material_id}")
    return {"detail": "Material deleted successfully"}
