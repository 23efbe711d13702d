from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from ajarin.progress_service.schemas import ProgressOut


class FileInfo(BaseModel):
    id: Optional[str] = None
    url: str
    name: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None


class CourseBase(BaseModel):
    slug: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None


class CourseCreate(CourseBase):
    # mentor_id comes from the token
    pass


class CourseOut(CourseBase):
    id: int
    mentor_id: int
    is_published: Optional[bool] = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EnrollmentOut(BaseModel):
    id: int
    user_id: int
    course_id: int
    status: str
    enrolled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MaterialOut(BaseModel):
    id: int
    course_id: int
    title: str
    description: Optional[str] = None
    type: str
    content_url: Optional[str] = None
    file_info: Optional[FileInfo] = None
    chapter: Optional[str] = None
    order: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MaterialAccessOut(BaseModel):
    material: MaterialOut
    progress: Optional[ProgressOut] = None
    is_unlocked: bool


class ReorderRequest(BaseModel):
    material_ids: List[int] = Field(..., min_length=1)
