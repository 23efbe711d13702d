from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class ProgressOut(BaseModel):
    id: int
    user_id: int
    material_id: int
    course_id: int
    is_completed: bool
    marked_completed_at: Optional[datetime] = None
    rating: Optional[int] = None
    feedback: Optional[str] = ""
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ToggleCompletionRequest(BaseModel):
    completed: bool


class RateMaterialRequest(BaseModel):
    # Range is checked by the engine so the error shape matches other validation failures
    rating: int
    feedback: Optional[str] = Field("", max_length=2000)


class ProgressOverview(BaseModel):
    course_id: int
    total: int
    completed: int
    percentage: int
    no_materials: bool


class CourseProgressOut(BaseModel):
    overview: ProgressOverview
    material_progress: List[ProgressOut] = []
    updated_at: datetime


class LeaderboardEntry(BaseModel):
    user_id: int
    user_name: str
    completed_materials: int
    total_materials: int
    completion_percentage: int
    average_rating: Optional[float] = None
    latest_completion: Optional[datetime] = None


class RecentCompletion(BaseModel):
    material_id: int
    material_title: str
    course_id: int
    course_title: str
    marked_completed_at: Optional[datetime] = None


class UserStats(BaseModel):
    total_materials: int
    completed_materials: int
    completion_rate: float
    courses_count: int
    average_rating_given: Optional[float] = None
    latest_activity: Optional[datetime] = None


class UserStatsOut(BaseModel):
    stats: UserStats
    recent_completions: List[RecentCompletion] = []
