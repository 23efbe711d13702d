from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Any
from datetime import datetime

from ajarin.course_service.schemas import FileInfo


class AssignmentBase(BaseModel):
    title: str
    description: str
    instructions: Optional[str] = ""
    max_points: int = 100
    max_attempts: int = 1
    is_published: bool = False
    publish_date: Optional[datetime] = None


class AssignmentCreate(AssignmentBase):
    course_id: int


class AssignmentUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    max_points: Optional[int] = None
    max_attempts: Optional[int] = None
    is_published: Optional[bool] = None
    publish_date: Optional[datetime] = None


class AssignmentOut(AssignmentBase):
    id: int
    course_id: int
    mentor_id: int
    order_index: int
    question_file: Optional[FileInfo] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AssignmentReorderRequest(BaseModel):
    assignment_ids: List[int] = Field(..., min_length=1)


class Revision(BaseModel):
    revision_number: int
    content: Dict[str, Any]
    submitted_at: Optional[str] = None
    feedback_addressed: Optional[str] = ""


class GradingOut(BaseModel):
    score: Optional[float] = None
    max_points: Optional[int] = None
    letter_grade: Optional[str] = None
    passed: Optional[bool] = None
    feedback: Optional[str] = ""
    private_notes: Optional[str] = None
    graded_by: Optional[int] = None
    graded_at: Optional[datetime] = None


class SubmissionOut(BaseModel):
    id: int
    assignment_id: int
    student_id: int
    course_id: int
    submission_type: str
    text_content: Optional[str] = None
    files: List[FileInfo] = []
    url_submission: Optional[str] = None
    status: str
    attempt_number: int
    submitted_at: Optional[datetime] = None
    revisions: List[Revision] = []
    grading: GradingOut
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_submission(cls, submission, include_private_notes: bool = False) -> "SubmissionOut":
        grading = GradingOut(
            score=submission.score,
            max_points=submission.max_points,
            letter_grade=submission.letter_grade,
            passed=submission.passed,
            feedback=submission.feedback or "",
            private_notes=submission.private_notes if include_private_notes else None,
            graded_by=submission.graded_by,
            graded_at=submission.graded_at,
        )
        return cls(
            id=submission.id,
            assignment_id=submission.assignment_id,
            student_id=submission.student_id,
            course_id=submission.course_id,
            submission_type=submission.submission_type,
            text_content=submission.text_content,
            files=submission.files or [],
            url_submission=submission.url_submission,
            status=submission.status,
            attempt_number=submission.attempt_number,
            submitted_at=submission.submitted_at,
            revisions=submission.revisions or [],
            grading=grading,
            created_at=submission.created_at,
            updated_at=submission.updated_at,
        )


class AssignmentDetailOut(BaseModel):
    assignment: AssignmentOut
    my_submission: Optional[SubmissionOut] = None


class AssignmentStatsOut(BaseModel):
    assignment_id: int
    total_submissions: int
    by_status: Dict[str, int]
    pending_grading: int
    graded_count: int
    average_score: Optional[float] = None
    pass_rate: Optional[float] = None


class GradeRequest(BaseModel):
    # Range is checked by the engine
    score: float
    feedback: Optional[str] = ""
    private_notes: Optional[str] = ""


class ReturnForRevisionRequest(BaseModel):
    feedback: str
