from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import List, Optional
import logging

from ajarin.db.database import get_db
from ajarin.storage import FileStorage, Upload, get_storage
from ajarin.user_service.security import Identity, get_current_identity
from .. import engine, schemas

router = APIRouter(tags=["Assignments"])

logger = logging.getLogger("assignment_service")


async def _read_uploads(files: Optional[List[UploadFile]]) -> List[Upload]:
    uploads = []
    for file in files or []:
        # Browsers send an empty part when no file was picked
        if not file.filename:
            continue
        uploads.append(Upload(data=await file.read(), filename=file.filename, content_type=file.content_type))
    return uploads


# ==================== ASSIGNMENTS ====================

@router.post("/", response_model=schemas.AssignmentOut, status_code=201)
async def create_assignment(
    course_id: int = Form(...),
    title: str = Form(...),
    description: str = Form(...),
    instructions: str = Form(""),
    max_points: int = Form(100),
    max_attempts: int = Form(1),
    is_published: bool = Form(False),
    publish_date: Optional[datetime] = Form(None),
    question_file: Optional[UploadFile] = File(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
):
    uploads = await _read_uploads([question_file] if question_file else [])
    data = {
        "title": title,
        "description": description,
        "instructions": instructions,
        "max_points": max_points,
        "max_attempts": max_attempts,
        "is_published": is_published,
        "publish_date": publish_date,
    }
    return await engine.create_assignment(
        db, identity.user_id, course_id, data, uploads[0] if uploads else None, storage
    )


@router.get("/course/{course_id}", response_model=List[schemas.AssignmentOut])
async def list_course_assignments(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.list_course_assignments(db, course_id, identity.user_id)


@router.patch("/course/{course_id}/reorder", response_model=List[schemas.AssignmentOut])
async def reorder_assignments(
    course_id: int,
    data: schemas.AssignmentReorderRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.reorder_assignments(db, course_id, identity.user_id, data.assignment_ids)


@router.get("/course/{course_id}/submissions")
async def submissions_for_grading(
    course_id: int,
    assignment_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    submissions = await engine.submissions_for_grading(db, course_id, identity.user_id, assignment_id, status)
    return {
        "submissions": [schemas.SubmissionOut.from_submission(s, include_private_notes=True) for s in submissions],
        "count": len(submissions),
    }


@router.get("/submissions/my")
async def my_submissions(
    course_id: Optional[int] = Query(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    submissions = await engine.my_submissions(db, identity.user_id, course_id)
    return {"submissions": [schemas.SubmissionOut.from_submission(s) for s in submissions]}


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    detail = await engine.submission_detail(db, submission_id, identity.user_id)
    return {"submission": schemas.SubmissionOut.from_submission(detail["submission"], detail["is_owner"])}


@router.post("/submissions/{submission_id}/grade")
async def grade_submission(
    submission_id: int,
    data: schemas.GradeRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    submission = await engine.grade(
        db, submission_id, identity.user_id, data.score, data.feedback, data.private_notes
    )
    return {"submission": schemas.SubmissionOut.from_submission(submission, include_private_notes=True)}


@router.post("/submissions/{submission_id}/return")
async def return_submission(
    submission_id: int,
    data: schemas.ReturnForRevisionRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    submission = await engine.return_for_revision(db, submission_id, identity.user_id, data.feedback)
    return {"submission": schemas.SubmissionOut.from_submission(submission, include_private_notes=True)}


@router.get("/{assignment_id}", response_model=schemas.AssignmentDetailOut)
async def get_assignment(
    assignment_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    detail = await engine.assignment_detail(db, assignment_id, identity.user_id)
    my_submission = detail["my_submission"]
    return {
        "assignment": detail["assignment"],
        "my_submission": schemas.SubmissionOut.from_submission(my_submission) if my_submission else None,
    }


@router.patch("/{assignment_id}", response_model=schemas.AssignmentOut)
async def update_assignment(
    assignment_id: int,
    data: schemas.AssignmentUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.update_assignment(db, assignment_id, identity.user_id, data.model_dump(exclude_unset=True))


@router.put("/{assignment_id}/question-file", response_model=schemas.AssignmentOut)
async def replace_question_file(
    assignment_id: int,
    question_file: UploadFile = File(...),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
):
    uploads = await _read_uploads([question_file])
    return await engine.update_assignment(
        db, assignment_id, identity.user_id, {}, uploads[0] if uploads else None, storage
    )


@router.delete("/{assignment_id}")
async def delete_assignment(
    assignment_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
):
    await engine.delete_assignment(db, assignment_id, identity.user_id, storage)
    return {"detail": "Assignment deleted successfully"}


@router.get("/{assignment_id}/stats", response_model=schemas.AssignmentStatsOut)
async def get_assignment_stats(
    assignment_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.assignment_stats(db, assignment_id, identity.user_id)


# ==================== SUBMISSIONS ====================

@router.post("/{assignment_id}/submit", status_code=201)
async def submit_assignment(
    assignment_id: int,
    text_content: Optional[str] = Form(None, alias="textContent"),
    url: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
):
    uploads = await _read_uploads(files)
    submission = await engine.submit(
        db, assignment_id, identity.user_id, text=text_content, url=url, uploads=uploads, storage=storage
    )
    return {"submission": schemas.SubmissionOut.from_submission(submission)}


@router.post("/{assignment_id}/draft")
async def save_draft(
    assignment_id: int,
    text_content: Optional[str] = Form(None, alias="textContent"),
    url: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
):
    uploads = await _read_uploads(files)
    submission = await engine.save_draft(
        db, assignment_id, identity.user_id, text=text_content, url=url, uploads=uploads, storage=storage
    )
    return {"submission": schemas.SubmissionOut.from_submission(submission)}
