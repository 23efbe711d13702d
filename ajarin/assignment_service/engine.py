"""Assignment management and the submission/grading lifecycle.

One submission row exists per (assignment, student) lineage. Submitting
again appends the previous content to ``revisions`` instead of adding a row,
so ``attempt_number`` is fixed when the row is created.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm.exc import StaleDataError

from ajarin.course_service import access
from ajarin.errors import ConflictError, NotFoundError, PermissionDenied, StorageError, ValidationError
from ajarin.storage import FileStorage, Upload, validate_submission_files
from .grading import (
    MAX_FEEDBACK_LENGTH,
    MAX_PRIVATE_NOTES_LENGTH,
    PENDING_STATUSES,
    SubmissionAction,
    SubmissionStatus,
    build_content,
    check_content,
    next_status,
    validate_score,
)
from .models import Assignment, AssignmentSubmission

logger = logging.getLogger("assignment_service")

EDITABLE_FIELDS = ("title", "description", "instructions", "max_points", "max_attempts", "is_published", "publish_date")


async def _discard_uploads(storage: Optional[FileStorage], stored: List[dict]):
    """Remove files stored by a request that failed before it was committed."""
    for descriptor in stored:
        try:
            await storage.delete(descriptor["id"])
        except StorageError as e:
            # The original failure is the one the caller sees
            logger.error(f"Could not remove orphaned file {descriptor['id']}: {e}")


# ==================== ASSIGNMENTS ====================

async def get_assignment_or_404(db: AsyncSession, assignment_id: int) -> Assignment:
    result = await db.execute(select(Assignment).filter(Assignment.id == assignment_id))
    assignment = result.scalars().first()
    if not assignment:
        raise NotFoundError("Assignment not found")
    return assignment


def _check_assignment_fields(data: dict):
    if "title" in data and not (data["title"] or "").strip():
        raise ValidationError("Assignment title is required")
    if "description" in data and not (data["description"] or "").strip():
        raise ValidationError("Assignment description is required")
    if "max_points" in data and (data["max_points"] is None or data["max_points"] < 1):
        raise ValidationError("max_points must be at least 1")
    if "max_attempts" in data and (data["max_attempts"] is None or data["max_attempts"] < 1):
        raise ValidationError("max_attempts must be at least 1")


async def create_assignment(
    db: AsyncSession,
    mentor_id: int,
    course_id: int,
    data: dict,
    question_file: Optional[Upload] = None,
    storage: Optional[FileStorage] = None,
) -> Assignment:
    await access.require_course_owner(db, mentor_id, course_id, "create assignments")
    data = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
    for required in ("title", "description"):
        data.setdefault(required, "")
    _check_assignment_fields(data)

    result = await db.execute(select(func.max(Assignment.order_index)).filter(Assignment.course_id == course_id))
    next_order = (result.scalar() or 0) + 1

    publish_date = data.get("publish_date")
    if data.get("is_published") and publish_date is None:
        publish_date = datetime.utcnow()

    stored = []
    try:
        if question_file is not None:
            stored.append(await storage.store_upload(question_file, f"assignments/{course_id}/questions"))

        now = datetime.utcnow()
        assignment = Assignment(
            course_id=course_id,
            mentor_id=mentor_id,
            title=data["title"].strip(),
            description=data["description"].strip(),
            instructions=(data.get("instructions") or "").strip(),
            question_file=stored[0] if stored else None,
            max_points=data.get("max_points") or 100,
            max_attempts=data.get("max_attempts") or 1,
            order_index=next_order,
            is_published=bool(data.get("is_published")),
            publish_date=publish_date,
            created_at=now,
            updated_at=now,
        )
        db.add(assignment)
        await db.commit()
    except Exception:
        await _discard_uploads(storage, stored)
        raise
    logger.info(f"Mentor {mentor_id} created assignment {assignment.id} in course {course_id}")
    return assignment


async def update_assignment(
    db: AsyncSession,
    assignment_id: int,
    mentor_id: int,
    updates: dict,
    question_file: Optional[Upload] = None,
    storage: Optional[FileStorage] = None,
) -> Assignment:
    assignment = await get_assignment_or_404(db, assignment_id)
    await access.require_course_owner(db, mentor_id, assignment.course_id, "update this assignment")
    updates = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS}
    _check_assignment_fields(updates)

    old_file = assignment.question_file
    stored = []
    try:
        if question_file is not None:
            stored.append(await storage.store_upload(question_file, f"assignments/{assignment.course_id}/questions"))
            assignment.question_file = stored[0]

        for field, value in updates.items():
            if isinstance(value, str):
                value = value.strip()
            setattr(assignment, field, value)
        if updates.get("is_published") and assignment.publish_date is None:
            assignment.publish_date = datetime.utcnow()
        assignment.updated_at = datetime.utcnow()

        await db.commit()
    except Exception:
        await _discard_uploads(storage, stored)
        raise

    # The old file goes only once the new one is committed
    if stored and old_file and old_file.get("id"):
        await storage.delete(old_file["id"])
    logger.info(f"Mentor {mentor_id} updated assignment {assignment_id}")
    return assignment


async def delete_assignment(db: AsyncSession, assignment_id: int, mentor_id: int, storage: Optional[FileStorage] = None):
    assignment = await get_assignment_or_404(db, assignment_id)
    await access.require_course_owner(db, mentor_id, assignment.course_id, "delete this assignment")

    result = await db.execute(
        select(func.count(AssignmentSubmission.id)).filter(AssignmentSubmission.assignment_id == assignment_id)
    )
    blocking = result.scalar() or 0
    if blocking:
        logger.warning(f"Refused to delete assignment {assignment_id} with {blocking} submissions")
        raise ConflictError(
            f"Cannot delete assignment with {blocking} existing submissions",
            blocking_submissions=blocking,
        )

    if assignment.question_file and assignment.question_file.get("id") and storage is not None:
        await storage.delete(assignment.question_file["id"])

    await db.delete(assignment)
    await db.commit()
    logger.info(f"Mentor {mentor_id} deleted assignment {assignment_id}")


async def reorder_assignments(db: AsyncSession, course_id: int, mentor_id: int, assignment_ids: Sequence[int]) -> List[Assignment]:
    await access.require_course_owner(db, mentor_id, course_id, "reorder assignments")
    if len(set(assignment_ids)) != len(assignment_ids):
        raise ValidationError("Assignment ids must be unique")

    result = await db.execute(select(Assignment).filter(Assignment.course_id == course_id))
    assignments = {a.id: a for a in result.scalars().all()}
    if any(assignment_id not in assignments for assignment_id in assignment_ids):
        raise ValidationError("Some assignment ids are invalid or don't belong to this course")

    now = datetime.utcnow()
    for position, assignment_id in enumerate(assignment_ids, start=1):
        assignments[assignment_id].order_index = position
        assignments[assignment_id].updated_at = now
    await db.commit()
    return sorted(assignments.values(), key=lambda a: (a.order_index, a.id))


async def list_course_assignments(db: AsyncSession, course_id: int, user_id: int, now: Optional[datetime] = None) -> List[Assignment]:
    is_owner = await access.require_course_access(db, user_id, course_id, "view assignments")
    result = await db.execute(
        select(Assignment).filter(Assignment.course_id == course_id).order_by(Assignment.order_index, Assignment.id)
    )
    assignments = list(result.scalars().all())
    if is_owner:
        return assignments
    return [a for a in assignments if a.is_open(now)]


async def assignment_detail(db: AsyncSession, assignment_id: int, user_id: int) -> dict:
    assignment = await get_assignment_or_404(db, assignment_id)
    is_owner = await access.require_course_access(db, user_id, assignment.course_id, "view this assignment")
    if not is_owner and not assignment.is_open():
        raise NotFoundError("Assignment not found")
    my_submission = None if is_owner else await latest_submission(db, assignment_id, user_id)
    return {"assignment": assignment, "my_submission": my_submission, "is_owner": is_owner}


async def assignment_stats(db: AsyncSession, assignment_id: int, mentor_id: int) -> dict:
    assignment = await get_assignment_or_404(db, assignment_id)
    await access.require_course_owner(db, mentor_id, assignment.course_id, "view assignment statistics")

    result = await db.execute(
        select(AssignmentSubmission.status, func.count(AssignmentSubmission.id))
        .filter(AssignmentSubmission.assignment_id == assignment_id)
        .group_by(AssignmentSubmission.status)
    )
    by_status = {status.value: 0 for status in SubmissionStatus}
    for status, count in result.all():
        by_status[status] = count

    graded_filter = (AssignmentSubmission.assignment_id == assignment_id, AssignmentSubmission.score.isnot(None))
    result = await db.execute(
        select(func.count(AssignmentSubmission.id), func.avg(AssignmentSubmission.score)).filter(*graded_filter)
    )
    graded, average = result.one()
    graded = graded or 0
    result = await db.execute(
        select(func.count(AssignmentSubmission.id)).filter(*graded_filter, AssignmentSubmission.passed.is_(True))
    )
    passed = result.scalar() or 0

    return {
        "assignment_id": assignment_id,
        "total_submissions": sum(by_status.values()),
        "by_status": by_status,
        "pending_grading": sum(by_status[s.value] for s in PENDING_STATUSES),
        "graded_count": graded,
        "average_score": round(float(average), 2) if average is not None else None,
        "pass_rate": round(passed / graded * 100, 2) if graded else None,
    }


# ==================== SUBMISSIONS ====================

async def latest_submission(db: AsyncSession, assignment_id: int, student_id: int) -> Optional[AssignmentSubmission]:
    result = await db.execute(
        select(AssignmentSubmission)
        .filter_by(assignment_id=assignment_id, student_id=student_id)
        .order_by(AssignmentSubmission.attempt_number.desc())
    )
    return result.scalars().first()


async def get_submission_or_404(db: AsyncSession, submission_id: int) -> AssignmentSubmission:
    result = await db.execute(select(AssignmentSubmission).filter(AssignmentSubmission.id == submission_id))
    submission = result.scalars().first()
    if not submission:
        raise NotFoundError("Submission not found")
    return submission


async def _save(db: AsyncSession, submission: AssignmentSubmission) -> AssignmentSubmission:
    submission_id = submission.id
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.warning(f"Concurrent update on submission {submission_id}")
        raise ConflictError("Submission was modified by another request, please retry")
    return submission


async def _open_assignment_for_student(db: AsyncSession, assignment_id: int, student_id: int, now: datetime) -> Assignment:
    assignment = await get_assignment_or_404(db, assignment_id)
    await access.require_enrollment(db, student_id, assignment.course_id, "submit assignments")
    if not assignment.is_open(now):
        raise ConflictError("Assignment is not open for submissions")
    return assignment


async def _collect_content(storage, assignment, student_id, text, files, url, uploads, stored: List[dict]) -> dict:
    """Upload new files into ``stored`` and build the content; ``stored`` is left partial on failure."""
    files = list(files or [])
    if uploads:
        if storage is None:
            raise ValidationError("File uploads are not available")
        for upload in uploads:
            descriptor = await storage.store_upload(upload, f"assignments/{assignment.course_id}/submissions/{student_id}")
            stored.append(descriptor)
            files.append(descriptor)
    return build_content(text, files, url)


def _append_revision(submission: AssignmentSubmission, content: dict, now: datetime):
    revisions = list(submission.revisions or [])
    revisions.append({
        "revision_number": len(revisions) + 1,
        "content": submission.content_snapshot(),
        "submitted_at": submission.submitted_at.isoformat() if submission.submitted_at else None,
        "feedback_addressed": submission.feedback or "",
    })
    submission.revisions = revisions
    submission.apply_content(content)
    # A new revision is ungraded again
    submission.clear_grading()
    submission.status = next_status(submission.status, SubmissionAction.RESUBMIT).value
    submission.submitted_at = now


async def _new_submission(db, assignment, student_id, content, status, now) -> Optional[AssignmentSubmission]:
    """Insert the first row for (assignment, student).

    Returns None when another request already created it; the caller then
    works on that row instead.
    """
    assignment_id = assignment.id
    result = await db.execute(
        select(func.count(AssignmentSubmission.id)).filter_by(assignment_id=assignment_id, student_id=student_id)
    )
    prior_attempts = result.scalar() or 0
    if prior_attempts:
        logger.warning(f"Submission for student {student_id} assignment {assignment_id} appeared concurrently")
        return None

    submission = AssignmentSubmission(
        assignment_id=assignment_id,
        student_id=student_id,
        course_id=assignment.course_id,
        status=status.value,
        max_points=assignment.max_points,
        attempt_number=prior_attempts + 1,
        submitted_at=now if status == SubmissionStatus.SUBMITTED else None,
        revisions=[],
        feedback="",
        private_notes="",
        created_at=now,
    )
    submission.apply_content(content)
    db.add(submission)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"Submission race for student {student_id} assignment {assignment_id}, using the winner's row")
        return None
    return submission


async def submit(
    db: AsyncSession,
    assignment_id: int,
    student_id: int,
    text: Optional[str] = None,
    files: Optional[List[dict]] = None,
    url: Optional[str] = None,
    uploads: Sequence[Upload] = (),
    storage: Optional[FileStorage] = None,
    now: Optional[datetime] = None,
) -> AssignmentSubmission:
    now = now or datetime.utcnow()
    assignment = await _open_assignment_for_student(db, assignment_id, student_id, now)
    check_content(text, url, len(files or []) + len(uploads))
    validate_submission_files(uploads)

    existing = await latest_submission(db, assignment_id, student_id)
    if existing is not None and existing.status != SubmissionStatus.DRAFT.value:
        # Reject before anything is uploaded
        next_status(existing.status, SubmissionAction.RESUBMIT)

    stored = []
    try:
        content = await _collect_content(storage, assignment, student_id, text, files, url, uploads, stored)
        if existing is None:
            submission = await _new_submission(
                db, assignment, student_id, content, next_status(SubmissionStatus.DRAFT, SubmissionAction.SUBMIT), now
            )
            if submission is not None:
                logger.info(f"Student {student_id} submitted assignment {assignment_id} (attempt {submission.attempt_number})")
                return submission
            # Another request created the row first; this one becomes a revision of it
            existing = await latest_submission(db, assignment_id, student_id)
            if existing is None:
                raise ConflictError("Could not record submission, please retry")

        if existing.status == SubmissionStatus.DRAFT.value:
            existing.apply_content(content)
            existing.status = next_status(existing.status, SubmissionAction.SUBMIT).value
            existing.submitted_at = now
            logger.info(f"Student {student_id} submitted draft {existing.id}")
        else:
            _append_revision(existing, content, now)
            logger.info(f"Student {student_id} revised submission {existing.id} (revision {len(existing.revisions)})")
        return await _save(db, existing)
    except Exception:
        await _discard_uploads(storage, stored)
        raise


async def save_draft(
    db: AsyncSession,
    assignment_id: int,
    student_id: int,
    text: Optional[str] = None,
    files: Optional[List[dict]] = None,
    url: Optional[str] = None,
    uploads: Sequence[Upload] = (),
    storage: Optional[FileStorage] = None,
    now: Optional[datetime] = None,
) -> AssignmentSubmission:
    now = now or datetime.utcnow()
    assignment = await _open_assignment_for_student(db, assignment_id, student_id, now)
    check_content(text, url, len(files or []) + len(uploads))
    validate_submission_files(uploads)

    existing = await latest_submission(db, assignment_id, student_id)
    if existing is not None and existing.status != SubmissionStatus.DRAFT.value:
        raise ConflictError("This assignment has already been submitted", status=existing.status)

    stored = []
    try:
        content = await _collect_content(storage, assignment, student_id, text, files, url, uploads, stored)
        if existing is None:
            draft = await _new_submission(db, assignment, student_id, content, SubmissionStatus.DRAFT, now)
            if draft is None:
                raise ConflictError("A submission for this assignment was created concurrently, please retry")
            return draft

        existing.apply_content(content)
        return await _save(db, existing)
    except Exception:
        await _discard_uploads(storage, stored)
        raise


def _check_grading_text(feedback: Optional[str], private_notes: Optional[str]):
    if feedback and len(feedback) > MAX_FEEDBACK_LENGTH:
        raise ValidationError(f"Feedback cannot exceed {MAX_FEEDBACK_LENGTH} characters")
    if private_notes and len(private_notes) > MAX_PRIVATE_NOTES_LENGTH:
        raise ValidationError(f"Private notes cannot exceed {MAX_PRIVATE_NOTES_LENGTH} characters")


async def _submission_for_grader(db: AsyncSession, submission_id: int, grader_id: int, action: str) -> AssignmentSubmission:
    submission = await get_submission_or_404(db, submission_id)
    if not await access.is_course_owner(db, grader_id, submission.course_id):
        logger.warning(f"User {grader_id} tried to {action} submission {submission_id}")
        raise PermissionDenied(f"You can only {action} submissions for your own assignments")
    return submission


async def grade(
    db: AsyncSession,
    submission_id: int,
    grader_id: int,
    score,
    feedback: Optional[str] = "",
    private_notes: Optional[str] = "",
    now: Optional[datetime] = None,
) -> AssignmentSubmission:
    submission = await _submission_for_grader(db, submission_id, grader_id, "grade")
    score = validate_score(score)
    _check_grading_text(feedback, private_notes)
    new_status = next_status(submission.status, SubmissionAction.GRADE)

    submission.score = score
    submission.feedback = (feedback or "").strip()
    submission.private_notes = (private_notes or "").strip()
    submission.graded_by = grader_id
    submission.graded_at = now or datetime.utcnow()
    submission.status = new_status.value
    submission.derive_grade()

    await _save(db, submission)
    logger.info(f"Mentor {grader_id} graded submission {submission_id}: {score} ({submission.letter_grade})")
    return submission


async def return_for_revision(db: AsyncSession, submission_id: int, grader_id: int, feedback: str) -> AssignmentSubmission:
    submission = await _submission_for_grader(db, submission_id, grader_id, "return")
    feedback = (feedback or "").strip()
    if not feedback:
        raise ValidationError("Feedback is required when returning a submission for revision")
    _check_grading_text(feedback, None)
    new_status = next_status(submission.status, SubmissionAction.RETURN_FOR_REVISION)

    submission.status = new_status.value
    submission.feedback = feedback

    await _save(db, submission)
    logger.info(f"Mentor {grader_id} returned submission {submission_id} for revision")
    return submission


async def submissions_for_grading(
    db: AsyncSession,
    course_id: int,
    grader_id: int,
    assignment_id: Optional[int] = None,
    status: Optional[str] = None,
) -> List[AssignmentSubmission]:
    """Grading queue for a course, oldest submission first."""
    await access.require_course_owner(db, grader_id, course_id, "grade submissions in this course")

    # Drafts have not been handed in yet
    query = select(AssignmentSubmission).filter(
        AssignmentSubmission.course_id == course_id,
        AssignmentSubmission.status != SubmissionStatus.DRAFT.value,
    )
    if assignment_id is not None:
        query = query.filter(AssignmentSubmission.assignment_id == assignment_id)
    if status is None:
        query = query.filter(AssignmentSubmission.status.in_([s.value for s in PENDING_STATUSES]))
    elif status != "all":
        try:
            status = SubmissionStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown submission status: {status}")
        if status == SubmissionStatus.DRAFT.value:
            raise ValidationError("Drafts are not part of the grading queue")
        query = query.filter(AssignmentSubmission.status == status)

    query = query.order_by(AssignmentSubmission.submitted_at.asc(), AssignmentSubmission.id.asc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def my_submissions(db: AsyncSession, student_id: int, course_id: Optional[int] = None) -> List[AssignmentSubmission]:
    query = select(AssignmentSubmission).filter(AssignmentSubmission.student_id == student_id)
    if course_id is not None:
        query = query.filter(AssignmentSubmission.course_id == course_id)
    result = await db.execute(query.order_by(AssignmentSubmission.created_at.desc()))
    return list(result.scalars().all())


async def submission_detail(db: AsyncSession, submission_id: int, user_id: int) -> dict:
    submission = await get_submission_or_404(db, submission_id)
    is_owner = await access.is_course_owner(db, user_id, submission.course_id)
    if not is_owner and submission.student_id != user_id:
        raise PermissionDenied("You don't have access to this submission")
    return {"submission": submission, "is_owner": is_owner}
