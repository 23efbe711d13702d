"""Submission state machine, letter grades and content shapes."""

import math
import re
from enum import Enum
from numbers import Real
from typing import List, Optional

from ajarin.errors import ConflictError, ValidationError


class SubmissionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"  # stored only; no transition leads here
    GRADED = "graded"
    RETURNED_FOR_REVISION = "returned_for_revision"


class SubmissionAction(str, Enum):
    SUBMIT = "submit"
    RESUBMIT = "resubmit"
    GRADE = "grade"
    RETURN_FOR_REVISION = "return_for_revision"


S = SubmissionStatus
A = SubmissionAction

TRANSITIONS = {
    (S.DRAFT, A.SUBMIT): S.SUBMITTED,
    (S.SUBMITTED, A.RESUBMIT): S.SUBMITTED,
    (S.RETURNED_FOR_REVISION, A.RESUBMIT): S.SUBMITTED,
    (S.SUBMITTED, A.GRADE): S.GRADED,
    (S.UNDER_REVIEW, A.GRADE): S.GRADED,
    (S.GRADED, A.GRADE): S.GRADED,
    (S.SUBMITTED, A.RETURN_FOR_REVISION): S.RETURNED_FOR_REVISION,
    (S.UNDER_REVIEW, A.RETURN_FOR_REVISION): S.RETURNED_FOR_REVISION,
}

PENDING_STATUSES = (S.SUBMITTED, S.UNDER_REVIEW)


def next_status(current, action: SubmissionAction) -> SubmissionStatus:
    current = SubmissionStatus(current)
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise ConflictError(
            f"Cannot {action.value.replace('_', ' ')} a submission that is {current.value.replace('_', ' ')}",
            status=current.value,
        )


PASSING_SCORE = 70

# (minimum score, letter), highest first
GRADE_BREAKPOINTS = [
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (60, "D"),
]


def letter_grade(score: float) -> str:
    for minimum, letter in GRADE_BREAKPOINTS:
        if score >= minimum:
            return letter
    return "F"


def is_passing(score: float) -> bool:
    return score >= PASSING_SCORE


def validate_score(score) -> float:
    if isinstance(score, bool) or not isinstance(score, Real):
        raise ValidationError("Score must be a number")
    if not math.isfinite(score) or score < 0 or score > 100:
        raise ValidationError("Score must be between 0 and 100")
    return float(score)


MAX_TEXT_LENGTH = 5000
MAX_FEEDBACK_LENGTH = 1000
MAX_PRIVATE_NOTES_LENGTH = 500

URL_PATTERN = re.compile(r"^https?://.+")


def check_content(text: Optional[str], url: Optional[str], file_count: int):
    """Validate the text and URL parts; returns them normalized.

    Runs before any file is uploaded, so a bad request never reaches storage.
    """
    text = (text or "").strip() or None
    url = (url or "").strip() or None

    if text and len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"Text content cannot exceed {MAX_TEXT_LENGTH} characters")
    if url and not URL_PATTERN.match(url):
        raise ValidationError("Please provide a valid URL")
    if not text and not url and file_count == 0:
        raise ValidationError("Please provide text content, file(s) or a URL for your submission")
    return text, url


def build_content(text: Optional[str] = None, files: Optional[List[dict]] = None, url: Optional[str] = None) -> dict:
    """Normalize submitted content into the stored shape.

    Accepts non-empty text, one or more file descriptors, a URL, or text
    together with files. Raises ValidationError when nothing usable is given.
    """
    files = list(files or [])
    for descriptor in files:
        if not descriptor.get("url"):
            raise ValidationError("Every file must have a URL")
    text, url = check_content(text, url, len(files))

    if files:
        submission_type = "file"
    elif url:
        submission_type = "url"
    else:
        submission_type = "text"

    return {
        "submission_type": submission_type,
        "text_content": text,
        "files": files,
        "url_submission": url,
    }
