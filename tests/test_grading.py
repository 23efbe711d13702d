import pytest

from ajarin.assignment_service.grading import (
    SubmissionAction,
    SubmissionStatus,
    build_content,
    is_passing,
    letter_grade,
    next_status,
    validate_score,
)
from ajarin.errors import ConflictError, ValidationError


@pytest.mark.parametrize("score, expected", [
    (100, "A+"),
    (97, "A+"),
    (96, "A"),
    (93, "A"),
    (90, "A-"),
    (89.99, "B+"),
    (87, "B+"),
    (85, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (69.9, "D"),
    (69, "D"),
    (60, "D"),
    (59, "F"),
    (0, "F"),
])
def test_letter_grade_breakpoints(score, expected):
    assert letter_grade(score) == expected


def test_passing_threshold():
    assert is_passing(70)
    assert is_passing(100)
    assert not is_passing(69.9)


@pytest.mark.parametrize("score", [-1, 100.5, True, "80", None, float("nan"), float("inf")])
def test_validate_score_rejects(score):
    with pytest.raises(ValidationError):
        validate_score(score)


def test_validate_score_accepts_bounds():
    assert validate_score(0) == 0.0
    assert validate_score(100) == 100.0
    assert validate_score(72.5) == 72.5


@pytest.mark.parametrize("current, action, expected", [
    ("draft", SubmissionAction.SUBMIT, SubmissionStatus.SUBMITTED),
    ("submitted", SubmissionAction.RESUBMIT, SubmissionStatus.SUBMITTED),
    ("returned_for_revision", SubmissionAction.RESUBMIT, SubmissionStatus.SUBMITTED),
    ("submitted", SubmissionAction.GRADE, SubmissionStatus.GRADED),
    ("under_review", SubmissionAction.GRADE, SubmissionStatus.GRADED),
    ("graded", SubmissionAction.GRADE, SubmissionStatus.GRADED),
    ("submitted", SubmissionAction.RETURN_FOR_REVISION, SubmissionStatus.RETURNED_FOR_REVISION),
])
def test_allowed_transitions(current, action, expected):
    assert next_status(current, action) == expected


@pytest.mark.parametrize("current, action", [
    ("graded", SubmissionAction.RETURN_FOR_REVISION),
    ("graded", SubmissionAction.RESUBMIT),
    ("under_review", SubmissionAction.RESUBMIT),
    ("draft", SubmissionAction.GRADE),
    ("returned_for_revision", SubmissionAction.GRADE),
    ("submitted", SubmissionAction.SUBMIT),
])
def test_rejected_transitions(current, action):
    with pytest.raises(ConflictError) as exc:
        next_status(current, action)
    assert exc.value.extra["status"] == current


def test_build_content_text():
    content = build_content(text="  answer 1  ")
    assert content == {
        "submission_type": "text",
        "text_content": "answer 1",
        "files": [],
        "url_submission": None,
    }


def test_build_content_prefers_files_then_url():
    files = [{"id": "f1", "url": "http://storage.test/f1", "name": "a.pdf"}]
    assert build_content(text="notes", files=files)["submission_type"] == "file"
    assert build_content(url="https://github.com/me/repo")["submission_type"] == "url"


@pytest.mark.parametrize("kwargs", [
    {},
    {"text": "   "},
    {"url": "ftp://example.com/file"},
    {"url": "github.com/me/repo"},
    {"text": "x" * 5001},
    {"files": [{"id": "f1", "name": "a.pdf"}]},
])
def test_build_content_rejects(kwargs):
    with pytest.raises(ValidationError):
        build_content(**kwargs)
