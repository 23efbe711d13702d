from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Float, ForeignKey, JSON, UniqueConstraint, event
)
from datetime import datetime
from ajarin.db.database import Base
from .grading import SubmissionStatus, is_passing, letter_grade


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    mentor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    instructions = Column(Text, default="")
    question_file = Column(JSON, nullable=True)  # {id, url, name, size, mime_type}
    max_points = Column(Integer, default=100, nullable=False)
    max_attempts = Column(Integer, default=1, nullable=False)
    order_index = Column(Integer, default=1, nullable=False)
    is_published = Column(Boolean, default=False, nullable=False)
    publish_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    def is_open(self, now=None) -> bool:
        if not self.is_published:
            return False
        if self.publish_date and (now or datetime.utcnow()) < self.publish_date:
            return False
        return True


class AssignmentSubmission(Base):
    __tablename__ = "assignment_submissions"
    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id", "attempt_number", name="uq_submission_attempt"),
    )

    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Copy of assignments.course_id for the grading queue query
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)

    submission_type = Column(String(10), nullable=False, default="text")  # text, file, url
    text_content = Column(Text, nullable=True)
    files = Column(JSON, default=list)
    url_submission = Column(Text, nullable=True)

    status = Column(String(30), nullable=False, default=SubmissionStatus.DRAFT.value, index=True)

    # Grading
    score = Column(Float, nullable=True)
    max_points = Column(Integer, default=100)
    letter_grade = Column(String(2), nullable=True)
    passed = Column(Boolean, nullable=True)
    feedback = Column(Text, default="")
    private_notes = Column(Text, default="")
    graded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    graded_at = Column(DateTime, nullable=True)

    attempt_number = Column(Integer, default=1, nullable=False)
    submitted_at = Column(DateTime, nullable=True, index=True)
    revisions = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def content_snapshot(self) -> dict:
        return {
            "submission_type": self.submission_type,
            "text_content": self.text_content,
            "files": list(self.files or []),
            "url_submission": self.url_submission,
        }

    def apply_content(self, content: dict):
        self.submission_type = content["submission_type"]
        self.text_content = content["text_content"]
        self.files = list(content["files"])
        self.url_submission = content["url_submission"]

    def clear_grading(self):
        self.score = None
        self.letter_grade = None
        self.passed = None
        self.feedback = ""
        self.private_notes = ""
        self.graded_by = None
        self.graded_at = None

    def derive_grade(self):
        # Letter grade and pass flag always follow the score
        if self.score is None:
            self.letter_grade = None
            self.passed = None
        else:
            self.letter_grade = letter_grade(self.score)
            self.passed = is_passing(self.score)


@event.listens_for(AssignmentSubmission, "before_insert")
@event.listens_for(AssignmentSubmission, "before_update")
def _derive_grade_on_save(mapper, connection, target):
    target.derive_grade()
    target.updated_at = datetime.utcnow()
