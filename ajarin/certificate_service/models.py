from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime
from ajarin.db.database import Base


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_certificate_user_course"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    certificate_id = Column(String(32), unique=True, nullable=False, index=True)  # public id
    certificate_number = Column(String(32), unique=True, nullable=False, index=True)

    # Snapshot taken at issue time; later renames don't change an issued certificate
    user_name = Column(String(100), nullable=False)
    course_title = Column(String(200), nullable=False)
    course_category = Column(String(100), default="General")
    mentor_name = Column(String(100), nullable=True)
    total_materials = Column(Integer, default=0)
    course_duration_hours = Column(Integer, default=1)
    completion_percentage = Column(Integer, default=100, nullable=False)
    completion_date = Column(DateTime, nullable=False)
    issued_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    status = Column(String(20), default="active", nullable=False)  # active, revoked, expired
    revoked_at = Column(DateTime, nullable=True)
    revoked_reason = Column(String(500), nullable=True)
    is_public = Column(Boolean, default=True, nullable=False)
    public_url = Column(String(300), nullable=True)
    template_version = Column(String(10), default="v1.0")
    download_count = Column(Integer, default=0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
