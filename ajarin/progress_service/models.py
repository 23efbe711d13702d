from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime
from ajarin.db.database import Base


class MaterialProgress(Base):
    __tablename__ = "material_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "material_id", name="uq_progress_user_material"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False, index=True)
    # Copy of materials.course_id; has to be rewritten if a material is moved to another course
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    marked_completed_at = Column(DateTime, nullable=True)
    rating = Column(Integer, nullable=True)  # 1-5
    feedback = Column(String(500), default="")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
