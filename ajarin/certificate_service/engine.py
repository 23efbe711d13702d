"""Certificate eligibility and issuance.

Eligibility is derived on every call from the learner's material progress;
the only stored state is the issued certificate itself.
"""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ajarin.config import Settings
from ajarin.course_service import access
from ajarin.db import models
from ajarin.errors import ConflictError, NotFoundError, PermissionDenied
from ajarin.progress_service import engine as progress_engine
from ajarin.progress_service.models import MaterialProgress
from .models import Certificate

logger = logging.getLogger("certificate_service")

HOURS_PER_MATERIAL = 0.5
TEMPLATE_VERSION = "v1.0"


class EligibilityReason(str, Enum):
    NOT_ENROLLED = "not_enrolled"
    ALREADY_CLAIMED = "already_claimed"
    ELIGIBLE = "eligible"
    INCOMPLETE = "incomplete"


@dataclass
class Eligibility:
    eligible: bool
    reason: EligibilityReason
    completion_percentage: int = 0
    completed_materials: int = 0
    total_materials: int = 0
    certificate: Optional[Certificate] = None


def certificate_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    return f"AJARIN-{now.strftime('%Y%m')}-{secrets.token_hex(4).upper()}"


def public_certificate_id() -> str:
    return secrets.token_urlsafe(12)[:16]


def duration_hours(material_count: int) -> int:
    return max(1, math.ceil(material_count * HOURS_PER_MATERIAL))


async def find_certificate(db: AsyncSession, user_id: int, course_id: int, status: Optional[str] = None) -> Optional[Certificate]:
    query = select(Certificate).filter_by(user_id=user_id, course_id=course_id)
    if status:
        query = query.filter(Certificate.status == status)
    result = await db.execute(query)
    return result.scalars().first()


async def check_eligibility(db: AsyncSession, user_id: int, course_id: int) -> Eligibility:
    """Reasons are checked in order: not_enrolled, already_claimed, then eligible or incomplete."""
    if not await access.is_enrolled(db, user_id, course_id):
        return Eligibility(eligible=False, reason=EligibilityReason.NOT_ENROLLED)

    existing = await find_certificate(db, user_id, course_id, status="active")
    if existing:
        return Eligibility(
            eligible=False,
            reason=EligibilityReason.ALREADY_CLAIMED,
            completion_percentage=existing.completion_percentage,
            certificate=existing,
        )

    completion = await progress_engine.compute_course_completion(db, user_id, course_id)
    return Eligibility(
        eligible=completion.is_complete,
        reason=EligibilityReason.ELIGIBLE if completion.is_complete else EligibilityReason.INCOMPLETE,
        completion_percentage=completion.percentage,
        completed_materials=completion.completed_count,
        total_materials=completion.total_count,
    )


async def _latest_completion(db: AsyncSession, user_id: int, course_id: int) -> Optional[datetime]:
    result = await db.execute(
        select(func.max(MaterialProgress.marked_completed_at)).filter(
            MaterialProgress.user_id == user_id,
            MaterialProgress.course_id == course_id,
            MaterialProgress.is_completed == True,  # noqa: E712
        )
    )
    return result.scalar()


async def generate(db: AsyncSession, user_id: int, course_id: int, settings: Settings) -> Tuple[Certificate, bool]:
    """Issue a certificate. Returns ``(certificate, created)``.

    A second call for the same learner and course returns the existing
    certificate with ``created=False``.
    """
    eligibility = await check_eligibility(db, user_id, course_id)
    if eligibility.reason == EligibilityReason.NOT_ENROLLED:
        raise PermissionDenied("You are not enrolled in this course", eligible=False, reason=eligibility.reason.value)
    if eligibility.reason == EligibilityReason.ALREADY_CLAIMED:
        return eligibility.certificate, False
    if eligibility.reason == EligibilityReason.INCOMPLETE:
        raise ConflictError(
            f"Course not completed. Current progress: {eligibility.completion_percentage}%",
            reason=eligibility.reason.value,
            completion_percentage=eligibility.completion_percentage,
        )

    revoked = await find_certificate(db, user_id, course_id)
    if revoked is not None:
        raise ConflictError("The certificate for this course has been revoked", status=revoked.status)

    user = await access.get_user_or_404(db, user_id)
    course = await access.get_course_or_404(db, course_id)
    result = await db.execute(select(models.User.name).filter(models.User.id == course.mentor_id))
    mentor_name = result.scalar()

    now = datetime.utcnow()
    public_id = public_certificate_id()
    certificate = Certificate(
        user_id=user_id,
        course_id=course_id,
        certificate_id=public_id,
        certificate_number=certificate_number(now),
        user_name=user.name,
        course_title=course.title,
        course_category=course.category or "General",
        mentor_name=mentor_name,
        total_materials=eligibility.total_materials,
        course_duration_hours=duration_hours(eligibility.total_materials),
        completion_percentage=100,
        completion_date=await _latest_completion(db, user_id, course_id) or now,
        issued_date=now,
        status="active",
        is_public=True,
        public_url=f"{settings.client_url.rstrip('/')}/certificate/{public_id}",
        template_version=TEMPLATE_VERSION,
        download_count=0,
        view_count=0,
    )
    db.add(certificate)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request issued it first
        await db.rollback()
        logger.warning(f"Certificate race for user {user_id} course {course_id}, fetching existing row")
        existing = await find_certificate(db, user_id, course_id)
        if existing is None:
            raise ConflictError("Could not issue certificate, please retry")
        return existing, False

    logger.info(f"Issued certificate {certificate.certificate_number} to user {user_id} for course {course_id}")
    return certificate, True


async def _bump_counter(db: AsyncSession, certificate: Certificate, column) -> Certificate:
    await db.execute(
        update(Certificate).where(Certificate.id == certificate.id).values({column: column + 1})
    )
    await db.commit()
    await db.refresh(certificate)
    return certificate


async def get_public_certificate(db: AsyncSession, public_id: str) -> Certificate:
    result = await db.execute(
        select(Certificate).filter(
            Certificate.certificate_id == public_id,
            Certificate.status == "active",
            Certificate.is_public == True,  # noqa: E712
        )
    )
    certificate = result.scalars().first()
    if not certificate:
        raise NotFoundError("Certificate not found or has been revoked")
    return await _bump_counter(db, certificate, Certificate.view_count)


async def download_certificate(db: AsyncSession, public_id: str) -> Certificate:
    result = await db.execute(
        select(Certificate).filter(Certificate.certificate_id == public_id, Certificate.status == "active")
    )
    certificate = result.scalars().first()
    if not certificate:
        raise NotFoundError("Certificate not found")
    return await _bump_counter(db, certificate, Certificate.download_count)


async def get_user_certificate(db: AsyncSession, public_id: str, user_id: int) -> Certificate:
    result = await db.execute(
        select(Certificate).filter(Certificate.certificate_id == public_id, Certificate.user_id == user_id)
    )
    certificate = result.scalars().first()
    if not certificate:
        raise NotFoundError("Certificate not found")
    return certificate


async def verify_certificate(db: AsyncSession, number: str) -> dict:
    result = await db.execute(select(Certificate).filter(Certificate.certificate_number == number))
    certificate = result.scalars().first()
    if not certificate:
        raise NotFoundError("Certificate not found or invalid", valid=False)
    return {"valid": certificate.status == "active", "status": certificate.status, "certificate": certificate}


async def my_certificates(db: AsyncSession, user_id: int, page: int = 1, limit: int = 10) -> dict:
    base = select(Certificate).filter(Certificate.user_id == user_id, Certificate.status == "active")
    return await _paginate(db, base, page, limit)


async def course_certificates(db: AsyncSession, course_id: int, mentor_id: int, page: int = 1, limit: int = 10) -> dict:
    await access.require_course_owner(db, mentor_id, course_id, "view certificates of this course")
    base = select(Certificate).filter(Certificate.course_id == course_id)
    return await _paginate(db, base, page, limit)


async def _paginate(db: AsyncSession, query, page: int, limit: int) -> dict:
    result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = result.scalar() or 0
    result = await db.execute(
        query.order_by(Certificate.issued_date.desc(), Certificate.id.desc()).offset((page - 1) * limit).limit(limit)
    )
    certificates: List[Certificate] = list(result.scalars().all())
    return {
        "certificates": certificates,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }


async def revoke(db: AsyncSession, public_id: str, mentor_id: int, reason: str = "") -> Certificate:
    result = await db.execute(select(Certificate).filter(Certificate.certificate_id == public_id))
    certificate = result.scalars().first()
    if not certificate:
        raise NotFoundError("Certificate not found")
    await access.require_course_owner(db, mentor_id, certificate.course_id, "revoke this certificate")
    if certificate.status == "revoked":
        raise ConflictError("Certificate is already revoked", status=certificate.status)

    certificate.status = "revoked"
    certificate.revoked_at = datetime.utcnow()
    certificate.revoked_reason = (reason or "").strip()[:500]
    await db.commit()
    logger.info(f"Mentor {mentor_id} revoked certificate {certificate.certificate_number}")
    return certificate
