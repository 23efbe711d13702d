from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ajarin.config import Settings
from ajarin.db.database import get_db
from ajarin.errors import PermissionDenied
from ajarin.user_service.security import Identity, get_current_identity, get_settings
from .. import engine, schemas
from ..engine import EligibilityReason

router = APIRouter(tags=["Certificates"])

logger = logging.getLogger("certificate_service")


# Public, no token needed

@router.get("/public/{certificate_id}", response_model=schemas.CertificateOut)
async def get_public_certificate(certificate_id: str, db: AsyncSession = Depends(get_db)):
    return await engine.get_public_certificate(db, certificate_id)


@router.get("/download/{certificate_id}", response_model=schemas.CertificateOut)
async def download_certificate(certificate_id: str, db: AsyncSession = Depends(get_db)):
    return await engine.download_certificate(db, certificate_id)


@router.get("/verify/{certificate_number}", response_model=schemas.VerifyOut)
async def verify_certificate(certificate_number: str, db: AsyncSession = Depends(get_db)):
    return await engine.verify_certificate(db, certificate_number)


# Authenticated

@router.get("/my-certificates", response_model=schemas.CertificateListOut)
async def my_certificates(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.my_certificates(db, identity.user_id, page, limit)


@router.get("/eligibility/{course_id}", response_model=schemas.EligibilityOut)
async def check_eligibility(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    eligibility = await engine.check_eligibility(db, identity.user_id, course_id)
    if eligibility.reason == EligibilityReason.NOT_ENROLLED:
        raise PermissionDenied("You are not enrolled in this course", eligible=False, reason=eligibility.reason.value)
    return {
        "eligible": eligibility.eligible,
        "reason": eligibility.reason.value,
        "completion_percentage": eligibility.completion_percentage,
        "completed_materials": eligibility.completed_materials,
        "total_materials": eligibility.total_materials,
        "certificate": eligibility.certificate,
    }


@router.post("/generate/{course_id}", response_model=schemas.GenerateOut)
async def generate_certificate(
    course_id: int,
    response: Response,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    certificate, created = await engine.generate(db, identity.user_id, course_id, settings)
    response.status_code = 201 if created else 200
    return {"certificate": certificate, "created": created}


@router.get("/course/{course_id}", response_model=schemas.CertificateListOut)
async def course_certificates(
    course_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.course_certificates(db, course_id, identity.user_id, page, limit)


@router.post("/{certificate_id}/revoke", response_model=schemas.CertificateOut)
async def revoke_certificate(
    certificate_id: str,
    data: schemas.RevokeRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.revoke(db, certificate_id, identity.user_id, data.reason)


@router.get("/{certificate_id}", response_model=schemas.CertificateOut)
async def get_certificate(
    certificate_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await engine.get_user_certificate(db, certificate_id, identity.user_id)
