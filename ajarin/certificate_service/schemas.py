from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime


class CertificateOut(BaseModel):
    id: int
    user_id: int
    course_id: int
    certificate_id: str
    certificate_number: str
    user_name: str
    course_title: str
    course_category: Optional[str] = "General"
    mentor_name: Optional[str] = None
    total_materials: int
    course_duration_hours: int
    completion_percentage: int
    completion_date: datetime
    issued_date: datetime
    status: str
    is_public: bool
    public_url: Optional[str] = None
    template_version: Optional[str] = None
    download_count: int
    view_count: int

    class Config:
        from_attributes = True


class EligibilityOut(BaseModel):
    eligible: bool
    reason: str
    completion_percentage: int = 0
    completed_materials: int = 0
    total_materials: int = 0
    certificate: Optional[CertificateOut] = None


class GenerateOut(BaseModel):
    certificate: CertificateOut
    created: bool


class VerifiedCertificate(BaseModel):
    certificate_number: str
    user_name: str
    course_title: str
    mentor_name: Optional[str] = None
    issued_date: datetime
    completion_date: datetime

    class Config:
        from_attributes = True


class VerifyOut(BaseModel):
    valid: bool
    status: str
    certificate: VerifiedCertificate


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CertificateListOut(BaseModel):
    certificates: List[CertificateOut] = []
    pagination: Pagination


class RevokeRequest(BaseModel):
    reason: Optional[str] = ""
