from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session
from typing import Any

from portal.database import get_db
from portal.auth.dependencies import get_current_admin
from portal.models.user import User
from portal.schemas.normalize import parse_body
from portal.schemas.enrollment import EnrollmentCreate, EnrollmentCreated
from portal.services.enrollment_service import EnrollmentService

router = APIRouter()


@router.post("/", response_model=EnrollmentCreated, status_code=status.HTTP_201_CREATED)
async def create_enrollment(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    """Enroll a student in a course directly (admin only)"""
    data = parse_body(EnrollmentCreate, payload)
    enrollment = EnrollmentService(db).create_enrollment(data)
    return EnrollmentCreated(id=enrollment.id)
