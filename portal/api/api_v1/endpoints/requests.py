from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, List, Optional

from portal.database import get_db
from portal.auth.dependencies import get_current_user, get_current_admin, is_admin
from portal.core.exceptions import ForbiddenError
from portal.models.user import User
from portal.models.request import RequestStatus
from portal.schemas.normalize import parse_body
from portal.schemas.refs import StudentRef, StudentById, StudentByEmail, parse_student_ref
from portal.schemas.request import (
    RequestCreate,
    RequestCreated,
    RequestResponse,
    RequestStatusUpdate,
    DecisionResult,
)
from portal.services.request_service import RequestService
from portal.services.user_service import resolve_student

router = APIRouter()


def _check_owner(db: Session, current_user: User, ref: Optional[StudentRef]) -> Optional[StudentRef]:
    """Non-admins may only act for the student record sharing their e-mail"""
    if is_admin(current_user):
        return ref
    own = StudentByEmail(current_user.email.lower())
    if ref is None:
        return own
    if isinstance(ref, StudentByEmail) and ref.email.lower() == own.email:
        return ref
    if isinstance(ref, StudentById):
        student = resolve_student(db, ref)
        if student is not None and student.email == own.email:
            return ref
    raise ForbiddenError("You can only access your own requests")


@router.post("/", response_model=RequestCreated, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Submit a request (camelCase or snake_case body); non-admins file for themselves"""
    data = parse_body(RequestCreate, payload)
    ref = _check_owner(db, current_user, data.student_ref())
    if isinstance(ref, StudentByEmail) and data.student_id is None:
        data = data.model_copy(update={"student_email": ref.email})
    request = RequestService(db).create_request(data)
    return RequestCreated(id=request.id)


@router.get("/", response_model=List[RequestResponse])
async def list_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    return RequestService(db).list_requests(status_filter.value if status_filter else None)


@router.get("/pending", response_model=List[RequestResponse])
async def list_pending_requests(
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    return RequestService(db).list_requests(RequestStatus.PENDING.value)


@router.get("/student/{student_ref}", response_model=List[RequestResponse])
async def get_student_requests(
    student_ref: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Requests filed by a student, addressed by numeric id or e-mail"""
    ref = _check_owner(db, current_user, parse_student_ref(student_ref))
    return RequestService(db).get_student_requests(ref)


@router.put("/{request_id}/status", response_model=DecisionResult)
async def decide_request(
    request_id: int,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    """Approve or reject a pending request and apply its side effects"""
    update = parse_body(RequestStatusUpdate, payload)
    return RequestService(db).decide(request_id, update.status, update.admin_note)


@router.delete("/{request_id}")
async def delete_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    RequestService(db).delete_request(request_id)
    return {"message": "Request deleted successfully"}
