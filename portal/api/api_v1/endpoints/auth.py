from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Any, List
from datetime import timedelta
import logging

from portal.database import get_db
from portal.auth.jwt import create_access_token
from portal.auth.dependencies import get_current_user, get_current_admin
from portal.core.config import settings
from portal.models.user import User, UserRole, Student
from portal.models.request import Request, RequestType, RequestStatus
from portal.schemas.normalize import parse_body
from portal.schemas.auth import (
    UserRegister,
    UserLogin,
    UserResponse,
    LoginResponse,
    RegistrationResponse,
    ApproveUser,
    RejectUser,
    StudentResponse,
)
from portal.services.request_service import RequestService
from portal.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: Any = Body(...), db: Session = Depends(get_db)):
    """Create a pending account; an admin approves it through its new_user request"""
    data = parse_body(UserRegister, payload)
    user, request = UserService(db).register(data)
    return RegistrationResponse(user_id=user.id, request_id=request.id)


@router.post("/login", response_model=LoginResponse)
async def login(payload: Any = Body(...), db: Session = Depends(get_db)):
    credentials = parse_body(UserLogin, payload)
    user = UserService(db).authenticate(credentials.email, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    if user.role == UserRole.PENDING.value:
        return LoginResponse(
            user=UserResponse.model_validate(user),
            message="Account pending approval"
        )

    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return LoginResponse(token=access_token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/pending-users", response_model=List[UserResponse])
async def get_pending_users(
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    return UserService(db).get_pending_users()


@router.post("/approve-user/{user_id}", response_model=StudentResponse)
async def approve_user(
    user_id: int,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    """Approve a pending account, deciding its registration request when there is one"""
    data = parse_body(ApproveUser, payload or {})

    pending_request = db.query(Request).filter(
        Request.user_id == user_id,
        Request.type == RequestType.NEW_USER.value,
        Request.status == RequestStatus.PENDING.value
    ).first()

    if pending_request is not None:
        result = RequestService(db).decide(
            pending_request.id, RequestStatus.APPROVED, student_number=data.student_id
        )
        return db.query(Student).filter(Student.id == result.student_id).first()

    try:
        student = UserService(db).approve_user(user_id, data.student_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(student)
    logger.info(f"User {user_id} approved without a registration request")
    return student


@router.post("/reject-user/{user_id}")
async def reject_user(
    user_id: int,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    """Reject a pending account; the account is removed so the e-mail can register again"""
    data = parse_body(RejectUser, payload or {})

    pending_request = db.query(Request).filter(
        Request.user_id == user_id,
        Request.type == RequestType.NEW_USER.value,
        Request.status == RequestStatus.PENDING.value
    ).first()

    if pending_request is not None:
        RequestService(db).decide(pending_request.id, RequestStatus.REJECTED, admin_note=data.admin_note)
        return {"message": "User rejected", "user_id": user_id}

    try:
        UserService(db).reject_user(user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"User {user_id} rejected without a registration request")
    return {"message": "User rejected", "user_id": user_id}
