from pydantic import BaseModel, model_validator
from typing import Optional
from datetime import datetime

from portal.models.request import RequestType, RequestStatus
from portal.schemas.normalize import normalize_student_fields
from portal.schemas.refs import StudentRef, StudentById, StudentByEmail


class RequestCreate(BaseModel):
    type: RequestType
    student_id: Optional[int] = None
    student_email: Optional[str] = None
    student_name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    book_id: Optional[int] = None
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    course_id: Optional[int] = None
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    borrowing_id: Optional[int] = None
    enrollment_id: Optional[int] = None
    user_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _fold_student_aliases(cls, data):
        if isinstance(data, dict):
            return normalize_student_fields(data)
        return data

    def student_ref(self) -> Optional[StudentRef]:
        if self.student_id is not None:
            return StudentById(self.student_id)
        if self.student_email:
            return StudentByEmail(self.student_email)
        return None


class RequestStatusUpdate(BaseModel):
    status: RequestStatus
    admin_note: Optional[str] = None


class RequestCreated(BaseModel):
    id: int
    message: str = "Request created successfully"


class RequestResponse(BaseModel):
    id: int
    student_id: Optional[int] = None
    requester_email: str
    student_name: Optional[str] = None
    type: str
    title: str
    description: Optional[str] = None
    status: str
    admin_note: Optional[str] = None
    book_id: Optional[int] = None
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    course_id: Optional[int] = None
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    borrowing_id: Optional[int] = None
    enrollment_id: Optional[int] = None
    user_id: Optional[int] = None
    decided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DecisionResult(BaseModel):
    """Outcome of an admin decision on a request"""
    request_id: int
    type: str
    status: RequestStatus
    message: str
    notification_sent: bool = False
    retained: bool = False
    enrollment_id: Optional[int] = None
    borrowing_id: Optional[int] = None
    student_id: Optional[int] = None
