from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime


class UserRegister(BaseModel):
    email: EmailStr
    password: str
    name: str
    phone: Optional[str] = None
    department: Optional[str] = None
    year: Optional[int] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    role: str
    approved: bool
    phone: Optional[str] = None
    department: Optional[str] = None
    year: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    token: Optional[str] = None
    token_type: str = "bearer"
    user: UserResponse
    message: Optional[str] = None


class RegistrationResponse(BaseModel):
    message: str = "Registration submitted. Awaiting admin approval."
    user_id: int
    request_id: int


class ApproveUser(BaseModel):
    student_id: Optional[str] = None  # student number such as STU009; generated when omitted


class RejectUser(BaseModel):
    admin_note: Optional[str] = None


class StudentResponse(BaseModel):
    id: int
    student_number: str
    name: str
    email: str
    department: Optional[str] = None
    year: Optional[int] = None
    status: str

    class Config:
        from_attributes = True
