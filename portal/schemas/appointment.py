from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, time, datetime

from portal.models.appointment import AppointmentStatus


class AppointmentCreate(BaseModel):
    # Presence is checked by the service so a missing field is an InvalidInput error
    student_id: Optional[int] = None
    service_id: Optional[int] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: Optional[AppointmentStatus] = None
    admin_notes: Optional[str] = None


class AppointmentCancel(BaseModel):
    student_id: Optional[int] = None


class AppointmentResponse(BaseModel):
    id: int
    student_id: int
    service_id: int
    staff_id: Optional[int] = None
    appointment_date: date
    appointment_time: time
    token_number: str
    status: str
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    service_name: Optional[str] = None
    department: Optional[str] = None
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QueueEntry(AppointmentResponse):
    queue_position: int


class TimeSlot(BaseModel):
    time: str
    available: bool
    display_time: str = Field(alias="displayTime")

    class Config:
        populate_by_name = True


class ServiceResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    duration: Optional[int] = None
    department: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class ServiceCount(BaseModel):
    name: str
    count: int


class AppointmentOverview(BaseModel):
    total_appointments: int
    pending: int
    approved: int
    completed: int
    cancelled: int
    today: int


class AppointmentStats(BaseModel):
    overview: AppointmentOverview
    by_service: List[ServiceCount] = Field(alias="byService")

    class Config:
        populate_by_name = True
