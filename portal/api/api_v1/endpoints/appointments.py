from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, List, Optional
from datetime import date

from portal.database import get_db
from portal.auth.dependencies import get_current_user, get_current_admin, is_admin
from portal.core.exceptions import ForbiddenError
from portal.models.user import User
from portal.models.appointment import AppointmentStatus
from portal.schemas.normalize import parse_body
from portal.schemas.appointment import (
    AppointmentCreate,
    AppointmentStatusUpdate,
    AppointmentCancel,
    AppointmentResponse,
    QueueEntry,
    TimeSlot,
    ServiceResponse,
    AppointmentStats,
)
from portal.services.appointment_service import AppointmentService, to_response

router = APIRouter()


@router.get("/services", response_model=List[ServiceResponse])
async def list_services(db: Session = Depends(get_db)):
    """Active services that accept bookings"""
    return AppointmentService(db).list_services()


@router.get("/available-slots", response_model=List[TimeSlot], response_model_by_alias=True)
async def get_available_slots(
    service_id: Optional[int] = Query(None, alias="serviceId"),
    slot_date: Optional[date] = Query(None, alias="date"),
    db: Session = Depends(get_db)
):
    return AppointmentService(db).list_available_slots(service_id, slot_date)


@router.post("/", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Book a slot; the response carries the allocated token number"""
    data = parse_body(AppointmentCreate, payload)
    if data.student_id is None and not is_admin(current_user):
        data.student_id = current_user.id
    if not is_admin(current_user) and data.student_id != current_user.id:
        raise ForbiddenError("Students can only book appointments for themselves")
    appointment = AppointmentService(db).book(data)
    return to_response(appointment)


@router.get("/", response_model=List[AppointmentResponse])
async def list_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    appointments = AppointmentService(db).list_appointments(
        status_filter.value if status_filter else None, on_date
    )
    return [to_response(appointment) for appointment in appointments]


@router.get("/student/{student_id}", response_model=List[AppointmentResponse])
async def get_student_appointments(
    student_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not is_admin(current_user) and current_user.id != student_id:
        raise ForbiddenError("You can only view your own appointments")
    appointments = AppointmentService(db).list_student_appointments(student_id)
    return [to_response(appointment) for appointment in appointments]


@router.get("/queue/today", response_model=List[QueueEntry])
async def get_today_queue(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Today's pending and approved appointments with their queue positions"""
    return AppointmentService(db).queue_today()


@router.get("/stats/overview", response_model=AppointmentStats, response_model_by_alias=True)
async def get_appointment_stats(
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    return AppointmentService(db).get_stats()


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    update = parse_body(AppointmentStatusUpdate, payload)
    appointment = AppointmentService(db).decide_status(appointment_id, update.status, update.admin_notes)
    return to_response(appointment)


@router.patch("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Cancel an appointment. Only the student who booked it may do so."""
    data = parse_body(AppointmentCancel, payload or {})
    student_id = data.student_id if data.student_id is not None else current_user.id
    if not is_admin(current_user) and student_id != current_user.id:
        raise ForbiddenError("You can only cancel your own appointments")
    appointment = AppointmentService(db).cancel(appointment_id, student_id)
    return to_response(appointment)
