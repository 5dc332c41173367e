from sqlalchemy.orm import Session
from sqlalchemy import func, case
from sqlalchemy.exc import IntegrityError
from typing import List, Optional, Union
from datetime import date, time, datetime, timedelta
import logging

from portal.core.config import settings
from portal.core.exceptions import (
    PortalError,
    NotFoundError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
)
from portal.models.user import User, UserRole
from portal.models.notification import NotificationType
from portal.models.appointment import (
    Service,
    Appointment,
    AppointmentStatus,
    AppointmentTokenCounter,
    APPOINTMENT_TRANSITIONS,
    RELEASED_STATUSES,
    QUEUED_STATUSES,
)
from portal.schemas.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    QueueEntry,
    TimeSlot,
    AppointmentStats,
    AppointmentOverview,
    ServiceCount,
)
from portal.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "APT"


def format_token(appointment_date: date, sequence: int) -> str:
    """APT + YYYYMMDD + 3-digit sequence, e.g. APT20250301003"""
    return f"{TOKEN_PREFIX}{appointment_date.strftime('%Y%m%d')}{sequence:03d}"


def display_time(slot: time) -> str:
    """12-hour clock label such as '9:30 AM'"""
    hour = slot.hour % 12 or 12
    suffix = "AM" if slot.hour < 12 else "PM"
    return f"{hour}:{slot.minute:02d} {suffix}"


def generate_slots(
    start_hour: Optional[int] = None,
    end_hour: Optional[int] = None,
    interval_minutes: Optional[int] = None
) -> List[time]:
    """Fixed slots from start_hour (inclusive) to end_hour (exclusive)"""
    start_hour = settings.SLOT_START_HOUR if start_hour is None else start_hour
    end_hour = settings.SLOT_END_HOUR if end_hour is None else end_hour
    interval = timedelta(minutes=interval_minutes or settings.SLOT_INTERVAL_MINUTES)

    current = datetime.combine(date.min, time(start_hour))
    end = datetime.combine(date.min, time(0)) + timedelta(hours=end_hour)
    slots = []
    while current < end:
        slots.append(current.time())
        current += interval
    return slots


def status_message(status: str, service_name: str, appointment_date: date) -> Optional[str]:
    if status == AppointmentStatus.APPROVED.value:
        return f"Your appointment for {service_name} on {appointment_date.isoformat()} has been approved."
    if status == AppointmentStatus.REJECTED.value:
        return f"Your appointment for {service_name} on {appointment_date.isoformat()} has been rejected."
    if status == AppointmentStatus.COMPLETED.value:
        return f"Your appointment for {service_name} has been completed."
    if status == AppointmentStatus.CANCELLED.value:
        return f"Your appointment for {service_name} has been cancelled."
    return None


def to_response(appointment: Appointment, model=AppointmentResponse, **extra):
    service = appointment.service
    student = appointment.student
    return model(
        id=appointment.id,
        student_id=appointment.student_id,
        service_id=appointment.service_id,
        staff_id=appointment.staff_id,
        appointment_date=appointment.appointment_date,
        appointment_time=appointment.appointment_time,
        token_number=appointment.token_number,
        status=appointment.status,
        notes=appointment.notes,
        admin_notes=appointment.admin_notes,
        service_name=service.name if service else None,
        department=service.department if service else None,
        student_name=student.name if student else None,
        student_email=student.email if student else None,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
        **extra
    )


class AppointmentService:
    def __init__(self, db: Session):
        self.db = db
        self.notifications = NotificationService(db)

    def list_services(self, active_only: bool = True) -> List[Service]:
        query = self.db.query(Service)
        if active_only:
            query = query.filter(Service.is_active == True)  # noqa: E712
        return query.order_by(Service.name).all()

    def book(self, data: AppointmentCreate) -> Appointment:
        """Book a slot and hand out the next token for that date"""
        missing = [
            field for field in ("student_id", "service_id", "appointment_date", "appointment_time")
            if getattr(data, field) is None
        ]
        if missing:
            raise InvalidInputError("Missing required fields", details={"missing": missing})

        try:
            student = self.db.query(User).filter(User.id == data.student_id).first()
            if student is None:
                raise NotFoundError("Student", data.student_id)
            service = self.db.query(Service).filter(Service.id == data.service_id).first()
            if service is None or not service.is_active:
                raise NotFoundError("Service", data.service_id)

            # Slot check runs under the date's counter lock
            sequence = self._next_sequence(data.appointment_date)
            if self._slot_taken(data.service_id, data.appointment_date, data.appointment_time):
                raise ConflictError("This time slot is already booked", code="SLOT_TAKEN")

            token_number = format_token(data.appointment_date, sequence)

            appointment = Appointment(
                student_id=data.student_id,
                service_id=data.service_id,
                appointment_date=data.appointment_date,
                appointment_time=data.appointment_time,
                token_number=token_number,
                notes=data.notes,
                status=AppointmentStatus.PENDING.value
            )
            self.db.add(appointment)
            try:
                self.db.flush()
            except IntegrityError:
                raise ConflictError(f"Token {token_number} is already in use", code="TOKEN_TAKEN")

            when = f"{data.appointment_date.isoformat()} at {data.appointment_time.strftime('%H:%M')}"
            self.notifications.notify(
                student.id,
                "Appointment Booked",
                f"Your appointment has been booked for {when}. Token: {token_number}",
                NotificationType.INFO.value
            )
            self.notifications.record_appointment_notification(
                appointment.id,
                student.id,
                "confirmation",
                f"Appointment confirmed for {when}. Your token number is {token_number}."
            )
            self.notifications.notify_role(
                UserRole.ADMIN.value,
                "New Appointment Request",
                f"{student.name} requested {service.name} on {when}. Token: {token_number}",
                NotificationType.INFO.value
            )
            self.db.commit()
        except PortalError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error booking appointment for student {data.student_id}: {e}")
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"Booked appointment {appointment.id} with token {appointment.token_number}")
        return appointment

    def _next_sequence(self, appointment_date: date) -> int:
        """Allocate the next token sequence for a date under a row lock on its counter"""
        counter = self.db.query(AppointmentTokenCounter).filter(
            AppointmentTokenCounter.appointment_date == appointment_date
        ).with_for_update().first()

        if counter is None:
            existing = self.db.query(func.count(Appointment.id)).filter(
                Appointment.appointment_date == appointment_date
            ).scalar() or 0
            try:
                with self.db.begin_nested():
                    counter = AppointmentTokenCounter(appointment_date=appointment_date, last_sequence=existing)
                    self.db.add(counter)
            except IntegrityError:
                # Another booking created the counter first; lock theirs
                counter = self.db.query(AppointmentTokenCounter).filter(
                    AppointmentTokenCounter.appointment_date == appointment_date
                ).with_for_update().populate_existing().one()

        counter.last_sequence += 1
        self.db.flush()
        return counter.last_sequence

    def _slot_taken(self, service_id: int, appointment_date: date, appointment_time: time) -> bool:
        return self.db.query(Appointment.id).filter(
            Appointment.service_id == service_id,
            Appointment.appointment_date == appointment_date,
            Appointment.appointment_time == appointment_time,
            Appointment.status.notin_(RELEASED_STATUSES)
        ).first() is not None

    def list_available_slots(self, service_id: Optional[int], slot_date: Optional[date]) -> List[TimeSlot]:
        if not service_id or not slot_date:
            raise InvalidInputError("Service ID and date are required")

        booked = {
            row.appointment_time.replace(second=0, microsecond=0)
            for row in self.db.query(Appointment.appointment_time).filter(
                Appointment.service_id == service_id,
                Appointment.appointment_date == slot_date,
                Appointment.status.notin_(RELEASED_STATUSES)
            ).all()
        }
        return [
            TimeSlot(time=slot.strftime("%H:%M:%S"), available=slot not in booked, display_time=display_time(slot))
            for slot in generate_slots()
        ]

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    def decide_status(
        self,
        appointment_id: int,
        status: Union[AppointmentStatus, str, None],
        admin_notes: Optional[str] = None
    ) -> Appointment:
        """Move an appointment along its state machine and tell the student"""
        if status is None:
            raise InvalidInputError("Status is required")
        try:
            new_status = AppointmentStatus(status).value
        except ValueError:
            raise InvalidInputError(f"Unknown appointment status '{status}'")

        try:
            appointment = self.db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).with_for_update().first()
            if appointment is None:
                raise NotFoundError("Appointment", appointment_id)

            self._transition(appointment, new_status)
            if admin_notes is not None:
                appointment.admin_notes = admin_notes
            self.db.flush()

            message = status_message(new_status, appointment.service.name, appointment.appointment_date)
            if message:
                if new_status == AppointmentStatus.APPROVED.value:
                    notification_type = NotificationType.SUCCESS.value
                elif new_status == AppointmentStatus.REJECTED.value:
                    notification_type = NotificationType.ERROR.value
                else:
                    notification_type = NotificationType.INFO.value
                self.notifications.notify(appointment.student_id, "Appointment Status Update", message, notification_type)
                self.notifications.record_appointment_notification(
                    appointment.id, appointment.student_id, "status_change", message
                )
            self.db.commit()
        except PortalError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error updating appointment {appointment_id}: {e}")
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment_id} is now {new_status}")
        return appointment

    def cancel(self, appointment_id: int, student_id: Optional[int]) -> Appointment:
        """Student-initiated cancellation; only the owner may cancel"""
        if student_id is None:
            raise InvalidInputError("studentId is required")
        try:
            appointment = self.db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).with_for_update().first()
            if appointment is None:
                raise NotFoundError("Appointment", appointment_id)
            if appointment.student_id != student_id:
                raise ForbiddenError("Only the student who booked this appointment can cancel it")

            self._transition(appointment, AppointmentStatus.CANCELLED.value)
            self.db.commit()
        except PortalError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error cancelling appointment {appointment_id}: {e}")
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment_id} cancelled by student {student_id}")
        return appointment

    def _transition(self, appointment: Appointment, new_status: str) -> None:
        allowed = APPOINTMENT_TRANSITIONS.get(appointment.status, set())
        if new_status not in allowed:
            raise ConflictError(
                f"Cannot move appointment from {appointment.status} to {new_status}",
                code="INVALID_TRANSITION"
            )
        appointment.status = new_status

    def queue_today(self, today: Optional[date] = None) -> List[QueueEntry]:
        """Pending and approved appointments for the day, in time order, numbered from 1"""
        today = today or date.today()
        appointments = self.db.query(Appointment).filter(
            Appointment.appointment_date == today,
            Appointment.status.in_(QUEUED_STATUSES)
        ).order_by(Appointment.appointment_time.asc(), Appointment.id.asc()).all()

        return [
            to_response(appointment, QueueEntry, queue_position=position)
            for position, appointment in enumerate(appointments, start=1)
        ]

    def list_appointments(self, status: Optional[str] = None, on_date: Optional[date] = None) -> List[Appointment]:
        query = self.db.query(Appointment)
        if status:
            query = query.filter(Appointment.status == status)
        if on_date:
            query = query.filter(Appointment.appointment_date == on_date)
        return query.order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc()).all()

    def list_student_appointments(self, student_id: int) -> List[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.student_id == student_id
        ).order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc()).all()

    def get_stats(self, today: Optional[date] = None) -> AppointmentStats:
        today = today or date.today()

        def count_status(status: AppointmentStatus):
            return func.coalesce(func.sum(case((Appointment.status == status.value, 1), else_=0)), 0)

        row = self.db.query(
            func.count(Appointment.id),
            count_status(AppointmentStatus.PENDING),
            count_status(AppointmentStatus.APPROVED),
            count_status(AppointmentStatus.COMPLETED),
            count_status(AppointmentStatus.CANCELLED),
            func.coalesce(func.sum(case((Appointment.appointment_date == today, 1), else_=0)), 0),
        ).one()

        by_service = self.db.query(Service.name, func.count(Appointment.id)).outerjoin(
            Appointment, Appointment.service_id == Service.id
        ).group_by(Service.id, Service.name).order_by(func.count(Appointment.id).desc(), Service.name).all()

        return AppointmentStats(
            overview=AppointmentOverview(
                total_appointments=row[0],
                pending=row[1],
                approved=row[2],
                completed=row[3],
                cancelled=row[4],
                today=row[5]
            ),
            by_service=[ServiceCount(name=name, count=count) for name, count in by_service]
        )
