from sqlalchemy import Column, String, Integer, Boolean, Date, Time, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from portal.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# pending -> approved | rejected | cancelled; approved -> completed | cancelled | no_show
APPOINTMENT_TRANSITIONS = {
    AppointmentStatus.PENDING.value: {
        AppointmentStatus.APPROVED.value,
        AppointmentStatus.REJECTED.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.APPROVED.value: {
        AppointmentStatus.COMPLETED.value,
        AppointmentStatus.CANCELLED.value,
        AppointmentStatus.NO_SHOW.value,
    },
}

# Appointments in these states release their slot
RELEASED_STATUSES = (AppointmentStatus.CANCELLED.value, AppointmentStatus.REJECTED.value)
QUEUED_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.APPROVED.value)


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    duration = Column(Integer, default=30)  # minutes
    department = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    appointments = relationship("Appointment", back_populates="service")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    staff_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    appointment_date = Column(Date, nullable=False, index=True)
    appointment_time = Column(Time, nullable=False)
    token_number = Column(String(20), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING.value)
    notes = Column(Text)
    admin_notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    student = relationship("User", back_populates="appointments", foreign_keys=[student_id])
    staff = relationship("User", foreign_keys=[staff_id])
    service = relationship("Service", back_populates="appointments")
    notifications = relationship("AppointmentNotification", back_populates="appointment", cascade="all, delete-orphan")


class AppointmentNotification(Base):
    """Per-appointment audit trail, kept apart from the general notifications table."""
    __tablename__ = "appointment_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notification_type = Column(String(20), nullable=False)  # confirmation, reminder, status_change, queue_update
    message = Column(Text, nullable=False)
    is_sent = Column(Boolean, default=False)
    sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointment = relationship("Appointment", back_populates="notifications")


class AppointmentTokenCounter(Base):
    """Last token sequence handed out for a date. Locked while a booking allocates."""
    __tablename__ = "appointment_token_counters"

    appointment_date = Column(Date, primary_key=True)
    last_sequence = Column(Integer, nullable=False, default=0)
