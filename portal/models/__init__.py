from portal.database import Base

# Import all models here to ensure they are registered with SQLAlchemy
from .user import User, UserRole, Student
from .academic import Course, Enrollment, EnrollmentStatus
from .library import Book, Borrowing, BorrowingStatus
from .request import Request, RequestType, RequestStatus
from .notification import Notification, NotificationType, Announcement
from .appointment import (
    Service,
    Appointment,
    AppointmentStatus,
    AppointmentNotification,
    AppointmentTokenCounter,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Student",
    "Course",
    "Enrollment",
    "EnrollmentStatus",
    "Book",
    "Borrowing",
    "BorrowingStatus",
    "Request",
    "RequestType",
    "RequestStatus",
    "Notification",
    "NotificationType",
    "Announcement",
    "Service",
    "Appointment",
    "AppointmentStatus",
    "AppointmentNotification",
    "AppointmentTokenCounter",
]
