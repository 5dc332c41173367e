from sqlalchemy import Column, String, Integer, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from portal.database import Base


class UserRole(str, enum.Enum):
    STUDENT = "student"
    ADMIN = "admin"
    TEACHER = "teacher"
    PENDING = "pending"


class User(Base):
    """Login account. Students get a separate Student record once approved."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.PENDING.value)  # student, admin, teacher, pending
    phone = Column(String(20))
    department = Column(String(100))
    year = Column(Integer)
    approved = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="student", foreign_keys="Appointment.student_id")


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_number = Column(String(50), unique=True, nullable=False)  # e.g. STU001
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(20))
    department = Column(String(100))
    year = Column(Integer)
    status = Column(String(20), default="active")  # active, inactive, graduated
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    enrollments = relationship("Enrollment", back_populates="student", cascade="all, delete-orphan")
    borrowings = relationship("Borrowing", back_populates="student", cascade="all, delete-orphan")
    requests = relationship("Request", back_populates="student")
