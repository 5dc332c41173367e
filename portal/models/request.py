from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from portal.database import Base


class RequestType(str, enum.Enum):
    HOSTEL = "hostel"
    LIBRARY = "library"
    COURSE = "course"
    OTHER = "other"
    BORROW = "borrow"
    RETURN = "return"
    ENROLL = "enroll"
    UNENROLL = "unenroll"
    NEW_USER = "new_user"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Request(Base):
    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Requester, resolved once when the request is created
    student_id = Column(Integer, ForeignKey("students.id", ondelete="SET NULL"), nullable=True, index=True)
    requester_email = Column(String(255), nullable=False, index=True)
    student_name = Column(String(255))

    type = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default=RequestStatus.PENDING.value, index=True)
    admin_note = Column(Text)

    # Type specific payload
    book_id = Column(Integer, ForeignKey("books.id", ondelete="SET NULL"))
    book_title = Column(String(255))
    book_author = Column(String(255))
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="SET NULL"))
    course_code = Column(String(50))
    course_name = Column(String(255))
    borrowing_id = Column(Integer, ForeignKey("borrowings.id", ondelete="SET NULL"))
    enrollment_id = Column(Integer, ForeignKey("enrollments.id", ondelete="SET NULL"))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"))  # new_user only

    decided_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    student = relationship("Student", back_populates="requests")
    user = relationship("User")
