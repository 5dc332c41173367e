from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional
from datetime import date
import logging

from portal.core.exceptions import PortalError, ConflictError, InvalidInputError, ReferenceNotFoundError
from portal.models.user import Student
from portal.models.academic import Course, Enrollment, EnrollmentStatus
from portal.schemas.enrollment import EnrollmentCreate
from portal.services.user_service import resolve_student

logger = logging.getLogger(__name__)


def find_course(db: Session, course_id: Optional[int], course_code: Optional[str]) -> Optional[Course]:
    course = None
    if course_id:
        course = db.query(Course).filter(Course.id == course_id).first()
    if course is None and course_code:
        course = db.query(Course).filter(Course.course_code == course_code).first()
    return course


class EnrollmentService:
    def __init__(self, db: Session):
        self.db = db

    def enroll(self, student: Student, course: Course) -> Enrollment:
        """Enroll a student, re-activating a dropped enrollment for the same course.

        A live enrollment is a conflict. Does not commit.
        """
        enrollment = self.db.query(Enrollment).filter(
            Enrollment.student_id == student.id,
            Enrollment.course_id == course.id
        ).with_for_update().first()

        if enrollment is not None and enrollment.status != EnrollmentStatus.DROPPED.value:
            raise ConflictError(f"{student.name} is already enrolled in {course.course_code}", code="ALREADY_ENROLLED")

        if enrollment is None:
            enrollment = Enrollment(student_id=student.id, course_id=course.id)
            self.db.add(enrollment)
        enrollment.status = EnrollmentStatus.ENROLLED.value
        enrollment.enrollment_date = date.today()
        enrollment.grade = None

        try:
            self.db.flush()
        except IntegrityError:
            raise ConflictError(f"{student.name} is already enrolled in {course.course_code}", code="ALREADY_ENROLLED")
        return enrollment

    def create_enrollment(self, data: EnrollmentCreate) -> Enrollment:
        """Direct admin enrollment, outside the request workflow"""
        ref = data.student_ref()
        if ref is None:
            raise InvalidInputError("student_id or student_email is required")
        if not data.course_id and not data.course_code:
            raise InvalidInputError("course_id or course_code is required")

        try:
            student = resolve_student(self.db, ref)
            if student is None:
                raise ReferenceNotFoundError(f"Student {data.student_id or data.student_email} not found")
            course = find_course(self.db, data.course_id, data.course_code)
            if course is None:
                raise ReferenceNotFoundError(f"Course {data.course_code or data.course_id} not found")

            enrollment = self.enroll(student, course)
            self.db.commit()
        except PortalError:
            self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error enrolling student {data.student_id or data.student_email}: {e}")
            self.db.rollback()
            raise

        self.db.refresh(enrollment)
        logger.info(f"Enrolled student {student.id} in {course.course_code} (enrollment {enrollment.id})")
        return enrollment
