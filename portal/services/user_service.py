from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
import logging

from portal.auth.jwt import get_password_hash, verify_password
from portal.core.exceptions import ConflictError, NotFoundError
from portal.models.user import User, UserRole, Student
from portal.models.request import Request, RequestType, RequestStatus
from portal.models.notification import Notification
from portal.schemas.auth import UserRegister
from portal.schemas.refs import StudentRef, StudentById, StudentByEmail

logger = logging.getLogger(__name__)

STUDENT_NUMBER_PREFIX = "STU"


def generate_student_number(db: Session) -> str:
    """Next free student number, e.g. STU009"""
    existing = db.query(Student.student_number).filter(
        Student.student_number.like(f"{STUDENT_NUMBER_PREFIX}%")
    ).all()

    max_sequence = 0
    for (number,) in existing:
        try:
            max_sequence = max(max_sequence, int(number[len(STUDENT_NUMBER_PREFIX):]))
        except ValueError:
            continue

    # Format: STU001
    return f"{STUDENT_NUMBER_PREFIX}{max_sequence + 1:03d}"


def resolve_student(db: Session, ref: Optional[StudentRef]) -> Optional[Student]:
    if isinstance(ref, StudentById):
        return db.query(Student).filter(Student.id == ref.id).first()
    if isinstance(ref, StudentByEmail):
        return db.query(Student).filter(Student.email == ref.email.lower()).first()
    return None


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def register(self, data: UserRegister) -> Tuple[User, Request]:
        """Create a pending account and the new_user request an admin will decide"""
        email = data.email.lower()
        if self.db.query(User).filter(User.email == email).first():
            raise ConflictError("User already exists")

        try:
            user = User(
                email=email,
                hashed_password=get_password_hash(data.password),
                name=data.name,
                phone=data.phone,
                department=data.department,
                year=data.year,
                role=UserRole.PENDING.value,
                approved=False
            )
            self.db.add(user)
            self.db.flush()

            request = Request(
                requester_email=email,
                student_name=data.name,
                type=RequestType.NEW_USER.value,
                title=f"New account: {data.name}",
                description=f"{data.department or 'No department'}, year {data.year or '-'}",
                status=RequestStatus.PENDING.value,
                user_id=user.id
            )
            self.db.add(request)
            self.db.commit()
        except Exception as e:
            logger.error(f"Error registering {email}: {e}")
            self.db.rollback()
            raise

        self.db.refresh(user)
        self.db.refresh(request)
        logger.info(f"Registered pending user {user.id} with request {request.id}")
        return user, request

    def authenticate(self, email: str, password: str) -> Optional[User]:
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if not user or not verify_password(password, user.hashed_password):
            return None
        return user

    def get_pending_users(self) -> List[User]:
        return self.db.query(User).filter(
            User.role == UserRole.PENDING.value,
            User.approved == False  # noqa: E712
        ).order_by(User.created_at.desc()).all()

    def approve_user(self, user_id: int, student_number: Optional[str] = None) -> Student:
        """Promote a pending user to student and create (or link) the Student record.

        Does not commit; runs inside the caller's transaction.
        """
        user = self.db.query(User).filter(User.id == user_id).with_for_update().first()
        if user is None:
            raise NotFoundError("User", user_id)
        if user.role != UserRole.PENDING.value:
            raise ConflictError(f"User {user_id} is not awaiting approval")

        user.role = UserRole.STUDENT.value
        user.approved = True

        student = self.db.query(Student).filter(Student.email == user.email).first()
        if student is None:
            number = student_number or generate_student_number(self.db)
            if self.db.query(Student).filter(Student.student_number == number).first():
                raise ConflictError(f"Student number {number} is already taken")
            student = Student(
                student_number=number,
                name=user.name,
                email=user.email,
                phone=user.phone,
                department=user.department,
                year=user.year,
                status="active"
            )
            self.db.add(student)
        self.db.flush()

        # Link any requests filed under this e-mail before the Student row existed
        self.db.query(Request).filter(
            Request.requester_email == user.email,
            Request.student_id.is_(None)
        ).update({"student_id": student.id}, synchronize_session=False)

        logger.info(f"Approved user {user_id} as student {student.student_number}")
        return student

    def reject_user(self, user_id: int) -> None:
        """Remove a pending account so its e-mail can register again.

        Does not commit; runs inside the caller's transaction.
        """
        user = self.db.query(User).filter(User.id == user_id).with_for_update().first()
        if user is None:
            raise NotFoundError("User", user_id)
        if user.role != UserRole.PENDING.value:
            raise ConflictError(f"User {user_id} is not awaiting approval")

        email = user.email
        self.db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
        self.db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        self.db.expunge(user)
        logger.info(f"Rejected and removed pending user {user_id} ({email})")
