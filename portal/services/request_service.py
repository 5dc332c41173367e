from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional, Union
from datetime import date, datetime, timedelta
import logging

from portal.core.config import settings
from portal.core.exceptions import (
    PortalError,
    NotFoundError,
    ConflictError,
    UnavailableError,
    ForbiddenError,
    InvalidInputError,
    ReferenceNotFoundError,
)
from portal.models.user import User, UserRole, Student
from portal.models.academic import Course, Enrollment
from portal.models.library import Book, Borrowing, BorrowingStatus
from portal.models.request import Request, RequestType, RequestStatus
from portal.models.notification import NotificationType
from portal.schemas.request import RequestCreate, DecisionResult
from portal.schemas.refs import StudentRef, StudentById, StudentByEmail
from portal.services.enrollment_service import EnrollmentService, find_course
from portal.services.notification_service import NotificationService
from portal.services.user_service import UserService, resolve_student

logger = logging.getLogger(__name__)

# Payload fields each request type needs; any one field of a tuple is enough
REQUIRED_FIELDS = {
    RequestType.BORROW: (("book_id",),),
    RequestType.RETURN: (("book_id", "borrowing_id"),),
    RequestType.ENROLL: (("course_code", "course_id"),),
    RequestType.UNENROLL: (("enrollment_id",),),
    RequestType.NEW_USER: (("user_id",),),
}

ACTIVE_BORROWING_STATUSES = (BorrowingStatus.BORROWED.value, BorrowingStatus.OVERDUE.value)


class RequestService:
    """Creates requests and applies admin decisions to them.

    A decision is one transaction: the requester and payload references are
    resolved, the type specific side effect is applied, the requester is
    notified and the request is deleted (or, with REQUEST_RETAIN_DECIDED,
    marked). Any failure rolls all of it back and leaves the request pending.
    """

    def __init__(self, db: Session):
        self.db = db
        self.notifications = NotificationService(db)

    # ------------------------------------------------------------------
    # Creation and listing
    # ------------------------------------------------------------------

    def create_request(self, data: RequestCreate) -> Request:
        request_type = RequestType(data.type)
        self._validate_payload(request_type, data)

        ref = data.student_ref()
        if ref is None and request_type != RequestType.NEW_USER:
            raise InvalidInputError("student_id or student_email is required")

        student = resolve_student(self.db, ref)
        requester_email = self._requester_email(request_type, data, ref, student)

        existing = self._find_duplicate(request_type, requester_email, data)
        if existing:
            logger.info(f"Pending {request_type.value} request already exists for {requester_email}: {existing.id}")
            return existing

        book_title, book_author = data.book_title, data.book_author
        if data.book_id and not book_title:
            book = self.db.query(Book).filter(Book.id == data.book_id).first()
            if book:
                book_title, book_author = book.title, book_author or book.author

        course_name = data.course_name
        if not course_name and (data.course_code or data.course_id):
            course = self._find_course(data.course_id, data.course_code)
            if course:
                course_name = course.name

        try:
            request = Request(
                student_id=student.id if student else None,
                requester_email=requester_email,
                student_name=data.student_name or (student.name if student else None),
                type=request_type.value,
                title=data.title or f"{request_type.value} request",
                description=data.description or "",
                status=RequestStatus.PENDING.value,
                book_id=data.book_id,
                book_title=book_title,
                book_author=book_author,
                course_id=data.course_id,
                course_code=data.course_code,
                course_name=course_name,
                borrowing_id=data.borrowing_id,
                enrollment_id=data.enrollment_id,
                user_id=data.user_id
            )
            self.db.add(request)
            self.db.commit()
            self.db.refresh(request)
        except Exception as e:
            logger.error(f"Error creating {request_type.value} request for {requester_email}: {e}")
            self.db.rollback()
            raise

        logger.info(f"Created {request_type.value} request {request.id} for {requester_email}")
        return request

    def list_requests(self, status: Optional[str] = None) -> List[Request]:
        query = self.db.query(Request)
        if status:
            query = query.filter(Request.status == status)
        return query.order_by(Request.created_at.desc(), Request.id.desc()).all()

    def get_student_requests(self, ref: StudentRef) -> List[Request]:
        query = self.db.query(Request)
        if isinstance(ref, StudentById):
            query = query.filter(Request.student_id == ref.id)
        else:
            query = query.filter(Request.requester_email == ref.email.lower())
        return query.order_by(Request.created_at.desc(), Request.id.desc()).all()

    def delete_request(self, request_id: int) -> None:
        deleted = self.db.query(Request).filter(Request.id == request_id).delete(synchronize_session=False)
        if not deleted:
            self.db.rollback()
            raise NotFoundError("Request", request_id)
        self.db.commit()
        logger.info(f"Deleted request {request_id}")

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        request_id: int,
        decision: Union[RequestStatus, str],
        admin_note: Optional[str] = None,
        student_number: Optional[str] = None
    ) -> DecisionResult:
        """Approve or reject a pending request"""
        try:
            decision = RequestStatus(decision)
        except ValueError:
            raise InvalidInputError(f"Unknown decision '{decision}'")
        if decision == RequestStatus.PENDING:
            raise InvalidInputError("Decision must be 'approved' or 'rejected'")

        try:
            request = self.db.query(Request).filter(Request.id == request_id).with_for_update().first()
            if request is None:
                raise NotFoundError("Request", request_id)
            if request.status != RequestStatus.PENDING.value:
                raise ConflictError(f"Request {request_id} has already been {request.status}", code="ALREADY_DECIDED")

            request_type = RequestType(request.type)
            effects: Dict[str, Any] = {}

            if decision == RequestStatus.APPROVED:
                message = self._apply_approval(request, request_type, effects, student_number)
                title, notification_type = "Request Approved", NotificationType.SUCCESS.value
            else:
                message = self._rejection_message(request, request_type, admin_note)
                title, notification_type = "Request Rejected", NotificationType.ERROR.value

            # A rejected registration removes the pending account, so there is nobody to notify
            removes_account = decision == RequestStatus.REJECTED and request_type == RequestType.NEW_USER
            pending_user_id = request.user_id
            notification = None
            if not removes_account:
                notification = self._notify_requester(request, request_type, title, message, notification_type)
            self._close(request, decision, admin_note, detach_user=removes_account)
            if removes_account and pending_user_id:
                UserService(self.db).reject_user(pending_user_id)
            self.db.commit()
        except PortalError as e:
            self.db.rollback()
            logger.warning(f"Request {request_id} not {decision.value}: {e.message}")
            raise
        except Exception as e:
            logger.error(f"Error deciding request {request_id}: {e}")
            self.db.rollback()
            raise

        logger.info(f"Request {request_id} ({request_type.value}) {decision.value}")
        return DecisionResult(
            request_id=request_id,
            type=request_type.value,
            status=decision,
            message=f"Request {decision.value}" + ("" if settings.REQUEST_RETAIN_DECIDED else " and removed from list"),
            notification_sent=notification is not None,
            retained=settings.REQUEST_RETAIN_DECIDED,
            enrollment_id=effects.get("enrollment_id"),
            borrowing_id=effects.get("borrowing_id"),
            student_id=effects.get("student_id")
        )

    def _apply_approval(
        self,
        request: Request,
        request_type: RequestType,
        effects: Dict[str, Any],
        student_number: Optional[str]
    ) -> str:
        if request_type == RequestType.ENROLL:
            return self._approve_enroll(request, effects)
        if request_type == RequestType.UNENROLL:
            return self._approve_unenroll(request)
        if request_type == RequestType.BORROW:
            return self._approve_borrow(request, effects)
        if request_type == RequestType.RETURN:
            return self._approve_return(request, effects)
        if request_type == RequestType.NEW_USER:
            if not request.user_id:
                raise ReferenceNotFoundError("Registration request has no user attached")
            student = UserService(self.db).approve_user(request.user_id, student_number)
            effects["student_id"] = student.id
            return "Your account has been approved. Welcome to the portal!"
        return f"Your {request_type.value} request has been approved."

    def _approve_enroll(self, request: Request, effects: Dict[str, Any]) -> str:
        course = self._find_course(request.course_id, request.course_code)
        if course is None:
            raise ReferenceNotFoundError(f"Course {request.course_code or request.course_id} not found")
        student = self._resolve_requester(request)

        enrollment = EnrollmentService(self.db).enroll(student, course)
        effects["enrollment_id"] = enrollment.id
        return f"Your enrollment request for {request.course_name or course.name or course.course_code} has been approved!"

    def _approve_unenroll(self, request: Request) -> str:
        enrollment = None
        if request.enrollment_id:
            enrollment = self.db.query(Enrollment).filter(
                Enrollment.id == request.enrollment_id
            ).with_for_update().first()
        if enrollment is None:
            raise ReferenceNotFoundError(f"Enrollment {request.enrollment_id} not found")

        student = self._resolve_requester(request)
        if enrollment.student_id != student.id:
            raise ForbiddenError("Enrollment belongs to another student")

        label = request.course_name or request.course_code or enrollment.course.name
        self.db.delete(enrollment)
        self.db.flush()
        return f"Your unenrollment request for {label} has been approved."

    def _approve_borrow(self, request: Request, effects: Dict[str, Any]) -> str:
        student = self._resolve_requester(request)
        book = self.db.query(Book).filter(Book.id == request.book_id).first() if request.book_id else None
        if book is None:
            raise ReferenceNotFoundError(f"Book {request.book_id} not found")

        already_borrowed = self.db.query(Borrowing).filter(
            Borrowing.student_id == student.id,
            Borrowing.book_id == book.id,
            Borrowing.status.in_(ACTIVE_BORROWING_STATUSES)
        ).first()
        if already_borrowed:
            raise ConflictError(f"{student.name} already has \"{book.title}\" borrowed", code="ALREADY_BORROWED")

        # Guarded decrement; zero rows means no copy was left
        taken = self.db.query(Book).filter(
            Book.id == book.id,
            Book.available_copies > 0
        ).update({Book.available_copies: Book.available_copies - 1}, synchronize_session=False)
        if not taken:
            raise UnavailableError(f"\"{book.title}\" is not available. All copies are currently borrowed.")

        today = date.today()
        borrowing = Borrowing(
            student_id=student.id,
            book_id=book.id,
            borrow_date=today,
            due_date=today + timedelta(days=settings.LOAN_PERIOD_DAYS),
            status=BorrowingStatus.BORROWED.value,
            fine=0
        )
        self.db.add(borrowing)
        self.db.flush()

        effects["borrowing_id"] = borrowing.id
        return f"Your request to borrow \"{request.book_title or book.title}\" has been approved!"

    def _approve_return(self, request: Request, effects: Dict[str, Any]) -> str:
        student = self._resolve_requester(request)

        query = self.db.query(Borrowing).filter(Borrowing.student_id == student.id)
        if request.borrowing_id:
            borrowing = query.filter(Borrowing.id == request.borrowing_id).with_for_update().first()
        else:
            borrowing = query.filter(
                Borrowing.book_id == request.book_id,
                Borrowing.status.in_(ACTIVE_BORROWING_STATUSES)
            ).with_for_update().first()

        if borrowing is None:
            raise ReferenceNotFoundError(f"No borrowing of book {request.book_id or '?'} found for {student.email}")
        if borrowing.status == BorrowingStatus.RETURNED.value:
            raise ConflictError("This book has already been returned", code="ALREADY_RETURNED")

        # Guarded increment; never above total_copies
        restored = self.db.query(Book).filter(
            Book.id == borrowing.book_id,
            Book.available_copies < Book.total_copies
        ).update({Book.available_copies: Book.available_copies + 1}, synchronize_session=False)
        if not restored:
            raise ConflictError("All copies of this book are already on the shelf", code="COPIES_COMPLETE")

        borrowing.status = BorrowingStatus.RETURNED.value
        borrowing.return_date = date.today()
        self.db.flush()

        effects["borrowing_id"] = borrowing.id
        title = request.book_title or borrowing.book.title
        return f"Your book return for \"{title}\" has been approved. Thank you!"

    def _rejection_message(self, request: Request, request_type: RequestType, admin_note: Optional[str]) -> str:
        course = request.course_name or request.course_code
        if request_type == RequestType.ENROLL:
            message = f"Your enrollment request for {course} has been rejected."
        elif request_type == RequestType.BORROW:
            message = f"Your request to borrow \"{request.book_title}\" has been rejected."
        elif request_type == RequestType.UNENROLL:
            message = "Your unenrollment request has been rejected."
        elif request_type == RequestType.RETURN:
            message = "Your book return request has been rejected."
        elif request_type == RequestType.NEW_USER:
            message = "Your account registration has been rejected."
        else:
            message = f"Your {request_type.value} request has been rejected."

        if admin_note:
            message += f" Reason: {admin_note}"
        return message

    def _notify_requester(self, request: Request, request_type: RequestType, title: str, message: str, notification_type: str):
        if request_type == RequestType.NEW_USER and request.user_id:
            return self.notifications.notify(request.user_id, title, message, notification_type)
        return self.notifications.notify_email(request.requester_email, title, message, notification_type)

    def _close(
        self,
        request: Request,
        decision: RequestStatus,
        admin_note: Optional[str],
        detach_user: bool = False
    ) -> None:
        """Delete or mark the request; only a still-pending row may be closed"""
        still_pending = self.db.query(Request).filter(
            Request.id == request.id,
            Request.status == RequestStatus.PENDING.value
        )
        if settings.REQUEST_RETAIN_DECIDED:
            values = {
                Request.status: decision.value,
                Request.admin_note: admin_note,
                Request.decided_at: datetime.now()
            }
            if detach_user:
                # Keep the retained row when the account it points at is removed
                values[Request.user_id] = None
            closed = still_pending.update(values, synchronize_session=False)
        else:
            closed = still_pending.delete(synchronize_session=False)
        if not closed:
            raise ConflictError(f"Request {request.id} was decided concurrently", code="ALREADY_DECIDED")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_payload(self, request_type: RequestType, data: RequestCreate) -> None:
        for alternatives in REQUIRED_FIELDS.get(request_type, ()):
            if not any(getattr(data, field) for field in alternatives):
                raise InvalidInputError(
                    f"{request_type.value} requests need {' or '.join(alternatives)}",
                    details={"missing": list(alternatives)}
                )

    def _requester_email(
        self,
        request_type: RequestType,
        data: RequestCreate,
        ref: Optional[StudentRef],
        student: Optional[Student]
    ) -> str:
        if request_type == RequestType.NEW_USER:
            user = self.db.query(User).filter(User.id == data.user_id).first()
            if user is None:
                raise ReferenceNotFoundError(f"User {data.user_id} not found")
            if user.role != UserRole.PENDING.value:
                raise ConflictError(f"User {data.user_id} is not awaiting approval")
            return user.email
        if student is not None:
            return student.email
        if isinstance(ref, StudentByEmail):
            if self.db.query(User).filter(User.email == ref.email).first():
                return ref.email
            raise ReferenceNotFoundError(f"Student {ref.email} not found")
        raise ReferenceNotFoundError(f"Student {ref.id} not found")

    def _find_duplicate(self, request_type: RequestType, requester_email: str, data: RequestCreate) -> Optional[Request]:
        if request_type not in REQUIRED_FIELDS:
            return None
        return self.db.query(Request).filter(
            Request.requester_email == requester_email,
            Request.type == request_type.value,
            Request.status == RequestStatus.PENDING.value,
            Request.book_id == data.book_id,
            Request.borrowing_id == data.borrowing_id,
            Request.course_id == data.course_id,
            Request.course_code == data.course_code,
            Request.enrollment_id == data.enrollment_id,
            Request.user_id == data.user_id
        ).first()

    def _find_course(self, course_id: Optional[int], course_code: Optional[str]) -> Optional[Course]:
        return find_course(self.db, course_id, course_code)

    def _resolve_requester(self, request: Request) -> Student:
        student = None
        if request.student_id:
            student = resolve_student(self.db, StudentById(request.student_id))
        if student is None:
            student = resolve_student(self.db, StudentByEmail(request.requester_email))
        if student is None:
            raise ReferenceNotFoundError(f"Student {request.requester_email} not found")
        return student
