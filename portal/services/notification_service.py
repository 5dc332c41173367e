from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import Iterable, List, Optional
import logging

from portal.models.user import User
from portal.models.notification import Notification, NotificationType
from portal.models.appointment import AppointmentNotification

logger = logging.getLogger(__name__)


class NotificationService:
    """Writes and reads user notifications.

    The ``notify*`` methods never commit. They stage rows inside a SAVEPOINT of
    the caller's transaction so a failed insert is rolled back on its own and
    logged, while the caller's primary change still commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        user_id: int,
        title: str,
        message: str,
        notification_type: str = NotificationType.INFO.value
    ) -> Optional[Notification]:
        """Stage one notification. Returns None if it could not be written."""
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=notification_type,
            is_read=False
        )
        try:
            with self.db.begin_nested():
                self.db.add(notification)
        except SQLAlchemyError as e:
            logger.warning(f"Could not create notification for user {user_id}: {e}")
            return None
        return notification

    def notify_email(
        self,
        email: Optional[str],
        title: str,
        message: str,
        notification_type: str = NotificationType.INFO.value
    ) -> Optional[Notification]:
        """Notify the user account registered under ``email``, if there is one"""
        if not email:
            return None
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if user is None:
            logger.info(f"No user account for {email}; notification '{title}' skipped")
            return None
        return self.notify(user.id, title, message, notification_type)

    def notify_users(
        self,
        user_ids: Iterable[int],
        title: str,
        message: str,
        notification_type: str = NotificationType.INFO.value
    ) -> int:
        sent = 0
        for user_id in user_ids:
            if self.notify(user_id, title, message, notification_type) is not None:
                sent += 1
        return sent

    def notify_role(
        self,
        role: str,
        title: str,
        message: str,
        notification_type: str = NotificationType.INFO.value
    ) -> int:
        """Fan a notification out to every user holding ``role``"""
        user_ids = [row.id for row in self.db.query(User.id).filter(User.role == role).all()]
        return self.notify_users(user_ids, title, message, notification_type)

    def record_appointment_notification(
        self,
        appointment_id: int,
        user_id: int,
        notification_type: str,
        message: str
    ) -> Optional[AppointmentNotification]:
        record = AppointmentNotification(
            appointment_id=appointment_id,
            user_id=user_id,
            notification_type=notification_type,
            message=message
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
        except SQLAlchemyError as e:
            logger.warning(f"Could not record {notification_type} for appointment {appointment_id}: {e}")
            return None
        return record

    def get_user_notifications(
        self,
        user_id: int,
        skip: int = 0,
        limit: int = 50,
        unread_only: bool = False
    ) -> List[Notification]:
        """Get notifications for a user, newest first"""
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)  # noqa: E712
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(skip).limit(limit).all()

    def get_notifications_by_email(self, email: str) -> List[Notification]:
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if user is None:
            return []
        return self.get_user_notifications(user.id, limit=500)

    def get_unread_count(self, user_id: int) -> int:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).count()

    def get_unread_count_by_email(self, email: str) -> int:
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if user is None:
            return 0
        return self.get_unread_count(user.id)

    def mark_notification_read(self, notification_id: int, user_id: int) -> bool:
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()

        if notification:
            notification.is_read = True
            self.db.commit()
            return True
        return False

    def mark_all_notifications_read(self, user_id: int) -> int:
        updated = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).update({"is_read": True}, synchronize_session=False)

        self.db.commit()
        return updated

    def delete_notification(self, notification_id: int, user_id: int) -> bool:
        deleted = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted > 0
