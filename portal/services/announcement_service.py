from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
import logging

from portal.models.notification import Announcement, NotificationType
from portal.models.user import UserRole
from portal.schemas.notification import AnnouncementCreate
from portal.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class AnnouncementService:
    def __init__(self, db: Session):
        self.db = db
        self.notifications = NotificationService(db)

    def create_announcement(self, data: AnnouncementCreate, created_by: Optional[int] = None) -> Tuple[Announcement, int]:
        """Store an announcement and notify every student about it"""
        try:
            announcement = Announcement(
                title=data.title,
                content=data.content,
                type=data.type,
                priority=data.priority,
                created_by=created_by
            )
            self.db.add(announcement)
            self.db.flush()

            notification_type = NotificationType.WARNING.value if data.priority == "high" else NotificationType.INFO.value
            sent = self.notifications.notify_role(
                UserRole.STUDENT.value,
                f"New {data.type.capitalize()} Announcement",
                data.title,
                notification_type
            )
            self.db.commit()
        except Exception as e:
            logger.error(f"Error creating announcement '{data.title}': {e}")
            self.db.rollback()
            raise

        self.db.refresh(announcement)
        logger.info(f"Announcement {announcement.id} created, {sent} students notified")
        return announcement, sent

    def list_announcements(self, announcement_type: Optional[str] = None) -> List[Announcement]:
        query = self.db.query(Announcement)
        if announcement_type:
            query = query.filter(Announcement.type == announcement_type)
        return query.order_by(Announcement.created_at.desc(), Announcement.id.desc()).all()
