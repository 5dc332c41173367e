from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from portal.database import get_db
from portal.auth.dependencies import get_current_user, is_admin
from portal.core.exceptions import ForbiddenError, NotFoundError
from portal.models.user import User
from portal.schemas.notification import NotificationResponse, UnreadCount
from portal.services.notification_service import NotificationService

router = APIRouter()


def _check_owner(current_user: User, user_id: int = None, email: str = None):
    if is_admin(current_user):
        return
    if user_id is not None and user_id != current_user.id:
        raise ForbiddenError("You can only access your own notifications")
    if email is not None and email.lower() != current_user.email:
        raise ForbiddenError("You can only access your own notifications")


@router.get("/", response_model=List[NotificationResponse])
async def get_my_notifications(
    skip: int = 0,
    limit: int = 50,
    unread_only: bool = Query(False, description="Show only unread notifications"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get notifications for the current user, newest first"""
    return NotificationService(db).get_user_notifications(
        current_user.id, skip=skip, limit=limit, unread_only=unread_only
    )


@router.get("/user/{user_id}", response_model=List[NotificationResponse])
async def get_user_notifications(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _check_owner(current_user, user_id=user_id)
    return NotificationService(db).get_user_notifications(user_id)


@router.get("/email/{email}", response_model=List[NotificationResponse])
async def get_notifications_by_email(
    email: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _check_owner(current_user, email=email)
    return NotificationService(db).get_notifications_by_email(email)


@router.get("/unread/count/{email}", response_model=UnreadCount)
async def get_unread_count(
    email: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _check_owner(current_user, email=email)
    return UnreadCount(count=NotificationService(db).get_unread_count_by_email(email))


@router.put("/read-all")
async def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Mark all notifications as read for the current user"""
    updated_count = NotificationService(db).mark_all_notifications_read(current_user.id)
    return {"message": f"Marked {updated_count} notifications as read"}


@router.put("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not NotificationService(db).mark_notification_read(notification_id, current_user.id):
        raise NotFoundError("Notification", notification_id)
    return {"message": "Notification marked as read"}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not NotificationService(db).delete_notification(notification_id, current_user.id):
        raise NotFoundError("Notification", notification_id)
    return {"message": "Notification deleted"}
