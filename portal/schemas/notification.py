from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    title: str
    message: Optional[str] = None
    type: str
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnreadCount(BaseModel):
    count: int


class AnnouncementCreate(BaseModel):
    title: str
    content: str
    type: str = "general"  # general, academic, hostel, library, urgent
    priority: str = "medium"  # low, medium, high


class AnnouncementResponse(BaseModel):
    id: int
    title: str
    content: str
    type: str
    priority: str
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    notifications_created: Optional[int] = None

    class Config:
        from_attributes = True
