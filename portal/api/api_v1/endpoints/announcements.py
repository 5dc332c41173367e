from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from portal.database import get_db
from portal.auth.dependencies import get_current_user, get_current_admin
from portal.models.user import User
from portal.schemas.notification import AnnouncementCreate, AnnouncementResponse
from portal.services.announcement_service import AnnouncementService

router = APIRouter()


@router.get("/", response_model=List[AnnouncementResponse])
async def list_announcements(
    announcement_type: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return AnnouncementService(db).list_announcements(announcement_type)


@router.post("/", response_model=AnnouncementResponse, status_code=status.HTTP_201_CREATED)
async def create_announcement(
    data: AnnouncementCreate,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin)
):
    """Publish an announcement and notify every student"""
    announcement, sent = AnnouncementService(db).create_announcement(data, created_by=current_admin.id)
    response = AnnouncementResponse.model_validate(announcement)
    response.notifications_created = sent
    return response
