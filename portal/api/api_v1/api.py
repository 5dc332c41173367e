from fastapi import APIRouter, Depends
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from portal.database import get_db
from portal.api.api_v1.endpoints import auth, requests, enrollments, appointments, notifications, announcements

api_router = APIRouter()


# Health check endpoint for the API
@api_router.get("/health")
async def api_health_check():
    return {"status": "healthy", "api_version": "v1"}


@api_router.get("/test-db")
async def test_database(db: Session = Depends(get_db)):
    """Check the database connection and report how many tables exist"""
    tables = inspect(db.connection()).get_table_names()
    return {"status": "connected", "table_count": len(tables), "tables": sorted(tables)}


# Include all endpoint routers
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(requests.router, prefix="/requests", tags=["requests"])
api_router.include_router(enrollments.router, prefix="/enrollments", tags=["enrollments"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(announcements.router, prefix="/announcements", tags=["announcements"])
