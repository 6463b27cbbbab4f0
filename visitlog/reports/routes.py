"""
routes.py — read-only admin views over the audit tables.

GET /api/admin/audit/logs      — paginated request-log rows (newest first)
GET /api/admin/audit/sessions  — paginated visitor sessions with pages / duration / active-now

Authentication for the admin area is handled in front of this service.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from visitlog import store
from visitlog.config import settings
from visitlog.database import get_db
from visitlog.tracking.routes import get_now

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/audit", tags=["Audit Reports"])


def _day_start(day: Optional[date]) -> Optional[datetime]:
    if day is None:
        return None
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _day_end(day: Optional[date]) -> Optional[datetime]:
    """
    Exclusive upper bound: midnight after `day`, so the whole day is covered
    and nothing stamped on the next day is.
    """
    if day is None:
        return None
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)


@router.get("/logs")
async def list_logs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    ip: Optional[str] = Query(default=None, description="Substring of the client IP"),
    log_type: Optional[Literal["home", "blog", "project"]] = Query(default=None, alias="type"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await store.list_request_logs(
        db,
        page=page,
        limit=limit,
        start=_day_start(start_date),
        end=_day_end(end_date),
        ip=ip,
        log_type=log_type,
    )
    logger.info("Request log listing page=%d total=%d", page, result["pagination"]["total"])
    return result


@router.get("/sessions")
async def list_sessions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    ip: Optional[str] = Query(default=None, description="Substring of the session IP"),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict:
    """
    Sessions for the admin report page. active_now marks sessions whose last
    activity falls within active_now_window_seconds.
    """
    result = await store.list_visitor_sessions(
        db,
        now=now,
        active_window_seconds=settings.active_now_window_seconds,
        page=page,
        limit=limit,
        start=_day_start(start_date),
        end=_day_end(end_date),
        ip=ip,
    )
    logger.info("Session listing page=%d total=%d", page, result["pagination"]["total"])
    return result
