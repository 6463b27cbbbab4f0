"""
store.py — Data access facade for visitlog.

Provides a consistent, high-level API for persisting and retrieving tracking rows.
All tracking routes use these functions; no route touches SQLAlchemy directly.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM / Core expression queries only
  - Uses flush() (not commit()); the caller owns the transaction boundary
  - Logs only session ids, row counts and caps, never identity values
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from visitlog.models.outreach_contact import OutreachContactORM
from visitlog.models.request_log import RequestLogORM
from visitlog.models.session import VisitorSessionORM

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Visitor session operations
# ---------------------------------------------------------------------------

async def get_visitor_session(
    db: AsyncSession,
    session_id: str,
    for_update: bool = False,
) -> Optional[VisitorSessionORM]:
    """
    Retrieve a session row by id. Returns None if not found.

    for_update=True takes a row lock (SELECT ... FOR UPDATE) so two concurrent
    flushes for the same session serialize on the database instead of racing
    through read-merge-write. Ignored by SQLite.
    """
    stmt = select(VisitorSessionORM).where(VisitorSessionORM.session_id == session_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


_CONFLICT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def insert_visitor_session(
    db: AsyncSession,
    session_id: str,
    values: dict[str, Any],
    now: datetime,
) -> bool:
    """
    Insert a brand-new session row. started_at and last_active_at are both `now`.
    `values` holds the column values computed by the caller (history, snapshots, identity).

    Runs as INSERT ... ON CONFLICT (session_id) DO NOTHING: when a concurrent
    transaction created the same id first, nothing is written and False is
    returned so the caller can lock that row and merge into it instead.
    """
    insert_for_dialect = _CONFLICT_INSERTS[db.get_bind().dialect.name]
    stmt = (
        insert_for_dialect(VisitorSessionORM.__table__)
        .values(session_id=session_id, started_at=now, last_active_at=now, **values)
        .on_conflict_do_nothing(index_elements=["session_id"])
    )
    result = await db.execute(stmt)
    if not result.rowcount:
        logger.info("Visitor session already exists session_id=%s", session_id)
        return False

    logger.info(
        "Inserted visitor session session_id=%s events=%d",
        session_id,
        len(values.get("visit_history") or []),
    )
    return True


async def update_visitor_session(
    db: AsyncSession,
    orm: VisitorSessionORM,
    values: dict[str, Any],
    now: datetime,
) -> VisitorSessionORM:
    """Apply `values` to an existing row and bump last_active_at."""
    for column, value in values.items():
        setattr(orm, column, value)
    orm.last_active_at = now
    await db.flush()
    logger.info(
        "Updated visitor session session_id=%s events=%d",
        orm.session_id,
        len(orm.visit_history or []),
    )
    return orm


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

async def trim_sessions(
    db: AsyncSession,
    cap: int,
    exclude_session_id: Optional[str] = None,
) -> int:
    """
    Delete every session beyond the `cap` most recently active ones.

    The row identified by exclude_session_id is never deleted, even if clock skew
    makes it look old. Best-effort: concurrent trims may leave the table
    transiently off the cap.
    Returns the number of deleted rows.
    """
    overflow = (
        select(VisitorSessionORM.session_id)
        .order_by(VisitorSessionORM.last_active_at.desc())
        .offset(cap)
    )
    stmt = delete(VisitorSessionORM).where(VisitorSessionORM.session_id.in_(overflow))
    if exclude_session_id is not None:
        stmt = stmt.where(VisitorSessionORM.session_id != exclude_session_id)

    result = await db.execute(stmt, execution_options={"synchronize_session": False})
    deleted = result.rowcount or 0
    if deleted:
        logger.info("Trimmed %d visitor session(s) cap=%d", deleted, cap)
    return deleted


async def trim_request_log(db: AsyncSession, cap: int) -> int:
    """
    Delete every request-log row beyond the `cap` most recent ones.
    Log rows are never updated, so there is nothing to exclude.
    """
    overflow = (
        select(RequestLogORM.id)
        .order_by(RequestLogORM.created_at.desc(), RequestLogORM.id.desc())
        .offset(cap)
    )
    stmt = delete(RequestLogORM).where(RequestLogORM.id.in_(overflow))
    result = await db.execute(stmt, execution_options={"synchronize_session": False})
    deleted = result.rowcount or 0
    if deleted:
        logger.info("Trimmed %d request log row(s) cap=%d", deleted, cap)
    return deleted


# ---------------------------------------------------------------------------
# Request log operations
# ---------------------------------------------------------------------------

async def save_request_log(db: AsyncSession, values: dict[str, Any]) -> RequestLogORM:
    """Append one request-log row."""
    orm = RequestLogORM(**values)
    db.add(orm)
    await db.flush()
    logger.info("Saved request log request_id=%s uri=%s", orm.request_id, orm.request_uri)
    return orm


def _log_row(row: RequestLogORM) -> dict:
    return {
        "id": row.id,
        "request_id": row.request_id,
        "http_method": row.http_method,
        "request_uri": row.request_uri,
        "user_agent": row.user_agent,
        "country_code": row.country_code,
        "country_name": row.country_name,
        "region_name": row.region_name,
        "city_name": row.city_name,
        "timezone": row.time_zone,
        "isp_name": row.isp_name,
        "browser_name": row.browser_name,
        "operating_system": row.operating_system,
        "device_type": row.device_type,
        "session_id": row.session_id,
        "user_name": row.user_name,
        "user_email": row.user_email,
        "user_phone": row.user_phone,
        "created_at": row.created_at.isoformat(),
    }


# request_uri patterns for the report "type" filter
_LOG_TYPE_FILTERS = {
    "home": lambda col: col == "/",
    "blog": lambda col: col.like("/blogs/%"),
    "project": lambda col: col.like("/projects/%"),
}


async def list_request_logs(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    ip: Optional[str] = None,
    log_type: Optional[str] = None,
) -> dict:
    """
    Paginated request-log rows, newest first. start is inclusive, end exclusive.

    ip matches as a substring of the stored session_id (which holds the IP).
    log_type is one of home / blog / project; unknown values are ignored.
    """
    conditions = []
    if start is not None:
        conditions.append(RequestLogORM.created_at >= start)
    if end is not None:
        conditions.append(RequestLogORM.created_at < end)
    if ip:
        conditions.append(RequestLogORM.session_id.contains(ip, autoescape=True))
    type_filter = _LOG_TYPE_FILTERS.get(log_type or "")
    if type_filter is not None:
        conditions.append(type_filter(RequestLogORM.request_uri))

    total = await db.scalar(select(func.count()).select_from(RequestLogORM).where(*conditions))
    result = await db.execute(
        select(RequestLogORM)
        .where(*conditions)
        .order_by(RequestLogORM.created_at.desc(), RequestLogORM.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    rows = result.scalars().all()
    return {
        "logs": [_log_row(row) for row in rows],
        "pagination": _pagination(total or 0, page, limit),
    }


# ---------------------------------------------------------------------------
# Session listing (admin report views)
# ---------------------------------------------------------------------------

async def list_visitor_sessions(
    db: AsyncSession,
    now: datetime,
    active_window_seconds: int,
    page: int = 1,
    limit: int = 20,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    ip: Optional[str] = None,
) -> dict:
    """
    Paginated sessions ordered by started_at descending (start inclusive, end
    exclusive), with derived display fields:
      - pages: number of visit_history entries
      - duration_minutes: last_active_at - started_at, rounded
      - active_now: last activity within active_window_seconds of `now`
    """
    conditions = []
    if start is not None:
        conditions.append(VisitorSessionORM.started_at >= start)
    if end is not None:
        conditions.append(VisitorSessionORM.started_at < end)
    if ip:
        conditions.append(VisitorSessionORM.ip_address.contains(ip, autoescape=True))

    total = await db.scalar(select(func.count()).select_from(VisitorSessionORM).where(*conditions))
    result = await db.execute(
        select(VisitorSessionORM)
        .where(*conditions)
        .order_by(VisitorSessionORM.started_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    sessions = []
    for row in result.scalars().all():
        started_at = as_utc(row.started_at)
        last_active_at = as_utc(row.last_active_at)
        sessions.append({
            "session_id": row.session_id,
            "ip_address": row.ip_address,
            "user_identity": row.user_identity or {},
            "visit_history": row.visit_history or [],
            "device_info": row.device_info or {},
            "geo_info": row.geo_info or {},
            "browser_name": row.browser_name,
            "operating_system": row.operating_system,
            "device_type": row.device_type,
            "country_name": row.country_name,
            "city_name": row.city_name,
            "started_at": started_at.isoformat(),
            "last_active_at": last_active_at.isoformat(),
            "pages": len(row.visit_history or []),
            "duration_minutes": round((last_active_at - started_at).total_seconds() / 60),
            "active_now": (now - last_active_at).total_seconds() <= active_window_seconds,
        })
    return {
        "sessions": sessions,
        "pagination": _pagination(total or 0, page, limit),
    }


# ---------------------------------------------------------------------------
# Outreach contact operations (tracking pixel)
# ---------------------------------------------------------------------------

async def get_outreach_contact_by_token(
    db: AsyncSession,
    token: str,
) -> Optional[OutreachContactORM]:
    result = await db.execute(
        select(OutreachContactORM).where(OutreachContactORM.tracking_token == token)
    )
    return result.scalar_one_or_none()


async def record_outreach_open(
    db: AsyncSession,
    contact_id: str,
    now: datetime,
) -> None:
    """Increment email_opens atomically and stamp last_opened_at."""
    await db.execute(
        update(OutreachContactORM)
        .where(OutreachContactORM.id == contact_id)
        .values(
            email_opens=OutreachContactORM.email_opens + 1,
            last_opened_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    logger.info("Recorded outreach email open contact_id=%s", contact_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def as_utc(value: datetime) -> datetime:
    """
    Normalize a stored timestamp to an aware UTC datetime.
    SQLite hands back naive datetimes even for DateTime(timezone=True) columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _pagination(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }
