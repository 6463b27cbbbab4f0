"""
routes.py — tracking HTTP endpoints.

POST /api/session-events    — reconcile a batch of page-visit events into a visitor session
GET  /api/email-open-pixel  — 1x1 GIF; records an outreach email open as a side effect
POST /api/audit             — append one row to the flat request log

The write endpoints open their own transaction from the session factory instead of
using get_db(): the session flush must answer with its own {success, error} body on
storage failure, and the pixel must never let a storage failure reach the response.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from visitlog import store
from visitlog.config import settings
from visitlog.database import get_session_factory
from visitlog.tracking.enrichment import build_request_context
from visitlog.tracking.pixel import PIXEL_HEADERS, TRANSPARENT_GIF, record_email_open
from visitlog.tracking.reconciler import reconcile_batch
from visitlog.tracking.schemas import RequestLogCreate, SessionFlushRequest, SessionFlushResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Tracking"])


def get_now() -> datetime:
    """Request clock. Overridden in tests to simulate idle periods."""
    return datetime.now(timezone.utc)


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@router.post("/session-events")
async def flush_session_events(
    request: Request,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    now: datetime = Depends(get_now),
) -> JSONResponse:
    """
    Reconcile one flushed batch from the client tracker.

    Returns:
      200 {success: true}                       — continued or created the asserted session
      200 {success: true, newSessionId: "..."}  — asserted session had expired; client must adopt the new id
      400 {success: false, error}               — body is not a valid batch (bad UUID, events not a list)
      500 {success: false, error}               — storage failure; nothing was written
    """
    try:
        batch = SessionFlushRequest.model_validate(await request.json())
    except ValueError as exc:
        # JSONDecodeError and pydantic's ValidationError are both ValueErrors
        logger.info("Rejected session batch: %s", exc)
        return _failure(400, "Invalid payload")

    context = build_request_context(
        request.headers,
        batch.device_info.user_agent if batch.device_info else None,
    )
    logger.debug("Processing session batch session_id=%s events=%d", batch.session_id, len(batch.events))

    try:
        async with factory() as db:
            async with db.begin():
                outcome = await reconcile_batch(
                    db,
                    batch,
                    context,
                    now=now,
                    timeout=settings.session_timeout,
                    retention_cap=settings.session_retention_cap,
                )
    except SQLAlchemyError:
        logger.exception("Session reconciliation failed session_id=%s", batch.session_id)
        return _failure(500, "Internal Server Error")

    response = SessionFlushResponse(
        success=True,
        new_session_id=outcome.session_id if outcome.rotated else None,
    )
    return JSONResponse(status_code=200, content=response.to_wire())


@router.get("/email-open-pixel")
async def email_open_pixel(
    request: Request,
    token: Optional[str] = Query(default=None, description="Outreach tracking token"),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    now: datetime = Depends(get_now),
) -> Response:
    """
    Serve the transparent tracking GIF. Always 200 with the image. A failure here
    must never show up as a broken image in the recipient's email client.
    """
    try:
        context = build_request_context(request.headers)
        async with factory() as db:
            async with db.begin():
                await record_email_open(
                    db,
                    token,
                    context,
                    now=now,
                    retention_cap=settings.session_retention_cap,
                )
    except Exception:
        logger.exception("Pixel tracking error")

    return Response(content=TRANSPARENT_GIF, media_type="image/gif", headers=PIXEL_HEADERS)


@router.post("/audit")
async def log_request(
    body: RequestLogCreate,
    request: Request,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JSONResponse:
    """
    Append one page request to the flat audit log, then trim the log to its cap.
    The client IP is stored in session_id; the report pages filter visitors by it.
    """
    context = build_request_context(
        request.headers,
        body.browser.user_agent if body.browser else None,
    )
    values = {
        "http_method": "GET",
        "request_uri": body.path,
        "user_agent": context.user_agent,
        "country_code": context.country,
        "region_name": context.geo_info.get("region"),
        "city_name": context.city,
        "time_zone": context.geo_info.get("timezone"),
        "isp_name": context.geo_info.get("isp"),
        "browser_name": context.browser_name,
        "operating_system": context.operating_system,
        "device_type": context.device_type,
        "session_id": context.ip_address,
        "user_name": body.user_name,
        "user_email": body.user_email,
        "user_phone": body.user_phone,
    }

    try:
        async with factory() as db:
            async with db.begin():
                await store.save_request_log(db, values)
                await store.trim_request_log(db, settings.request_log_retention_cap)
    except SQLAlchemyError:
        logger.exception("Request log write failed uri=%s", body.path)
        return _failure(500, "Internal Server Error")

    return JSONResponse(status_code=200, content={"success": True})
