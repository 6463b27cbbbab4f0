"""
pixel.py — email-open tracking pixel.

GET /api/email-open-pixel?token=... always answers with a 1x1 transparent GIF.
As a side effect, a known token bumps the outreach contact's open counters and
writes a synthetic "recruiter encounter" session with a single history entry.
"""
import base64
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from visitlog import store
from visitlog.models.outreach_contact import OutreachContactORM
from visitlog.tracking.enrichment import RequestContext
from visitlog.tracking.reconciler import identity_columns, snapshot_columns

logger = logging.getLogger(__name__)

TRANSPARENT_GIF: bytes = base64.b64decode(
    "R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"
)

PIXEL_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

EMAIL_OPEN_PATH = "/email/open"
EMAIL_OPEN_META = "Email Tracking Pixel"
EMAIL_CLIENT_SCREEN = "Email Client"


def recruiter_identity(contact: OutreachContactORM) -> dict:
    return {
        "name": f"[Recruiter] {contact.contact_name or ''}".strip(),
        "email": contact.contact_email,
        "company": contact.company_name,
        "role": "Recruiter",
    }


async def record_email_open(
    db: AsyncSession,
    token: Optional[str],
    context: RequestContext,
    now: datetime,
    retention_cap: int,
) -> Optional[str]:
    """
    Register one open of the tracked email identified by `token`.

    Returns the id of the synthetic session, or None when the token is missing
    or unknown. Storage errors propagate; the route swallows them.
    Never looks up an existing session: a pixel load has no client context.
    """
    if not token:
        return None

    contact = await store.get_outreach_contact_by_token(db, token)
    if contact is None:
        logger.info("Tracking pixel hit with unknown token")
        return None

    await store.record_outreach_open(db, contact.id, now)

    session_id = str(uuid.uuid4())
    values = snapshot_columns(
        context,
        {"userAgent": context.user_agent, "screen": EMAIL_CLIENT_SCREEN},
    )
    values.update(identity_columns(recruiter_identity(contact)))
    values["visit_history"] = [{
        "path": EMAIL_OPEN_PATH,
        "timestamp": now.isoformat(),
        "meta": EMAIL_OPEN_META,
    }]
    await store.insert_visitor_session(db, session_id, values, now)
    await store.trim_sessions(db, retention_cap, exclude_session_id=session_id)

    logger.info("Outreach email opened contact_id=%s session_id=%s", contact.id, session_id)
    return session_id
