"""
reconciler.py — server-side session identity resolution.

Given one flushed batch {sessionId, events, identity?, deviceInfo?} decide which
session row to write and how to merge it:

    decide_session()  →  NewSession | ContinueSession(prior_history) | RotateSession(new_session_id)
    merge_history()   →  prior history + incoming events not seen before
    reconcile_batch() →  runs the decision, writes the row, trims retention

The caller owns the transaction: reconcile_batch() must run inside one
database transaction so that concurrent flushes for the same session id
serialize on the row lock taken by the initial SELECT ... FOR UPDATE.
A brand-new id has no row to lock yet, so its insert skips on conflict and
the losing flush locks the winner's row and merges into it.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from visitlog import store
from visitlog.models.session import VisitorSessionORM
from visitlog.tracking.enrichment import RequestContext
from visitlog.tracking.schemas import SessionFlushRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NewSession:
    """No row exists for the asserted id: insert one under that id."""


@dataclass(frozen=True)
class ContinueSession:
    """Row exists and is still active: append to its history."""
    prior_history: list = field(default_factory=list)


@dataclass(frozen=True)
class RotateSession:
    """Row exists but expired: start an empty session under a fresh id."""
    new_session_id: str


SessionDecision = Union[NewSession, ContinueSession, RotateSession]


def decide_session(
    existing: Optional[VisitorSessionORM],
    now: datetime,
    timeout: timedelta,
    new_id: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> SessionDecision:
    """
    Expiry is strict: a session idle for exactly `timeout` still continues;
    anything longer rotates. Rotation never carries the old history over.
    """
    if existing is None:
        return NewSession()
    elapsed = now - store.as_utc(existing.last_active_at)
    if elapsed > timeout:
        return RotateSession(new_session_id=new_id())
    return ContinueSession(prior_history=list(existing.visit_history or []))


# ---------------------------------------------------------------------------
# History merge
# ---------------------------------------------------------------------------

def event_key(event: dict) -> tuple[str, str]:
    """
    Dedup key: (path, timestamp) exactly as serialized. Any other field
    (e.g. meta) is ignored, and timestamps of different precision are
    different events.
    """
    return (str(event.get("path")), str(event.get("timestamp")))


def merge_history(prior: Iterable[dict], incoming: Iterable[dict]) -> list[dict]:
    """
    Append incoming events whose key is neither in `prior` nor earlier in the
    same batch. Order of both lists is preserved; `prior` is never reordered
    or deduplicated itself.
    """
    merged = list(prior)
    seen = {event_key(event) for event in merged}
    for event in incoming:
        key = event_key(event)
        if key in seen:
            continue
        seen.add(key)
        merged.append(event)
    return merged


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReconcileOutcome:
    session_id: str
    rotated: bool
    created: bool
    events_added: int


def identity_columns(identity: Optional[dict]) -> dict:
    """user_identity plus its denormalized scalar copies."""
    identity = identity or {}
    return {
        "user_identity": identity,
        "user_name": identity.get("name") or None,
        "user_email": identity.get("email") or None,
        "user_phone": identity.get("phone") or None,
    }


def snapshot_columns(context: RequestContext, device_info: dict) -> dict:
    """Device / geo snapshot columns, overwritten on every write."""
    return {
        "ip_address": context.ip_address,
        "device_info": device_info,
        "geo_info": context.geo_info,
        "browser_name": context.browser_name,
        "operating_system": context.operating_system,
        "device_type": context.device_type,
        "country_name": context.country,
        "city_name": context.city,
    }


async def reconcile_batch(
    db: AsyncSession,
    batch: SessionFlushRequest,
    context: RequestContext,
    now: datetime,
    timeout: timedelta,
    retention_cap: int,
) -> ReconcileOutcome:
    """
    Resolve the session for `batch`, write it, and trim the sessions table.

    Identity handling on update is "last non-empty wins": an empty or absent
    incoming identity preserves whatever is stored; a non-empty one replaces
    it wholesale (no field-level merge).
    """
    existing = await store.get_visitor_session(db, batch.session_id, for_update=True)
    decision = decide_session(existing, now, timeout)

    incoming = [event.to_history_entry() for event in batch.events]
    device_info = batch.device_info.model_dump(by_alias=True, exclude_none=True) if batch.device_info else {}
    snapshot = snapshot_columns(context, device_info)
    session_id = batch.session_id
    added = 0

    if isinstance(decision, NewSession):
        history = merge_history([], incoming)
        values = {**snapshot, **identity_columns(batch.identity), "visit_history": history}
        if await store.insert_visitor_session(db, session_id, values, now):
            added = len(history)
        else:
            # An overlapping first flush created the row after our lookup
            existing = await store.get_visitor_session(db, session_id, for_update=True)
            decision = decide_session(existing, now, timeout)
            logger.info("Merging into concurrently created session session_id=%s", session_id)

    if isinstance(decision, ContinueSession):
        history = merge_history(decision.prior_history, incoming)
        values = {**snapshot, "visit_history": history}
        if batch.identity:
            values.update(identity_columns(batch.identity))
        await store.update_visitor_session(db, existing, values, now)
        added = len(history) - len(decision.prior_history)
    elif isinstance(decision, RotateSession):
        session_id = decision.new_session_id
        history = merge_history([], incoming)
        values = {**snapshot, **identity_columns(batch.identity), "visit_history": history}
        await store.insert_visitor_session(db, session_id, values, now)
        added = len(history)
        logger.info(
            "Rotated expired session old_session_id=%s new_session_id=%s",
            batch.session_id,
            session_id,
        )

    await store.trim_sessions(db, retention_cap, exclude_session_id=session_id)

    return ReconcileOutcome(
        session_id=session_id,
        rotated=isinstance(decision, RotateSession),
        created=not isinstance(decision, ContinueSession),
        events_added=added,
    )
