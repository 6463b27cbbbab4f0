"""
models/session.py — SQLAlchemy ORM model for visitor sessions.

Table: audit_sessions
One row per visitor session. Written by the session reconciler on every flush
and by the tracking pixel (synthetic "recruiter encounter" sessions).

Storage strategy: visit history, identity and device/geo snapshots live in JSON
documents; the scalar copies (browser_name, country_name, user_email, ...) exist
for filtering and display without unpacking the documents.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from visitlog.database import Base, JSONDocument


class VisitorSessionORM(Base):
    """
    ORM model for a single visitor session.

    visit_history:  ordered list of {path, timestamp[, meta]}, append-only per session.
    user_identity:  {name, email, phone, ...} supplied by the visitor; {} when unknown.
    device_info / geo_info: snapshots overwritten on each update, not merged.
    last_active_at: drives expiry, retention ordering and the "active now" indicator.
    """
    __tablename__ = "audit_sessions"

    session_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Client-generated (or rotated) session UUID",
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_identity: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    visit_history: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    device_info: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    geo_info: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)

    browser_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    operating_system: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    device_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    country_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
