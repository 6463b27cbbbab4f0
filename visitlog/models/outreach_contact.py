"""
models/outreach_contact.py — SQLAlchemy ORM model for tracked outreach emails.

Table: outreach_contacts
Rows are created by the outreach feature (outside this service). The tracking
pixel only looks rows up by tracking_token and bumps the open counters.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from visitlog.database import Base


class OutreachContactORM(Base):
    __tablename__ = "outreach_contacts"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[str] = mapped_column(String(255), nullable=False)
    tracking_token: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        index=True,
        default=lambda: str(uuid.uuid4()),
        comment="Opaque token embedded in the tracking pixel URL",
    )
    email_opens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_opened_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
