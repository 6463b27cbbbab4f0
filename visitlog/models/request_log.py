"""
models/request_log.py — SQLAlchemy ORM model for the flat request audit log.

Table: request_log
One row per served page request. Append-only, no foreign key to audit_sessions.
session_id is overloaded to hold the raw client IP (the report pages filter on it).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visitlog.database import Base


class RequestLogORM(Base):
    __tablename__ = "request_log"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    request_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        default=lambda: str(uuid.uuid4()),
    )
    http_method: Mapped[str] = mapped_column(String(10), nullable=False, default="GET")
    request_uri: Mapped[str] = mapped_column(Text, nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    country_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    country_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    region_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    time_zone: Mapped[Optional[str]] = mapped_column("timezone", String(64), nullable=True)
    isp_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    browser_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    operating_system: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    device_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    session_id: Mapped[Optional[str]] = mapped_column(
        String(45),
        nullable=True,
        index=True,
        comment="Client IP address (used as the visitor identifier in reports)",
    )
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
