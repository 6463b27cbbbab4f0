"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from visitlog.models.outreach_contact import OutreachContactORM
from visitlog.models.request_log import RequestLogORM
from visitlog.models.session import VisitorSessionORM

__all__ = ["OutreachContactORM", "RequestLogORM", "VisitorSessionORM"]
