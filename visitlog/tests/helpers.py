"""
Shared test helpers: fake clock, sample user agents, row readers.
Imported by the test modules as `from helpers import ...` (pytest puts tests/ on sys.path).
"""
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from visitlog.store import get_visitor_session

T0 = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

CHROME_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_SAFARI_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


class FakeClock:
    """Mutable 'now' shared by the server dependency and the client tracker."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def fetch_session(session_factory, session_id: str):
    """Read a session row in a fresh session (sees everything the app committed)."""
    async with session_factory() as session:
        return await get_visitor_session(session, session_id)


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))
