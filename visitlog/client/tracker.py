"""
tracker.py — client-side session tracker.

Wires the pieces together the way the site's browser code runs them:

    page_load(url)          first load of a page: traffic-source check, then navigate()
    navigate(url)           every route change: queue {path, timestamp}
    start() / stop()        periodic flush timer (every flush_interval seconds)
    on_visibility_hidden()  tab hidden: flush now, fire-and-forget
    on_unload()             page teardown: stop the timer, final flush that is not cancelled

Everything runs on one asyncio loop. Queue mutations are synchronous, so no locking
is needed between the timer, navigation and visibility handlers.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlsplit

from visitlog.client.identity import DEFAULT_INACTIVITY_WINDOW, IdentityStore
from visitlog.client.queue import EventQueue
from visitlog.client.store import ClientSessionStore
from visitlog.client.transport import FlushResult, FlushTransport, apply_flush_result

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TrackerConfig:
    endpoint: str = "http://localhost:8000/api/session-events"
    flush_interval: float = 5.0
    inactivity_window: timedelta = DEFAULT_INACTIVITY_WINDOW
    request_timeout: float = 10.0
    # Routes that are never tracked (API calls, build assets, the admin area)
    ignored_prefixes: tuple[str, ...] = ("/api", "/_next", "/admin")
    user_agent: Optional[str] = None
    screen: Optional[str] = None
    language: Optional[str] = None
    extra_device_info: dict = field(default_factory=dict)


def path_with_query(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


class SessionTracker:
    def __init__(
        self,
        store: ClientSessionStore,
        config: Optional[TrackerConfig] = None,
        transport: Optional[FlushTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or TrackerConfig()
        self.identity = IdentityStore(store, inactivity_window=self.config.inactivity_window)
        self.queue = EventQueue()
        self.transport = transport or FlushTransport(
            self.config.endpoint,
            timeout=self.config.request_timeout,
        )
        self.clock = clock
        self._timer: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()

    # -- navigation -----------------------------------------------------------

    def page_load(self, url: str) -> bool:
        """
        First load of a page. A new traffic source starts a new session and drops
        whatever was queued under the previous one.
        """
        if self.identity.detect_traffic_source(url, self.clock()):
            self.queue.discard()
        return self.navigate(url)

    def navigate(self, url: str) -> bool:
        path = path_with_query(url)
        if path.startswith(self.config.ignored_prefixes):
            return False
        return self.queue.record(path, self.clock())

    # -- flushing ---------------------------------------------------------------

    def device_info(self) -> dict:
        info = {
            "userAgent": self.config.user_agent,
            "screen": self.config.screen,
            "language": self.config.language,
            "trafficSource": self.identity.traffic_source,
            **self.config.extra_device_info,
        }
        return {key: value for key, value in info.items() if value is not None}

    def build_payload(self, events: list[dict], session_id: str) -> dict:
        payload = {
            "sessionId": session_id,
            "events": events,
            "deviceInfo": self.device_info(),
        }
        identity = self.identity.user_identity
        if identity:
            payload["identity"] = identity
        return payload

    async def flush(self) -> Optional[FlushResult]:
        """
        Send everything queued. The queue is cleared before delivery and never
        refilled on failure. Returns None when there was nothing to send.
        """
        if not len(self.queue):
            return None
        events = self.queue.drain()
        session_id = self.identity.get_or_create_session_id(self.clock())
        logger.debug("Flushing %d event(s) session_id=%s", len(events), session_id)

        result = await self.transport.send(self.build_payload(events, session_id))
        apply_flush_result(self.identity, result, self.clock())
        return result

    def flush_in_background(self) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # -- lifecycle --------------------------------------------------------------

    def start(self) -> None:
        if self._timer is None or self._timer.done():
            self._timer = asyncio.get_running_loop().create_task(self._run_timer())

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval)
            try:
                await self.flush()
            except Exception:
                logger.exception("Periodic session flush failed")

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

    def on_visibility_hidden(self) -> asyncio.Task:
        return self.flush_in_background()

    async def on_unload(self) -> Optional[FlushResult]:
        """Final flush on teardown; shielded so cancelling the caller does not drop it."""
        await self.stop()
        return await asyncio.shield(self.flush())

    async def aclose(self) -> None:
        await self.stop()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.transport.aclose()
