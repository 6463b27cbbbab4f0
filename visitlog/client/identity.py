"""
identity.py — who the client is, across page loads.

Keeps four values in the injected ClientSessionStore:
  session_id           current session UUID
  session_last_active  ISO-8601 timestamp of the last read-or-create
  traffic_source       last seen ref / source / utm_source query value
  user_identity        {name, email, phone} written by e.g. the contact form
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import parse_qs, urlsplit

from visitlog.client.store import ClientSessionStore

logger = logging.getLogger(__name__)

SESSION_ID_KEY = "session_id"
LAST_ACTIVE_KEY = "session_last_active"
TRAFFIC_SOURCE_KEY = "traffic_source"
USER_IDENTITY_KEY = "user_identity"

# Checked in this order; the first non-empty one wins
TRAFFIC_SOURCE_PARAMS = ("ref", "source", "utm_source")

DEFAULT_INACTIVITY_WINDOW = timedelta(minutes=30)


def traffic_source_from_url(url: str) -> Optional[str]:
    query = parse_qs(urlsplit(url).query)
    for param in TRAFFIC_SOURCE_PARAMS:
        values = query.get(param)
        if values and values[0]:
            return values[0]
    return None


class IdentityStore:
    def __init__(
        self,
        store: ClientSessionStore,
        inactivity_window: timedelta = DEFAULT_INACTIVITY_WINDOW,
        new_id: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.store = store
        self.inactivity_window = inactivity_window
        self._new_id = new_id

    @property
    def session_id(self) -> Optional[str]:
        """Stored id without touching last-active."""
        return self.store.get(SESSION_ID_KEY)

    @property
    def last_active(self) -> Optional[datetime]:
        raw = self.store.get(LAST_ACTIVE_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            return None

    def get_or_create_session_id(self, now: datetime) -> str:
        """
        Reuse the stored id unless it is missing or idle longer than the
        inactivity window. Either way last-active becomes `now`.
        """
        session_id = self.session_id
        last_active = self.last_active
        if session_id is None or last_active is None or now - last_active > self.inactivity_window:
            return self.force_new_session(now)
        self.store.set(LAST_ACTIVE_KEY, now.isoformat())
        return session_id

    def force_new_session(self, now: datetime) -> str:
        session_id = self._new_id()
        self.store.set(SESSION_ID_KEY, session_id)
        self.store.set(LAST_ACTIVE_KEY, now.isoformat())
        logger.debug("Started client session session_id=%s", session_id)
        return session_id

    def adopt_session_id(self, session_id: str, now: datetime) -> None:
        """Take over an id chosen by the server (rotation)."""
        self.store.set(SESSION_ID_KEY, session_id)
        self.store.set(LAST_ACTIVE_KEY, now.isoformat())
        logger.info("Adopted server session id session_id=%s", session_id)

    # -- traffic source -----------------------------------------------------

    @property
    def traffic_source(self) -> Optional[str]:
        return self.store.get(TRAFFIC_SOURCE_KEY)

    def detect_traffic_source(self, url: str, now: datetime) -> bool:
        """
        Record the traffic source carried by `url`, if any.

        A source different from the stored one (including none stored yet) is a
        new arrival: a new session id is forced. Returns True in that case so the
        caller can drop events queued under the previous attribution.
        """
        source = traffic_source_from_url(url)
        if source is None or source == self.traffic_source:
            return False
        self.store.set(TRAFFIC_SOURCE_KEY, source)
        self.force_new_session(now)
        logger.info("New traffic source %s, session restarted", source)
        return True

    # -- user identity ------------------------------------------------------

    @property
    def user_identity(self) -> Optional[dict]:
        identity = self.store.get(USER_IDENTITY_KEY)
        return identity if isinstance(identity, dict) and identity else None

    def set_user_identity(self, identity: dict) -> None:
        self.store.set(USER_IDENTITY_KEY, dict(identity))

    def clear(self) -> None:
        self.store.clear()
