"""
transport.py — delivers flushed batches to POST /api/session-events.

The server may answer with a different session id (it rotated an expired
session). FlushTransport turns the reply into a FlushResult carrying an optional
session_id_override, and apply_flush_result() is the single place the client
adopts it.

Delivery is best-effort: network errors and non-2xx replies are logged and the
batch is dropped. There is no retry.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from visitlog.client.identity import IdentityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlushResult:
    delivered: bool
    session_id_override: Optional[str] = None


class FlushTransport:
    def __init__(
        self,
        endpoint: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.endpoint = endpoint
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, payload: dict) -> FlushResult:
        sent_id = payload.get("sessionId")
        try:
            response = await self.client.post(self.endpoint, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Session flush failed session_id=%s: %s", sent_id, exc)
            return FlushResult(delivered=False)

        if response.is_error:
            logger.warning(
                "Session flush rejected session_id=%s status=%d",
                sent_id,
                response.status_code,
            )
            return FlushResult(delivered=False)

        try:
            body = response.json()
        except ValueError:
            body = {}
        new_id = body.get("newSessionId") if isinstance(body, dict) else None
        if new_id and new_id != sent_id:
            return FlushResult(delivered=True, session_id_override=new_id)
        return FlushResult(delivered=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def apply_flush_result(identity: IdentityStore, result: FlushResult, now: datetime) -> None:
    if result.session_id_override:
        identity.adopt_session_id(result.session_id_override, now)
