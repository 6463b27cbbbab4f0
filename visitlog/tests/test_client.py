"""
Client-side tracker pieces: persisted store, identity, queue, transport and the
SessionTracker that wires them. The server is faked with httpx.MockTransport.
"""
import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from visitlog.client import (
    EventQueue,
    FileSessionStore,
    FlushResult,
    FlushTransport,
    IdentityStore,
    MemorySessionStore,
    SessionTracker,
    TrackerConfig,
    apply_flush_result,
    traffic_source_from_url,
)
from visitlog.client.tracker import path_with_query

from helpers import T0, FakeClock

ENDPOINT = "http://test/api/session-events"


class RecordingServer:
    """MockTransport handler that records every posted batch."""

    def __init__(self, status_code: int = 200, body: dict | None = None) -> None:
        self.status_code = status_code
        self.body = body if body is not None else {"success": True}
        self.batches: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.batches.append(json.loads(request.content))
        return httpx.Response(self.status_code, json=self.body)


def _tracker(server, clock: FakeClock, store=None, **config) -> SessionTracker:
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return SessionTracker(
        store or MemorySessionStore(),
        TrackerConfig(endpoint=ENDPOINT, **config),
        transport=FlushTransport(ENDPOINT, client=http),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

def test_file_store_persists_across_instances(tmp_path) -> None:
    path = tmp_path / "state" / "visitlog.json"
    FileSessionStore(path).set("session_id", "abc")

    assert FileSessionStore(path).get("session_id") == "abc"


def test_file_store_treats_corrupt_file_as_empty(tmp_path) -> None:
    path = tmp_path / "visitlog.json"
    path.write_text("{not json", encoding="utf-8")

    store = FileSessionStore(path)
    assert store.get("session_id") is None
    store.set("session_id", "fresh")
    assert json.loads(path.read_text(encoding="utf-8")) == {"session_id": "fresh"}


def test_file_store_clear(tmp_path) -> None:
    path = tmp_path / "visitlog.json"
    store = FileSessionStore(path)
    store.set("a", 1)
    store.clear()
    assert FileSessionStore(path).get("a") is None


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://site.test/?ref=linkedin", "linkedin"),
        ("https://site.test/?source=github&utm_source=x", "github"),
        ("https://site.test/blog?utm_source=newsletter", "newsletter"),
        ("https://site.test/?ref=", None),
        ("https://site.test/", None),
    ],
)
def test_traffic_source_from_url(url, expected) -> None:
    assert traffic_source_from_url(url) == expected


def test_session_id_is_reused_within_window() -> None:
    identity = IdentityStore(MemorySessionStore())
    first = identity.get_or_create_session_id(T0)
    second = identity.get_or_create_session_id(T0 + timedelta(minutes=29))
    assert first == second


def test_session_id_rotates_after_inactivity() -> None:
    identity = IdentityStore(MemorySessionStore())
    first = identity.get_or_create_session_id(T0)
    second = identity.get_or_create_session_id(T0 + timedelta(minutes=31))
    assert first != second


def test_read_refreshes_last_active() -> None:
    identity = IdentityStore(MemorySessionStore())
    first = identity.get_or_create_session_id(T0)
    identity.get_or_create_session_id(T0 + timedelta(minutes=20))
    assert identity.get_or_create_session_id(T0 + timedelta(minutes=45)) == first


def test_same_traffic_source_keeps_session() -> None:
    identity = IdentityStore(MemorySessionStore())
    assert identity.detect_traffic_source("https://s.test/?ref=google", T0) is True
    sid = identity.session_id
    assert identity.detect_traffic_source("https://s.test/about?ref=google", T0) is False
    assert identity.detect_traffic_source("https://s.test/about", T0) is False
    assert identity.session_id == sid


def test_user_identity_round_trip() -> None:
    identity = IdentityStore(MemorySessionStore())
    assert identity.user_identity is None
    identity.set_user_identity({"email": "ada@example.com"})
    assert identity.user_identity == {"email": "ada@example.com"}


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

def test_queue_suppresses_consecutive_duplicates() -> None:
    queue = EventQueue()
    assert queue.record("/home", T0) is True
    assert queue.record("/home", T0 + timedelta(seconds=1)) is False
    assert queue.record("/about", T0 + timedelta(seconds=2)) is True
    assert queue.record("/home", T0 + timedelta(seconds=3)) is True
    assert [e["path"] for e in queue.drain()] == ["/home", "/about", "/home"]
    assert len(queue) == 0


def test_queue_drain_keeps_last_path_but_discard_forgets_it() -> None:
    queue = EventQueue()
    queue.record("/home", T0)
    queue.drain()
    assert queue.record("/home", T0) is False

    queue.discard()
    assert queue.record("/home", T0) is True


def test_path_with_query_keeps_query_string() -> None:
    assert path_with_query("https://s.test/blogs/x?ref=a") == "/blogs/x?ref=a"
    assert path_with_query("https://s.test") == "/"


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_transport_reports_server_rotation() -> None:
    server = RecordingServer(body={"success": True, "newSessionId": "new-id"})
    transport = FlushTransport(ENDPOINT, client=httpx.AsyncClient(transport=httpx.MockTransport(server)))

    result = await transport.send({"sessionId": "old-id", "events": []})

    assert result == FlushResult(delivered=True, session_id_override="new-id")
    await transport.client.aclose()


@pytest.mark.asyncio
async def test_transport_swallows_network_errors() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = FlushTransport(ENDPOINT, client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
    assert await transport.send({"sessionId": "x"}) == FlushResult(delivered=False)
    await transport.client.aclose()


def test_apply_flush_result_adopts_override_only() -> None:
    identity = IdentityStore(MemorySessionStore())
    sid = identity.get_or_create_session_id(T0)

    apply_flush_result(identity, FlushResult(delivered=True), T0)
    assert identity.session_id == sid

    apply_flush_result(identity, FlushResult(delivered=True, session_id_override="srv-id"), T0)
    assert identity.session_id == "srv-id"


# ---------------------------------------------------------------------------
# SessionTracker
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_flush_sends_queued_events_with_device_info() -> None:
    clock = FakeClock()
    server = RecordingServer()
    tracker = _tracker(server, clock, user_agent="TestAgent/1.0", screen="1920x1080", language="en")
    tracker.identity.set_user_identity({"name": "Ada"})

    tracker.page_load("https://s.test/home?ref=google")
    clock.advance(seconds=10)
    tracker.navigate("https://s.test/projects")
    result = await tracker.flush()

    assert result.delivered is True
    [batch] = server.batches
    assert batch["sessionId"] == tracker.identity.session_id
    assert [e["path"] for e in batch["events"]] == ["/home?ref=google", "/projects"]
    assert batch["deviceInfo"] == {
        "userAgent": "TestAgent/1.0",
        "screen": "1920x1080",
        "language": "en",
        "trafficSource": "google",
    }
    assert batch["identity"] == {"name": "Ada"}
    assert len(tracker.queue) == 0
    await tracker.aclose()


@pytest.mark.asyncio
async def test_empty_queue_does_not_post() -> None:
    server = RecordingServer()
    tracker = _tracker(server, FakeClock())
    assert await tracker.flush() is None
    assert server.batches == []
    await tracker.aclose()


@pytest.mark.asyncio
async def test_ignored_prefixes_are_not_tracked() -> None:
    server = RecordingServer()
    tracker = _tracker(server, FakeClock())
    assert tracker.navigate("https://s.test/api/health") is False
    assert tracker.navigate("https://s.test/admin/audit") is False
    assert len(tracker.queue) == 0
    await tracker.aclose()


@pytest.mark.asyncio
async def test_new_traffic_source_discards_queue_and_rotates() -> None:
    clock = FakeClock()
    server = RecordingServer()
    tracker = _tracker(server, clock)

    tracker.page_load("https://s.test/?ref=google")
    first_id = tracker.identity.session_id
    tracker.navigate("https://s.test/about")

    tracker.page_load("https://s.test/blog?utm_source=newsletter")
    await tracker.flush()

    assert tracker.identity.session_id != first_id
    [batch] = server.batches
    assert batch["sessionId"] == tracker.identity.session_id
    assert [e["path"] for e in batch["events"]] == ["/blog?utm_source=newsletter"]
    assert batch["deviceInfo"]["trafficSource"] == "newsletter"
    await tracker.aclose()


@pytest.mark.asyncio
async def test_failed_flush_drops_the_batch() -> None:
    clock = FakeClock()
    server = RecordingServer(status_code=500, body={"success": False, "error": "Internal Server Error"})
    tracker = _tracker(server, clock)

    tracker.navigate("https://s.test/home")
    result = await tracker.flush()
    assert result == FlushResult(delivered=False)

    tracker.navigate("https://s.test/about")
    await tracker.flush()
    assert [e["path"] for e in server.batches[1]["events"]] == ["/about"]
    await tracker.aclose()


@pytest.mark.asyncio
async def test_server_rotation_is_adopted() -> None:
    server = RecordingServer(body={"success": True, "newSessionId": "11111111-2222-4333-8444-555555555555"})
    tracker = _tracker(server, FakeClock())

    tracker.navigate("https://s.test/home")
    await tracker.flush()

    assert tracker.identity.session_id == "11111111-2222-4333-8444-555555555555"
    await tracker.aclose()


@pytest.mark.asyncio
async def test_timer_flushes_periodically() -> None:
    server = RecordingServer()
    tracker = _tracker(server, FakeClock(), flush_interval=0.01)

    tracker.navigate("https://s.test/home")
    tracker.start()
    for _ in range(100):
        if server.batches:
            break
        await asyncio.sleep(0.01)
    await tracker.stop()

    assert len(server.batches) == 1
    await tracker.aclose()


@pytest.mark.asyncio
async def test_visibility_hidden_flushes_in_background() -> None:
    server = RecordingServer()
    tracker = _tracker(server, FakeClock())

    tracker.navigate("https://s.test/home")
    task = tracker.on_visibility_hidden()
    await task

    assert len(server.batches) == 1
    await tracker.aclose()


@pytest.mark.asyncio
async def test_unload_stops_timer_and_sends_final_batch() -> None:
    server = RecordingServer()
    tracker = _tracker(server, FakeClock(), flush_interval=3600)

    tracker.start()
    tracker.navigate("https://s.test/contact")
    result = await tracker.on_unload()

    assert result.delivered is True
    assert tracker._timer is None
    assert [e["path"] for e in server.batches[0]["events"]] == ["/contact"]
    await tracker.aclose()
