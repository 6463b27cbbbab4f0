"""
visitlog.client — Python port of the site's browser-side session tracker.

Usage:
    from visitlog.client import FileSessionStore, SessionTracker, TrackerConfig

    tracker = SessionTracker(FileSessionStore("~/.visitlog.json"), TrackerConfig(endpoint=...))
    tracker.start()
    tracker.page_load("https://example.com/home?utm_source=newsletter")
    ...
    await tracker.on_unload()
"""
from visitlog.client.identity import IdentityStore, traffic_source_from_url
from visitlog.client.queue import EventQueue
from visitlog.client.store import ClientSessionStore, FileSessionStore, MemorySessionStore
from visitlog.client.tracker import SessionTracker, TrackerConfig
from visitlog.client.transport import FlushResult, FlushTransport, apply_flush_result

__all__ = [
    "ClientSessionStore",
    "EventQueue",
    "FileSessionStore",
    "FlushResult",
    "FlushTransport",
    "IdentityStore",
    "MemorySessionStore",
    "SessionTracker",
    "TrackerConfig",
    "apply_flush_result",
    "traffic_source_from_url",
]
