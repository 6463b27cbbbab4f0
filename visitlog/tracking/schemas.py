"""
schemas.py — tracking Pydantic v2 data contracts.

Defines:
  - LogEvent             (single {path, timestamp} page visit)
  - DeviceInfo           (client-reported device metadata)
  - SessionFlushRequest  (batched events from the client tracker)
  - SessionFlushResponse ({success, newSessionId?})
  - BrowserInfo / RequestLogCreate (flat per-request audit log entry)

The client contract is camelCase on the wire (sessionId, deviceInfo, newSessionId);
Python code uses snake_case attribute names.
"""
import uuid
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Session flush
# ---------------------------------------------------------------------------

class LogEvent(BaseModel):
    """
    A single page visit. timestamp is kept as the client serialized it;
    deduplication compares the exact string.
    meta annotates synthetic events (e.g. the tracking pixel).
    """
    model_config = ConfigDict(extra="ignore")

    path: str
    timestamp: str
    meta: Optional[str] = None

    def to_history_entry(self) -> dict:
        return self.model_dump(exclude_none=True)


class DeviceInfo(CamelModel):
    """Client-reported device metadata. Unknown keys are kept in the snapshot."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    user_agent: Optional[str] = None
    screen: Optional[str] = None
    language: Optional[str] = None
    traffic_source: Optional[str] = None


class SessionFlushRequest(CamelModel):
    session_id: str = Field(description="Client-asserted session UUID")
    events: List[LogEvent]
    identity: Optional[dict[str, Any]] = None
    device_info: Optional[DeviceInfo] = None

    @field_validator("session_id")
    @classmethod
    def _valid_uuid(cls, value: str) -> str:
        """
        Only the hyphenated 36-character form is accepted, and it is kept as sent.
        urn:uuid:, braced and bare-hex spellings are rejected rather than rewritten,
        so the stored row id is always the id the client holds.
        """
        try:
            canonical = str(uuid.UUID(value))
        except (ValueError, AttributeError, TypeError):
            raise ValueError("sessionId must be a valid UUID") from None
        if canonical != value.lower():
            raise ValueError("sessionId must be a hyphenated 36-character UUID")
        return value


class SessionFlushResponse(CamelModel):
    success: bool = True
    new_session_id: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Flat request log
# ---------------------------------------------------------------------------

class BrowserInfo(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    user_agent: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    language: Optional[str] = None
    connection_type: Optional[str] = None


class RequestLogCreate(CamelModel):
    path: str = Field(..., min_length=1)
    type: Optional[str] = None
    resource_id: Optional[str] = None
    browser: Optional[BrowserInfo] = None
    referrer: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
