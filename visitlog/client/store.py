"""
store.py — client-side persisted key/value state.

ClientSessionStore is the one place the tracker keeps state that must survive
page loads (session id, last-active timestamp, traffic source, user identity).
It is injected into the tracker, so tests use MemorySessionStore and a real
client uses FileSessionStore.

Contract:
  - get(key) returns the stored JSON-serializable value or None
  - set(key, value) persists immediately
  - clear() forgets every key
  - a store is usable right after construction; no explicit open step
"""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class ClientSessionStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemorySessionStore(ClientSessionStore):
    """Process-local store. State lives as long as the instance."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def clear(self) -> None:
        self._data.clear()


class FileSessionStore(ClientSessionStore):
    """
    JSON file on disk, the equivalent of browser local storage.

    The file is read lazily on first access and rewritten (via a temp file and
    os.replace) on every set / clear. A missing or unreadable file is treated as
    an empty store.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._data: Optional[dict[str, Any]] = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            try:
                with self.path.open("r", encoding="utf-8") as fh:
                    loaded = json.load(fh)
                self._data = loaded if isinstance(loaded, dict) else {}
            except FileNotFoundError:
                self._data = {}
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable client session file %s: %s", self.path, exc)
                self._data = {}
        return self._data

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".visitlog-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._load(), fh)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        self._load()[key] = value
        self._write()

    def clear(self) -> None:
        self._data = {}
        self._write()
