from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from auth.models import PendingAuthAttempt, Session
from sendsecure.constants import LOGGER, PENDING_ATTEMPT_KEY, SESSION_KEY


class KeyValueStorage(ABC):
    """String key/value area, the shape of browser local/session storage."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._items.get(key)

    async def set(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def copy(self) -> "MemoryStorage":
        return MemoryStorage(self._items)


class FileStorage(KeyValueStorage):
    """Persistent storage shared by every context pointed at the same file."""

    def __init__(self, path: str | Path = ".sendsecure-session.json") -> None:
        self._path = Path(path)

    async def get(self, key: str) -> str | None:
        return self._read_all().get(key)

    async def set(self, key: str, value: str) -> None:
        items = self._read_all()
        items[key] = value
        self._write_all(items)

    async def remove(self, key: str) -> None:
        try:
            items = self._read_all()
        except RuntimeError as error:
            LOGGER.warning("Resetting unreadable storage file %s: %s", self._path, error)
            self._write_all({})
            return
        if items.pop(key, None) is not None:
            self._write_all(items)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as error:
            raise RuntimeError(f"Invalid JSON in storage file: {self._path}") from error
        if not isinstance(raw, dict):
            raise RuntimeError("Storage file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


class SessionStore:
    def __init__(self, storage: KeyValueStorage, *, key: str = SESSION_KEY) -> None:
        self._storage = storage
        self._key = key

    async def load(self) -> Session | None:
        try:
            raw = await self._storage.get(self._key)
        except RuntimeError as error:
            LOGGER.warning("Discarding unreadable session storage: %s", error)
            await self.clear()
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise RuntimeError("Session payload must be a JSON object.")
            return Session.from_payload(payload)
        except (ValueError, RuntimeError) as error:
            LOGGER.warning("Discarding unreadable session record: %s", error)
            await self.clear()
            return None

    async def save(self, session: Session) -> None:
        await self._storage.set(self._key, json.dumps(session.to_payload()))

    async def clear(self) -> None:
        await self._storage.remove(self._key)


class PendingAttemptStore:
    def __init__(self, storage: KeyValueStorage, *, key: str = PENDING_ATTEMPT_KEY) -> None:
        self._storage = storage
        self._key = key

    async def load(self) -> PendingAuthAttempt | None:
        try:
            raw = await self._storage.get(self._key)
        except RuntimeError as error:
            LOGGER.warning("Discarding unreadable pending attempt storage: %s", error)
            await self.clear()
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise RuntimeError("Pending attempt payload must be a JSON object.")
            return PendingAuthAttempt.from_payload(payload)
        except (ValueError, RuntimeError) as error:
            LOGGER.warning("Discarding unreadable pending auth attempt: %s", error)
            await self.clear()
            return None

    async def save(self, attempt: PendingAuthAttempt) -> None:
        await self._storage.set(self._key, json.dumps(attempt.to_payload()))

    async def clear(self) -> None:
        await self._storage.remove(self._key)

    async def take(self) -> PendingAuthAttempt | None:
        """Load and delete in one step so an attempt is consumed at most once."""
        attempt = await self.load()
        await self.clear()
        return attempt
