"""Document store — JSON values under string keys, with optional expiry.

Two backends share one contract:
- get() treats an expired entry as absent
- put() replaces atomically; readers never see a partial value
- put_if_absent() is an atomic create-if-absent; an expired entry counts as absent
- delete_if() is an atomic compare-and-delete
"""

from __future__ import annotations

import asyncio
import fcntl
import json
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from pricewatch.pipeline.models import utcnow

Clock = Callable[[], datetime]


class StorageError(Exception):
    """A store read or write failed."""


class DocumentStore:
    """Base class for key/value document backends."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    def _expiry(self, ttl: timedelta | None) -> datetime | None:
        return self.now() + ttl if ttl is not None else None

    def _expired(self, expires_at: datetime | None) -> bool:
        return expires_at is not None and expires_at <= self.now()

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def put(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        raise NotImplementedError

    async def put_if_absent(self, key: str, value: Any, ttl: timedelta | None = None) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def delete_if(self, key: str, predicate: Callable[[Any], bool]) -> bool:
        """Delete ``key`` only if its live value satisfies ``predicate``."""
        raise NotImplementedError

    async def keys(self, prefix: str = "") -> list[str]:
        raise NotImplementedError


class InMemoryDocumentStore(DocumentStore):
    """Process-local backend. Check-and-set runs without a suspension point."""

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__(clock)
        self._entries: dict[str, tuple[str, datetime | None]] = {}

    def _live(self, key: str) -> tuple[str, datetime | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry[1]):
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        entry = self._live(key)
        return json.loads(entry[0]) if entry else None

    async def put(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key} is not JSON-serializable: {exc}") from exc
        self._entries[key] = (encoded, self._expiry(ttl))

    async def put_if_absent(self, key: str, value: Any, ttl: timedelta | None = None) -> bool:
        if self._live(key) is not None:
            return False
        await self.put(key, value, ttl)
        return True

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_if(self, key: str, predicate: Callable[[Any], bool]) -> bool:
        entry = self._live(key)
        if entry is None or not predicate(json.loads(entry[0])):
            return False
        del self._entries[key]
        return True

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in list(self._entries) if key.startswith(prefix) and self._live(key))


class FileDocumentStore(DocumentStore):
    """One JSON file per key under a root directory.

    Writes go to a temp file first. put() renames it over the target;
    put_if_absent() hard-links it to the target, which fails if the target
    already exists, so creation is atomic and the content is complete.

    Reclaiming an expired entry and compare-and-delete each read, then act;
    both hold an exclusive flock on a per-key lock file so no other
    put_if_absent() or delete_if() can act between the read and the write.
    """

    def __init__(self, root: Path, clock: Clock | None = None) -> None:
        super().__init__(clock)
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}.json"

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        lock_path = self._root / f".lock-{quote(key, safe='')}"
        with open(lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _encode(self, key: str, value: Any, ttl: timedelta | None) -> str:
        expires_at = self._expiry(ttl)
        try:
            return json.dumps(
                {"value": value, "expires_at": expires_at.isoformat() if expires_at else None}
            )
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key} is not JSON-serializable: {exc}") from exc

    def _write_temp(self, content: str) -> Path:
        fd, temp_name = tempfile.mkstemp(dir=self._root, prefix=".tmp-", suffix=".json")
        with os.fdopen(fd, "w") as f:
            f.write(content)
        return Path(temp_name)

    def _read(self, path: Path) -> tuple[Any, datetime | None] | None:
        try:
            raw = json.loads(path.read_text())
        except FileNotFoundError:
            return None
        if not isinstance(raw, dict):
            raise StorageError(f"Stored entry {path.name} is not a JSON object")
        expires_raw = raw.get("expires_at")
        expires_at = datetime.fromisoformat(expires_raw) if expires_raw else None
        return raw.get("value"), expires_at

    def _get_sync(self, key: str) -> Any | None:
        path = self._path(key)
        entry = self._read(path)
        if entry is None:
            return None
        value, expires_at = entry
        # Expired files are left for the next reclaim or overwrite to replace.
        return None if self._expired(expires_at) else value

    def _put_sync(self, key: str, content: str) -> None:
        temp_path = self._write_temp(content)
        try:
            os.replace(temp_path, self._path(key))
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    def _put_if_absent_sync(self, key: str, content: str) -> bool:
        path = self._path(key)
        temp_path = self._write_temp(content)
        try:
            with self._key_lock(key):
                try:
                    os.link(temp_path, path)
                    return True
                except FileExistsError:
                    pass
                entry = self._read(path)
                if entry is not None and not self._expired(entry[1]):
                    return False
                path.unlink(missing_ok=True)
                try:
                    os.link(temp_path, path)
                except FileExistsError:
                    # A plain put() landed in between.
                    return False
                return True
        finally:
            temp_path.unlink(missing_ok=True)

    def _delete_if_sync(self, key: str, predicate: Callable[[Any], bool]) -> bool:
        path = self._path(key)
        with self._key_lock(key):
            entry = self._read(path)
            if entry is None or self._expired(entry[1]) or not predicate(entry[0]):
                return False
            path.unlink(missing_ok=True)
            return True

    def _keys_sync(self, prefix: str) -> list[str]:
        keys = []
        for path in self._root.glob("*.json"):
            if path.name.startswith("."):
                continue
            key = unquote(path.name[: -len(".json")])
            if key.startswith(prefix) and self._get_sync(key) is not None:
                keys.append(key)
        return sorted(keys)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except StorageError:
            raise
        except (OSError, ValueError) as exc:
            raise StorageError(str(exc)) from exc

    async def get(self, key: str) -> Any | None:
        return await self._run(self._get_sync, key)

    async def put(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        await self._run(self._put_sync, key, self._encode(key, value, ttl))

    async def put_if_absent(self, key: str, value: Any, ttl: timedelta | None = None) -> bool:
        return await self._run(self._put_if_absent_sync, key, self._encode(key, value, ttl))

    async def delete(self, key: str) -> None:
        await self._run(lambda: self._path(key).unlink(missing_ok=True))

    async def delete_if(self, key: str, predicate: Callable[[Any], bool]) -> bool:
        return await self._run(self._delete_if_sync, key, predicate)

    async def keys(self, prefix: str = "") -> list[str]:
        return await self._run(self._keys_sync, prefix)
