"""
Storage adapters — async get/set/remove over a flat key-value namespace.

The vault owns the namespace exclusively and assumes no cross-key
transactions: a crash between two ``set`` calls may leave one key
updated and the other stale, and every record loader tolerates that.
"""
import os
import copy
import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Union, runtime_checkable

import orjson

logger = logging.getLogger("pin_vault")


@runtime_checkable
class StorageAdapter(Protocol):
    """Interface consumed by the vault."""

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        ...

    async def set(self, items: Mapping[str, Any]) -> None:
        ...

    async def remove(self, keys: Iterable[str]) -> None:
        ...


def _as_keys(keys: Union[str, Iterable[str]]) -> list[str]:
    if isinstance(keys, str):
        return [keys]
    return list(keys)


class MemoryStorage:
    """In-process storage, mostly useful for tests.

    Values are deep-copied on the way in and out so callers cannot
    mutate stored records by reference.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def __repr__(self) -> str:
        return f"<MemoryStorage keys={sorted(self._data)}>"

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {
            key: copy.deepcopy(self._data[key])
            for key in _as_keys(keys)
            if key in self._data
        }

    async def set(self, items: Mapping[str, Any]) -> None:
        for key, value in items.items():
            self._data[key] = copy.deepcopy(value)

    async def remove(self, keys: Iterable[str]) -> None:
        for key in _as_keys(keys):
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        """Return a copy of everything stored."""
        return copy.deepcopy(self._data)


class FileStorage:
    """Single JSON document on disk, serialized with orjson.

    Writes go to a temporary file that replaces the target atomically,
    with owner-only permissions. File I/O runs in a worker thread so the
    event loop is never blocked.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<FileStorage path={str(self.path)!r}>"

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        if not raw:
            return {}
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            logger.warning(
                "Storage file %s is corrupted, starting empty: %s", self.path, err
            )
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Storage file %s does not hold an object, starting empty", self.path
            )
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(orjson.dumps(data))
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, self.path)

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = _as_keys(keys)
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        return {key: data[key] for key in wanted if key in data}

    async def set(self, items: Mapping[str, Any]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data.update(items)
            await asyncio.to_thread(self._write, data)

    async def remove(self, keys: Iterable[str]) -> None:
        wanted = _as_keys(keys)
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            changed = False
            for key in wanted:
                if key in data:
                    del data[key]
                    changed = True
            if changed:
                await asyncio.to_thread(self._write, data)
