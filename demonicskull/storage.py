"""Guestbook entry log and visitor counter, on flat JSON files or Redis."""

from __future__ import annotations

import abc
import asyncio
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import redis.asyncio as redis

PACKAGE_DATA_DIR = Path(__file__).resolve().parent / "data"
SERVERLESS_DATA_DIR = "/tmp"

ENTRIES_FILENAME = "guestbook-entries.json"
COUNTER_FILENAME = "counter.json"


class EntryStore(abc.ABC):
    """Append-only log of guestbook entries, oldest first."""

    @abc.abstractmethod
    async def append(self, entry: dict) -> None:
        ...

    @abc.abstractmethod
    async def read_all(self) -> list[dict]:
        ...

    async def close(self) -> None:
        """Release resources — default no-op."""


class CounterStore(abc.ABC):
    """A single persistent integer."""

    @abc.abstractmethod
    async def read(self) -> int:
        ...

    @abc.abstractmethod
    async def increment(self) -> int:
        """Add one, persist, and return the new value."""
        ...

    async def close(self) -> None:
        """Release resources — default no-op."""


def _write_json_atomic(path: Path, data, indent: Optional[int] = None) -> None:
    """Write JSON next to the target, then swap it in."""
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _read_json(path: Path, default):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as e:
        print(f"[STORE] Could not read {path.name}: {e}")
        return default


class JsonEntryStore(EntryStore):
    """Entries as a pretty-printed JSON list."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def read_all(self) -> list[dict]:
        data = _read_json(self.path, [])
        return data if isinstance(data, list) else []

    async def append(self, entry: dict) -> None:
        async with self._lock:
            entries = await self.read_all()
            entries.append(entry)
            _write_json_atomic(self.path, entries, indent=2)


class JsonCounterStore(CounterStore):
    """Counter as ``{"count": n}``."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def read(self) -> int:
        data = _read_json(self.path, {})
        if not isinstance(data, dict):
            return 0
        try:
            return int(data.get("count") or 0)
        except (TypeError, ValueError):
            return 0

    async def increment(self) -> int:
        async with self._lock:
            count = await self.read() + 1
            _write_json_atomic(self.path, {"count": count})
            return count


class RedisEntryStore(EntryStore):
    """Entries as JSON strings in a Redis list."""

    def __init__(self, client: redis.Redis, key: str = "guestbook:entries"):
        self._client = client
        self.key = key

    async def append(self, entry: dict) -> None:
        await self._client.rpush(self.key, json.dumps(entry))

    async def read_all(self) -> list[dict]:
        raw = await self._client.lrange(self.key, 0, -1)
        return [json.loads(item) for item in raw]

    async def close(self) -> None:
        await self._client.close()


class RedisCounterStore(CounterStore):
    """Counter as a Redis integer key (INCR is atomic server-side)."""

    def __init__(self, client: redis.Redis, key: str = "counter:visitors"):
        self._client = client
        self.key = key

    async def read(self) -> int:
        value = await self._client.get(self.key)
        return int(value) if value else 0

    async def increment(self) -> int:
        return int(await self._client.incr(self.key))


def resolve_data_dir(config) -> Path:
    """Pick the writable data directory for the file backend.

    Serverless hosts only allow writes under /tmp; on a cold start the
    bundled seed files are copied there if they aren't already present.
    """
    if config.storage.data_dir:
        data_dir = Path(config.storage.data_dir)
    elif config.server.serverless:
        data_dir = Path(SERVERLESS_DATA_DIR)
    else:
        return PACKAGE_DATA_DIR

    data_dir.mkdir(parents=True, exist_ok=True)
    if data_dir != PACKAGE_DATA_DIR:
        for name in (ENTRIES_FILENAME, COUNTER_FILENAME):
            target = data_dir / name
            seed = PACKAGE_DATA_DIR / name
            if not target.exists() and seed.is_file():
                shutil.copyfile(seed, target)
                print(f"[STORE] Seeded {target} from {seed}")
    return data_dir


def build_stores(config) -> tuple[EntryStore, CounterStore]:
    """Build the entry and counter stores from config."""
    backend = config.storage.backend
    if backend == "redis":
        client = redis.from_url(config.storage.redis_url, decode_responses=True)
        print(f"[STORE] Using Redis: {config.storage.redis_url}")
        return (
            RedisEntryStore(client, config.storage.entries_key),
            RedisCounterStore(client, config.storage.counter_key),
        )

    if backend != "file":
        print(f"[STORE] Unknown storage backend: {backend!r}, using file")
    data_dir = resolve_data_dir(config)
    print(f"[STORE] Using data directory: {data_dir}")
    return (
        JsonEntryStore(data_dir / ENTRIES_FILENAME),
        JsonCounterStore(data_dir / COUNTER_FILENAME),
    )
