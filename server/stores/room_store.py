"""
Durable room records.

Rooms live in memory while the server runs; these stores keep a copy so a
restart does not lose games in progress. Records are the plain dicts built
by ``Room.to_record()``.

Two backends share the same async interface:

    FileRoomStore   - one JSON file per room under a directory (default)
    RedisRoomStore  - JSON strings in Redis, used when REDIS_URL is set

Key patterns (Redis):
- quartet:room:{room_code}   -> JSON (room record)
- quartet:rooms              -> Set (stored room codes)
"""

import asyncio
import json
import logging
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_CODE_PATTERN = re.compile(r"^[A-Z0-9]{1,32}$")


class FileRoomStore:
    """One ``<code>.json`` file per room."""

    def __init__(self, directory) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, room_code: str) -> Path:
        if not _CODE_PATTERN.match(room_code):
            raise ValueError(f"Invalid room code: {room_code!r}")
        return self.directory / f"{room_code}.json"

    def _write(self, room_code: str, record: dict) -> None:
        path = self._path(room_code)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(record, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _read_all(self) -> list[dict]:
        records = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                records.append(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to read room file {path.name}: {e}")
        return records

    async def save(self, room_code: str, record: dict) -> None:
        await asyncio.to_thread(self._write, room_code, record)

    async def delete(self, room_code: str) -> None:
        await asyncio.to_thread(self._path(room_code).unlink, True)

    async def load_all(self) -> list[dict]:
        return await asyncio.to_thread(self._read_all)

    async def ping(self) -> bool:
        return self.directory.is_dir()

    async def close(self) -> None:
        pass


class RedisRoomStore:
    """Room records in Redis."""

    ROOM_KEY = "quartet:room:{room_code}"
    ROOMS_KEY = "quartet:rooms"

    def __init__(self, redis_client: redis.Redis, ttl: Optional[timedelta] = None):
        """
        Initialize room store with Redis client.

        Args:
            redis_client: Async Redis client.
            ttl: Optional expiry for stored records.
        """
        self.redis = redis_client
        self.ttl = ttl

    @classmethod
    async def create(cls, redis_url: str, ttl: Optional[timedelta] = None) -> "RedisRoomStore":
        """
        Create a RedisRoomStore with a new Redis connection.

        Args:
            redis_url: Redis connection URL.
            ttl: Optional expiry for stored records.

        Returns:
            Configured RedisRoomStore instance.
        """
        client = redis.from_url(redis_url, decode_responses=False)
        await client.ping()
        logger.info("RedisRoomStore connected to Redis")
        return cls(client, ttl)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis.close()

    async def ping(self) -> bool:
        await self.redis.ping()
        return True

    async def save(self, room_code: str, record: dict) -> None:
        pipe = self.redis.pipeline()
        ex = int(self.ttl.total_seconds()) if self.ttl else None
        pipe.set(self.ROOM_KEY.format(room_code=room_code), json.dumps(record), ex=ex)
        pipe.sadd(self.ROOMS_KEY, room_code)
        await pipe.execute()

    async def delete(self, room_code: str) -> None:
        pipe = self.redis.pipeline()
        pipe.delete(self.ROOM_KEY.format(room_code=room_code))
        pipe.srem(self.ROOMS_KEY, room_code)
        await pipe.execute()

    async def load_all(self) -> list[dict]:
        records = []
        codes = await self.redis.smembers(self.ROOMS_KEY)
        for raw_code in codes:
            code = raw_code.decode() if isinstance(raw_code, bytes) else raw_code
            data = await self.redis.get(self.ROOM_KEY.format(room_code=code))
            if not data:
                # Expired record; drop the stale index entry.
                await self.redis.srem(self.ROOMS_KEY, code)
                continue
            if isinstance(data, bytes):
                data = data.decode()
            try:
                records.append(json.loads(data))
            except json.JSONDecodeError as e:
                logger.error(f"Corrupt room record {code}: {e}")
        return records
