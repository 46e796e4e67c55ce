"""Stores package for Quartet room persistence."""

from .room_store import FileRoomStore, RedisRoomStore

__all__ = [
    "FileRoomStore",
    "RedisRoomStore",
]
