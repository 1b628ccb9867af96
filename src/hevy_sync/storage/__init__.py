"""Durable state: key-value stores, TTL cache and advisory locks."""

from .kv_store import FileKVStore, KVStore, MemoryKVStore, TTLCache
from .locks import AdvisoryLock, FileLock, LockUnavailableError, MemoryLock

__all__ = [
    "AdvisoryLock",
    "FileKVStore",
    "FileLock",
    "KVStore",
    "LockUnavailableError",
    "MemoryKVStore",
    "MemoryLock",
    "TTLCache",
]
