"""
Sliding-window log stores.

A window is the set of admission timestamps (epoch ms) for one key. A hit
prunes entries older than the window, counts what is left and records the
new timestamp only when the count is under the limit, so rejected requests
never extend a lockout.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as redis

from lawfirm_authz.configs.logging_config import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class WindowState:
    allowed: bool
    # Entries in the window after this hit.
    count: int
    # Oldest admitted timestamp still in the window (epoch ms).
    oldest_ms: int


class WindowStore(Protocol):
    async def hit(self, key: str, *, limit: int, window_ms: int, now_ms: int) -> WindowState: ...

    async def reset(self, key: str) -> None: ...


# KEYS[1] window key
# ARGV: now_ms, window_ms, limit, member
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
  redis.call('ZADD', key, now, ARGV[4])
  count = count + 1
  allowed = 1
end
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_ms = now
if oldest[2] then
  oldest_ms = tonumber(oldest[2])
end
redis.call('PEXPIRE', key, window)
return {allowed, count, oldest_ms}
"""


class RedisWindowStore:
    """Shared counters for every worker; each hit is one atomic script call."""

    def __init__(self, client: redis.Redis, prefix: str = "authz"):
        self._client = client
        self._prefix = prefix
        self._script = client.register_script(_SLIDING_WINDOW_LUA)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:rl:{key}"

    async def hit(self, key: str, *, limit: int, window_ms: int, now_ms: int) -> WindowState:
        member = f"{now_ms}-{uuid.uuid4().hex[:12]}"
        allowed, count, oldest = await self._script(
            keys=[self._key(key)], args=[now_ms, window_ms, limit, member]
        )
        return WindowState(allowed=bool(int(allowed)), count=int(count), oldest_ms=int(oldest))

    async def reset(self, key: str) -> None:
        await self._client.delete(self._key(key))


class MemoryWindowStore:
    """Single-process store for development and tests."""

    def __init__(self) -> None:
        self._windows: dict[str, deque[int]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, *, limit: int, window_ms: int, now_ms: int) -> WindowState:
        async with self._lock:
            entries = self._windows.setdefault(key, deque())
            cutoff = now_ms - window_ms
            while entries and entries[0] <= cutoff:
                entries.popleft()
            allowed = len(entries) < limit
            if allowed:
                entries.append(now_ms)
            oldest = entries[0] if entries else now_ms
            return WindowState(allowed=allowed, count=len(entries), oldest_ms=oldest)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)

    async def sweep(self, *, now_ms: int, max_window_ms: int) -> int:
        """Drop keys whose newest entry is older than the longest window. Returns keys removed."""
        async with self._lock:
            cutoff = now_ms - max_window_ms
            stale = [k for k, entries in self._windows.items() if not entries or entries[-1] <= cutoff]
            for k in stale:
                del self._windows[k]
        if stale:
            log.debug("admission.memory_store.sweep removed=%s", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)
