"""Key/value storage for cooldowns, throttling counters and statistics."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Final, Protocol

from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

MEMORY_URL_SCHEME: Final[str] = "memory://"

# Deletes KEYS[1] only while it still holds ARGV[1].
_RELEASE_SCRIPT: Final[str] = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# Overwrites KEYS[1] with ARGV[2] (TTL ARGV[3]) only while it still holds ARGV[1].
_REPLACE_SCRIPT: Final[str] = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
    return 1
end
return 0
"""

# In-process store drops expired entries at most this often.
MEMORY_SWEEP_INTERVAL_SECONDS: Final[int] = 60


class StoreUnavailableError(RuntimeError):
    """Raised when the backing store cannot be reached or returns garbage."""


def _encode_timestamp(timestamp: float) -> str:
    return str(int(timestamp))


def _decode_timestamp(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError as err:
        raise StoreUnavailableError(f"Corrupt timestamp record: {raw!r}") from err


class FaucetStore(Protocol):
    """Operations the faucet needs from its key/value store."""

    async def get(self, key: str) -> float | None: ...

    async def set(self, key: str, timestamp: float, ttl_seconds: int) -> None: ...

    async def reserve(self, key: str, timestamp: float, ttl_seconds: int) -> float | None:
        """Write `timestamp` only if `key` is absent.

        Returns None when the write happened, else the timestamp already held.
        """
        ...

    async def release(self, key: str, timestamp: float) -> None: ...

    async def replace(
        self, key: str, expected: float, timestamp: float, ttl_seconds: int
    ) -> bool:
        """Overwrite `key` only while it still holds `expected`."""
        ...

    async def hit(self, key: str, window_seconds: int) -> int: ...

    async def incr(self, key: str) -> int: ...

    async def incr_float(self, key: str, amount: float) -> float: ...

    async def get_value(self, key: str) -> str | None: ...

    async def set_value(self, key: str, value: str) -> None: ...

    async def set_if_absent(self, key: str, value: str) -> bool: ...

    async def record_transaction(self, key: str, fields: Mapping[str, str]) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisFaucetStore:
    """Redis-backed store. Every Redis failure surfaces as StoreUnavailableError."""

    def __init__(self, redis_url: str, *, client: aioredis.Redis | None = None) -> None:
        self._redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self._release = self._redis.register_script(_RELEASE_SCRIPT)
        self._replace = self._redis.register_script(_REPLACE_SCRIPT)

    async def get(self, key: str) -> float | None:
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis GET failed for {key}: {exc}") from exc
        return _decode_timestamp(raw)

    async def set(self, key: str, timestamp: float, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, _encode_timestamp(timestamp), ex=int(ttl_seconds))
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis SET failed for {key}: {exc}") from exc

    async def reserve(self, key: str, timestamp: float, ttl_seconds: int) -> float | None:
        try:
            # The holder can expire between SET NX and GET; try again once.
            for _ in range(2):
                if await self._redis.set(
                    key, _encode_timestamp(timestamp), ex=int(ttl_seconds), nx=True
                ):
                    return None
                existing = _decode_timestamp(await self._redis.get(key))
                if existing is not None:
                    return existing
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis reservation failed for {key}: {exc}") from exc
        raise StoreUnavailableError(f"Could not reserve {key}")

    async def release(self, key: str, timestamp: float) -> None:
        try:
            await self._release(keys=[key], args=[_encode_timestamp(timestamp)])
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis release failed for {key}: {exc}") from exc

    async def replace(
        self, key: str, expected: float, timestamp: float, ttl_seconds: int
    ) -> bool:
        try:
            replaced = await self._replace(
                keys=[key],
                args=[_encode_timestamp(expected), _encode_timestamp(timestamp), int(ttl_seconds)],
            )
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis replace failed for {key}: {exc}") from exc
        return bool(replaced)

    async def hit(self, key: str, window_seconds: int) -> int:
        try:
            # Count and expiry travel together; EXPIRE NX keeps the window start.
            pipe = self._redis.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, int(window_seconds), nx=True)
            count, _ = await pipe.execute()
            return int(count)
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis INCR failed for {key}: {exc}") from exc

    async def incr(self, key: str) -> int:
        try:
            return int(await self._redis.incr(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis INCR failed for {key}: {exc}") from exc

    async def incr_float(self, key: str, amount: float) -> float:
        try:
            return float(await self._redis.incrbyfloat(key, amount))
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis INCRBYFLOAT failed for {key}: {exc}") from exc

    async def get_value(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis GET failed for {key}: {exc}") from exc

    async def set_value(self, key: str, value: str) -> None:
        try:
            await self._redis.set(key, value)
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis SET failed for {key}: {exc}") from exc

    async def set_if_absent(self, key: str, value: str) -> bool:
        try:
            return bool(await self._redis.set(key, value, nx=True))
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis SETNX failed for {key}: {exc}") from exc

    async def record_transaction(self, key: str, fields: Mapping[str, str]) -> None:
        try:
            await self._redis.hset(key, mapping=dict(fields))
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis HSET failed for {key}: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryFaucetStore:
    """In-process store with TTL semantics, for tests and single-node development."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, float | None]] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    def _read(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            return None
        return value

    def _write(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        now = self._clock()
        if now - self._last_sweep >= MEMORY_SWEEP_INTERVAL_SECONDS:
            self._sweep(now)
        expires_at = now + ttl_seconds if ttl_seconds else None
        self._values[key] = (value, expires_at)

    def _sweep(self, now: float) -> None:
        expired = [
            key
            for key, (_, expires_at) in self._values.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._values[key]
        self._last_sweep = now

    def _keep_ttl_write(self, key: str, value: str) -> None:
        entry = self._values.get(key)
        self._values[key] = (value, entry[1] if entry else None)

    async def get(self, key: str) -> float | None:
        async with self._lock:
            return _decode_timestamp(self._read(key))

    async def set(self, key: str, timestamp: float, ttl_seconds: int) -> None:
        async with self._lock:
            self._write(key, _encode_timestamp(timestamp), int(ttl_seconds))

    async def reserve(self, key: str, timestamp: float, ttl_seconds: int) -> float | None:
        async with self._lock:
            existing = self._read(key)
            if existing is not None:
                return _decode_timestamp(existing)
            self._write(key, _encode_timestamp(timestamp), int(ttl_seconds))
            return None

    async def release(self, key: str, timestamp: float) -> None:
        async with self._lock:
            if self._read(key) == _encode_timestamp(timestamp):
                self._values.pop(key, None)

    async def replace(
        self, key: str, expected: float, timestamp: float, ttl_seconds: int
    ) -> bool:
        async with self._lock:
            if self._read(key) != _encode_timestamp(expected):
                return False
            self._write(key, _encode_timestamp(timestamp), int(ttl_seconds))
            return True

    async def hit(self, key: str, window_seconds: int) -> int:
        async with self._lock:
            current = self._read(key)
            if current is None:
                self._write(key, "1", int(window_seconds))
                return 1
            count = int(current) + 1
            self._keep_ttl_write(key, str(count))
            return count

    async def incr(self, key: str) -> int:
        async with self._lock:
            count = int(self._read(key) or 0) + 1
            self._keep_ttl_write(key, str(count))
            return count

    async def incr_float(self, key: str, amount: float) -> float:
        async with self._lock:
            total = float(self._read(key) or 0) + amount
            self._keep_ttl_write(key, repr(total))
            return total

    async def get_value(self, key: str) -> str | None:
        async with self._lock:
            return self._read(key)

    async def set_value(self, key: str, value: str) -> None:
        async with self._lock:
            self._write(key, value)

    async def set_if_absent(self, key: str, value: str) -> bool:
        async with self._lock:
            if self._read(key) is not None:
                return False
            self._write(key, value)
            return True

    async def record_transaction(self, key: str, fields: Mapping[str, str]) -> None:
        async with self._lock:
            self._hashes.setdefault(key, {}).update(fields)

    async def get_transaction(self, key: str) -> dict[str, str] | None:
        async with self._lock:
            record = self._hashes.get(key)
            return dict(record) if record is not None else None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def create_store(redis_url: str, *, clock: Callable[[], float] = time.time) -> FaucetStore:
    """Return the store selected by `redis_url`."""
    if redis_url.startswith(MEMORY_URL_SCHEME):
        logger.warning("Using in-process store; cooldowns are not shared between processes")
        return MemoryFaucetStore(clock=clock)
    return RedisFaucetStore(redis_url)
