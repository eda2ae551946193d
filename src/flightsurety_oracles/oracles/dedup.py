"""
FlightSurety Request Dedup Cache

The ledger delivers OracleRequest events at-least-once. The dispatcher
keeps recently seen request keys (airline, flight, timestamp, index) for a
bounded TTL so a re-delivery does not fan out a second round of
submissions.

Correctness does not depend on the cache: the ledger tolerates duplicate
submissions. A cache that cannot answer (e.g. Redis down) therefore
reports every key as new.

Backends:
    - RecentRequestCache: in-process, TTL + max entries
    - RedisRequestCache: shared across processes, SET NX PX
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError

from ..models import RequestKey


logger = logging.getLogger(__name__)


class RequestCache(ABC):
    """Recently seen request keys."""

    @abstractmethod
    async def check_and_mark(self, key: RequestKey) -> bool:
        """
        Record a key.

        Returns:
            True if the key was not seen within the TTL (dispatch it),
            False if it is a recent re-delivery
        """
        pass

    async def close(self) -> None:
        return None


class RecentRequestCache(RequestCache):
    """
    In-memory TTL cache bounded by entry count.

    Entries share one TTL, so insertion order is expiry order and
    expired keys are always at the front.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[RequestKey, float]" = OrderedDict()

    def _purge(self, now: float) -> None:
        while self._entries:
            key, expires_at = next(iter(self._entries.items()))
            if expires_at > now:
                break
            del self._entries[key]

    async def check_and_mark(self, key: RequestKey) -> bool:
        now = self._clock()
        self._purge(now)

        if key in self._entries:
            return False

        self._entries[key] = now + self._ttl
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: RequestKey) -> bool:
        expires_at = self._entries.get(key)
        return expires_at is not None and expires_at > self._clock()


class RedisConnector:
    """
    Lazily opened Redis client for the dedup cache.

    One connection attempt per call, bounded by `connect_timeout`. A
    failed attempt releases the half-built pool so the next call starts
    clean. Retry pacing is left to the caller.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        max_connections: int = 20,
        socket_timeout: float = 2.0,
        connect_timeout: float = 0.5,
    ):
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._lock = asyncio.Lock()
        self.connect_attempts = 0

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def get_client(self) -> redis.Redis:
        """
        Return the shared client, connecting on first use.

        Raises:
            RedisConnectionError: If the server cannot be reached
        """
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            self.connect_attempts += 1
            pool = redis.ConnectionPool.from_url(
                self._redis_url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
                decode_responses=True,
            )
            client = redis.Redis(connection_pool=pool)
            connected = False
            try:
                await asyncio.wait_for(client.ping(), timeout=self._connect_timeout)
                connected = True
            except (RedisError, OSError, asyncio.TimeoutError) as e:
                raise RedisConnectionError(f"Cannot reach Redis at {self._redis_url}: {e!r}") from e
            finally:
                if not connected:
                    await client.aclose()
                    await pool.disconnect()

            self._pool = pool
            self._client = client
            logger.info(f"Connected to Redis dedup cache at {self._redis_url}")
            return client

    async def reset(self) -> None:
        """Drop the current client; the next call reconnects."""
        async with self._lock:
            client, pool = self._client, self._pool
            self._client = None
            self._pool = None
        if client is not None:
            await client.aclose()
        if pool is not None:
            await pool.disconnect()

    async def close(self) -> None:
        await self.reset()


class RedisRequestCache(RequestCache):
    """
    Redis-backed dedup cache shared by every dispatcher process.

    One key per request: SET <prefix><airline>:<flight>:<timestamp>:<index> NX PX <ttl>

    Each lookup is bounded by `operation_timeout_seconds`. After a failure
    the cache stops asking Redis for `cooldown_seconds` and reports every
    key as new, so a Redis outage costs at most one timeout per cooldown
    window instead of one per dispatch.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        ttl_seconds: float = 300.0,
        key_prefix: str = "oracles:seen:",
        client: Optional[redis.Redis] = None,
        max_connections: int = 20,
        socket_timeout: float = 2.0,
        operation_timeout_seconds: float = 0.25,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            redis_url: Redis connection URL
            ttl_seconds: How long a key suppresses re-deliveries
            key_prefix: Namespace for cache keys
            client: Pre-built client (skips the connector)
            operation_timeout_seconds: Upper bound on one lookup, connect included
            cooldown_seconds: How long to bypass Redis after a failure
            clock: Monotonic time source
        """
        self._ttl_ms = max(1, int(ttl_seconds * 1000))
        self._prefix = key_prefix
        self._client = client
        self._connector = None if client is not None else RedisConnector(
            redis_url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            connect_timeout=operation_timeout_seconds,
        )
        self._operation_timeout = operation_timeout_seconds
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._bypass_until: Optional[float] = None

        self.failures = 0
        self.bypassed = 0

    @property
    def connector(self) -> Optional[RedisConnector]:
        return self._connector

    @property
    def available(self) -> bool:
        """False while a failure cooldown is in effect."""
        return self._bypass_until is None or self._clock() >= self._bypass_until

    def _redis_key(self, key: RequestKey) -> str:
        airline, flight, timestamp, index = key
        return f"{self._prefix}{airline}:{flight}:{timestamp}:{index}"

    async def _mark(self, key: RequestKey) -> bool:
        client = self._client
        if client is None:
            client = await self._connector.get_client()
        created = await client.set(self._redis_key(key), "1", nx=True, px=self._ttl_ms)
        return bool(created)

    async def check_and_mark(self, key: RequestKey) -> bool:
        if not self.available:
            self.bypassed += 1
            return True

        try:
            created = await asyncio.wait_for(self._mark(key), timeout=self._operation_timeout)
        except (RedisError, asyncio.TimeoutError) as e:
            self.failures += 1
            self._bypass_until = self._clock() + self._cooldown
            logger.warning(
                f"Dedup cache unavailable, treating {key} as new and bypassing Redis "
                f"for {self._cooldown:.0f}s: {e!r}"
            )
            if self._connector is not None and self._connector.connected:
                await self._connector.reset()
            return True

        if self._bypass_until is not None:
            logger.info("Dedup cache reachable again")
            self._bypass_until = None
        return bool(created)

    async def close(self) -> None:
        if self._connector is not None:
            await self._connector.close()
