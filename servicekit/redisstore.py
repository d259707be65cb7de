"""Key-value storage on Redis with optional gzip compression of values."""

from __future__ import annotations

import gzip
import logging
import zlib
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Union

import redis
from redis.backoff import ExponentialBackoff
from redis.cluster import RedisCluster
from redis.retry import Retry

from servicekit.config import ConfigError

FOREVER = -1
"""Pass as a lifetime to keep a key without expiry."""

TTL_NO_EXPIRE = -1
TTL_NO_KEY = -2

_GZIP_MAGIC = b"\x1f\x8b"
_GZIP_DEFLATE = 8
_GZIP_HEADER_SIZE = 10

_logger = logging.getLogger(__name__)

Duration = Union[int, float, timedelta]


class RedisStoreError(Exception):
    """Raised when a Redis command fails."""


class NotFoundError(RedisStoreError):
    """Raised when the key does not exist."""


class NoTTLError(RedisStoreError):
    """Raised when the key exists but has no associated timeout."""

    def __init__(self, message: str = "No ttl") -> None:
        super().__init__(message)


class ExpireNotExistOrTimeoutError(RedisStoreError):
    """Raised when an expiry change finds no key or no timeout to act on."""

    def __init__(
        self,
        message: str = "key does not exist or does not have an associated timeout",
    ) -> None:
        super().__init__(message)


@dataclass
class MVal:
    """One value of a multi-key read; valid is False when the key was missing."""

    valid: bool = False
    value: bytes = field(default=b"")


def _seconds(duration: Duration) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def _whole_seconds(seconds: float) -> int:
    if 0 < seconds < 1:
        _logger.warning("specified duration is %ss, but minimal supported value is 1s", seconds)
        return 1
    return int(seconds)


def _set_expiry_kwargs(seconds: float) -> dict[str, int]:
    if seconds <= 0:
        return {}
    if seconds < 1 or not float(seconds).is_integer():
        millis = int(seconds * 1000)
        return {"px": max(millis, 1)}
    return {"ex": int(seconds)}


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return str(value).encode("utf-8")


def _looks_like_gzip(data: bytes) -> bool:
    return (
        len(data) >= _GZIP_HEADER_SIZE
        and data[:2] == _GZIP_MAGIC
        and data[2] == _GZIP_DEFLATE
    )


class RedisStore:
    """Named wrapper over a Redis client that logs failures and raises typed errors."""

    def __init__(self, name: str, client: Any, config: Any = None) -> None:
        self._name = name
        self._client = client
        self._config = config

    def name(self) -> str:
        """Return the name this store was created with."""
        return self._name

    def _fail(self, command: str, exc: Exception) -> RedisStoreError:
        _logger.error("%s redis failed: %s", command, exc)
        return RedisStoreError(f"{command} redis failed: {exc}")

    def set(self, key: str, val: bytes, expire: Duration = 0, zip: bool = False) -> None:
        """Store *val* under *key*, gzip-compressed if *zip*; non-positive or FOREVER means no expiry."""
        payload = gzip.compress(bytes(val), mtime=0) if zip else bytes(val)
        seconds = _seconds(expire)
        if seconds == FOREVER:
            seconds = 0
        try:
            self._client.set(key, payload, **_set_expiry_kwargs(seconds))
        except redis.RedisError as exc:
            raise self._fail("SET", exc) from exc

    def expire(self, key: str, ttl: Duration) -> None:
        """Set the lifetime of *key*; FOREVER removes its timeout."""
        seconds = _seconds(ttl)
        try:
            if seconds == FOREVER:
                changed = self._client.persist(key)
            else:
                changed = self._client.expire(key, _whole_seconds(seconds))
        except redis.RedisError as exc:
            raise self._fail("EXPIRE", exc) from exc
        if not changed:
            raise ExpireNotExistOrTimeoutError()

    def get(self, key: str, zip: bool = False) -> bytes:
        """Return the value of *key*, decompressed if *zip* and it is gzip data."""
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise self._fail("GET", exc) from exc
        if raw is None:
            raise NotFoundError(f"key {key!r} not found")
        data = _to_bytes(raw)
        if not zip:
            return data
        if not _looks_like_gzip(data):
            _logger.warning("new gzip reader failed: value of %r is not gzip data", key)
            return data
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as exc:
            raise RedisStoreError(f"cannot decompress value of {key!r}: {exc}") from exc

    def delete(self, *keys: str) -> int:
        """Remove the given keys and return how many existed."""
        if not keys:
            raise ValueError("length of keys is 0")
        # One DEL per key in a pipeline avoids cross-slot errors on clusters.
        pipe = self._client.pipeline(transaction=False)
        for key in keys:
            pipe.delete(key)
        try:
            results = pipe.execute()
        except redis.RedisError as exc:
            raise self._fail("DEL", exc) from exc
        return sum(int(result) for result in results)

    def incr(self, key: str) -> int:
        """Increment the integer at *key* by one, starting from 0, and return it."""
        try:
            return int(self._client.incr(key))
        except redis.RedisError as exc:
            raise self._fail("INCR", exc) from exc

    def exists(self, key: str) -> int:
        """Return 1 if *key* exists, else 0."""
        try:
            return int(self._client.exists(key))
        except redis.RedisError as exc:
            raise self._fail("EXISTS", exc) from exc

    def ttl(self, key: str) -> int:
        """Return the remaining lifetime of *key* in seconds."""
        try:
            value = int(self._client.ttl(key))
        except redis.RedisError as exc:
            raise self._fail("TTL", exc) from exc
        if value == TTL_NO_KEY:
            raise NotFoundError(f"key {key!r} not found")
        if value == TTL_NO_EXPIRE:
            raise NoTTLError()
        return value

    def rename(self, old_key: str, new_key: str) -> None:
        """Rename *old_key* to *new_key*; failures are logged, not raised."""
        try:
            self._client.rename(old_key, new_key)
        except redis.RedisError as exc:
            _logger.error("RENAME redis failed: %s", exc)

    def mget(self, keys: list[str]) -> list[MVal]:
        """Return one MVal per key; missing keys come back with valid False."""
        if not keys:
            return []
        try:
            values = self._client.mget(keys)
        except redis.RedisError as exc:
            _logger.error("MGET redis failed: %s", exc)
            values = []
        return [
            MVal(valid=False, value=b"") if value is None else MVal(True, _to_bytes(value))
            for value in values
        ]

    def hmget(
        self, key: str, fields: list[str], remove_nil: bool = False
    ) -> dict[str, Any]:
        """Return a mapping of field names to values of the hash at *key*."""
        try:
            values = self._client.hmget(key, list(fields))
        except redis.RedisError as exc:
            raise self._fail("HMGET", exc) from exc
        return {
            name: value
            for name, value in zip(fields, values)
            if not (remove_nil and value is None)
        }


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, 6379
    try:
        return host, int(port)
    except ValueError as exc:
        raise RedisStoreError(f"invalid redis address {addr!r}") from exc


def connect_redis(addr: str, username: str = "", password: str = "") -> redis.Redis:
    """Connect to a single Redis server at host:port and check it answers."""
    host, port = _split_addr(addr)
    client = redis.Redis(
        host=host,
        port=port,
        password=password or None,
        db=0,
        socket_connect_timeout=5,
        socket_timeout=3,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        _logger.error(
            "fail to connect to redis cluster: redisAddr=%s redisUser=%s err=%s",
            addr,
            username,
            exc,
        )
        raise RedisStoreError(f"fail to connect to redis at {addr}: {exc}") from exc
    _logger.info("redis instance connected")
    return client


def connect_redis_cluster(
    addr: str, username: str = "", password: str = ""
) -> RedisCluster:
    """Connect to a Redis cluster through the node at host:port and check it answers."""
    host, port = _split_addr(addr)
    try:
        client = RedisCluster(
            host=host,
            port=port,
            username=username or None,
            password=password or None,
            socket_connect_timeout=2,
            socket_timeout=1.5,
            retry=Retry(ExponentialBackoff(cap=2.0, base=1.0), 3),
        )
        client.ping()
    except redis.RedisError as exc:
        _logger.error(
            "fail to connect to redis cluster: redisAddr=%s redisUser=%s err=%s",
            addr,
            username,
            exc,
        )
        raise RedisStoreError(f"fail to connect to redis cluster at {addr}: {exc}") from exc
    _logger.info("redis cluster connected")
    return client


def new_redis_main_cluster(config: Any) -> RedisStore | None:
    """Build the main store from ENVOY_REDIS_ADDRESS, or None if it is not configured."""
    try:
        addr = config.get("ENVOY_REDIS_ADDRESS")
    except ConfigError:
        return None
    client = connect_redis(str(addr), "", "")
    return RedisStore("redisMainCluster", client, config)