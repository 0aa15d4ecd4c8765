"""Tag-based read-through cache shared by every process of the service.

Entries are keyed by user, operation and a stable rendering of the call
arguments, and carry a set of tags. Mutations invalidate by tag instead of by
key, so a write never needs to know which cached reads it affects.
"""

import hashlib
import json
import logging
import math
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, TypeVar
from uuid import UUID

import redis
from pydantic import BaseModel, TypeAdapter, ValidationError

from rolodex.core.config import settings
from rolodex.core.exceptions import CacheError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Argument renderings longer than this are replaced by their md5 digest.
MAX_RAW_KEY_PART = 64

_ANY_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)


@dataclass(frozen=True)
class CacheInfo:
    """Key and tags for one cached read."""

    key: str
    tags: list[str] = field(default_factory=list)

    def with_tags(self, *tags: str) -> "CacheInfo":
        merged = list(self.tags)
        for tag in tags:
            if tag not in merged:
                merged.append(tag)
        return CacheInfo(key=self.key, tags=merged)


class CacheStore(Protocol):
    """Backend contract: string keys, byte values, tag sets."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes, ttl: int, tags: Iterable[str]) -> None: ...

    def delete_tags(self, tags: Iterable[str]) -> int: ...

    def flush(self) -> None: ...


class MemoryCacheStore:
    """In-process store used by tests and single-process development setups."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[bytes, float, frozenset[str]]] = {}
        self._tags: dict[str, set[str]] = {}

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at, _ = entry
            if expires_at <= self._clock():
                self._drop(key)
                return None
            return value

    def set(self, key: str, value: bytes, ttl: int, tags: Iterable[str]) -> None:
        with self._lock:
            self._drop(key)
            tag_set = frozenset(tags)
            self._entries[key] = (value, self._clock() + ttl, tag_set)
            for tag in tag_set:
                self._tags.setdefault(tag, set()).add(key)

    def delete_tags(self, tags: Iterable[str]) -> int:
        with self._lock:
            keys: set[str] = set()
            for tag in tags:
                keys |= self._tags.pop(tag, set())
            removed = 0
            for key in keys:
                if key in self._entries:
                    self._drop(key)
                    removed += 1
            return removed

    def flush(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tags.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry[2]:
            members = self._tags.get(tag)
            if members is not None:
                members.discard(key)
                if not members:
                    del self._tags[tag]


class RedisCacheStore:
    """Redis-backed store.

    Values live under ``{prefix}:{key}``; each tag is a Redis set under
    ``{prefix}:tag:{tag}`` listing the keys that carry it. A tag set expires no
    earlier than its longest-lived member (requires Redis 7 for ``EXPIRE GT``).
    """

    def __init__(self, client: "redis.Redis[bytes]", prefix: str = "rolodex") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "rolodex") -> "RedisCacheStore":
        return cls(redis.Redis.from_url(url), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    def get(self, key: str) -> bytes | None:
        try:
            return self.client.get(self._key(key))
        except redis.RedisError as e:
            raise CacheError(str(e)) from e

    def set(self, key: str, value: bytes, ttl: int, tags: Iterable[str]) -> None:
        try:
            pipe = self.client.pipeline()
            pipe.set(self._key(key), value, ex=ttl)
            for tag in tags:
                tag_key = self._tag_key(tag)
                pipe.sadd(tag_key, key)
                pipe.expire(tag_key, ttl, nx=True)
                pipe.expire(tag_key, ttl, gt=True)
            pipe.execute()
        except redis.RedisError as e:
            raise CacheError(str(e)) from e

    def delete_tags(self, tags: Iterable[str]) -> int:
        removed = 0
        try:
            for tag in tags:
                tag_key = self._tag_key(tag)
                members = self.client.smembers(tag_key)
                names = [self._key(m.decode() if isinstance(m, bytes) else m) for m in members]
                if names:
                    removed += int(self.client.delete(*names))
                self.client.delete(tag_key)
        except redis.RedisError as e:
            raise CacheError(str(e)) from e
        return removed

    def flush(self) -> None:
        try:
            for name in self.client.scan_iter(match=f"{self.prefix}:*"):
                self.client.delete(name)
        except redis.RedisError as e:
            raise CacheError(str(e)) from e


def _normalize(value: Any) -> Any:
    """Render a call argument into a JSON-stable structure."""
    if value is None or isinstance(value, bool | int | str):
        return value
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, Enum):
        return _normalize(value.value)
    if isinstance(value, UUID | Decimal):
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(exclude_none=True))
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items() if v is not None}
    if isinstance(value, set | frozenset):
        return sorted((_normalize(v) for v in value), key=repr)
    if isinstance(value, list | tuple):
        return [_normalize(v) for v in value]
    return str(value)


def stable_key_part(*args: Any) -> str:
    """Deterministic key fragment for a sequence of arguments."""
    rendered = json.dumps(_normalize(list(args)), sort_keys=True, separators=(",", ":"))
    if len(rendered) > MAX_RAW_KEY_PART:
        return hashlib.md5(rendered.encode()).hexdigest()  # noqa: S324
    return rendered


def validate_ttl(ttl: Any) -> int:
    """Return ``ttl`` as an int, rejecting zero, negative and non-finite values."""
    if isinstance(ttl, bool) or not isinstance(ttl, int | float):
        raise ValueError(f"Cache TTL must be a number, got {ttl!r}")
    if not math.isfinite(ttl) or ttl <= 0:
        raise ValueError(f"Cache TTL must be a positive finite number of seconds, got {ttl!r}")
    return max(1, int(ttl))


class CacheService:
    """Read-through cache with tag invalidation over a ``CacheStore``."""

    def __init__(self, store: CacheStore, enabled: bool = True) -> None:
        self.store = store
        self.enabled = enabled

    def cache_info_for(self, user_id: UUID | str, operation: str, *args: Any) -> CacheInfo:
        """Build the key and base tags for a user-scoped operation."""
        parts = ["user", str(user_id), operation]
        if args:
            parts.append(stable_key_part(*args))
        return CacheInfo(
            key=":".join(parts),
            tags=[f"user:{user_id}", f"operation:{operation}"],
        )

    def customer_cache_info(
        self, user_id: UUID | str, customer_id: UUID | str, operation: str, *args: Any
    ) -> CacheInfo:
        info = self.cache_info_for(user_id, operation, customer_id, *args)
        return info.with_tags(f"customer:{customer_id}")

    def read_through(
        self,
        key: str,
        tags: Iterable[str],
        ttl: int,
        producer: Callable[[], Any],
        adapter: TypeAdapter[T] | None = None,
    ) -> T:
        """Return the cached value for ``key`` or compute, store and return it.

        Backend read failures and undecodable payloads fall through to the
        producer; write failures are logged and the fresh value is returned.
        """
        ttl = validate_ttl(ttl)
        codec: TypeAdapter[Any] = adapter or _ANY_ADAPTER

        if not self.enabled:
            return codec.validate_python(producer(), from_attributes=True)

        raw: bytes | None = None
        try:
            raw = self.store.get(key)
        except CacheError as e:
            logger.warning("Cache read failed for %s: %s", key, e)

        if raw is not None:
            try:
                return codec.validate_json(raw)
            except ValidationError as e:
                logger.warning("Discarding undecodable cache entry %s: %s", key, e)

        value = codec.validate_python(producer(), from_attributes=True)
        try:
            self.store.set(key, codec.dump_json(value), ttl, list(tags))
        except CacheError as e:
            logger.warning("Cache write failed for %s: %s", key, e)
        return value

    def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of ``tags``.

        If the tagged delete fails the whole store is flushed instead, so no
        stale entry survives a write. A failing flush raises ``CacheError``.
        """
        tag_list = list(dict.fromkeys(tags))
        if not tag_list:
            return 0
        try:
            removed = self.store.delete_tags(tag_list)
        except CacheError as e:
            logger.warning("Cache invalidation failed for tags %s, flushing: %s", tag_list, e)
            try:
                self.store.flush()
            except CacheError:
                logger.error("Cache flush failed, entries for tags %s may be stale", tag_list)
                raise
            return 0
        logger.debug("Invalidated %d cache entries for tags %s", removed, tag_list)
        return removed

    def clear_user_cache(self, user_id: UUID | str) -> int:
        return self.invalidate_by_tags([f"user:{user_id}"])

    def clear_customer_cache(self, user_id: UUID | str, customer_id: UUID | str) -> int:
        return self.invalidate_by_tags([f"customer:{customer_id}", f"user:{user_id}"])

    def clear_operation_cache(self, operation: str) -> int:
        return self.invalidate_by_tags([f"operation:{operation}"])

    def clear_all(self) -> None:
        try:
            self.store.flush()
        except CacheError as e:
            logger.warning("Cache flush failed: %s", e)


_cache: CacheService | None = None


def build_cache() -> CacheService:
    """Create the cache service configured by ``settings``."""
    store: CacheStore
    if settings.CACHE_BACKEND == "memory":
        store = MemoryCacheStore()
    else:
        store = RedisCacheStore.from_url(settings.REDIS_URL, prefix=settings.CACHE_PREFIX)
    return CacheService(store, enabled=settings.CACHE_ENABLED)


def get_cache() -> CacheService:
    """Return the process-wide cache service, creating it on first use."""
    global _cache
    if _cache is None:
        _cache = build_cache()
    return _cache


def set_cache(cache: CacheService | None) -> None:
    """Replace the process-wide cache service (``None`` resets it)."""
    global _cache
    _cache = cache
