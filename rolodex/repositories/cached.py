"""Read-through caching wrapper for the user-scoped repositories.

A ``CachedRepository`` wraps a repository and a ``CacheTable``. Methods listed
as reads are served through the cache; methods listed as writes run against
the repository and then invalidate by tag. Anything else (paginated listings,
worker-only queries) passes straight through.

Every wrapped method takes the owning ``user_id`` as its first argument.
"""

import functools
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from pydantic import TypeAdapter

from rolodex.core.cache import CacheService, get_cache
from rolodex.core.config import settings

logger = logging.getLogger(__name__)

TagBuilder = Callable[..., list[str]]


def no_tags(*args: Any, **kwargs: Any) -> list[str]:
    return []


@dataclass(frozen=True)
class ReadRule:
    """How one read method is cached.

    ``ttl_setting`` names the ``Settings`` attribute holding the TTL, so it is
    resolved per call. ``tags`` receives ``(user_id, *args, **kwargs)``;
    ``key_args`` may rewrite the arguments before they become part of the key.
    """

    ttl_setting: str
    adapter: TypeAdapter[Any]
    tags: TagBuilder = no_tags
    key_args: Callable[..., tuple[Any, ...]] | None = None

    @property
    def ttl(self) -> int:
        return int(getattr(settings, self.ttl_setting))


@dataclass(frozen=True)
class WriteRule:
    """Tags invalidated after a write; ``tags`` receives ``(user_id, result, *args, **kwargs)``."""

    tags: TagBuilder = no_tags


@dataclass(frozen=True)
class CacheTable:
    entity: str
    reads: Mapping[str, ReadRule] = field(default_factory=dict)
    writes: Mapping[str, WriteRule] = field(default_factory=dict)


class CachedRepository:
    """Wraps a repository with the read/write rules of a ``CacheTable``."""

    def __init__(self, repository: Any, table: CacheTable, cache: CacheService | None = None):
        self.repository = repository
        self.table = table
        self.cache = cache or get_cache()

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self.repository, name)
        read_rule = self.table.reads.get(name)
        if read_rule is not None:
            return functools.partial(self._read, name, attr, read_rule)
        write_rule = self.table.writes.get(name)
        if write_rule is not None:
            return functools.partial(self._write, name, attr, write_rule)
        return attr

    def _read(
        self,
        name: str,
        method: Callable[..., Any],
        rule: ReadRule,
        user_id: UUID,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        operation = f"{self.table.entity}.{name}"
        key_args = rule.key_args(*args) if rule.key_args else args
        if kwargs:
            key_args = (*key_args, kwargs)
        info = self.cache.cache_info_for(user_id, operation, *key_args)
        info = info.with_tags(*rule.tags(user_id, *args, **kwargs))
        return self.cache.read_through(
            info.key,
            info.tags,
            rule.ttl,
            lambda: method(user_id, *args, **kwargs),
            rule.adapter,
        )

    def _write(
        self,
        name: str,
        method: Callable[..., Any],
        rule: WriteRule,
        user_id: UUID,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        # Ownership and other errors propagate before anything is invalidated.
        result = method(user_id, *args, **kwargs)
        tags = [f"user:{user_id}", *rule.tags(user_id, result, *args, **kwargs)]
        removed = self.cache.invalidate_by_tags(tags)
        logger.debug("%s.%s invalidated %d cache entries", self.table.entity, name, removed)
        return result
