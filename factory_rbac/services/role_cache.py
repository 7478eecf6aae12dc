"""Role cache with a synchronous invalidation contract.

Every role mutation calls `invalidate` for the affected names before it
returns, so a revoked permission is never served from cache afterwards.

Each name carries a generation counter. A loader that started before an
invalidation does not store its (possibly stale) result.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

from factory_rbac.core.config import settings
from factory_rbac.core.exceptions import CacheInvalidationError
from factory_rbac.services.permissions import RoleDefinition

logger = logging.getLogger("factory_rbac")

RoleLoader = Callable[[str], Optional[RoleDefinition]]


class RoleCache(ABC):
    """Read-through cache of role snapshots keyed by role name."""

    # True when invalidations are invisible to other worker processes.
    process_local = False

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    def get_or_load(self, name: str, loader: RoleLoader) -> Optional[RoleDefinition]:
        """Return the cached snapshot for `name`, loading it on a miss.

        Missing roles are never cached.
        """

    @abstractmethod
    def invalidate(self, *names: str) -> None:
        """Drop cached entries and bump their generations."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    def health_check(self) -> bool:
        return True


@dataclass
class _Entry:
    role: RoleDefinition
    expires_at: float


class MemoryRoleCache(RoleCache):
    """Process-local cache. Correct for a single worker process only;
    run several workers with `ROLE_CACHE_BACKEND=redis`.
    """

    process_local = True

    def __init__(self, ttl_seconds: int = 300):
        super().__init__(ttl_seconds)
        self._entries: Dict[str, _Entry] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get_or_load(self, name: str, loader: RoleLoader) -> Optional[RoleDefinition]:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(name)
            if entry is not None and entry.expires_at > now:
                return entry.role
            generation = self._generations.get(name, 0)

        role = loader(name)
        if role is None:
            return None

        with self._lock:
            if self._generations.get(name, 0) == generation:
                self._entries[name] = _Entry(role, time.monotonic() + self.ttl_seconds)
        return role

    def invalidate(self, *names: str) -> None:
        with self._lock:
            for name in names:
                self._entries.pop(name, None)
                self._generations[name] = self._generations.get(name, 0) + 1

    def clear(self) -> None:
        with self._lock:
            for name in list(self._entries):
                self._generations[name] = self._generations.get(name, 0) + 1
            self._entries.clear()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            entry = self._entries.get(name)
            return entry is not None and entry.expires_at > time.monotonic()


class RedisRoleCache(RoleCache):
    """Redis-backed cache shared by every worker process.

    Read failures fall back to the database. Invalidation failures raise
    `CacheInvalidationError`.
    """

    KEY_PREFIX = "rbac:role:"
    GENERATION_PREFIX = "rbac:role-gen:"

    def __init__(self, url: str, ttl_seconds: int = 300):
        super().__init__(ttl_seconds)
        self._url = url
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                decode_responses=True,
                max_connections=100,
            )
        return self._client

    def _key(self, name: str) -> str:
        return f"{self.KEY_PREFIX}{name}"

    def _generation_key(self, name: str) -> str:
        return f"{self.GENERATION_PREFIX}{name}"

    def get_or_load(self, name: str, loader: RoleLoader) -> Optional[RoleDefinition]:
        key = self._key(name)
        gen_key = self._generation_key(name)
        try:
            raw, generation = self.client.mget(key, gen_key)
        except redis.RedisError as e:
            logger.warning("Role cache unavailable, reading '%s' from database: %s", name, e)
            return loader(name)

        if raw:
            try:
                return RoleDefinition.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError):
                logger.warning("Discarding unreadable cache entry for role '%s'", name)

        role = loader(name)
        if role is None:
            return None

        try:
            with self.client.pipeline() as pipe:
                pipe.watch(gen_key)
                if pipe.get(gen_key) == generation:
                    pipe.multi()
                    pipe.setex(key, self.ttl_seconds, json.dumps(role.to_dict()))
                    pipe.execute()
        except redis.WatchError:
            logger.debug("Role '%s' invalidated while loading; not caching", name)
        except redis.RedisError as e:
            logger.warning("Could not cache role '%s': %s", name, e)
        return role

    def invalidate(self, *names: str) -> None:
        if not names:
            return
        try:
            pipe = self.client.pipeline()
            for name in names:
                pipe.delete(self._key(name))
                pipe.incr(self._generation_key(name))
            pipe.execute()
        except redis.RedisError as e:
            raise CacheInvalidationError(
                f"Could not invalidate cached roles {', '.join(names)}: {e}"
            ) from e

    def clear(self) -> None:
        try:
            keys = self.client.keys(f"{self.KEY_PREFIX}*")
        except redis.RedisError as e:
            raise CacheInvalidationError(f"Could not clear role cache: {e}") from e
        self.invalidate(*[k[len(self.KEY_PREFIX):] for k in keys])

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return self.client.ping()
        except redis.RedisError:
            return False


def build_role_cache() -> RoleCache:
    if settings.ROLE_CACHE_BACKEND == "redis":
        return RedisRoleCache(settings.REDIS_URL, settings.ROLE_CACHE_TTL_SECONDS)
    return MemoryRoleCache(settings.ROLE_CACHE_TTL_SECONDS)


role_cache = build_role_cache()
