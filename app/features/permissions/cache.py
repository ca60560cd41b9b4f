"""
Cache of resolved permission inputs per user.

Entries hold the role defaults and the raw grant expiries rather than a
pre-filtered set, so expiry is always evaluated at read time.
"""
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from cachetools import LRUCache, TTLCache  # type: ignore[import-untyped]

from app.utils import get_logger


log = get_logger(__name__)


class InvalidationCounters(LRUCache):
    """
    Bounded per-key invalidation counters.

    Values come from one increasing sequence. A key evicted from the LRU
    reads back as the highest value ever evicted, so a counter never returns
    to a value a reader may have stamped before the key was invalidated.
    """

    def __init__(self, maxsize: int):
        super().__init__(maxsize=maxsize)
        self.floor = 0

    def popitem(self):
        key, value = super().popitem()
        self.floor = max(self.floor, value)
        return key, value

    def current(self, key: str) -> int:
        return self.get(key, self.floor)


@dataclass(frozen=True)
class CacheStamp:
    """Invalidation counters observed before the backing store is read."""
    epoch: int
    role_generation: int
    user_version: int


@dataclass(frozen=True)
class CachedPermissions:
    user_id: str
    role_key: str
    role_permissions: frozenset[str]
    # (permission_key, expires_at) for every non-revoked grant
    grants: Tuple[Tuple[str, Optional[datetime]], ...]
    stamp: CacheStamp

    def effective(self, now: datetime) -> frozenset[str]:
        active = {key for key, expires_at in self.grants if expires_at is None or expires_at > now}
        return self.role_permissions | active


class PermissionCache:
    """
    In-process cache of per-user permission inputs.

    Role-wide invalidation bumps a generation counter for the role instead of
    enumerating its holders; entries filled under an older generation are
    treated as misses. invalidate_all() bumps a global epoch the same way.

    Readers take a stamp() before loading from the database and hand it to
    put(), so an invalidation that lands mid-read leaves the new entry stale.
    """

    def __init__(
        self,
        maxsize: int = 10000,
        ttl: float = 300,
        timer: Callable[[], float] = time.monotonic
    ):
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._role_generations = InvalidationCounters(maxsize)
        self._user_versions = InvalidationCounters(maxsize)
        self._sequence = 0
        self._epoch = 0

    def stamp(self, user_id: str, role_key: str) -> CacheStamp:
        return CacheStamp(
            epoch=self._epoch,
            role_generation=self._role_generations.current(role_key),
            user_version=self._user_versions.current(user_id),
        )

    def get(self, user_id: str) -> Optional[CachedPermissions]:
        entry: Optional[CachedPermissions] = self._entries.get(user_id)
        if entry is None:
            log.debug("Permission cache miss for user %s", user_id)
            return None
        if entry.stamp != self.stamp(user_id, entry.role_key):
            log.debug("Permission cache entry for user %s is stale", user_id)
            self._entries.pop(user_id, None)
            return None
        log.debug("Permission cache hit for user %s", user_id)
        return entry

    def put(
        self,
        user_id: str,
        role_key: str,
        role_permissions: Iterable[str],
        grants: Iterable[Tuple[str, Optional[datetime]]],
        stamp: Optional[CacheStamp] = None,
    ) -> CachedPermissions:
        entry = CachedPermissions(
            user_id=user_id,
            role_key=role_key,
            role_permissions=frozenset(role_permissions),
            grants=tuple(grants),
            stamp=stamp or self.stamp(user_id, role_key),
        )
        self._entries[user_id] = entry
        return entry

    def invalidate(self, user_id: str) -> None:
        self._sequence += 1
        self._user_versions[user_id] = self._sequence
        self._entries.pop(user_id, None)
        log.debug("Invalidated permission cache for user %s", user_id)

    def invalidate_role(self, role_key: str) -> None:
        self._sequence += 1
        self._role_generations[role_key] = self._sequence
        log.debug("Invalidated permission cache for role %s (generation %d)",
                  role_key, self._role_generations[role_key])

    def invalidate_all(self) -> None:
        self._epoch += 1
        self._entries.clear()
        log.debug("Invalidated entire permission cache (epoch %d)", self._epoch)

    def stats(self) -> dict:
        return {"size": len(self._entries), "maxsize": self._entries.maxsize, "ttl": self._entries.ttl}

    def __contains__(self, user_id: str) -> bool:
        return self.get(user_id) is not None
