"""
In-process TTL cache for knowledge snapshots and domain slices.

- Lazy expiry: an entry is valid while now - created_at <= ttl, checked on read
- Structured keys: CacheKey(namespace, user_id, domain, subkey), no substring matching
- Domain tags: a slice is tagged with its own domain, a snapshot with every
  domain it was assembled from; the domain -> keys index makes
  invalidate_forge() a set lookup that also drops snapshots holding that domain
- Event-driven invalidation via the static INVALIDATION_RULES table
- Thread-safe (RLock); callers may hit it from the event loop and worker threads

Usage:
    cache = CacheManager()
    cache.set(knowledge_cache_key(user_id), snapshot, ttl=300, tags=Domain)
    snapshot = cache.get(knowledge_cache_key(user_id))
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Set, Union

from coach_brain.core.clock import Clock, utc_now
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain

logger = logging.getLogger(__name__)

KNOWLEDGE_NAMESPACE = "knowledge"
SLICE_NAMESPACE = "slice"
PROFILE_NAMESPACE = "profile"


class CacheKey(NamedTuple):
    namespace: str
    user_id: str
    domain: Optional[Domain] = None
    subkey: Optional[str] = None

    def __str__(self) -> str:
        parts = [self.namespace]
        if self.domain is not None:
            parts.append(self.domain.value)
        parts.append(self.user_id)
        if self.subkey:
            parts.append(self.subkey)
        return ":".join(parts)


def knowledge_cache_key(user_id: str) -> CacheKey:
    """Top-level snapshot key, rendered as "knowledge:<user_id>"."""
    return CacheKey(KNOWLEDGE_NAMESPACE, user_id)


def slice_cache_key(user_id: str, domain: Domain) -> CacheKey:
    return CacheKey(SLICE_NAMESPACE, user_id, domain)


def profile_cache_key(user_id: str) -> CacheKey:
    """Raw profile row loaded alongside the snapshot."""
    return CacheKey(PROFILE_NAMESPACE, user_id)


@dataclass
class CacheEntry:
    key: CacheKey
    data: Any
    created_at: datetime
    ttl: timedelta
    tags: FrozenSet[Domain] = frozenset()

    def is_valid(self, now: datetime) -> bool:
        return now - self.created_at <= self.ttl


@dataclass(frozen=True)
class CacheInvalidationRule:
    domain: Domain
    events: FrozenSet[str]
    ttl: timedelta


def _rule(domain: Domain, ttl_s: int, *events: str) -> CacheInvalidationRule:
    return CacheInvalidationRule(domain=domain, events=frozenset(events), ttl=timedelta(seconds=ttl_s))


def build_invalidation_rules() -> Dict[Domain, CacheInvalidationRule]:
    """Default TTL and triggering upstream tables/events per domain."""
    rules = [
        _rule(Domain.TRAINING, settings.CACHE_TTL_TRAINING_S,
              "training_sessions", "training_exercise_load_history",
              "training_personal_records", "training_goals", "user_exercise_preferences"),
        _rule(Domain.EQUIPMENT, settings.CACHE_TTL_EQUIPMENT_S,
              "training_locations", "training_location_equipment_detections"),
        _rule(Domain.NUTRITION, settings.CACHE_TTL_NUTRITION_S,
              "meals", "meal_plans", "user_preferences"),
        _rule(Domain.FASTING, settings.CACHE_TTL_FASTING_S, "fasting_sessions"),
        _rule(Domain.BODY_SCAN, settings.CACHE_TTL_BODY_SCAN_S, "body_scans"),
        _rule(Domain.ENERGY, settings.CACHE_TTL_ENERGY_S, "activities", "connected_devices"),
        _rule(Domain.TEMPORAL, settings.CACHE_TTL_TEMPORAL_S, "training_sessions"),
        _rule(Domain.TODAY, settings.CACHE_TTL_TODAY_S,
              "training_sessions", "meals", "fasting_sessions", "body_scans"),
        _rule(Domain.PERINATAL, settings.CACHE_TTL_PERINATAL_S, "breastfeeding_tracking"),
    ]
    return {rule.domain: rule for rule in rules}


INVALIDATION_RULES: Dict[Domain, CacheInvalidationRule] = build_invalidation_rules()


@dataclass(frozen=True)
class CacheStats:
    total: int
    fresh: int
    expired: int

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "fresh": self.fresh, "expired": self.expired}


TTL = Union[int, float, timedelta]


def _as_timedelta(ttl: TTL) -> timedelta:
    if isinstance(ttl, timedelta):
        return ttl
    return timedelta(seconds=ttl)


class CacheManager:
    """
    Keyed TTL store shared by every load/refresh call.

    Entries are only removed lazily (expired read), explicitly (delete,
    invalidate_*) or by clear_all(). There is no background sweep.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        rules: Optional[Dict[Domain, CacheInvalidationRule]] = None,
        default_ttl: Optional[TTL] = None,
    ):
        self._clock = clock or utc_now
        self._rules = rules if rules is not None else INVALIDATION_RULES
        self._default_ttl = _as_timedelta(
            default_ttl if default_ttl is not None else settings.CACHE_TTL_DEFAULT_S
        )
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._domain_index: Dict[Domain, Set[CacheKey]] = {}
        self._lock = threading.RLock()

    @property
    def rules(self) -> Dict[Domain, CacheInvalidationRule]:
        return self._rules

    def ttl_for(self, domain: Optional[Domain]) -> timedelta:
        rule = self._rules.get(domain) if domain is not None else None
        return rule.ttl if rule else self._default_ttl

    def get(self, key: CacheKey) -> Optional[Any]:
        """Return cached data, or None if absent or expired (expired entries are evicted)."""
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def get_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        """Like get() but returns the live entry with its metadata (data may be None)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Cache miss: {key}")
                return None
            if not entry.is_valid(self._clock()):
                self._remove(key)
                logger.debug(f"Cache expired: {key}")
                return None
            logger.debug(f"Cache hit: {key}")
            return entry

    def set(
        self,
        key: CacheKey,
        data: Any,
        ttl: Optional[TTL] = None,
        tags: Optional[Iterable[Domain]] = None,
    ) -> CacheEntry:
        """
        Store `data` under `key`.

        ttl=None uses the rule TTL of the key's domain (default TTL otherwise).
        The entry is tagged with the key's domain plus `tags`; invalidating any
        of those domains removes it.
        """
        ttl_delta = _as_timedelta(ttl) if ttl is not None else self.ttl_for(key.domain)
        entry_tags = set(tags or ())
        if key.domain is not None:
            entry_tags.add(key.domain)
        entry = CacheEntry(
            key=key, data=data, created_at=self._clock(), ttl=ttl_delta, tags=frozenset(entry_tags),
        )
        with self._lock:
            self._remove(key)
            self._entries[key] = entry
            for domain in entry.tags:
                self._domain_index.setdefault(domain, set()).add(key)
        return entry

    def update(self, key: CacheKey, data: Any) -> bool:
        """
        Replace the payload of a live entry, keeping created_at and ttl.

        Returns False (and stores nothing) when the key is absent or expired.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if not entry.is_valid(self._clock()):
                self._remove(key)
                return False
            entry.data = data
            return True

    def delete(self, key: CacheKey) -> bool:
        with self._lock:
            return self._remove(key)

    def invalidate_forge(self, domain: Domain) -> int:
        """Remove every entry tagged with `domain` (its slices and the snapshots holding it)."""
        domain = Domain.parse(domain)
        with self._lock:
            keys = list(self._domain_index.get(domain, ()))
            for key in keys:
                self._remove(key)
        logger.info(f"Invalidated {len(keys)} cache entries for domain {domain.value}")
        return len(keys)

    def invalidate_user(self, user_id: str) -> int:
        """Remove every entry belonging to one user."""
        with self._lock:
            keys = [key for key in self._entries if key.user_id == user_id]
            for key in keys:
                self._remove(key)
        logger.info(f"Invalidated {len(keys)} cache entries for user {user_id}")
        return len(keys)

    def handle_event(self, event_name: str) -> int:
        """Invalidate every domain whose rule is triggered by `event_name`."""
        domains = [rule.domain for rule in self._rules.values() if event_name in rule.events]
        if not domains:
            logger.debug(f"No invalidation rule for event {event_name}")
            return 0
        return sum(self.invalidate_forge(domain) for domain in domains)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()
            self._domain_index.clear()
        logger.info("Cache cleared")

    def keys(self) -> List[CacheKey]:
        with self._lock:
            return list(self._entries)

    def get_stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            fresh = sum(1 for entry in self._entries.values() if entry.is_valid(now))
        return CacheStats(total=total, fresh=fresh, expired=total - fresh)

    def is_healthy(self) -> bool:
        stats = self.get_stats()
        return stats.fresh > 0 or stats.total == 0

    def _remove(self, key: CacheKey) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for domain in entry.tags:
            indexed = self._domain_index.get(domain)
            if indexed is not None:
                indexed.discard(key)
                if not indexed:
                    del self._domain_index[domain]
        return True
