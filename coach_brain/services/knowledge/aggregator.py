"""
User Knowledge Base

Fans out to every domain collector, merges the results into one
UserKnowledge snapshot and caches it.

Loading rules:
- A cached snapshot short-circuits everything (no collector is called).
- Concurrent cold loads for the same user share one in-flight computation.
- Profile and collectors run concurrently. Each collector has a deadline.
  A failed or timed-out collector costs only its own domain, which falls
  back to its default value with a WARNING. The profile is the only read
  whose failure fails the load.
- Domain slices still fresh in the cache are reused; freshly collected
  slices are written back under their domain key.
- The cached snapshot is tagged with every domain and never outlives the
  shortest domain TTL, so invalidating or expiring any domain sends the
  next load back through the collectors (which reuse the surviving slices).
- The raw profile row is cached next to the snapshot; every path that
  sets the current snapshot also sets the raw profile of that same user.

One instance per user session. The instance remembers the last snapshot it
produced so get_user_knowledge() / get_today_data() are synchronous reads.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from coach_brain.core.cache import CacheManager, knowledge_cache_key, profile_cache_key, slice_cache_key
from coach_brain.core.clock import Clock, utc_now
from coach_brain.core.config import settings
from coach_brain.core.database import DataStore, Row
from coach_brain.core.domains import Domain
from coach_brain.core.exceptions import (
    CollectorError,
    CollectorTimeout,
    KnowledgeNotLoadedError,
    ProfileLoadError,
)
from coach_brain.core.logging import log_context
from coach_brain.core.singleflight import SingleFlight
from coach_brain.services.knowledge.collectors import BaseCollector, build_collectors
from coach_brain.services.knowledge.completeness import completeness_score
from coach_brain.services.knowledge.models import (
    DOMAIN_ATTRIBUTES,
    KnowledgeModel,
    ProfileKnowledge,
    TodayData,
    UserKnowledge,
    default_knowledge,
)
from coach_brain.services.knowledge.profile import ProfileLoader

logger = logging.getLogger(__name__)

# (snapshot, raw profile row)
LoadResult = Tuple[UserKnowledge, Optional[Row]]


# =============================================================================
# COLLECTOR OUTCOMES
# =============================================================================

OUTCOME_COLLECTED = "collected"
OUTCOME_CACHED = "cached"
OUTCOME_FAILED = "failed"
OUTCOME_TIMED_OUT = "timed_out"


@dataclass
class CollectorOutcome:
    """What happened to one domain during a load."""
    domain: Domain
    status: str
    value: Optional[KnowledgeModel] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status in (OUTCOME_COLLECTED, OUTCOME_CACHED)


# =============================================================================
# KNOWLEDGE BASE
# =============================================================================

class UserKnowledgeBase:
    """Per-session facade over collectors, profile loader and cache."""

    def __init__(
        self,
        store: DataStore,
        cache: CacheManager,
        collectors: Optional[Dict[Domain, BaseCollector]] = None,
        profile_loader: Optional[ProfileLoader] = None,
        single_flight: Optional[SingleFlight] = None,
        clock: Optional[Clock] = None,
        collector_timeout_s: Optional[float] = None,
    ):
        self.store = store
        self.cache = cache
        self.clock = clock or utc_now
        self.collectors = collectors if collectors is not None else build_collectors(store, self.clock)
        self.profile_loader = profile_loader or ProfileLoader(store, clock=self.clock)
        self.single_flight = single_flight or SingleFlight()
        self.collector_timeout_s = (
            collector_timeout_s if collector_timeout_s is not None else settings.COLLECTOR_TIMEOUT_S
        )

        self._current: Optional[UserKnowledge] = None
        self._raw_profile: Optional[Row] = None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_user_knowledge(self) -> UserKnowledge:
        if self._current is None:
            raise KnowledgeNotLoadedError()
        return self._current

    def get_raw_profile(self) -> Optional[Row]:
        return self._raw_profile

    def get_today_data(self) -> Optional[TodayData]:
        if self._current is None:
            return None
        return self._current.today

    @property
    def is_loaded(self) -> bool:
        return self._current is not None

    # -------------------------------------------------------------------------
    # Load
    # -------------------------------------------------------------------------

    async def load_user_knowledge(self, user_id: str) -> UserKnowledge:
        key = knowledge_cache_key(user_id)
        result = self._cached(user_id)
        if result is not None:
            logger.info(f"Knowledge for {user_id} loaded from cache")
        else:
            result = await self.single_flight.do(key, lambda: self._load_and_cache(user_id))

        knowledge, raw_profile = result
        self._current = knowledge
        self._raw_profile = raw_profile
        return knowledge

    def _cached(self, user_id: str) -> Optional[LoadResult]:
        """Snapshot and raw profile from the cache, or None unless both are live."""
        knowledge = self.cache.get(knowledge_cache_key(user_id))
        if knowledge is None:
            return None
        profile_entry = self.cache.get_entry(profile_cache_key(user_id))
        if profile_entry is None:
            return None
        return knowledge, profile_entry.data

    def snapshot_ttl(self) -> timedelta:
        """Top-level TTL, capped by the shortest TTL of any domain in the snapshot."""
        ttl = timedelta(seconds=settings.KNOWLEDGE_CACHE_TTL_S)
        return min([ttl] + [self.cache.ttl_for(domain) for domain in DOMAIN_ATTRIBUTES])

    async def _load_and_cache(self, user_id: str) -> LoadResult:
        # Another flight may have filled the cache between our miss and now
        cached = self._cached(user_id)
        if cached is not None:
            return cached

        started = time.monotonic()
        logger.info(f"Loading user knowledge for {user_id}")

        domains = list(self.collectors)
        results = await asyncio.gather(
            self._load_profile(user_id),
            *(self._collect_domain(user_id, domain) for domain in domains),
            return_exceptions=True,
        )

        profile_result = results[0]
        if isinstance(profile_result, BaseException):
            # ProfileLoadError (or something unexpected) fails the whole load
            raise profile_result
        profile, raw_profile = profile_result

        outcomes: List[CollectorOutcome] = []
        for domain, result in zip(domains, results[1:]):
            if isinstance(result, BaseException):
                # _collect_domain never raises, but gather must not lose a domain
                result = CollectorOutcome(domain, OUTCOME_FAILED, error=result)
            outcomes.append(result)

        knowledge = self._assemble(user_id, profile, outcomes)
        ttl = self.snapshot_ttl()
        self.cache.set(knowledge_cache_key(user_id), knowledge, ttl=ttl, tags=DOMAIN_ATTRIBUTES)
        self.cache.set(profile_cache_key(user_id), raw_profile, ttl=ttl)

        failed = [o.domain.value for o in outcomes if not o.ok]
        elapsed_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            f"Knowledge loaded for {user_id} in {elapsed_ms}ms",
            extra=log_context(
                user_id,
                load_time_ms=elapsed_ms,
                completeness={d.value: s for d, s in knowledge.completeness.items()},
                failed_domains=failed,
                today_activities=knowledge.today.total_activities,
            ),
        )
        return knowledge, raw_profile

    async def _load_profile(self, user_id: str) -> Tuple[ProfileKnowledge, Optional[Row]]:
        try:
            return await asyncio.wait_for(self.profile_loader.load(user_id), timeout=self.collector_timeout_s)
        except asyncio.TimeoutError as e:
            logger.error(
                f"Profile read for {user_id} timed out after {self.collector_timeout_s}s",
                extra=log_context(user_id, timeout_s=self.collector_timeout_s),
            )
            raise ProfileLoadError(user_id, e) from e

    async def _collect_domain(self, user_id: str, domain: Domain) -> CollectorOutcome:
        """Run one collector (or reuse its cached slice). Never raises."""
        slice_key = slice_cache_key(user_id, domain)
        cached = self.cache.get(slice_key)
        if cached is not None:
            return CollectorOutcome(domain, OUTCOME_CACHED, value=cached)

        try:
            value = await self._run_collector(user_id, domain)
        except CollectorTimeout as e:
            return CollectorOutcome(domain, OUTCOME_TIMED_OUT, error=e)
        except Exception as e:
            return CollectorOutcome(domain, OUTCOME_FAILED, error=e)

        self.cache.set(slice_key, value)
        return CollectorOutcome(domain, OUTCOME_COLLECTED, value=value)

    async def _run_collector(self, user_id: str, domain: Domain) -> KnowledgeModel:
        collector = self.collectors[domain]
        try:
            return await asyncio.wait_for(collector.collect(user_id), timeout=self.collector_timeout_s)
        except asyncio.TimeoutError as e:
            raise CollectorTimeout(domain.value, self.collector_timeout_s) from e

    def _resolve(self, user_id: str, outcome: CollectorOutcome) -> KnowledgeModel:
        if outcome.status in (OUTCOME_COLLECTED, OUTCOME_CACHED):
            return outcome.value
        context = log_context(user_id, outcome.domain, outcome=outcome.status)
        if outcome.status == OUTCOME_TIMED_OUT:
            logger.warning(
                f"Collector {outcome.domain.value} timed out after {self.collector_timeout_s}s, using defaults",
                extra=context,
            )
        elif outcome.status == OUTCOME_FAILED:
            logger.warning(
                f"Failed to load {outcome.domain.value} data, using defaults: {outcome.error}", extra=context
            )
        else:
            logger.warning(
                f"Unexpected outcome {outcome.status} for {outcome.domain.value}, using defaults", extra=context
            )
        return default_knowledge(outcome.domain)

    def _assemble(
        self,
        user_id: str,
        profile: ProfileKnowledge,
        outcomes: List[CollectorOutcome],
    ) -> UserKnowledge:
        now = self.clock()
        slices: Dict[str, Any] = {
            attribute: default_knowledge(domain) for domain, attribute in DOMAIN_ATTRIBUTES.items()
        }
        last_updated: Dict[Domain, datetime] = {}
        completeness: Dict[Domain, int] = {}

        for outcome in outcomes:
            value = self._resolve(user_id, outcome)
            slices[DOMAIN_ATTRIBUTES[outcome.domain]] = value
            last_updated[outcome.domain] = now
            completeness[outcome.domain] = completeness_score(value)

        for domain in DOMAIN_ATTRIBUTES:
            last_updated.setdefault(domain, now)
            completeness.setdefault(domain, completeness_score(slices[DOMAIN_ATTRIBUTES[domain]]))

        return UserKnowledge(
            user_id=user_id,
            profile=profile,
            last_updated=last_updated,
            completeness=completeness,
            loaded_at=now,
            **slices,
        )

    # -------------------------------------------------------------------------
    # Refresh / invalidate
    # -------------------------------------------------------------------------

    async def refresh_forge(self, user_id: str, domain: Domain) -> UserKnowledge:
        """
        Re-collect a single domain and swap it into the current snapshot.

        Without a snapshot this is a full load. Only this user's slice of the
        domain is dropped from the cache; the cached snapshot is updated in
        place (same deadline) rather than evicted. Sibling slices and their
        metadata are carried over unchanged. A collector failure raises
        CollectorError and leaves the current snapshot in place.
        """
        domain = Domain.parse(domain)
        logger.info(f"Refreshing {domain.value} data for {user_id}")

        current = self._current
        if current is None or current.user_id != user_id:
            return await self.load_user_knowledge(user_id)

        self.cache.delete(slice_cache_key(user_id, domain))

        try:
            value = await self._run_collector(user_id, domain)
        except CollectorError:
            raise
        except Exception as e:
            raise CollectorError(domain.value, e) from e

        refreshed = current.with_slice(domain, value, completeness_score(value), self.clock())
        self.cache.set(slice_cache_key(user_id, domain), value)
        self.cache.update(knowledge_cache_key(user_id), refreshed)
        self._current = refreshed

        logger.info(
            f"Refreshed {domain.value} data for {user_id}",
            extra=log_context(user_id, domain, completeness=refreshed.completeness[domain]),
        )
        return refreshed

    def invalidate(self) -> None:
        """Forget the current snapshot and every cache entry of its user."""
        if self._current is not None:
            self.cache.invalidate_user(self._current.user_id)
        self._current = None
        self._raw_profile = None
