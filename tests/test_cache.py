"""
Tests for the knowledge CacheManager.

Covers:
- Lazy TTL expiry (never revives)
- Domain-tagged invalidation via the domain index
- update() keeps the original deadline
- Event-driven invalidation from the rules table
- Stats / health
"""

from datetime import timedelta

import pytest

from coach_brain.core.cache import (
    INVALIDATION_RULES,
    CacheKey,
    CacheManager,
    knowledge_cache_key,
    slice_cache_key,
)
from coach_brain.core.domains import Domain
from coach_brain.core.exceptions import UnknownDomainError


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

class TestCacheKeys:

    def test_knowledge_key_renders_as_flat_string(self):
        assert str(knowledge_cache_key("u1")) == "knowledge:u1"

    def test_slice_key_carries_domain(self):
        key = slice_cache_key("u1", Domain.BODY_SCAN)
        assert key.domain is Domain.BODY_SCAN
        assert str(key) == "slice:body-scan:u1"

    def test_subkey_is_appended(self):
        assert str(CacheKey("slice", "u1", Domain.TRAINING, "v2")) == "slice:training:u1:v2"


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

class TestExpiry:

    def test_fresh_entry_is_returned(self, cache, clock):
        key = knowledge_cache_key("u1")
        cache.set(key, {"x": 1}, ttl=60)
        clock.advance(seconds=60)
        assert cache.get(key) == {"x": 1}

    def test_expired_entry_returns_none_and_is_evicted(self, cache, clock):
        key = knowledge_cache_key("u1")
        cache.set(key, {"x": 1}, ttl=60)
        clock.advance(seconds=61)
        assert cache.get(key) is None
        assert key not in cache.keys()

    def test_expired_entry_never_revives(self, cache, clock):
        key = knowledge_cache_key("u1")
        cache.set(key, "data", ttl=timedelta(seconds=10))
        clock.advance(seconds=11)
        assert cache.get(key) is None
        clock.advance(seconds=-11)
        assert cache.get(key) is None

    @pytest.mark.parametrize("ttl_s,age_s,expected", [(5, 0, True), (5, 5, True), (5, 6, False), (0, 1, False)])
    def test_validity_boundary(self, cache, clock, ttl_s, age_s, expected):
        key = knowledge_cache_key("u1")
        cache.set(key, "data", ttl=ttl_s)
        clock.advance(seconds=age_s)
        assert (cache.get(key) is not None) is expected

    def test_domain_key_uses_rule_ttl(self, cache):
        entry = cache.set(slice_cache_key("u1", Domain.TODAY), "today")
        assert entry.ttl == INVALIDATION_RULES[Domain.TODAY].ttl
        assert entry.ttl == timedelta(minutes=2)

    def test_untagged_key_uses_default_ttl(self, clock):
        cache = CacheManager(clock=clock, default_ttl=42)
        entry = cache.set(knowledge_cache_key("u1"), "x")
        assert entry.ttl == timedelta(seconds=42)

    def test_rule_ttls_match_documented_defaults(self):
        minutes = {d: r.ttl.total_seconds() / 60 for d, r in INVALIDATION_RULES.items()}
        assert minutes == {
            Domain.TRAINING: 5,
            Domain.EQUIPMENT: 30,
            Domain.NUTRITION: 10,
            Domain.FASTING: 10,
            Domain.BODY_SCAN: 60,
            Domain.ENERGY: 15,
            Domain.TEMPORAL: 60,
            Domain.TODAY: 2,
            Domain.PERINATAL: 60,
        }


# ---------------------------------------------------------------------------
# update()
# ---------------------------------------------------------------------------

class TestUpdate:

    def test_update_keeps_created_at_and_ttl(self, cache, clock):
        key = knowledge_cache_key("u1")
        original = cache.set(key, "v1", ttl=300)
        clock.advance(seconds=200)

        assert cache.update(key, "v2") is True
        entry = cache.get_entry(key)
        assert entry.data == "v2"
        assert entry.created_at == original.created_at
        assert entry.ttl == timedelta(seconds=300)

        clock.advance(seconds=101)
        assert cache.get(key) is None

    def test_update_missing_key_stores_nothing(self, cache):
        key = knowledge_cache_key("u1")
        assert cache.update(key, "v") is False
        assert cache.get(key) is None

    def test_update_expired_key_stores_nothing(self, cache, clock):
        key = knowledge_cache_key("u1")
        cache.set(key, "v1", ttl=10)
        clock.advance(seconds=11)
        assert cache.update(key, "v2") is False
        assert cache.get(key) is None


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------

class TestInvalidation:

    def _fill(self, cache):
        cache.set(knowledge_cache_key("u1"), "snapshot-u1")
        cache.set(knowledge_cache_key("u2"), "snapshot-u2")
        for user in ("u1", "u2"):
            for domain in (Domain.TRAINING, Domain.NUTRITION, Domain.EQUIPMENT):
                cache.set(slice_cache_key(user, domain), f"{domain.value}-{user}")

    def test_invalidate_forge_removes_only_tagged_entries(self, cache):
        self._fill(cache)
        before = {key: cache.get_entry(key) for key in cache.keys()}

        removed = cache.invalidate_forge(Domain.NUTRITION)

        assert removed == 2
        remaining = set(cache.keys())
        assert all(key.domain is not Domain.NUTRITION for key in remaining)
        for key in remaining:
            entry = cache.get_entry(key)
            assert entry is before[key]
            assert entry.data == before[key].data

    def test_tagged_entry_is_removed_with_any_of_its_tags(self, cache):
        self._fill(cache)
        cache.set(knowledge_cache_key("u3"), "tagged", tags=[Domain.NUTRITION, Domain.TODAY])

        assert cache.get_entry(knowledge_cache_key("u3")).tags == {Domain.NUTRITION, Domain.TODAY}
        assert cache.invalidate_forge(Domain.TODAY) == 1
        assert cache.get(knowledge_cache_key("u3")) is None
        # untagged snapshots stay
        assert cache.get(knowledge_cache_key("u1")) == "snapshot-u1"

    def test_retagging_a_key_drops_its_old_tags(self, cache):
        cache.set(knowledge_cache_key("u1"), "v1", tags=[Domain.NUTRITION])
        cache.set(knowledge_cache_key("u1"), "v2")
        assert cache.invalidate_forge(Domain.NUTRITION) == 0
        assert cache.get(knowledge_cache_key("u1")) == "v2"

    def test_invalidate_forge_accepts_domain_string(self, cache):
        self._fill(cache)
        assert cache.invalidate_forge("body_scan") == 0
        assert cache.invalidate_forge("training") == 2

    def test_invalidate_forge_unknown_domain_raises(self, cache):
        with pytest.raises(UnknownDomainError):
            cache.invalidate_forge("knowledge")

    def test_domain_name_inside_user_id_is_not_matched(self, cache):
        cache.set(knowledge_cache_key("training-fan"), "snapshot")
        cache.set(slice_cache_key("u1", Domain.TRAINING), "slice")
        cache.invalidate_forge(Domain.TRAINING)
        assert cache.get(knowledge_cache_key("training-fan")) == "snapshot"

    def test_invalidate_user(self, cache):
        self._fill(cache)
        assert cache.invalidate_user("u1") == 4
        assert all(key.user_id == "u2" for key in cache.keys())

    def test_handle_event_invalidates_every_dependent_domain(self, cache):
        self._fill(cache)
        cache.set(slice_cache_key("u1", Domain.TEMPORAL), "temporal")
        cache.set(slice_cache_key("u1", Domain.TODAY), "today")

        removed = cache.handle_event("training_sessions")

        assert removed == 4  # 2 training + temporal + today
        assert cache.get(slice_cache_key("u1", Domain.NUTRITION)) is not None
        assert cache.get(slice_cache_key("u1", Domain.TRAINING)) is None

    def test_unknown_event_is_a_no_op(self, cache):
        self._fill(cache)
        assert cache.handle_event("unrelated_table") == 0
        assert len(cache.keys()) == 8

    def test_clear_all(self, cache):
        self._fill(cache)
        cache.clear_all()
        assert cache.keys() == []
        assert cache.invalidate_forge(Domain.TRAINING) == 0


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

class TestStats:

    def test_empty_cache_is_healthy(self, cache):
        assert cache.get_stats().to_dict() == {"total": 0, "fresh": 0, "expired": 0}
        assert cache.is_healthy() is True

    def test_stats_count_expired_entries_not_yet_evicted(self, cache, clock):
        cache.set(knowledge_cache_key("u1"), "a", ttl=10)
        cache.set(knowledge_cache_key("u2"), "b", ttl=100)
        clock.advance(seconds=50)

        stats = cache.get_stats()
        assert (stats.total, stats.fresh, stats.expired) == (2, 1, 1)
        assert cache.is_healthy() is True

    def test_only_expired_entries_is_unhealthy(self, cache, clock):
        cache.set(knowledge_cache_key("u1"), "a", ttl=10)
        clock.advance(seconds=11)
        assert cache.is_healthy() is False
