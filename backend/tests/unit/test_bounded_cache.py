"""Tests for BoundedLRUCache."""

import pytest

from utils.bounded_cache import BoundedLRUCache


class TestBoundedLRUCache:
    def test_get_missing_returns_none(self):
        assert BoundedLRUCache(2).get("a") is None

    def test_evicts_least_recently_used(self):
        cache = BoundedLRUCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_put_replaces_existing(self):
        cache = BoundedLRUCache(2)
        cache.put("a", 1)
        cache.put("a", 2)

        assert cache.get("a") == 2
        assert len(cache) == 1

    def test_clear(self):
        cache = BoundedLRUCache(2)
        cache.put("a", 1)
        cache.clear()

        assert len(cache) == 0

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            BoundedLRUCache(0)
