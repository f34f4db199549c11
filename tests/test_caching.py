"""Tests for the bounded MRU cache."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from lemmatag.caching import IdentityKey, MRUCache


class TestMRUCache:
    """Tests for MRUCache."""

    def test_hit_does_not_rebuild(self) -> None:
        calls = []
        cache = MRUCache(lambda key: calls.append(key) or key.upper(), capacity=4)

        assert cache.get("a") == "A"
        assert cache.get("a") == "A"
        assert calls == ["a"]

    def test_evicts_least_recently_used(self) -> None:
        cache = MRUCache(str.upper, capacity=2)
        cache.get("a")
        cache.get("b")
        cache.get("a")
        cache.get("c")

        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_identity_keys(self) -> None:
        """Equal but distinct inputs get distinct entries."""
        cache = MRUCache(len, capacity=4, key=IdentityKey)
        first, second = ["x"], ["x"]

        cache.get(first)

        assert first in cache
        assert second not in cache

    def test_concurrent_misses_store_one_value(self) -> None:
        cache = MRUCache(lambda key: object(), capacity=8)

        with ThreadPoolExecutor(max_workers=8) as executor:
            values = list(executor.map(lambda _: cache.get("k"), range(32)))

        assert values[-1] is cache.get("k")
        assert len(cache) == 1

    def test_clear(self) -> None:
        cache = MRUCache(str.upper, capacity=2)
        cache.get("a")

        cache.clear()

        assert len(cache) == 0

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            MRUCache(str.upper, capacity=0)
