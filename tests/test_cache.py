# tests/test_cache.py

import threading

import pytest

from flowmend.errors import CacheError
from flowmend.model.results import CacheEntry, RepairOutcome
from flowmend.repair import cache as cache_mod
from flowmend.repair.cache import ValidationCache, document_hash, get_validation_cache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _outcome(name="wf"):
    return RepairOutcome(success=True, workflow={"name": name}, attempts=1, history=[], validated=True)


def test_hash_ignores_key_order():
    a = {"name": "x", "nodes": [{"name": "A", "type": "t"}], "connections": {}}
    b = {"connections": {}, "nodes": [{"type": "t", "name": "A"}], "name": "x"}
    assert document_hash(a) == document_hash(b)
    assert len(document_hash(a)) == 64
    assert document_hash(a) != document_hash({**a, "name": "y"})


def test_hit_and_miss_are_counted():
    c = ValidationCache()
    assert c.get("k") is None
    c.set("k", _outcome())
    assert c.get("k").workflow == {"name": "wf"}
    assert c.stats() == {"size": 1, "hits": 1, "misses": 1, "hitRate": 50.0}


def test_entries_expire_after_ttl():
    clock = FakeClock()
    c = ValidationCache(ttl_minutes=1, clock=clock)
    c.set("k", _outcome())

    clock.now += 59
    assert c.get("k") is not None
    clock.now += 2
    assert c.get("k") is None
    assert len(c) == 0
    assert c.stats()["misses"] == 1


def test_lru_eviction_at_capacity():
    c = ValidationCache(max_size=2)
    c.set("a", _outcome("a"))
    c.set("b", _outcome("b"))
    c.get("a")  # "b" is now least recently used
    c.set("c", _outcome("c"))

    assert len(c) == 2
    assert c.get("b") is None
    assert c.get("a").workflow == {"name": "a"}
    assert c.get("c").workflow == {"name": "c"}


def test_overwrite_keeps_size():
    c = ValidationCache(max_size=2)
    c.set("a", _outcome("old"))
    c.set("a", _outcome("new"))
    assert len(c) == 1
    assert c.get("a").workflow == {"name": "new"}


def test_clear_resets_counters():
    c = ValidationCache()
    c.set("a", _outcome())
    c.get("a")
    c.get("b")
    c.clear()
    assert c.stats() == {"size": 0, "hits": 0, "misses": 0, "hitRate": 0.0}


def test_empty_outcomes_are_rejected():
    c = ValidationCache()
    with pytest.raises(CacheError):
        c.set("k", None)
    c._entries["bad"] = CacheEntry(key="bad", result=None, created_at=c._clock())
    with pytest.raises(CacheError):
        c.get("bad")


def test_size_must_be_positive():
    with pytest.raises(ValueError):
        ValidationCache(max_size=0)


def test_concurrent_access():
    c = ValidationCache(max_size=50)

    def worker(n):
        for i in range(200):
            key = f"{n}-{i % 60}"
            c.set(key, _outcome(key))
            c.get(key)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = c.stats()
    assert stats["size"] <= 50
    assert stats["hits"] + stats["misses"] == 8 * 200


def test_shared_cache_is_a_singleton(monkeypatch):
    monkeypatch.setattr(cache_mod, "_shared", None)
    first = get_validation_cache(max_size=7)
    assert get_validation_cache(max_size=99) is first
    assert first.max_size == 7


def test_entries_are_copied_in_and_out():
    c = ValidationCache()
    stored = _outcome()
    c.set("k", stored)
    stored.workflow["name"] = "changed after set"

    got = c.get("k")
    assert got.workflow == {"name": "wf"}
    got.workflow["name"] = "changed after get"
    got.history.append("x")
    assert c.get("k").workflow == {"name": "wf"}
    assert c.get("k").history == []
