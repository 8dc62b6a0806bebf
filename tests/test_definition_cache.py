"""Unit tests for cache/store.py -- DefinitionCache TTL behaviour and seeding."""

from unittest.mock import patch

from cache.store import DefinitionCache
from core.normalizer import normalize

DEF_ID = "/providers/Microsoft.Authorization/policyDefinitions/Deny-Public-IP"


def _cache(ttl=3600) -> DefinitionCache:
    return DefinitionCache(":memory:", ttl=ttl)


class TestDefinitionCache:
    def test_set_and_get(self):
        cache = _cache()
        cache.set_definition(DEF_ID, {"effect": "Deny", "category": "Network"})
        assert cache.get_definition(DEF_ID) == {"effect": "Deny", "category": "Network"}

    def test_ids_are_case_insensitive(self):
        cache = _cache()
        cache.set_definition(DEF_ID, {"effect": "Deny"})
        assert cache.get_definition(DEF_ID.upper()) == {"effect": "Deny"}

    def test_miss_returns_none(self):
        cache = _cache()
        assert cache.get_definition("nope") is None
        assert cache.get_definition("") is None

    def test_expired_entry_is_dropped_on_read(self):
        cache = _cache(ttl=60)
        with patch("cache.store.time.time", return_value=1000.0):
            cache.set_definition(DEF_ID, {"effect": "Deny"})
        with patch("cache.store.time.time", return_value=1061.0):
            assert cache.get_definition(DEF_ID) is None
        assert cache.count() == 0

    def test_seed_and_purge(self):
        cache = _cache(ttl=60)
        with patch("cache.store.time.time", return_value=1000.0):
            assert cache.seed({"d1": {"effect": "Audit"}, "d2": {"effect": "Modify"}, "": {}}) == 2
        with patch("cache.store.time.time", return_value=1030.0):
            cache.set_definition("d3", {"effect": "Deny"})
        with patch("cache.store.time.time", return_value=1070.0):
            assert cache.purge_expired() == 2
        assert cache.count() == 1

    def test_usable_as_definition_lookup(self):
        cache = _cache()
        cache.set_definition(DEF_ID, {"displayName": "Deny public IP", "category": "Network", "effect": "deny"})
        record = normalize(
            {
                "name": "a1",
                "scope": "/subscriptions/1111",
                "policyDefinitionId": DEF_ID,
            },
            cache,
        )
        assert record.effect == "Deny"
        assert record.category == "Network"
        cache.close()
