"""Unit tests for the versioned-prefix cache."""

from __future__ import annotations

import pytest
from django.core.cache import cache

from modules.core.cache import VersionedCache

pytestmark = pytest.mark.unit


@pytest.fixture()
def versioned():
    return VersionedCache(cache)


class TestPrefixes:
    def test_initial_prefix_is_version_one(self, versioned):
        assert versioned.get_prefix("orders") == "orders_1_"

    def test_bump_changes_prefix(self, versioned):
        before = versioned.get_prefix("orders")
        versioned.bump_prefix("orders")
        assert versioned.get_prefix("orders") != before

    def test_bump_without_stored_version_invalidates_version_one(self, versioned):
        assert versioned.bump_prefix("counts") == 2
        assert versioned.get_prefix("counts") == "counts_2_"

    def test_namespaces_are_independent(self, versioned):
        versioned.bump_prefix("orders")
        assert versioned.get_prefix("counts") == "counts_1_"


class TestKeyedAccess:
    def test_value_built_from_old_prefix_is_not_read_after_bump(self, versioned):
        versioned.set("total", 5, versioned.get_prefix("orders"))
        versioned.bump_prefix("orders")
        assert versioned.get("total", versioned.get_prefix("orders")) is None

    def test_falsy_values_are_returned(self, versioned):
        versioned.set("count", 0, "counts")
        assert versioned.get("count", "counts", default="missing") == 0

    def test_delete(self, versioned):
        versioned.set("key", "value", "ns")
        versioned.delete("key", "ns")
        assert versioned.get("key", "ns") is None

    def test_delete_raw_removes_unnamespaced_key(self, versioned):
        cache.set("wc_admin_report", {"rows": 1})
        versioned.delete_raw("wc_admin_report")
        assert cache.get("wc_admin_report") is None


class TestTransientVersion:
    def test_version_is_stable_until_refreshed(self, versioned):
        first = versioned.get_transient_version("orders")
        assert versioned.get_transient_version("orders") == first

    def test_refresh_changes_version(self, versioned):
        first = versioned.get_transient_version("orders")
        assert versioned.get_transient_version("orders", refresh=True) != first
