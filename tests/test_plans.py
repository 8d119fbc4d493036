"""
Tests for the plan catalog (table lookups, defaults, caching, admin edits).
"""

from unittest.mock import MagicMock, Mock
from folio.services.plans import DEFAULT_PLANS, PlanCatalog
from folio.utils.cache import TTLStore


def _client_with_row(row):
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value \
        .maybe_single.return_value.execute.return_value = Mock(data=row)
    return client


class TestPlanCatalog:

    def test_defaults_without_database(self, catalog):
        assert catalog.get("premium") == DEFAULT_PLANS["premium"]
        assert catalog.free().max_media == 5

    def test_unknown_type_is_free(self, catalog):
        assert catalog.get("platinum").plan_type == "free"

    def test_reads_table_and_caches(self):
        client = _client_with_row({"plan_type": "premium", "name": "Premium", "max_media": 75})
        catalog = PlanCatalog(lambda: client, TTLStore(ttl=60))

        first = catalog.get("premium")
        second = catalog.get("premium")

        assert first.max_media == 75
        # Missing columns fall back to the defaults
        assert first.featured_requests == 3
        assert second is first
        client.table.assert_called_once_with("subscription_plans")

    def test_missing_row_uses_default(self):
        catalog = PlanCatalog(lambda: _client_with_row(None))
        assert catalog.get("pro") == DEFAULT_PLANS["pro"]

    def test_database_error_uses_default(self):
        client = MagicMock()
        client.table.side_effect = Exception("connection refused")
        catalog = PlanCatalog(lambda: client)

        assert catalog.get("pro") == DEFAULT_PLANS["pro"]

    def test_all_lists_every_plan(self, catalog):
        assert [p.plan_type for p in catalog.all()] == ["free", "premium", "pro"]


class TestPlanUpdate:

    def test_update_clears_cache(self):
        client = _client_with_row({"plan_type": "premium", "max_media": 75})
        client.table.return_value.update.return_value.eq.return_value.execute.return_value = Mock(
            data=[{"plan_type": "premium", "max_media": 80}]
        )
        cache = TTLStore(ttl=60)
        catalog = PlanCatalog(lambda: client, cache)
        catalog.get("premium")

        plan, error = catalog.update("premium", {"max_media": 80, "plan_type": "ignored"})

        assert error is None
        assert plan.max_media == 80
        assert "premium" not in cache
        client.table.return_value.update.assert_called_once_with({"max_media": 80})

    def test_unknown_plan(self, catalog):
        plan, error = catalog.update("platinum", {"max_media": 1})

        assert plan is None
        assert "Unknown plan type" in error

    def test_no_editable_fields(self, catalog):
        assert catalog.update("pro", {"id": 3}) == (None, "No editable fields provided")

    def test_row_not_found(self):
        client = MagicMock()
        client.table.return_value.update.return_value.eq.return_value.execute.return_value = Mock(data=[])
        catalog = PlanCatalog(lambda: client)

        assert catalog.update("pro", {"max_media": 10}) == (None, "Plan not found")
