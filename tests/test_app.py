"""Tests for the package entry points."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from rental_analytics import Analytics, AnalyticsConfig, create_app, setup_analytics
from rental_analytics.core.auth import StaticIdentity, SupabaseAuth
from rental_analytics.core.store import MemoryTableStore, RestTableStore
from rental_analytics.location import LOCAL_LOCATION


@pytest.fixture
def config():
    return AnalyticsConfig(
        supabase_url="https://db.test",
        supabase_anon_key="anon",
        supabase_service_role_key="service",
    )


class TestSetupAnalytics:
    """Test wiring of the Analytics bundle."""

    def test_default_collaborators(self, config):
        """Defaults use Supabase auth and REST stores with the right keys."""
        analytics = setup_analytics(config)
        assert isinstance(analytics, Analytics)
        assert isinstance(analytics.identity, SupabaseAuth)

        tracking_store = analytics.store_factory()
        report_store = analytics.report_store_factory()
        assert isinstance(tracking_store, RestTableStore)
        assert tracking_store.api_key == "anon"
        assert report_store.api_key == "service"
        assert report_store.rest_url == "https://db.test/rest/v1"

    def test_store_factory_builds_fresh_stores(self, config):
        """Each call builds a new store."""
        analytics = setup_analytics(config)
        assert analytics.store_factory() is not analytics.store_factory()

    def test_custom_store_used_for_reports(self, config):
        """A given store factory backs the report client."""
        store = MemoryTableStore()
        analytics = setup_analytics(config, store_factory=lambda: store)
        assert analytics.client().store is store

    def test_tracking_script_uses_config(self, config):
        """The script reflects configured dwell and base path."""
        config.page_dwell_seconds = 0.3
        script = setup_analytics(config).tracking_script()
        assert '"pageDwell": 300' in script
        assert '"base": "/api"' in script

    def test_tracking_script_disabled(self, config):
        """Disabled tracking renders no script."""
        config.tracking_enabled = False
        assert setup_analytics(config).tracking_script() == ""


class TestCreateApp:
    """Test the standalone app factory."""

    def test_routes_mounted(self, config):
        """Tracking and dashboard routes are both reachable."""
        store = MemoryTableStore({"users": [{"id": "admin-1", "role": "admin"}]})
        geolocator = AsyncMock()
        geolocator.lookup = AsyncMock(return_value=LOCAL_LOCATION)
        app = create_app(
            config,
            store_factory=lambda: store,
            identity=StaticIdentity("admin-1"),
            geolocator=geolocator,
        )
        client = TestClient(app)

        response = client.post("/api/track-car-view", json={"carId": "car-1"})
        assert response.status_code == 200
        assert store.tables["car_views"][0]["country"] == "Local"

        response = client.get("/admin/analytics/api/car-views", params={"period": "7d"})
        assert response.status_code == 200
        assert response.json()["totalViews"] == 1
