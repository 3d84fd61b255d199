"""
Page and car view analytics for a car-rental site.

Usage:
    from rental_analytics import AnalyticsConfig, setup_analytics

    analytics = setup_analytics(AnalyticsConfig.from_env())

    # Public tracking endpoints and admin dashboard
    app.include_router(analytics.tracking_router, prefix="/api")
    app.include_router(analytics.dashboard_router, prefix="/admin/analytics")

    # In templates: {{ analytics.tracking_script() | safe }}
"""

from typing import Callable, Optional

from fastapi import FastAPI

from .capture import CarViewCapture, PageViewCapture, TrackingTransport, tracking_script
from .config import AnalyticsConfig, ConfigError
from .core.auth import IdentityProvider, SupabaseAuth
from .core.client import AnalyticsClient
from .core.store import RestTableStore, TableStore
from .location import IpGeolocator
from .routes import create_dashboard_router, create_tracking_router

__version__ = "0.1.0"
__all__ = [
    "setup_analytics", "create_app", "Analytics",
    "AnalyticsConfig", "ConfigError", "AnalyticsClient",
    "PageViewCapture", "CarViewCapture", "TrackingTransport",
]

TRACKING_PREFIX = "/api"
DASHBOARD_PREFIX = "/admin/analytics"


class Analytics:
    """Main analytics interface for a site."""

    def __init__(
        self,
        config: AnalyticsConfig,
        store_factory: Optional[Callable[[], TableStore]] = None,
        report_store_factory: Optional[Callable[[], TableStore]] = None,
        identity: Optional[IdentityProvider] = None,
        geolocator: Optional[IpGeolocator] = None,
    ):
        self.config = config
        # Tracking writes with the anon key; reports read with the service key
        self.store_factory = store_factory or (
            lambda: RestTableStore(config.rest_url, config.supabase_anon_key)
        )
        self.report_store_factory = report_store_factory or store_factory or (
            lambda: RestTableStore(config.rest_url, config.report_key)
        )
        self.identity = identity or SupabaseAuth(config.auth_url, config.supabase_anon_key)
        self.tracking_router = create_tracking_router(
            config, self.store_factory, self.identity, geolocator=geolocator
        )
        self.dashboard_router = create_dashboard_router(
            config, self.report_store_factory, self.identity
        )

    def client(self) -> AnalyticsClient:
        """A report client over a fresh store."""
        return AnalyticsClient(self.report_store_factory(), max_rows=self.config.max_report_rows)

    def tracking_script(self, endpoint_base: str = TRACKING_PREFIX) -> str:
        """Generate the tracking script HTML for templates."""
        return tracking_script(
            endpoint_base=endpoint_base,
            page_dwell_seconds=self.config.page_dwell_seconds,
            car_dwell_seconds=self.config.car_dwell_seconds,
            excluded_prefixes=self.config.excluded_path_prefixes,
            enabled=self.config.tracking_enabled,
        )


def setup_analytics(
    config: AnalyticsConfig,
    store_factory: Optional[Callable[[], TableStore]] = None,
    identity: Optional[IdentityProvider] = None,
    geolocator: Optional[IpGeolocator] = None,
    report_store_factory: Optional[Callable[[], TableStore]] = None,
) -> Analytics:
    """
    Set up analytics for a site.

    Args:
        config: Analytics configuration
        store_factory: Builds the store for tracking writes. Defaults to the
                       hosted table API with the anon key.
        identity: Resolves access tokens to user ids. Defaults to the
                  hosted auth API.
        geolocator: IP resolver. Defaults to config.geolocation_url.
        report_store_factory: Builds the store for dashboard reads. Defaults
                              to store_factory if given, else the hosted
                              table API with the service role key.

    Returns:
        Analytics instance with tracking_router, dashboard_router and
        tracking_script()
    """
    return Analytics(
        config,
        store_factory=store_factory,
        report_store_factory=report_store_factory,
        identity=identity,
        geolocator=geolocator,
    )


def create_app(config: Optional[AnalyticsConfig] = None, **kwargs) -> FastAPI:
    """Build a FastAPI app serving the tracking API and the dashboard.

    Keyword arguments are passed to setup_analytics().
    """
    analytics = setup_analytics(config or AnalyticsConfig.from_env(), **kwargs)
    app = FastAPI(title="Rental Analytics", version=__version__)
    app.include_router(analytics.tracking_router, prefix=TRACKING_PREFIX)
    app.include_router(analytics.dashboard_router, prefix=DASHBOARD_PREFIX)
    app.state.analytics = analytics
    return app
