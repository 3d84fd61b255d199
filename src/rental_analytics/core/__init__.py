"""
Core analytics module.

Contains the data models, the table store, the write path (recorder) and
the read path (client) for view analytics.
"""

from .auth import IdentityProvider, StaticIdentity, SupabaseAuth
from .client import AnalyticsClient, dense_daily_series
from .models import (
    CarView,
    CarViewAnalytics,
    CarViewRequest,
    CarViewStats,
    ChartPoint,
    DeviceStats,
    LocationStats,
    PageAnalytics,
    PageDurationRequest,
    PageStats,
    PageView,
    PageViewRequest,
    RequestContext,
    TimeSeriesPoint,
    ViewSummary,
)
from .recorder import InvalidFieldError, MissingFieldError, ViewRecorder
from .store import MemoryTableStore, RestTableStore, StoreError, TableStore

__all__ = [
    "PageView", "CarView",
    "PageViewRequest", "PageDurationRequest", "CarViewRequest", "RequestContext",
    "TimeSeriesPoint", "ViewSummary", "ChartPoint",
    "PageStats", "LocationStats", "DeviceStats", "CarViewStats",
    "PageAnalytics", "CarViewAnalytics",
    "TableStore", "RestTableStore", "MemoryTableStore", "StoreError",
    "IdentityProvider", "StaticIdentity", "SupabaseAuth",
    "ViewRecorder", "MissingFieldError", "InvalidFieldError",
    "AnalyticsClient", "dense_daily_series",
]
