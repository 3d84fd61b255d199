"""
Pydantic models for analytics data.
"""
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Raw Data Models
# =============================================================================

class PageView(BaseModel):
    """A single page view row."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    page_path: str
    page_title: str | None = None

    # Session
    session_id: str | None = None
    user_id: str | None = None

    # Request
    ip_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None

    # Geography
    country: str | None = None
    city: str | None = None
    region: str | None = None

    # Technology
    device_type: str | None = None
    browser: str | None = None
    operating_system: str | None = None

    # Engagement (back-filled when the visit ends)
    duration_seconds: int | None = None
    is_bounce: bool | None = None
    exit_type: str | None = None

    visited_at: datetime


class CarView(BaseModel):
    """A single car detail view row."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    car_id: str
    session_id: str | None = None
    user_id: str | None = None

    ip_address: str | None = None
    user_agent: str | None = None

    country: str | None = None
    city: str | None = None
    region: str | None = None

    device_type: str | None = None
    browser: str | None = None
    operating_system: str | None = None

    viewed_at: datetime


# =============================================================================
# Tracking Request Bodies
# =============================================================================
# Fields are optional here so that missing required values surface as a
# 400 from the recorder instead of a schema error.

class _TrackingBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class PageViewRequest(_TrackingBody):
    """Body of POST /track-page-view."""
    page_path: str | None = Field(None, alias="pagePath")
    page_title: str | None = Field(None, alias="pageTitle")
    session_id: str | None = Field(None, alias="sessionId")
    start_time: datetime | None = Field(None, alias="startTime")


class PageDurationRequest(_TrackingBody):
    """Body of POST /track-page-duration."""
    page_path: str | None = Field(None, alias="pagePath")
    page_title: str | None = Field(None, alias="pageTitle")
    session_id: str | None = Field(None, alias="sessionId")
    duration: Any = None
    exit_type: str | None = Field(None, alias="exitType")
    page_view_id: str | None = Field(None, alias="pageViewId")


class CarViewRequest(_TrackingBody):
    """Body of POST /track-car-view."""
    car_id: str | None = Field(None, alias="carId")
    session_id: str | None = Field(None, alias="sessionId")


class RequestContext(BaseModel):
    """Server-side facts about the request that carried an event."""
    ip_address: str | None = None
    user_agent: str = ""
    referrer: str = ""
    user_id: str | None = None


# =============================================================================
# Write Results
# =============================================================================

class RecordedPageView(BaseModel):
    page_view_id: str
    session_id: str


class DurationResult(BaseModel):
    """Outcome of a duration back-fill.

    action is one of: updated (by id), matched (by session and path),
    inserted (duration-only row), skipped (nothing to match or insert).
    """
    action: str
    page_view_id: str | None = None
    is_bounce: bool


class RecordedCarView(BaseModel):
    car_id: str
    session_id: str


# =============================================================================
# Aggregated Stats Models
# =============================================================================

class TimeSeriesPoint(BaseModel):
    """Views for one day."""
    date: date
    views: int = 0
    visitors: int = 0


class ViewSummary(BaseModel):
    """Totals and a dense daily series for one page or car."""
    key: str
    days: int
    total_views: int = 0
    unique_visitors: int = 0
    series: list[TimeSeriesPoint] = Field(default_factory=list)


class PageStats(BaseModel):
    """Stats for a single page path."""
    page_path: str
    page_title: str | None = None
    total_views: int
    unique_visitors: int
    views_today: int = 0
    views_last_7_days: int = 0
    views_last_30_days: int = 0
    avg_duration_seconds: float | None = None
    avg_duration_minutes: float | None = None
    bounce_count: int = 0
    bounce_rate_percentage: float | None = None
    engaged_sessions: int = 0
    engagement_rate_percentage: float | None = None
    last_visited_at: datetime | None = None


class LocationStats(BaseModel):
    """Stats for a country/city/region triple."""
    country: str | None = None
    city: str | None = None
    region: str | None = None
    total_views: int
    unique_visitors: int
    views_last_7_days: int = 0


class DeviceStats(BaseModel):
    """Stats for a device/browser/OS triple."""
    device_type: str | None = None
    browser: str | None = None
    operating_system: str | None = None
    total_views: int
    unique_visitors: int
    views_last_7_days: int = 0


class CarViewStats(BaseModel):
    """Stats for a single car."""
    id: str
    name: str | None = None
    brand: str | None = None
    image_url: str | None = None
    total_views: int = 0
    views_last_7_days: int = 0
    views_last_30_days: int = 0
    last_viewed_at: datetime | None = None


class ChartPoint(BaseModel):
    date: date
    views: int = 0


class PageAnalytics(BaseModel):
    """Payload of the page analytics dashboard."""
    page_stats: list[PageStats] = Field(default_factory=list, serialization_alias="pageStats")
    location_stats: list[LocationStats] = Field(default_factory=list, serialization_alias="locationStats")
    device_stats: list[DeviceStats] = Field(default_factory=list, serialization_alias="deviceStats")
    recent_views: list[PageView] = Field(default_factory=list, serialization_alias="recentViews")
    engagement_stats: list[dict[str, Any]] = Field(default_factory=list, serialization_alias="engagementStats")


class CarViewAnalytics(BaseModel):
    """Payload of the car views dashboard."""
    car_view_stats: list[CarViewStats] = Field(default_factory=list, serialization_alias="carViewStats")
    total_views: int = Field(0, serialization_alias="totalViews")
    views_chart_data: list[ChartPoint] = Field(default_factory=list, serialization_alias="viewsChartData")
    today_views: int = Field(0, serialization_alias="todayViews")
    weekly_growth: int = Field(0, serialization_alias="weeklyGrowth")
