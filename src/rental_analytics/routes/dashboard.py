"""
Admin dashboard routes for rental analytics.

JSON endpoints for the page-analytics and car-views screens, per-page and
per-car summaries, server-rendered Jinja2 pages and a CSV export. Every
route requires a caller whose users.role is the configured admin role.
"""

import csv
import logging
from io import StringIO
from pathlib import Path
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.templating import Jinja2Templates

from ..config import AnalyticsConfig
from ..core.auth import IdentityProvider, get_access_token, get_user_role
from ..core.client import AnalyticsClient
from ..core.store import StoreError, TableStore

logger = logging.getLogger(__name__)

# Preset periods in days
PERIOD_DAYS = {
    "24h": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "year": 365,
}
DEFAULT_PERIOD = "30d"

EXPORT_COLUMNS = [
    "visited_at", "page_path", "page_title", "session_id",
    "country", "city", "region",
    "device_type", "browser", "operating_system",
    "duration_seconds", "is_bounce", "exit_type", "referrer",
]


def _parse_period(period: str | None) -> int:
    """Translate a period key into a window length in days.

    Unknown keys fall back to 30 days.
    """
    return PERIOD_DAYS.get(period or DEFAULT_PERIOD, PERIOD_DAYS[DEFAULT_PERIOD])


def _format_duration(seconds: float | None) -> str:
    """Format duration in seconds to human readable string."""
    if seconds is None:
        return "-"
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m"


def _bar_heights(points: list) -> list[float]:
    """Bar heights in percent of the busiest day, at least 2% so empty days stay visible."""
    max_views = max((p.views for p in points), default=0) or 1
    return [max(p.views / max_views * 100, 2) for p in points]


def create_dashboard_router(
    config: AnalyticsConfig,
    store_factory: Callable[[], TableStore],
    identity: IdentityProvider,
) -> APIRouter:
    """Create the admin dashboard router.

    Args:
        config: Analytics configuration
        store_factory: Builds a table store for reports; called once per request
        identity: Resolves the caller's access token to a user id
    """
    router = APIRouter(tags=["analytics"])

    template_dir = Path(__file__).parent.parent / "templates"
    templates = Jinja2Templates(directory=str(template_dir))
    templates.env.filters["format_duration"] = _format_duration

    def get_store() -> TableStore:
        return store_factory()

    async def admin_denial(request: Request, store: TableStore) -> Optional[JSONResponse]:
        """Return a 401/403 error response unless the caller is an admin."""
        user_id = await identity.get_user_id(get_access_token(request))
        if not user_id:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        try:
            role = await get_user_role(store, user_id)
        except StoreError as e:
            logger.error(f"Role lookup failed for {user_id}: {e}")
            role = None
        if role != config.admin_role:
            return JSONResponse({"error": "Forbidden - Admin access required"}, status_code=403)
        return None

    def get_client(store: TableStore = Depends(get_store)) -> AnalyticsClient:
        return AnalyticsClient(store, max_rows=config.max_report_rows)

    # -------------------------------------------------------------------------
    # JSON API
    # -------------------------------------------------------------------------

    @router.get("/api/page-views")
    async def page_views_data(
        request: Request,
        store: TableStore = Depends(get_store),
        client: AnalyticsClient = Depends(get_client),
    ):
        """Page, location, device and recent-view rollups."""
        denied = await admin_denial(request, store)
        if denied:
            return denied
        analytics = await client.get_page_analytics()
        return JSONResponse(analytics.model_dump(mode="json", by_alias=True))

    @router.get("/api/car-views")
    async def car_views_data(
        request: Request,
        period: str = DEFAULT_PERIOD,
        store: TableStore = Depends(get_store),
        client: AnalyticsClient = Depends(get_client),
    ):
        """Per-car rollup, total, dense daily chart, today and weekly growth."""
        denied = await admin_denial(request, store)
        if denied:
            return denied
        analytics = await client.get_car_view_analytics(_parse_period(period))
        return JSONResponse(analytics.model_dump(mode="json", by_alias=True))

    @router.get("/api/summary/page")
    async def page_summary(
        request: Request,
        path: str = Query(..., min_length=1),
        period: str = DEFAULT_PERIOD,
        store: TableStore = Depends(get_store),
        client: AnalyticsClient = Depends(get_client),
    ):
        """Totals and daily series for one page path."""
        denied = await admin_denial(request, store)
        if denied:
            return denied
        try:
            summary = await client.get_page_summary(path, _parse_period(period))
        except StoreError as e:
            logger.error(f"Page summary for {path} failed: {e}")
            return JSONResponse({"error": "Failed to load page summary"}, status_code=500)
        return JSONResponse(summary.model_dump(mode="json"))

    @router.get("/api/summary/car/{car_id}")
    async def car_summary(
        request: Request,
        car_id: str,
        period: str = DEFAULT_PERIOD,
        store: TableStore = Depends(get_store),
        client: AnalyticsClient = Depends(get_client),
    ):
        """Totals and daily series for one car."""
        denied = await admin_denial(request, store)
        if denied:
            return denied
        try:
            summary = await client.get_car_summary(car_id, _parse_period(period))
        except StoreError as e:
            logger.error(f"Car summary for {car_id} failed: {e}")
            return JSONResponse({"error": "Failed to load car summary"}, status_code=500)
        return JSONResponse(summary.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # Pages
    # -------------------------------------------------------------------------

    @router.get("/page-analytics", response_class=HTMLResponse)
    async def page_analytics_page(
        request: Request,
        store: TableStore = Depends(get_store),
        client: AnalyticsClient = Depends(get_client),
    ):
        """Render the page analytics screen."""
        denied = await admin_denial(request, store)
        if denied:
            return denied
        analytics = await client.get_page_analytics()
        return templates.TemplateResponse(
            request,
            "page_analytics.html",
            {"active_tab": "pages", "analytics": analytics},
        )

    @router.get("/car-views", response_class=HTMLResponse)
    async def car_views_page(
        request: Request,
        period: str = DEFAULT_PERIOD,
        store: TableStore = Depends(get_store),
        client: AnalyticsClient = Depends(get_client),
    ):
        """Render the car views screen."""
        denied = await admin_denial(request, store)
        if denied:
            return denied
        analytics = await client.get_car_view_analytics(_parse_period(period))
        try:
            recent = await client.get_recent_car_views()
        except StoreError as e:
            logger.error(f"Recent car views failed: {e}")
            recent = []
        return templates.TemplateResponse(
            request,
            "car_views.html",
            {
                "active_tab": "cars",
                "analytics": analytics,
                "recent_views": recent,
                "bar_heights": _bar_heights(analytics.views_chart_data),
                "period": period if period in PERIOD_DAYS else DEFAULT_PERIOD,
            },
        )

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    @router.get("/export/page-views.csv")
    async def export_page_views_csv(
        request: Request,
        period: str = DEFAULT_PERIOD,
        store: TableStore = Depends(get_store),
        client: AnalyticsClient = Depends(get_client),
    ):
        """Export raw page views of the period as CSV."""
        denied = await admin_denial(request, store)
        if denied:
            return denied
        days = _parse_period(period)
        try:
            rows = await client.export_page_views(days)
        except StoreError as e:
            logger.error(f"Page view export failed: {e}")
            return JSONResponse({"error": "Export failed"}, status_code=500)

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow(EXPORT_COLUMNS)
        for row in rows:
            writer.writerow(["" if row.get(c) is None else row.get(c) for c in EXPORT_COLUMNS])

        output.seek(0)
        return StreamingResponse(
            iter([output.getvalue()]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=page_views_{days}d.csv"},
        )

    return router
