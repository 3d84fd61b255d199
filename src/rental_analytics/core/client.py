"""
Read-side aggregation over the view log.

Nothing here keeps counters. Every number is recomputed from page_views and
car_views rows at read time, so reports cannot drift from the log. The
table API has no GROUP BY, so rows are fetched (bounded by max_rows) and
rolled up in Python. When a read fills max_rows,
view totals come from count queries instead. Days are UTC calendar days.
"""
import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from .models import (
    CarView,
    CarViewAnalytics,
    CarViewStats,
    ChartPoint,
    DeviceStats,
    LocationStats,
    PageAnalytics,
    PageStats,
    PageView,
    TimeSeriesPoint,
    ViewSummary,
)
from .recorder import CAR_VIEWS_TABLE, PAGE_VIEWS_TABLE
from .store import TableStore, eq, gte, lt

logger = logging.getLogger(__name__)

CARS_TABLE = "cars"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def window_start(days: int, end: Optional[date] = None) -> date:
    """First day of a trailing window of `days` days ending on `end` inclusive."""
    end = end or utc_today()
    return end - timedelta(days=days - 1)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time(), tzinfo=timezone.utc)


def dense_daily_series(
    rows: Iterable[dict],
    timestamp_field: str,
    days: int,
    end: Optional[date] = None,
) -> list[TimeSeriesPoint]:
    """
    Bucket rows into exactly `days` daily points ending on `end`.

    Days without rows are present with zero counts. Rows outside the window
    are ignored. Visitors are distinct session ids per day.

    Args:
        rows: Rows carrying `timestamp_field` and optionally `session_id`
        timestamp_field: Column holding the event time
        days: Window length, at least 1
        end: Last day of the window (default: today, UTC)
    """
    if days < 1:
        raise ValueError("days must be at least 1")

    end = end or utc_today()
    start = window_start(days, end)

    views: dict[date, int] = defaultdict(int)
    sessions: dict[date, set] = defaultdict(set)
    for row in rows:
        ts = parse_timestamp(row.get(timestamp_field))
        if ts is None:
            continue
        day = ts.date()
        if day < start or day > end:
            continue
        views[day] += 1
        if row.get("session_id"):
            sessions[day].add(row["session_id"])

    return [
        TimeSeriesPoint(
            date=start + timedelta(days=i),
            views=views.get(start + timedelta(days=i), 0),
            visitors=len(sessions.get(start + timedelta(days=i), ())),
        )
        for i in range(days)
    ]


def _percentage(part: int, whole: int) -> Optional[float]:
    if whole <= 0:
        return None
    return round(part / whole * 100, 1)


class AnalyticsClient:
    """Client for aggregate view statistics."""

    def __init__(self, store: TableStore, max_rows: int = 10000):
        self.store = store
        self.max_rows = max_rows

    async def _rows_since(
        self,
        table: str,
        timestamp_field: str,
        since: Optional[date] = None,
        filters: Optional[list] = None,
        columns: str = "*",
    ) -> list[dict]:
        conditions = list(filters or [])
        if since is not None:
            start = _day_start(since)
            conditions.append(gte(timestamp_field, start.isoformat()))
        rows = await self.store.select(
            table,
            conditions,
            columns=columns,
            order_by=timestamp_field,
            descending=True,
            limit=self.max_rows,
        )
        if self._truncated(rows):
            logger.warning(f"{table} read stopped at the {self.max_rows} row cap; per-row figures are partial")
        return rows

    def _truncated(self, rows: list) -> bool:
        return len(rows) >= self.max_rows

    async def _exact_counts(self, table: str, column: str, keys: Iterable[str]) -> dict[str, int]:
        """Count rows per key in the store instead of in fetched rows."""
        keys = list(keys)
        counts = await asyncio.gather(*(self.store.count(table, [eq(column, k)]) for k in keys))
        return dict(zip(keys, counts))

    # =========================================================================
    # SUMMARIES
    # =========================================================================

    async def _summary(
        self,
        table: str,
        key_column: str,
        key: str,
        timestamp_field: str,
        days: int,
        end: Optional[date] = None,
    ) -> ViewSummary:
        end = end or utc_today()
        start = window_start(days, end)
        rows = await self._rows_since(
            table,
            timestamp_field,
            since=start,
            filters=[eq(key_column, key)],
            columns=f"{timestamp_field},session_id",
        )
        series = dense_daily_series(rows, timestamp_field, days, end)
        total_views = sum(p.views for p in series)
        if self._truncated(rows):
            total_views = await self.store.count(table, [
                eq(key_column, key),
                gte(timestamp_field, _day_start(start).isoformat()),
                lt(timestamp_field, _day_start(end + timedelta(days=1)).isoformat()),
            ])
        sessions = {
            r["session_id"]
            for r in rows
            if r.get("session_id") and (ts := parse_timestamp(r.get(timestamp_field))) and ts.date() <= end
        }
        return ViewSummary(
            key=key,
            days=days,
            total_views=total_views,
            unique_visitors=len(sessions),
            series=series,
        )

    async def get_page_summary(self, page_path: str, days: int = 7, end: Optional[date] = None) -> ViewSummary:
        """Views, unique sessions and a dense daily series for one page."""
        return await self._summary(PAGE_VIEWS_TABLE, "page_path", page_path, "visited_at", days, end)

    async def get_car_summary(self, car_id: str, days: int = 7, end: Optional[date] = None) -> ViewSummary:
        """Views, unique sessions and a dense daily series for one car."""
        return await self._summary(CAR_VIEWS_TABLE, "car_id", car_id, "viewed_at", days, end)

    # =========================================================================
    # PAGES
    # =========================================================================

    async def get_page_stats(self, now: Optional[datetime] = None) -> list[PageStats]:
        """Per-path rollup, most viewed first."""
        now = now or datetime.now(timezone.utc)
        rows = await self._rows_since(PAGE_VIEWS_TABLE, "visited_at")

        today = now.date()
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        grouped: dict[str, list[dict]] = defaultdict(list)
        for row in rows:
            if row.get("page_path"):
                grouped[row["page_path"]].append(row)
        totals = {path: len(views) for path, views in grouped.items()}
        if self._truncated(rows):
            totals = await self._exact_counts(PAGE_VIEWS_TABLE, "page_path", grouped)

        stats = []
        for path, views in grouped.items():
            timestamps = [parse_timestamp(v.get("visited_at")) for v in views]
            timestamps = [t for t in timestamps if t is not None]
            durations = [v["duration_seconds"] for v in views if v.get("duration_seconds") is not None]
            bounces = sum(1 for v in views if v.get("is_bounce") is True)
            engaged = sum(1 for v in views if v.get("is_bounce") is False)
            avg_duration = round(sum(durations) / len(durations), 1) if durations else None

            stats.append(PageStats(
                page_path=path,
                page_title=next((v.get("page_title") for v in views if v.get("page_title")), None),
                total_views=totals[path],
                unique_visitors=len({v["session_id"] for v in views if v.get("session_id")}),
                views_today=sum(1 for t in timestamps if t.date() == today),
                views_last_7_days=sum(1 for t in timestamps if t >= week_ago),
                views_last_30_days=sum(1 for t in timestamps if t >= month_ago),
                avg_duration_seconds=avg_duration,
                avg_duration_minutes=round(avg_duration / 60, 2) if avg_duration is not None else None,
                bounce_count=bounces,
                bounce_rate_percentage=_percentage(bounces, len(durations)),
                engaged_sessions=engaged,
                engagement_rate_percentage=_percentage(engaged, len(durations)),
                last_visited_at=max(timestamps) if timestamps else None,
            ))

        return sorted(stats, key=lambda s: s.total_views, reverse=True)

    async def _group_stats(
        self,
        key: Callable[[dict], tuple],
        limit: int,
        now: Optional[datetime] = None,
    ) -> list[tuple[tuple, int, int, int]]:
        """Group page views by `key` into (key, views, visitors, views_7d)."""
        now = now or datetime.now(timezone.utc)
        week_ago = now - timedelta(days=7)
        rows = await self._rows_since(PAGE_VIEWS_TABLE, "visited_at")

        views: dict[tuple, int] = defaultdict(int)
        sessions: dict[tuple, set] = defaultdict(set)
        recent: dict[tuple, int] = defaultdict(int)
        for row in rows:
            k = key(row)
            views[k] += 1
            if row.get("session_id"):
                sessions[k].add(row["session_id"])
            ts = parse_timestamp(row.get("visited_at"))
            if ts is not None and ts >= week_ago:
                recent[k] += 1

        ranked = sorted(views, key=lambda k: views[k], reverse=True)[:limit]
        return [(k, views[k], len(sessions[k]), recent[k]) for k in ranked]

    async def get_location_stats(self, limit: int = 50, now: Optional[datetime] = None) -> list[LocationStats]:
        """Views per (country, city, region), most viewed first."""
        groups = await self._group_stats(
            lambda r: (r.get("country"), r.get("city"), r.get("region")), limit, now
        )
        return [
            LocationStats(
                country=country, city=city, region=region,
                total_views=total, unique_visitors=visitors, views_last_7_days=recent,
            )
            for (country, city, region), total, visitors, recent in groups
        ]

    async def get_device_stats(self, limit: int = 50, now: Optional[datetime] = None) -> list[DeviceStats]:
        """Views per (device type, browser, OS), most viewed first."""
        groups = await self._group_stats(
            lambda r: (r.get("device_type"), r.get("browser"), r.get("operating_system")), limit, now
        )
        return [
            DeviceStats(
                device_type=device, browser=browser, operating_system=os_name,
                total_views=total, unique_visitors=visitors, views_last_7_days=recent,
            )
            for (device, browser, os_name), total, visitors, recent in groups
        ]

    async def get_recent_page_views(self, limit: int = 100) -> list[PageView]:
        """Most recent page views, newest first."""
        rows = await self.store.select(
            PAGE_VIEWS_TABLE, order_by="visited_at", descending=True, limit=limit
        )
        return [PageView.model_validate(r) for r in rows]

    async def export_page_views(self, days: int = 30) -> list[dict]:
        """Raw page view rows of the trailing window for CSV export."""
        return await self._rows_since(
            PAGE_VIEWS_TABLE,
            "visited_at",
            since=window_start(days),
            columns=(
                "visited_at,page_path,page_title,session_id,country,city,region,"
                "device_type,browser,operating_system,duration_seconds,is_bounce,exit_type,referrer"
            ),
        )

    # =========================================================================
    # CARS
    # =========================================================================

    async def get_car_view_stats(self, now: Optional[datetime] = None) -> list[CarViewStats]:
        """Per-car rollup joined with the cars table, most viewed first."""
        now = now or datetime.now(timezone.utc)
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        cars = await self.store.select(CARS_TABLE, columns="id,name,brand,images")
        views = await self._rows_since(CAR_VIEWS_TABLE, "viewed_at", columns="car_id,viewed_at")

        by_car: dict[str, list[datetime]] = defaultdict(list)
        for row in views:
            ts = parse_timestamp(row.get("viewed_at"))
            if ts is not None:
                by_car[str(row.get("car_id"))].append(ts)

        car_ids = [str(car["id"]) for car in cars]
        totals = {car_id: len(by_car.get(car_id, [])) for car_id in car_ids}
        if self._truncated(views):
            totals = await self._exact_counts(CAR_VIEWS_TABLE, "car_id", car_ids)

        stats = []
        for car in cars:
            timestamps = by_car.get(str(car["id"]), [])
            images = car.get("images")
            stats.append(CarViewStats(
                id=str(car["id"]),
                name=car.get("name"),
                brand=car.get("brand"),
                image_url=images[0] if isinstance(images, list) and images else None,
                total_views=totals[str(car["id"])],
                views_last_7_days=sum(1 for t in timestamps if t >= week_ago),
                views_last_30_days=sum(1 for t in timestamps if t >= month_ago),
                last_viewed_at=max(timestamps) if timestamps else None,
            ))

        return sorted(stats, key=lambda s: s.total_views, reverse=True)

    async def get_recent_car_views(self, limit: int = 20) -> list[CarView]:
        """Most recent car views, newest first."""
        rows = await self.store.select(
            CAR_VIEWS_TABLE, order_by="viewed_at", descending=True, limit=limit
        )
        return [CarView.model_validate(r) for r in rows]

    async def get_total_car_views(self) -> int:
        return await self.store.count(CAR_VIEWS_TABLE)

    async def get_car_views_chart(self, days: int = 30, end: Optional[date] = None) -> list[ChartPoint]:
        """Dense daily car view counts across all cars."""
        end = end or utc_today()
        rows = await self._rows_since(
            CAR_VIEWS_TABLE, "viewed_at", since=window_start(days, end), columns="viewed_at,session_id"
        )
        return [ChartPoint(date=p.date, views=p.views) for p in dense_daily_series(rows, "viewed_at", days, end)]

    async def get_today_car_views(self, today: Optional[date] = None) -> int:
        today = today or utc_today()
        start = _day_start(today)
        return await self.store.count(CAR_VIEWS_TABLE, [gte("viewed_at", start.isoformat())])

    async def get_weekly_growth(self, now: Optional[datetime] = None) -> int:
        """Percent change of car views in the last 7 days against the 7 before."""
        now = now or datetime.now(timezone.utc)
        this_week_start = now - timedelta(days=7)
        last_week_start = now - timedelta(days=14)

        this_week, last_week = await asyncio.gather(
            self.store.count(CAR_VIEWS_TABLE, [gte("viewed_at", this_week_start.isoformat())]),
            self.store.count(CAR_VIEWS_TABLE, [
                gte("viewed_at", last_week_start.isoformat()),
                lt("viewed_at", this_week_start.isoformat()),
            ]),
        )

        if last_week == 0:
            return 100 if this_week > 0 else 0
        return round((this_week - last_week) / last_week * 100)

    # =========================================================================
    # DASHBOARDS
    # =========================================================================

    async def _parallel_queries(self, **queries) -> dict:
        """Run named coroutines concurrently.

        Failed queries are logged and come back as None so one broken
        section does not fail the whole dashboard.
        """
        names = list(queries.keys())
        results = await asyncio.gather(*queries.values(), return_exceptions=True)

        output = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"Query '{name}' failed: {result}")
                output[name] = None
            else:
                output[name] = result
        return output

    async def get_page_analytics(self) -> PageAnalytics:
        results = await self._parallel_queries(
            page_stats=self.get_page_stats(),
            location_stats=self.get_location_stats(),
            device_stats=self.get_device_stats(),
            recent_views=self.get_recent_page_views(),
        )
        return PageAnalytics(**{k: v or [] for k, v in results.items()})

    async def get_car_view_analytics(self, days: int = 30) -> CarViewAnalytics:
        results = await self._parallel_queries(
            car_view_stats=self.get_car_view_stats(),
            total_views=self.get_total_car_views(),
            views_chart_data=self.get_car_views_chart(days),
            today_views=self.get_today_car_views(),
            weekly_growth=self.get_weekly_growth(),
        )
        return CarViewAnalytics(
            car_view_stats=results["car_view_stats"] or [],
            total_views=results["total_views"] or 0,
            views_chart_data=results["views_chart_data"] or [],
            today_views=results["today_views"] or 0,
            weekly_growth=results["weekly_growth"] or 0,
        )
