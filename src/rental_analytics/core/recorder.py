"""
Write path for view events.

Every view is one appended row. The only mutation is the duration
back-fill on a page view when the visitor leaves the page. Aggregates are
never stored here; see client.AnalyticsClient.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Optional

from ..config import DEFAULT_BOUNCE_THRESHOLD_SECONDS
from ..location import IpGeolocator, LocationInfo
from ..session import generate_server_session_id
from ..user_agent import detect_device
from .models import (
    CarViewRequest,
    DurationResult,
    PageDurationRequest,
    PageViewRequest,
    RecordedCarView,
    RecordedPageView,
    RequestContext,
)
from .store import TableStore, eq

logger = logging.getLogger(__name__)

PAGE_VIEWS_TABLE = "page_views"
CAR_VIEWS_TABLE = "car_views"

DEFAULT_EXIT_TYPE = "navigation"


class MissingFieldError(ValueError):
    """Raised when a required field of a tracking request is absent."""
    pass


class InvalidFieldError(ValueError):
    """Raised when a tracking request field has an unusable value."""
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_iso(value: datetime) -> str:
    """Serialize a timestamp as UTC ISO-8601. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_duration(value) -> float:
    """Validate a duration in seconds."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingFieldError("Duration is required")
    if isinstance(value, bool):
        raise MissingFieldError("Duration is required")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise MissingFieldError("Duration is required") from None
    if math.isnan(seconds) or math.isinf(seconds):
        raise InvalidFieldError("Duration must be a finite number")
    if seconds < 0:
        raise InvalidFieldError("Duration must not be negative")
    return seconds


class ViewRecorder:
    """Append view events and back-fill page durations."""

    def __init__(
        self,
        store: TableStore,
        geolocator: Optional[IpGeolocator] = None,
        bounce_threshold: int = DEFAULT_BOUNCE_THRESHOLD_SECONDS,
    ):
        self.store = store
        self.geolocator = geolocator or IpGeolocator()
        self.bounce_threshold = bounce_threshold

    async def _locate(self, ip: Optional[str]) -> LocationInfo:
        # lookup() degrades to an empty result on its own
        return await self.geolocator.lookup(ip)

    def is_bounce(self, duration: float) -> bool:
        return duration < self.bounce_threshold

    # =========================================================================
    # PAGE VIEWS
    # =========================================================================

    async def record_page_view(self, request: PageViewRequest, context: RequestContext) -> RecordedPageView:
        """
        Append one page view.

        Args:
            request: Parsed tracking body
            context: IP, user agent, referrer and caller identity

        Returns:
            The new row id and the session id it was stored under

        Raises:
            MissingFieldError: If the page path is absent
            StoreError: If the insert fails
        """
        page_path = (request.page_path or "").strip()
        if not page_path:
            raise MissingFieldError("Page path is required")

        session_id = request.session_id or generate_server_session_id()
        device = detect_device(context.user_agent)
        location = await self._locate(context.ip_address)
        visited_at = request.start_time or utc_now()

        row = {
            "page_path": page_path,
            "page_title": request.page_title or page_path,
            "ip_address": context.ip_address,
            **location.to_dict(),
            "user_agent": context.user_agent,
            **device.to_dict(),
            "referrer": context.referrer,
            "session_id": session_id,
            "user_id": context.user_id,
            "visited_at": to_utc_iso(visited_at),
        }

        stored = await self.store.insert(PAGE_VIEWS_TABLE, row)
        logger.debug(f"Recorded page view {stored.get('id')} for {page_path}")
        return RecordedPageView(page_view_id=str(stored["id"]), session_id=session_id)

    async def record_duration(self, request: PageDurationRequest) -> DurationResult:
        """
        Attach duration, bounce flag and exit type to a page view.

        Resolution order: the row named by pageViewId, else the most recent
        row for (sessionId, pagePath), else a new duration-only row.

        Raises:
            MissingFieldError: If duration is absent or not a number
            InvalidFieldError: If duration is negative or not finite
            StoreError: If a lookup or write fails
        """
        duration = parse_duration(request.duration)
        is_bounce = self.is_bounce(duration)
        values = {
            "duration_seconds": round(duration),
            "is_bounce": is_bounce,
            "exit_type": request.exit_type or DEFAULT_EXIT_TYPE,
        }

        if request.page_view_id:
            updated = await self.store.update(PAGE_VIEWS_TABLE, values, [eq("id", request.page_view_id)])
            if updated:
                return DurationResult(action="updated", page_view_id=str(updated[0]["id"]), is_bounce=is_bounce)
            logger.warning(f"Page view {request.page_view_id} not found; matching by session")

        page_path = (request.page_path or "").strip()
        if not page_path:
            logger.warning("Duration report without page path or known page view; dropped")
            return DurationResult(action="skipped", is_bounce=is_bounce)

        session_id = request.session_id or generate_server_session_id()

        if request.session_id:
            existing = await self.store.select(
                PAGE_VIEWS_TABLE,
                [eq("session_id", session_id), eq("page_path", page_path)],
                columns="id",
                order_by="visited_at",
                descending=True,
                limit=1,
            )
            if existing:
                row_id = existing[0]["id"]
                await self.store.update(PAGE_VIEWS_TABLE, values, [eq("id", row_id)])
                return DurationResult(action="matched", page_view_id=str(row_id), is_bounce=is_bounce)

        stored = await self.store.insert(
            PAGE_VIEWS_TABLE,
            {
                "page_path": page_path,
                "page_title": request.page_title or page_path,
                "session_id": session_id,
                **values,
                "visited_at": to_utc_iso(utc_now()),
            },
        )
        logger.info(f"No page view to attach duration to for {page_path}; stored duration-only row")
        return DurationResult(action="inserted", page_view_id=str(stored["id"]), is_bounce=is_bounce)

    # =========================================================================
    # CAR VIEWS
    # =========================================================================

    async def record_car_view(self, request: CarViewRequest, context: RequestContext) -> RecordedCarView:
        """
        Append one car detail view.

        Raises:
            MissingFieldError: If the car id is absent
            StoreError: If the insert fails
        """
        car_id = (request.car_id or "").strip()
        if not car_id:
            raise MissingFieldError("Car ID is required")

        session_id = request.session_id or generate_server_session_id()
        device = detect_device(context.user_agent)
        location = await self._locate(context.ip_address)

        row = {
            "car_id": car_id,
            "ip_address": context.ip_address,
            "user_agent": context.user_agent or None,
            "session_id": session_id,
            "user_id": context.user_id,
            **device.to_dict(),
            **location.to_dict(),
            "viewed_at": to_utc_iso(utc_now()),
        }

        await self.store.insert(CAR_VIEWS_TABLE, row)
        logger.debug(f"Recorded view of car {car_id}")
        return RecordedCarView(car_id=car_id, session_id=session_id)
