"""
Tracking endpoints.

Three small POST handlers that validate a body, enrich it with request
facts and hand it to the recorder. Validation problems are 400s; store
failures are logged and returned as 500s. Browsers call these fire and
forget, so nothing here is ever shown to a visitor.
"""

import json
import logging
from typing import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from ..config import AnalyticsConfig
from ..core.auth import IdentityProvider, get_access_token
from ..core.models import CarViewRequest, PageDurationRequest, PageViewRequest, RequestContext
from ..core.recorder import InvalidFieldError, MissingFieldError, ViewRecorder
from ..core.store import StoreError, TableStore
from ..location import IpGeolocator, parse_ip

logger = logging.getLogger(__name__)


class InvalidBodyError(ValueError):
    pass


def client_ip(request: Request) -> str | None:
    """Caller IP from X-Forwarded-For (first hop) or X-Real-IP.

    Values that are not IP literals are dropped.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return parse_ip(forwarded.split(",")[0].strip())
    return parse_ip(request.headers.get("x-real-ip"))


async def _parse_body(request: Request, model: type[BaseModel]):
    """Parse a JSON body into `model`.

    sendBeacon posts text/plain, so the content type is not checked.
    """
    raw = await request.body()
    try:
        data = json.loads(raw or b"{}")
    except ValueError:
        raise InvalidBodyError("Invalid JSON body") from None
    if not isinstance(data, dict):
        raise InvalidBodyError("Invalid JSON body")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        field = ".".join(str(p) for p in e.errors()[0]["loc"]) if e.errors() else "body"
        raise InvalidBodyError(f"Invalid value for {field}") from None


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_tracking_router(
    config: AnalyticsConfig,
    store_factory: Callable[[], TableStore],
    identity: IdentityProvider,
    geolocator: IpGeolocator | None = None,
) -> APIRouter:
    """Create the router that records page and car views.

    Args:
        config: Analytics configuration
        store_factory: Builds a table store; called once per request
        identity: Resolves the caller's access token to a user id
        geolocator: IP resolver (default: config.geolocation_url)
    """
    router = APIRouter(tags=["tracking"])
    geolocator = geolocator or IpGeolocator(config.geolocation_url)

    def get_recorder() -> ViewRecorder:
        return ViewRecorder(
            store_factory(),
            geolocator=geolocator,
            bounce_threshold=config.bounce_threshold_seconds,
        )

    async def _context(request: Request) -> RequestContext:
        return RequestContext(
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent", ""),
            referrer=request.headers.get("referer", ""),
            user_id=await identity.get_user_id(get_access_token(request)),
        )

    @router.post("/track-page-view")
    async def track_page_view(request: Request, recorder: ViewRecorder = Depends(get_recorder)):
        """Record one page view and return its id for the later duration report."""
        try:
            body = await _parse_body(request, PageViewRequest)
            recorded = await recorder.record_page_view(body, await _context(request))
        except (InvalidBodyError, MissingFieldError) as e:
            return _error(str(e), 400)
        except StoreError as e:
            logger.error(f"Error inserting page view: {e}")
            return _error("Failed to track page view", 500)

        return JSONResponse({
            "success": True,
            "pageViewId": recorded.page_view_id,
            "sessionId": recorded.session_id,
        })

    @router.post("/track-page-duration")
    async def track_page_duration(request: Request, recorder: ViewRecorder = Depends(get_recorder)):
        """Attach the visit duration to a page view."""
        try:
            body = await _parse_body(request, PageDurationRequest)
            result = await recorder.record_duration(body)
        except (InvalidBodyError, MissingFieldError, InvalidFieldError) as e:
            return _error(str(e), 400)
        except StoreError as e:
            logger.error(f"Error updating page view duration: {e}")
            return _error("Failed to update duration", 500)

        logger.debug(f"Duration report {result.action} ({result.page_view_id})")
        return JSONResponse({"success": True})

    @router.post("/track-car-view")
    async def track_car_view(request: Request, recorder: ViewRecorder = Depends(get_recorder)):
        """Record one car detail view."""
        try:
            body = await _parse_body(request, CarViewRequest)
            await recorder.record_car_view(body, await _context(request))
        except (InvalidBodyError, MissingFieldError) as e:
            return _error(str(e), 400)
        except StoreError as e:
            logger.error(f"Error tracking car view: {e}")
            return _error("Failed to track view", 500)

        return JSONResponse({"success": True})

    return router
