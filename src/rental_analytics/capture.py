"""
View capture: deciding when a view counts.

A view is only recorded once the visitor has stayed for a short dwell
delay, so instant back/forward navigations are not counted. Capture is fire
and forget: a failed tracking call is logged and never reaches the page.

Two renditions share the same rules:
- PageViewCapture / CarViewCapture drive the tracking endpoints from asyncio
  code (server-rendered flows, kiosks, tests).
- tracking_script() renders the browser script that does the same with
  sessionStorage, setTimeout and sendBeacon.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, MutableMapping, Optional

import httpx

from .session import SESSION_STORAGE_KEY, get_session_id

logger = logging.getLogger(__name__)

PAGE_VIEW_ENDPOINT = "/track-page-view"
PAGE_DURATION_ENDPOINT = "/track-page-duration"
CAR_VIEW_ENDPOINT = "/track-car-view"

DEFAULT_PAGE_DWELL_SECONDS = 0.15
DEFAULT_CAR_DWELL_SECONDS = 2.0
DEFAULT_EXCLUDED_PREFIXES = ("/admin", "/api")


class TrackingTransport:
    """Posts tracking payloads and swallows every failure."""

    def __init__(self, base_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def send(self, endpoint: str, payload: dict) -> Optional[dict]:
        """POST `payload`; return the JSON reply, or None on any failure."""
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(f"{self.base_url}{endpoint}", json=payload)
            if response.status_code >= 400:
                logger.warning(f"Tracking call {endpoint} rejected with {response.status_code}")
                return None
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Tracking call {endpoint} failed: {e}")
            return None


class _DwellCapture:
    """Shared scheduling for dwell-delayed captures."""

    def __init__(self, transport: TrackingTransport, dwell_seconds: float, enabled: bool = True):
        self.transport = transport
        self.dwell_seconds = dwell_seconds
        self.enabled = enabled
        self._pending: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _fired(self) -> None:
        """Mark the current task's dwell as elapsed so unmount no longer cancels it."""
        if self._pending is asyncio.current_task():
            self._pending = None

    def _cancel_pending(self) -> bool:
        """Cancel a scheduled recording that has not fired. True if one was cancelled."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            self._pending = None
            return True
        self._pending = None
        return False

    async def flush(self) -> None:
        """Wait for scheduled and in-flight tracking calls to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


@dataclass
class _Visit:
    """State of one mounted page."""
    page_path: str
    page_title: str
    started_at: float
    recorded: bool = False
    page_view_id: Optional[str] = None


class PageViewCapture(_DwellCapture):
    """Record page views after a dwell delay and report their duration on exit.

    Usage:
        capture = PageViewCapture(TrackingTransport("https://example.com/api"), session_storage)
        capture.mount("/cars", "Our fleet")
        ...
        capture.unmount("navigation")
    """

    def __init__(
        self,
        transport: TrackingTransport,
        storage: Optional[MutableMapping[str, str]],
        dwell_seconds: float = DEFAULT_PAGE_DWELL_SECONDS,
        enabled: bool = True,
        excluded_prefixes: tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES,
    ):
        super().__init__(transport, dwell_seconds, enabled)
        self.storage = storage
        self.excluded_prefixes = tuple(excluded_prefixes)
        self.visit: Optional[_Visit] = None

    def should_track(self, page_path: Optional[str]) -> bool:
        if not self.enabled or not page_path:
            return False
        return not page_path.startswith(self.excluded_prefixes)

    def mount(self, page_path: Optional[str], page_title: Optional[str] = None) -> None:
        """Start a visit. Must be called from a running event loop."""
        if self.visit is not None:
            if self.visit.page_path == page_path:
                return
            self.unmount("navigation")
        if not self.should_track(page_path):
            return

        self.visit = _Visit(page_path, page_title or page_path, time.monotonic())
        self._pending = self._schedule(self._record_after_dwell(self.visit))

    async def _record_after_dwell(self, visit: _Visit) -> None:
        await asyncio.sleep(self.dwell_seconds)
        self._fired()
        visit.recorded = True

        session_id = get_session_id(self.storage)
        payload = {
            "pagePath": visit.page_path,
            "pageTitle": visit.page_title,
            "startTime": int(time.time() * 1000),
        }
        if session_id:
            payload["sessionId"] = session_id

        result = await self.transport.send(PAGE_VIEW_ENDPOINT, payload)
        if not result:
            return
        visit.page_view_id = result.get("pageViewId")
        # Keep the server's id if it had to make one up
        if self.storage is not None and result.get("sessionId") and not session_id:
            self.storage[SESSION_STORAGE_KEY] = result["sessionId"]

    def unmount(self, exit_type: str = "navigation") -> None:
        """End the visit.

        Before the dwell delay this cancels the recording; afterwards it
        reports the elapsed time without waiting for the answer.
        """
        visit, self.visit = self.visit, None
        if visit is None:
            return

        if self._cancel_pending() or not visit.recorded:
            return

        payload: dict[str, Any] = {
            "pagePath": visit.page_path,
            "pageTitle": visit.page_title,
            "duration": round(time.monotonic() - visit.started_at),
            "exitType": exit_type,
        }
        session_id = get_session_id(self.storage)
        if session_id:
            payload["sessionId"] = session_id
        if visit.page_view_id:
            payload["pageViewId"] = visit.page_view_id
        self._schedule(self.transport.send(PAGE_DURATION_ENDPOINT, payload))


class CarViewCapture(_DwellCapture):
    """Record a car detail view after a dwell delay, once per car per mount."""

    def __init__(
        self,
        transport: TrackingTransport,
        storage: Optional[MutableMapping[str, str]] = None,
        dwell_seconds: float = DEFAULT_CAR_DWELL_SECONDS,
        enabled: bool = True,
    ):
        super().__init__(transport, dwell_seconds, enabled)
        self.storage = storage
        self._tracked: set[str] = set()

    def mount(self, car_id: Optional[str]) -> None:
        """Schedule a view of `car_id`. Repeated calls for the same car are ignored."""
        if not self.enabled or not car_id or car_id in self._tracked:
            return
        self._cancel_pending()
        self._tracked.add(car_id)
        self._pending = self._schedule(self._record_after_dwell(car_id))

    async def _record_after_dwell(self, car_id: str) -> None:
        await asyncio.sleep(self.dwell_seconds)
        self._fired()
        payload = {"carId": car_id}
        session_id = get_session_id(self.storage)
        if session_id:
            payload["sessionId"] = session_id
        await self.transport.send(CAR_VIEW_ENDPOINT, payload)

    def unmount(self) -> None:
        """Cancel a view that has not fired yet and reset the duplicate guard."""
        self._cancel_pending()
        self._tracked.clear()


# =============================================================================
# BROWSER SCRIPT
# =============================================================================

def tracking_script(
    endpoint_base: str = "/api",
    page_dwell_seconds: float = DEFAULT_PAGE_DWELL_SECONDS,
    car_dwell_seconds: float = DEFAULT_CAR_DWELL_SECONDS,
    excluded_prefixes: tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES,
    enabled: bool = True,
) -> str:
    """Generate the tracking script HTML for templates.

    Features:
    - Session id in sessionStorage ("" when storage is unavailable)
    - Page views after a dwell delay, cancelled by a quick navigation
    - SPA navigation support (pushState, replaceState, popstate)
    - Duration reports on navigation, tab hide and close (sendBeacon)
    - window.rentalAnalytics.trackCar(carId) for car detail pages
    """
    if not enabled:
        return ""

    settings = json.dumps({
        "base": endpoint_base.rstrip("/"),
        "pageDwell": round(page_dwell_seconds * 1000),
        "carDwell": round(car_dwell_seconds * 1000),
        "excluded": list(excluded_prefixes),
        "key": SESSION_STORAGE_KEY,
    })

    return f'''<script>
(function(){{
  var cfg={settings};
  var w=window,d=document,h=history,l=location;
  var page=null,timer=null,cars={{}};

  function sid(){{
    try{{
      var s=w.sessionStorage.getItem(cfg.key);
      if(!s){{
        s=Date.now()+"-"+Math.random().toString(36).substring(2,13);
        w.sessionStorage.setItem(cfg.key,s);
      }}
      return s;
    }}catch(e){{return "";}}
  }}

  function post(path,data,beacon){{
    var body=JSON.stringify(data);
    try{{
      if(beacon&&navigator.sendBeacon){{navigator.sendBeacon(cfg.base+path,body);return Promise.resolve(null);}}
      return fetch(cfg.base+path,{{method:"POST",headers:{{"Content-Type":"application/json"}},body:body,keepalive:true}})
        .then(function(r){{return r.ok?r.json():null;}})
        .catch(function(e){{console.warn("tracking failed",e);return null;}});
    }}catch(e){{console.warn("tracking failed",e);return Promise.resolve(null);}}
  }}

  function excluded(p){{
    for(var i=0;i<cfg.excluded.length;i++){{if(p.indexOf(cfg.excluded[i])===0)return true;}}
    return false;
  }}

  function report(exit){{
    var ms=page.spent+(page.hidden?0:Date.now()-page.start);
    var data={{pagePath:page.path,pageTitle:d.title,sessionId:sid(),
      duration:Math.round(ms/1000),exitType:exit}};
    if(page.id)data.pageViewId=page.id;
    post("{PAGE_DURATION_ENDPOINT}",data,exit==="close"||exit==="hidden");
  }}

  function leave(exit){{
    clearTimeout(timer);
    if(page&&page.recorded)report(exit);
    page=null;
  }}

  function arm(p,delay){{
    timer=setTimeout(function(){{
      p.recorded=true;
      post("{PAGE_VIEW_ENDPOINT}",{{pagePath:p.path,pageTitle:d.title||p.path,sessionId:sid(),startTime:p.began}})
        .then(function(r){{if(r&&r.pageViewId)p.id=r.pageViewId;}});
    }},Math.max(0,delay));
  }}

  function enter(){{
    var path=l.pathname;
    if(page&&page.path===path)return;
    leave("navigation");
    cars={{}};
    if(!path||excluded(path))return;
    var now=Date.now();
    page={{path:path,began:now,start:now,spent:0,hidden:false,recorded:false,id:null}};
    arm(page,cfg.pageDwell);
  }}

  // A hidden tab keeps its visit; the dwell and the clock pause until it is shown again
  function hide(){{
    if(!page||page.hidden)return;
    page.spent+=Date.now()-page.start;
    page.hidden=true;
    if(page.recorded){{report("hidden");}}else{{clearTimeout(timer);}}
  }}

  function show(){{
    if(!page||!page.hidden)return;
    page.hidden=false;
    page.start=Date.now();
    if(!page.recorded)arm(page,cfg.pageDwell-page.spent);
  }}

  function trackCar(carId){{
    if(!carId||cars[carId])return;
    var path=l.pathname;
    cars[carId]=setTimeout(function(){{
      if(l.pathname!==path)return;
      post("{CAR_VIEW_ENDPOINT}",{{carId:carId,sessionId:sid()}});
    }},cfg.carDwell);
  }}

  enter();
  var push=h.pushState;
  h.pushState=function(){{push.apply(h,arguments);enter();}};
  var replace=h.replaceState;
  h.replaceState=function(){{replace.apply(h,arguments);enter();}};
  w.addEventListener("popstate",enter);
  d.addEventListener("visibilitychange",function(){{
    if(d.hidden){{hide();}}else{{show();}}
  }});
  w.addEventListener("beforeunload",function(){{leave("close");}});
  w.rentalAnalytics={{trackCar:trackCar,sessionId:sid}};
}})();
</script>'''
