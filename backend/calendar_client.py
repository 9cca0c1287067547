"""
Nexus Scheduling Agent - Google Calendar Client
REST v3 over httpx. The OAuth handshake happens elsewhere; this client only
needs a bearer token.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from config import CalendarConfig, get_calendar_config
from errors import ProviderConnectionError, ProviderError
from models import EventSpec
from retry import retry_async

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Google Calendar"
TRANSIENT_ERRORS = (httpx.ConnectError, httpx.TimeoutException)


def event_body(spec: EventSpec) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "summary": spec.title,
        "start": {"dateTime": spec.start.isoformat()},
        "end": {"dateTime": spec.end.isoformat()},
    }
    if spec.description:
        body["description"] = spec.description
    if spec.location:
        body["location"] = spec.location
    return body


class GoogleCalendarClient:
    """Implements the calendar provider contract against one calendar."""

    def __init__(
        self,
        config: Optional[CalendarConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = config or get_calendar_config()
        self.base_url = cfg.base_url.rstrip("/")
        self.calendar_id = cfg.calendar_id
        self.max_results = cfg.max_results
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {cfg.access_token}"},
            timeout=cfg.timeout_seconds,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    @property
    def _events_path(self) -> str:
        return f"/calendars/{self.calendar_id}/events"

    @retry_async(max_retries=3, delay=0.5, retry_on=TRANSIENT_ERRORS)
    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        return await self._client.request(method, path, **kwargs)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderConnectionError(PROVIDER_NAME, str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("error", {}).get("message", "")
            except ValueError:
                detail = response.text[:200]
            raise ProviderError(PROVIDER_NAME, response.status_code, detail)
        return response

    # ============================================
    # READ
    # ============================================

    async def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        """Raw event resources in the window, recurring events expanded, following nextPageToken."""
        params: Dict[str, Any] = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self.max_results,
        }
        events: List[Dict[str, Any]] = []
        while True:
            response = await self._request("GET", self._events_path, params=params)
            payload = response.json()
            events.extend(e for e in payload.get("items", []) if e.get("status") != "cancelled")
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.debug(f"Fetched {len(events)} calendar events")
        return events

    # ============================================
    # WRITE
    # ============================================

    async def create_event(self, spec: EventSpec) -> str:
        response = await self._request("POST", self._events_path, json=event_body(spec))
        event_id = response.json().get("id")
        logger.info(f"Created calendar event {event_id} ({spec.title})")
        return event_id

    async def update_event(self, event_id: str, spec: EventSpec) -> None:
        await self._request("PATCH", f"{self._events_path}/{event_id}", json=event_body(spec))
        logger.info(f"Updated calendar event {event_id} ({spec.title})")

    async def delete_event(self, event_id: str) -> None:
        try:
            await self._request("DELETE", f"{self._events_path}/{event_id}")
        except ProviderError as e:
            # 410 Gone: already deleted
            if e.status_code != 410:
                raise
        logger.info(f"Deleted calendar event {event_id}")
