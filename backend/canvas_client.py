"""
Nexus Scheduling Agent - Canvas LMS Client
REST v1 over httpx with Link-header pagination. Every record returned is
tagged with ``kind`` (assignment, quiz or announcement) and its course.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import CanvasConfig, get_canvas_config
from errors import ProviderConnectionError, ProviderError
from retry import retry_async

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Canvas"
TRANSIENT_ERRORS = (httpx.ConnectError, httpx.TimeoutException)


class CanvasClient:
    """Implements the course provider contract for the token's student enrollments."""

    def __init__(
        self,
        config: Optional[CanvasConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = config or get_canvas_config()
        if not cfg.base_url:
            logger.warning("CANVAS_BASE_URL is not set; course items will be unavailable")
        self.base_url = cfg.base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1",
            headers={"Authorization": f"Bearer {cfg.access_token}"},
            timeout=cfg.timeout_seconds,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    @retry_async(max_retries=3, delay=0.5, retry_on=TRANSIENT_ERRORS)
    async def _send(self, url: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        return await self._client.get(url, params=params)

    async def _get_all(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """GET every page of a list endpoint."""
        results: List[Dict[str, Any]] = []
        url: Optional[str] = path
        params = {"per_page": 100, **(params or {})}
        while url:
            try:
                response = await self._send(url, params)
            except httpx.HTTPError as e:
                raise ProviderConnectionError(PROVIDER_NAME, str(e) or type(e).__name__) from e
            if response.status_code >= 400:
                raise ProviderError(PROVIDER_NAME, response.status_code, response.text[:200])
            results.extend(response.json())
            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None
        return results

    async def list_courses(self) -> List[Dict[str, Any]]:
        return await self._get_all("/courses", {"enrollment_type": "student", "enrollment_state": "active"})

    async def list_user_assignments(self, course: Dict[str, Any]) -> List[Dict[str, Any]]:
        assignments = await self._get_all(f"/courses/{course['id']}/assignments", {"include[]": "submission"})
        return [
            {
                **assignment,
                "kind": "quiz" if assignment.get("quiz_id") or assignment.get("is_quiz_assignment") else "assignment",
                "course_name": course.get("name"),
                "course_code": course.get("course_code"),
            }
            for assignment in assignments
        ]

    async def list_announcements(self, course: Dict[str, Any]) -> List[Dict[str, Any]]:
        announcements = await self._get_all("/announcements", {"context_codes[]": f"course_{course['id']}"})
        return [
            {
                **announcement,
                "kind": "announcement",
                "course_name": course.get("name"),
                "course_code": course.get("course_code"),
            }
            for announcement in announcements
        ]

    async def list_course_items(self) -> List[Dict[str, Any]]:
        """
        Assignments, quizzes and announcements across active courses.

        A failing course is logged and skipped; failing to list courses at
        all raises, so an unreachable Canvas is never reported as "no work".
        """
        items: List[Dict[str, Any]] = []
        for course in await self.list_courses():
            try:
                items.extend(await self.list_user_assignments(course))
                items.extend(await self.list_announcements(course))
            except (ProviderError, ProviderConnectionError) as e:
                logger.warning(f"Failed to fetch items for course {course.get('id')}: {e}")
        logger.debug(f"Fetched {len(items)} course items")
        return items
