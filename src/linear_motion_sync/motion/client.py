"""Motion REST API client."""

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from linear_motion_sync.errors import AuthenticationError, ConnectivityError, MotionApiError
from linear_motion_sync.motion.models import MotionTask, MotionUser, MotionWorkspace
from linear_motion_sync.utils.http import RateLimiter, RetryPolicy

logger = logging.getLogger(__name__)


class MotionClient:
    """Client for the Motion API.

    Every request waits on the shared rate limiter (Motion allows 12 requests
    per minute for individual accounts) and transient failures are retried
    with exponential backoff.
    """

    BASE_URL = "https://api.usemotion.com/v1"
    MAX_PAGES = 50

    def __init__(
        self,
        api_key: str,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize Motion client.

        Args:
            api_key: Motion API key.
            rate_limiter: Shared quota; defaults to 12 calls per minute.
            retry_policy: Retry policy for transient failures.
            client: Preconfigured HTTP client (used by tests).
            timeout: Request timeout in seconds.

        Raises:
            ValueError: If no API key is provided.
        """
        if not api_key:
            raise ValueError("Motion API key not provided")

        self.api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter(max_calls=12, period=60.0)
        self.retry_policy = retry_policy or RetryPolicy(max_retries=3, base_delay=10.0, max_delay=60.0)
        self.client = client or httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={"X-API-Key": api_key, "Accept": "application/json"},
            timeout=timeout,
        )
        self._workspaces: list[MotionWorkspace] | None = None
        self._workspaces_lock = asyncio.Lock()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            ConnectivityError: If Motion cannot be reached after retries.
            AuthenticationError: If Motion rejects the API key.
            MotionApiError: On other non-success responses, undecodable
                bodies or bad JSON.
        """

        async def send() -> httpx.Response:
            await self.rate_limiter.acquire()
            logger.debug(f"Making Motion API request: {method} {endpoint}")
            response = await self.client.request(method, endpoint, params=params, json=json)
            response.raise_for_status()
            return response

        try:
            response = await self.retry_policy.call(send)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            text = e.response.text
            logger.error(f"Motion API error: {status} - {text}")
            if status in (401, 403):
                raise AuthenticationError("Motion", f"HTTP {status}: {text}", status) from e
            raise MotionApiError(f"HTTP {status}: {text}", status) from e
        except httpx.TransportError as e:
            raise ConnectivityError("Motion", f"Request failed: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"Unreadable Motion response for {method} {endpoint}: {e}")
            raise MotionApiError(f"Malformed response: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Failed to parse Motion response: {response.text}")
            raise MotionApiError(f"Malformed response: {e}") from e

    async def get_current_user(self) -> MotionUser:
        """Get the user owning the API key."""
        data = await self._request("GET", "/users/me")
        try:
            user = MotionUser.model_validate(data)
        except ValidationError as e:
            raise MotionApiError(f"Malformed user payload: {e}") from e
        logger.debug(f"Connected to Motion as: {user.name} ({user.email})")
        return user

    async def list_workspaces(self) -> list[MotionWorkspace]:
        """List workspaces, caching the result for the client's lifetime."""
        async with self._workspaces_lock:
            if self._workspaces is not None:
                logger.debug(f"Using cached Motion workspaces ({len(self._workspaces)})")
                return list(self._workspaces)

            data = await self._request("GET", "/workspaces")
            try:
                workspaces = [MotionWorkspace.model_validate(w) for w in data["workspaces"]]
            except (KeyError, TypeError, ValidationError) as e:
                raise MotionApiError(f"Malformed workspaces payload: {e}") from e

            logger.info(f"Found {len(workspaces)} Motion workspaces")
            self._workspaces = workspaces
            return list(workspaces)

    async def create_task(self, task: MotionTask) -> MotionTask:
        """Create a task.

        Args:
            task: Task to create; must carry a workspace.

        Returns:
            Created task with its Motion ID.
        """
        data = await self._request("POST", "/tasks", json=task.to_create_payload())
        created = self._parse_task(data)
        logger.info(f"Created Motion task: {created.name} (ID: {created.id})")
        return created

    async def update_task(self, task_id: str, task: MotionTask) -> MotionTask:
        """Update an existing task.

        Args:
            task_id: Motion task ID.
            task: Updated task data.

        Returns:
            Task as returned by Motion.
        """
        data = await self._request("PATCH", f"/tasks/{task_id}", json=task.to_update_payload())
        updated = self._parse_task(data)
        logger.debug(f"Updated Motion task: {task_id}")
        return updated

    async def list_completed_tasks(self, workspace_id: str) -> list[MotionTask]:
        """List completed tasks in a workspace.

        Args:
            workspace_id: Motion workspace ID.

        Returns:
            Tasks whose ``completed`` flag is set.
        """
        params: dict[str, Any] = {"workspaceId": workspace_id, "includeAllStatuses": "true"}
        tasks: list[MotionTask] = []

        for _ in range(self.MAX_PAGES):
            data = await self._request("GET", "/tasks", params=params)
            try:
                tasks.extend(MotionTask.model_validate(t) for t in data["tasks"])
            except (KeyError, TypeError, ValidationError) as e:
                raise MotionApiError(f"Malformed task list payload: {e}") from e

            cursor = (data.get("meta") or {}).get("nextCursor")
            if not cursor:
                break
            params = {**params, "cursor": cursor}

        completed = [task for task in tasks if task.completed]
        logger.debug(f"Found {len(completed)} completed tasks in workspace {workspace_id}")
        return completed

    @staticmethod
    def _parse_task(data: Any) -> MotionTask:
        try:
            return MotionTask.model_validate(data)
        except ValidationError as e:
            raise MotionApiError(f"Malformed task payload: {e}") from e

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "MotionClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.aclose()
