"""Linear GraphQL API client."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from linear_motion_sync.errors import AuthenticationError, ConnectivityError, LinearApiError
from linear_motion_sync.linear.models import LinearIssue, LinearUser

logger = logging.getLogger(__name__)

ISSUE_FIELDS = """
    id
    identifier
    title
    description
    state { id name type }
    assignee { id name email }
    team { id name key }
    project { id name description state }
    priority
    estimate
    createdAt
    updatedAt
    dueDate
    completedAt
    labels { nodes { id name color } }
"""

VIEWER_QUERY = """
query {
    viewer { id name email }
}
"""

ASSIGNED_ISSUES_QUERY = """
query GetAssignedIssues($filter: IssueFilter, $after: String) {
    issues(filter: $filter, first: 100, after: $after) {
        nodes {%s}
        pageInfo { hasNextPage endCursor }
    }
}
""" % ISSUE_FIELDS

ISSUE_LABELS_QUERY = """
query CheckIssueLabel($issueId: String!) {
    issue(id: $issueId) {
        labels { nodes { name } }
    }
}
"""

FIND_LABEL_QUERY = """
query FindLabel($name: String!) {
    issueLabels(filter: { name: { eq: $name } }, first: 1) {
        nodes { id name }
    }
}
"""

CREATE_LABEL_MUTATION = """
mutation CreateLabel($name: String!, $color: String!) {
    issueLabelCreate(input: { name: $name, color: $color }) {
        success
        issueLabel { id name }
    }
}
"""

ADD_LABEL_MUTATION = """
mutation AddLabelToIssue($issueId: String!, $labelId: String!) {
    issueAddLabel(id: $issueId, labelId: $labelId) {
        success
    }
}
"""


class LinearClient:
    """Client for the Linear GraphQL API."""

    BASE_URL = "https://api.linear.app/graphql"
    LABEL_COLOR = "#3B82F6"
    MAX_PAGES = 20

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize Linear client.

        Args:
            api_key: Linear personal API key.
            client: Preconfigured HTTP client (used by tests).
            timeout: Request timeout in seconds.

        Raises:
            ValueError: If no API key is provided.
        """
        if not api_key:
            raise ValueError("Linear API key not provided")

        self.api_key = api_key
        self.client = client or httpx.AsyncClient(
            headers={"Authorization": api_key, "Content-Type": "application/json"},
            timeout=timeout,
        )
        self._viewer: LinearUser | None = None

    async def _execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL operation and return its ``data`` member.

        Raises:
            ConnectivityError: If Linear cannot be reached.
            AuthenticationError: If Linear rejects the API key.
            LinearApiError: On non-success responses, GraphQL errors or
                malformed payloads.
        """
        payload: dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables

        try:
            response = await self.client.post(self.BASE_URL, json=payload)
        except httpx.TransportError as e:
            raise ConnectivityError("Linear", f"Request failed: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"Unreadable Linear response: {e}")
            raise LinearApiError(f"Malformed response: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                "Linear", f"HTTP {response.status_code}: {response.text}", response.status_code
            )
        if not response.is_success:
            logger.error(f"Linear API error: {response.status_code} - {response.text}")
            raise LinearApiError(
                f"HTTP {response.status_code}: {response.text}", response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse Linear response: {response.text}")
            raise LinearApiError(f"Malformed response: {e}") from e

        if not isinstance(body, dict):
            raise LinearApiError("Malformed response: expected a JSON object")

        errors = body.get("errors")
        if errors:
            messages = [str(error.get("message", error)) for error in errors]
            logger.error(f"Linear GraphQL errors: {messages}")
            raise LinearApiError(", ".join(messages))

        data = body.get("data")
        if data is None:
            raise LinearApiError("No data in response")
        return data

    async def get_viewer(self) -> LinearUser:
        """Get the user owning the API key.

        Always queries Linear, so it doubles as the connectivity check. The
        result is remembered for the issue queries that follow.

        Returns:
            Authenticated user.
        """
        data = await self._execute(VIEWER_QUERY)
        try:
            viewer = LinearUser.model_validate(data["viewer"])
        except (KeyError, TypeError, ValidationError) as e:
            raise LinearApiError(f"Malformed viewer payload: {e}") from e
        logger.info(f"Connected to Linear as: {viewer.name} ({viewer.email})")
        self._viewer = viewer
        return viewer

    async def get_assigned_issues(self, project_ids: list[str] | None = None) -> list[LinearIssue]:
        """Get open issues assigned to the authenticated user.

        Args:
            project_ids: Restrict to these projects. None or an empty list
                means every project.

        Returns:
            Issues in the order Linear returns them.
        """
        viewer = self._viewer or await self.get_viewer()

        issue_filter: dict[str, Any] = {
            "assignee": {"id": {"eq": viewer.id}},
            "state": {"type": {"nin": ["completed", "canceled"]}},
        }
        if project_ids:
            issue_filter["project"] = {"id": {"in": project_ids}}

        issues: list[LinearIssue] = []
        after: str | None = None
        for _ in range(self.MAX_PAGES):
            data = await self._execute(
                ASSIGNED_ISSUES_QUERY, {"filter": issue_filter, "after": after}
            )
            try:
                connection = data["issues"]
                issues.extend(LinearIssue.model_validate(node) for node in connection["nodes"])
                page_info = connection.get("pageInfo") or {}
            except (KeyError, TypeError, ValidationError) as e:
                raise LinearApiError(f"Malformed issues payload: {e}") from e

            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")
        else:
            logger.warning(f"Stopped after {self.MAX_PAGES} pages of assigned issues")

        logger.info(f"Found {len(issues)} assigned issues")
        return issues

    async def check_issue_has_label(self, issue_id: str, label_name: str) -> bool:
        """Check whether an issue currently carries a label.

        Args:
            issue_id: Linear issue ID.
            label_name: Label name to look for.

        Returns:
            True if the label is attached to the issue.
        """
        data = await self._execute(ISSUE_LABELS_QUERY, {"issueId": issue_id})
        try:
            nodes = data["issue"]["labels"]["nodes"]
        except (KeyError, TypeError) as e:
            raise LinearApiError(f"Malformed issue labels payload: {e}") from e

        has_label = any(node.get("name") == label_name for node in nodes)
        logger.debug(f"Issue {issue_id} has label '{label_name}': {has_label}")
        return has_label

    async def get_or_create_label(self, label_name: str) -> str:
        """Return the ID of a workspace label, creating it if needed."""
        data = await self._execute(FIND_LABEL_QUERY, {"name": label_name})
        try:
            nodes = data["issueLabels"]["nodes"]
        except (KeyError, TypeError) as e:
            raise LinearApiError(f"Malformed label payload: {e}") from e
        if nodes:
            return nodes[0]["id"]

        data = await self._execute(
            CREATE_LABEL_MUTATION, {"name": label_name, "color": self.LABEL_COLOR}
        )
        result = data.get("issueLabelCreate") or {}
        label = result.get("issueLabel")
        if not result.get("success") or not label:
            raise LinearApiError(f"Failed to create label '{label_name}'")

        logger.info(f"Created label '{label_name}' with ID: {label['id']}")
        return label["id"]

    async def add_label_to_issue(self, issue_id: str, label_name: str) -> None:
        """Attach a label to an issue.

        Args:
            issue_id: Linear issue ID.
            label_name: Label name; created in the workspace if missing.

        Raises:
            LinearApiError: If Linear does not confirm the change.
        """
        label_id = await self.get_or_create_label(label_name)
        data = await self._execute(ADD_LABEL_MUTATION, {"issueId": issue_id, "labelId": label_id})

        result = data.get("issueAddLabel") or {}
        if not result.get("success"):
            raise LinearApiError(f"Failed to add label '{label_name}' to issue {issue_id}")
        logger.debug(f"Added label '{label_name}' to issue {issue_id}")

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "LinearClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.aclose()
