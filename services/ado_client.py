"""
Azure DevOps REST client for test plan and work item write operations.

Every call is single-shot: failures are raised as RemoteCallError and never
retried here.
"""
from typing import Any, Dict, List, Optional
import json
import logging
import urllib.parse

import requests

from models.nodes import RemoteContext
from services.errors import RemoteCallError

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


class AdoClient:
    """Client bound to one organization/project and credential."""

    def __init__(self, context: RemoteContext, timeout: Optional[int] = None):
        """
        Initialize Azure DevOps client.

        Args:
            context: Resolved organization, project and bearer token
            timeout: Request timeout in seconds (default: context.timeout)
        """
        self.context = context
        self.timeout = timeout or context.timeout
        self.project_url = context.project_url

    def _api_url(self, path: str) -> str:
        return f"{self.project_url}/_apis/{path}?api-version={self.context.api_version}"

    def _make_request(
        self,
        path: str,
        method: str = "POST",
        data: Optional[Any] = None,
        content_type: str = JSON_CONTENT_TYPE
    ) -> Dict[str, Any]:
        """
        Make authenticated request to Azure DevOps API.

        Args:
            path: API path below _apis (e.g., "testplan/plans")
            method: HTTP method (POST, PATCH)
            data: Request body (serialized as JSON)
            content_type: Content-Type header value

        Returns:
            JSON response from Azure DevOps API

        Raises:
            RemoteCallError: If request fails
        """
        url = self._api_url(path)
        headers = {
            "Authorization": f"Bearer {self.context.access_token}",
            "Accept": JSON_CONTENT_TYPE,
            "Content-Type": content_type
        }
        body = json.dumps(data) if data is not None else None
        logger.info(f"REQUEST {method} {url} ({len(body or '')} bytes)")

        try:
            if method == "POST":
                response = requests.post(url, headers=headers, data=body, timeout=self.timeout)
            elif method == "PATCH":
                response = requests.patch(url, headers=headers, data=body, timeout=self.timeout)
            else:
                raise RemoteCallError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            logger.info(f"RESPONSE {method} {url} status={response.status_code}")
            # Some responses may be empty (204 No Content)
            if response.content:
                return response.json()
            return {}
        except requests.exceptions.Timeout:
            raise RemoteCallError(
                f"Azure DevOps API request timed out after {self.timeout} seconds.",
                remote_message=f"Timed out after {self.timeout} seconds"
            )
        except requests.exceptions.HTTPError as e:
            status_code, remote_message, type_name = _parse_error_response(e.response)
            logger.error(
                f"Azure DevOps API error: {method} {url} status={status_code} "
                f"type={type_name} message={remote_message}"
            )
            raise RemoteCallError(
                f"Azure DevOps API request failed: {remote_message or str(e)}",
                status_code=status_code,
                remote_message=remote_message or str(e),
                type_name=type_name
            )
        except ValueError as e:
            # Response body was not JSON; requests' JSONDecodeError is also a RequestException
            raise RemoteCallError(
                f"Azure DevOps API returned an unreadable response: {str(e)}",
                remote_message=str(e)
            )
        except requests.exceptions.RequestException as e:
            raise RemoteCallError(
                f"Azure DevOps API request failed: {str(e)}",
                remote_message=str(e)
            )

    def create_test_plan(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST testplan/plans."""
        return self._make_request("testplan/plans", data=body)

    def create_test_suite(self, plan_id: int, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST testplan/Plans/{plan_id}/suites."""
        return self._make_request(f"testplan/Plans/{plan_id}/suites", data=body)

    def create_work_item(self, work_item_type: str, patch_document: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Create a work item from a JSON Patch document.

        Args:
            work_item_type: Work item type name (e.g., "Test Case", "User Story")
            patch_document: Ordered list of patch operations

        Returns:
            Created work item (id, fields, url, _links)
        """
        type_segment = urllib.parse.quote(f"${work_item_type}", safe="$")
        return self._make_request(
            f"wit/workitems/{type_segment}",
            data=patch_document,
            content_type=JSON_PATCH_CONTENT_TYPE
        )

    def update_work_item(self, work_item_id: int, patch_document: List[Dict[str, Any]]) -> Dict[str, Any]:
        """PATCH wit/workitems/{id}."""
        return self._make_request(
            f"wit/workitems/{work_item_id}",
            method="PATCH",
            data=patch_document,
            content_type=JSON_PATCH_CONTENT_TYPE
        )

    def add_test_case_to_suite(self, plan_id: int, suite_id: int, test_case_id: int) -> Dict[str, Any]:
        """Register an existing Test Case work item as a member of a suite."""
        body = {"workItems": [{"id": str(test_case_id)}]}
        return self._make_request(f"testplan/Plans/{plan_id}/Suites/{suite_id}/TestCase", data=body)

    def create_test_points(self, plan_id: int, suite_id: int, test_case_id: int) -> Dict[str, Any]:
        """Create execution points for a test case within a suite."""
        body = {"pointsFilter": {"testcaseIds": [test_case_id]}}
        return self._make_request(f"test/Plans/{plan_id}/Suites/{suite_id}/Points", data=body)

    def work_item_api_url(self, work_item_id: int) -> str:
        """REST URL of a work item, used when linking relations."""
        return f"{self.project_url}/_apis/wit/workItems/{work_item_id}"


def _parse_error_response(response: Optional[requests.Response]) -> tuple[Optional[int], Optional[str], Optional[str]]:
    """Extract status, message and typeName from an Azure DevOps error response."""
    if response is None:
        return None, None, None
    message = None
    type_name = None
    try:
        payload = response.json()
        if isinstance(payload, dict):
            message = payload.get("message")
            type_name = payload.get("typeName")
    except ValueError:
        message = (response.text or "").strip()[:500] or None
    return response.status_code, message, type_name
