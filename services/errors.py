"""
Error taxonomy for Azure DevOps write-back runs.

All errors are fatal to the run that raised them. None of them imply that
remote objects created earlier in the run were removed.
"""
from typing import List, Optional

from models.enums import CreationStatus, RemoteCall
from models.nodes import RemoteDescriptor


class WriteBackError(Exception):
    """Base class for write-back failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        # Filled in by the orchestrator once the run has issued remote calls
        self.artifacts_may_exist = False
        self.created: List[RemoteDescriptor] = []
        # Set when a tracked item was created but its follow-up call did not complete
        self.outcome: Optional[CreationStatus] = None
        self.orphan: Optional[RemoteDescriptor] = None


class ConfigurationError(WriteBackError):
    """Raised when organization, project or credential cannot be resolved."""
    pass


class RemoteCallError(WriteBackError):
    """Raised when a single Azure DevOps call fails."""

    def __init__(
        self,
        message: str,
        call: Optional[RemoteCall] = None,
        node_name: Optional[str] = None,
        status_code: Optional[int] = None,
        remote_message: Optional[str] = None,
        type_name: Optional[str] = None
    ):
        super().__init__(message)
        self.call = call
        self.node_name = node_name
        self.status_code = status_code
        self.remote_message = remote_message
        self.type_name = type_name

    def for_node(self, call: RemoteCall, node_name: str) -> "RemoteCallError":
        """Return a copy naming the call and the node being created."""
        error = RemoteCallError(
            describe_failure(call, node_name, self.status_code, self.remote_message or self.message, self.type_name),
            call=call,
            node_name=node_name,
            status_code=self.status_code,
            remote_message=self.remote_message,
            type_name=self.type_name
        )
        error.outcome = self.outcome
        error.orphan = self.orphan
        return error


class StructuralError(WriteBackError):
    """Raised when Azure DevOps did not return a resource needed to continue."""

    def __init__(self, message: str, node_name: Optional[str] = None):
        super().__init__(message)
        self.node_name = node_name


class RunCancelledError(WriteBackError):
    """Raised when the caller cancelled the run before it completed."""
    pass


class PlanParseError(WriteBackError):
    """Raised when assistant output cannot be turned into an input tree."""
    pass


_CALL_LABELS = {
    RemoteCall.CREATE_PLAN: "create test plan",
    RemoteCall.CREATE_SUITE: "create test suite",
    RemoteCall.CREATE_WORK_ITEM: "create work item",
    RemoteCall.ADD_TO_SUITE: "add test case to suite",
    RemoteCall.CREATE_TEST_POINTS: "create test points",
    RemoteCall.LINK_PARENT: "link work item to parent",
}


def describe_failure(
    call: RemoteCall,
    node_name: str,
    status_code: Optional[int],
    detail: Optional[str],
    type_name: Optional[str] = None
) -> str:
    """
    Build the user-facing message for a failed call.

    Args:
        call: Call kind that failed
        node_name: Name of the node being created
        status_code: HTTP status, if a response was received
        detail: Remote error message or transport error text
        type_name: Remote exception type name, if reported

    Returns:
        Message naming what failed while creating what
    """
    label = _CALL_LABELS.get(call, call.value)
    if status_code == 401:
        reason = "Authentication failed (401). Ensure the token is valid and has the required scopes."
    elif status_code == 403:
        reason = "Authorization failed (403). Check permissions in the target project."
    elif status_code == 404:
        reason = "Project or API endpoint not found (404). Verify organization and project names."
    elif type_name and "ArgumentNullException" in type_name:
        reason = f"Server rejected request due to invalid parameter structure (ArgumentNullException: {detail})."
    else:
        reason = detail or "Unknown error"
    status = status_code if status_code is not None else "N/A"
    return f"Failed to {label} '{node_name}'. Status: {status}. Error: {reason}"
