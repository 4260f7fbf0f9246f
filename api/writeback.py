"""
Azure DevOps write-back API endpoints for dry-run and execute operations.
"""
from typing import Any, Dict, List, NoReturn, Optional
import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from middleware.internal_auth import InternalCaller, require_internal_caller
from models.enums import NodeKind
from models.nodes import InputNode, ResultNode
from services.audit_logger import AuditLogger
from services.context_resolver import ContextResolver
from services.errors import (
    ConfigurationError,
    PlanParseError,
    RemoteCallError,
    RunCancelledError,
    StructuralError,
    WriteBackError,
)
from services.hierarchy_orchestrator import HierarchyOrchestrator
from services.plan_parser import parse_test_plan, parse_work_item_plan
from src.ado_writeback_agent.config import get_settings
from src.ado_writeback_agent.version import __version__

# Module-level logger
logger = logging.getLogger(__name__)

router = APIRouter()


class PlanDryRunRequest(BaseModel):
    """Request model for test plan dry-run."""

    test_plan: Optional[InputNode] = Field(None, description="Structured test plan tree")
    content: Optional[str] = Field(None, description="Raw assistant output holding a test plan")


class PlanExecuteRequest(PlanDryRunRequest):
    """Request model for test plan creation."""

    organization: Optional[str] = Field(None, description="Azure DevOps organization (defaults to ADO_ORGANIZATION)")
    project: Optional[str] = Field(None, description="Azure DevOps project (defaults to ADO_PROJECT)")


class WorkItemsDryRunRequest(BaseModel):
    """Request model for work item dry-run."""

    work_items: Optional[List[InputNode]] = Field(None, description="Structured work item trees")
    content: Optional[str] = Field(None, description="Raw assistant output holding a workItems plan")


class WorkItemsExecuteRequest(WorkItemsDryRunRequest):
    """Request model for work item creation."""

    organization: Optional[str] = Field(None, description="Azure DevOps organization (defaults to ADO_ORGANIZATION)")
    project: Optional[str] = Field(None, description="Azure DevOps project (defaults to ADO_PROJECT)")
    team: Optional[str] = Field(None, description="Team used for default area paths (defaults to ADO_TEAM)")


class DryRunResponse(BaseModel):
    """Response model for dry-run operations."""

    node_counts: Dict[str, int] = Field(..., description="Number of nodes per kind")
    remote_calls: int = Field(..., description="Number of remote calls a successful run issues")
    checksum: str = Field(..., description="SHA-256 checksum of the normalized input")


class PlanExecuteResponse(BaseModel):
    """Response model for test plan creation."""

    run_id: str
    result: ResultNode
    created_count: int


class WorkItemsExecuteResponse(BaseModel):
    """Response model for work item creation."""

    run_id: str
    results: List[ResultNode]
    created_count: int


# ============================================================================
# Helpers
# ============================================================================

def _resolve_plan(plan_request: PlanDryRunRequest) -> InputNode:
    if plan_request.test_plan is not None:
        plan = plan_request.test_plan
    elif plan_request.content:
        try:
            plan = parse_test_plan(plan_request.content)
        except PlanParseError as e:
            raise HTTPException(status_code=400, detail=e.message)
    else:
        raise HTTPException(status_code=400, detail="Either test_plan or content is required")

    if plan.kind != NodeKind.PLAN:
        raise HTTPException(status_code=400, detail=f"test_plan root must be a plan, got {plan.kind.value}")
    return plan


def _resolve_work_items(items_request: WorkItemsDryRunRequest) -> List[InputNode]:
    if items_request.work_items is not None:
        roots = items_request.work_items
    elif items_request.content:
        try:
            roots = parse_work_item_plan(items_request.content)
        except PlanParseError as e:
            raise HTTPException(status_code=400, detail=e.message)
    else:
        raise HTTPException(status_code=400, detail="Either work_items or content is required")

    if not roots:
        raise HTTPException(status_code=400, detail="No work items to create")
    for root in roots:
        if root.kind != NodeKind.WORK_ITEM:
            raise HTTPException(status_code=400, detail=f"work_items roots must be work items, got {root.kind.value}")
    return roots


def _count_nodes(node: InputNode, counts: Dict[str, int]) -> None:
    counts[node.kind.value] = counts.get(node.kind.value, 0) + 1
    for child in node.children:
        _count_nodes(child, counts)


def _count_remote_calls(node: InputNode, has_parent: bool = False) -> int:
    """
    Number of calls a successful run issues for this subtree.

    Test cases take three calls (work item, suite membership, test points);
    child work items take two (create, link to parent).
    """
    if node.kind == NodeKind.CASE:
        own = 3
    elif node.kind == NodeKind.WORK_ITEM and has_parent:
        own = 2
    else:
        own = 1
    return own + sum(_count_remote_calls(child, True) for child in node.children)


def _compute_checksum(roots: List[InputNode]) -> str:
    """
    Compute SHA-256 checksum of the normalized input trees.

    Returns:
        SHA-256 checksum prefixed with "sha256:"
    """
    payload = json.dumps([root.model_dump(mode="json") for root in roots], sort_keys=True)
    return f"sha256:{hashlib.sha256(payload.encode('utf-8')).hexdigest()}"


def _dry_run(roots: List[InputNode]) -> DryRunResponse:
    counts: Dict[str, int] = {}
    for root in roots:
        _count_nodes(root, counts)
    return DryRunResponse(
        node_counts=counts,
        remote_calls=sum(_count_remote_calls(root) for root in roots),
        checksum=_compute_checksum(roots)
    )


def _error_detail(e: WriteBackError) -> Dict[str, Any]:
    detail: Dict[str, Any] = {
        "message": e.message,
        "error": type(e).__name__,
        "artifacts_may_exist": e.artifacts_may_exist,
        "created": [descriptor.model_dump() for descriptor in e.created],
    }
    if isinstance(e, RemoteCallError):
        detail.update({
            "node": e.node_name,
            "call": e.call.value if e.call else None,
            "status": e.status_code,
        })
    elif isinstance(e, StructuralError):
        detail["node"] = e.node_name
    if e.outcome is not None:
        detail["outcome"] = e.outcome.value
    if e.artifacts_may_exist:
        detail["caveat"] = "Some items may already exist in Azure DevOps and were not removed."
    return detail


def _raise_http(e: WriteBackError) -> NoReturn:
    if isinstance(e, ConfigurationError):
        raise HTTPException(status_code=500, detail=f"Configuration error: {e.message}")
    if isinstance(e, RunCancelledError):
        raise HTTPException(status_code=409, detail=_error_detail(e))
    raise HTTPException(status_code=502, detail=_error_detail(e))


def _audit(
    run_id: str,
    operation: str,
    root_name: str,
    organization: Optional[str],
    project: Optional[str],
    created_ids: List[int],
    error: Optional[WriteBackError] = None
) -> None:
    settings = get_settings()
    AuditLogger(settings.audit_log_dir).log_run({
        "run_id": run_id,
        "operation": operation,
        "root_name": root_name,
        "organization": organization or settings.organization,
        "project": project or settings.project,
        "result": "failed" if error else "success",
        "created_ids": created_ids,
        "artifacts_may_exist": error.artifacts_may_exist if error else bool(created_ids),
        "error": error.message if error else None,
        "executed_at": datetime.now(timezone.utc).isoformat()
    })


def _collect_ids(result: ResultNode) -> List[int]:
    ids = [result.id]
    for child in result.children:
        ids.extend(_collect_ids(child))
    return ids


# ============================================================================
# Test plan endpoints
# ============================================================================

@router.post("/api/v1/ado/test-plans/dry-run", response_model=DryRunResponse)
def plan_dry_run(plan_request: PlanDryRunRequest) -> DryRunResponse:
    """
    Validate a test plan and report what a run would create.

    No Azure DevOps calls are made.
    """
    plan = _resolve_plan(plan_request)
    return _dry_run([plan])


@router.post("/api/v1/ado/test-plans/execute", response_model=PlanExecuteResponse)
def plan_execute(
    plan_request: PlanExecuteRequest,
    caller: InternalCaller = Depends(require_internal_caller)
) -> PlanExecuteResponse:
    """
    Create a test plan with its suites and test cases in Azure DevOps.

    The bearer token in the Authorization header (if any) overrides the
    configured ADO_ACCESS_TOKEN. On failure the response detail lists what
    was already created; nothing is rolled back.
    """
    run_id = str(uuid.uuid4())
    plan = _resolve_plan(plan_request)
    logger.info(
        f"[ADO_WRITEBACK v{__version__}] run={run_id} creating test plan '{plan.name}' "
        f"({plan.count()} nodes, tenant={caller.tenant_id}, user={caller.user_id})"
    )

    resolver = ContextResolver(
        organization=plan_request.organization,
        project=plan_request.project,
        access_token=caller.access_token
    )
    orchestrator = HierarchyOrchestrator(resolver)
    try:
        result = orchestrator.create_test_plan(plan)
    except WriteBackError as e:
        if not isinstance(e, ConfigurationError):
            _audit(run_id, "test_plan", plan.name, plan_request.organization, plan_request.project,
                   [descriptor.id for descriptor in e.created], e)
        _raise_http(e)

    created_ids = _collect_ids(result)
    _audit(run_id, "test_plan", plan.name, plan_request.organization, plan_request.project, created_ids)
    return PlanExecuteResponse(run_id=run_id, result=result, created_count=len(created_ids))


# ============================================================================
# Work item endpoints
# ============================================================================

@router.post("/api/v1/ado/work-items/dry-run", response_model=DryRunResponse)
def work_items_dry_run(items_request: WorkItemsDryRunRequest) -> DryRunResponse:
    """Validate work item trees and report what a run would create."""
    roots = _resolve_work_items(items_request)
    return _dry_run(roots)


@router.post("/api/v1/ado/work-items/execute", response_model=WorkItemsExecuteResponse)
def work_items_execute(
    items_request: WorkItemsExecuteRequest,
    caller: InternalCaller = Depends(require_internal_caller)
) -> WorkItemsExecuteResponse:
    """Create work item trees (parents before children) in Azure DevOps."""
    run_id = str(uuid.uuid4())
    roots = _resolve_work_items(items_request)
    root_name = roots[0].name if len(roots) == 1 else f"{len(roots)} work item trees"
    logger.info(
        f"[ADO_WRITEBACK v{__version__}] run={run_id} creating {root_name} "
        f"({sum(root.count() for root in roots)} nodes, tenant={caller.tenant_id}, user={caller.user_id})"
    )

    resolver = ContextResolver(
        organization=items_request.organization,
        project=items_request.project,
        access_token=caller.access_token,
        team=items_request.team
    )
    orchestrator = HierarchyOrchestrator(resolver)
    try:
        results = orchestrator.create_work_items(roots)
    except WriteBackError as e:
        if not isinstance(e, ConfigurationError):
            _audit(run_id, "work_items", root_name, items_request.organization, items_request.project,
                   [descriptor.id for descriptor in e.created], e)
        _raise_http(e)

    created_ids = [work_item_id for result in results for work_item_id in _collect_ids(result)]
    _audit(run_id, "work_items", root_name, items_request.organization, items_request.project, created_ids)
    return WorkItemsExecuteResponse(run_id=run_id, results=results, created_count=len(created_ids))
