"""
Per-kind creators for test plans, test suites, test cases and work items.

Each creator issues the remote call(s) for exactly one node and normalizes
the response into a RemoteDescriptor. Test cases and child work items need a
second call after the item exists; when that second call fails the item is
left in Azure DevOps and reported as CREATED_BUT_UNLINKED on the error.
"""
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging
import threading

from models.enums import CreationStatus, NodeKind, RemoteCall
from models.nodes import InputNode, RemoteContext, RemoteDescriptor
from services.ado_client import AdoClient
from services.errors import RemoteCallError, RunCancelledError, StructuralError, WriteBackError
from services.wire_encoder import add_operation, append_additional_fields, encode_steps

logger = logging.getLogger(__name__)

# Lowercase names the creators set explicitly (excluded from generic field processing)
TEST_CASE_HANDLED_FIELDS = ("title", "name", "area", "areapath", "iteration", "iterationpath", "steps", "description")
WORK_ITEM_HANDLED_FIELDS = ("title", "description", "area", "areapath", "iteration", "iterationpath")

PARENT_LINK_TYPE = "System.LinkTypes.Hierarchy-Reverse"


class ResourceCreator:
    """Creates one remote entity per call."""

    def __init__(
        self,
        client_factory: Callable[[RemoteContext], AdoClient] = AdoClient,
        cancel_event: Optional[threading.Event] = None
    ):
        """
        Initialize creator.

        Args:
            client_factory: Builds the REST client for a context
            cancel_event: When set, no further remote calls are issued
        """
        self.client_factory = client_factory
        self.cancel_event = cancel_event

    def _checkpoint(self, call: RemoteCall, node_name: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.warning(f"Run cancelled before {call.value} for '{node_name}'")
            raise RunCancelledError(f"Run cancelled before {call.value} for '{node_name}'")

    def _call(self, call: RemoteCall, node_name: str, fn: Callable[..., Dict[str, Any]], *args: Any) -> Dict[str, Any]:
        self._checkpoint(call, node_name)
        try:
            return fn(*args)
        except RemoteCallError as e:
            error = e.for_node(call, node_name)
            logger.error(f"ERROR - {error.message}")
            raise error from e

    # ------------------------------------------------------------------
    # Test plans
    # ------------------------------------------------------------------

    def create_plan(self, context: RemoteContext, parent_id: Optional[int], node: InputNode) -> RemoteDescriptor:
        """
        Create a test plan. Plans have no parent; ``parent_id`` must be None.

        The returned descriptor carries the plan's implicit root suite id
        when Azure DevOps reports one.
        """
        if parent_id is not None:
            raise StructuralError(f"Test plan '{node.name}' cannot be created under parent {parent_id}", node.name)

        client = self.client_factory(context)
        body: Dict[str, Any] = {
            "name": node.name or "Untitled Test Plan",
            # Root area/iteration paths match the project name
            "areaPath": _field_value(node.fields, "AreaPath", "area") or context.project,
            "iteration": _field_value(node.fields, "IterationPath", "iteration") or context.project,
        }
        if node.body:
            body["description"] = node.body

        logger.info(f"Creating test plan '{body['name']}' in project {context.project}...")
        created = self._call(RemoteCall.CREATE_PLAN, node.name, client.create_test_plan, body)
        plan_id = _require_id(created, "test plan", node.name)

        root_suite = created.get("rootSuite") or {}
        descriptor = RemoteDescriptor(
            id=plan_id,
            name=created.get("name") or body["name"],
            url=_link(created, "self") or f"{client.project_url}/_testPlans/execute?planId={plan_id}",
            api_url=created.get("url"),
            root_suite_id=root_suite.get("id")
        )
        logger.info(f"Created test plan '{descriptor.name}' with ID {plan_id} (root suite {descriptor.root_suite_id})")
        return descriptor

    # ------------------------------------------------------------------
    # Test suites
    # ------------------------------------------------------------------

    def create_suite(
        self,
        context: RemoteContext,
        parent_id: Optional[int],
        node: InputNode,
        plan_id: int
    ) -> RemoteDescriptor:
        """Create a static test suite under ``parent_id`` within plan ``plan_id``."""
        if parent_id is None:
            raise StructuralError(f"Test suite '{node.name}' requires a parent suite id", node.name)

        client = self.client_factory(context)
        body = {
            "name": node.name or "Untitled Suite",
            "suiteType": "StaticTestSuite",
            "parentSuite": {"id": parent_id}
        }
        logger.info(f"Creating test suite '{body['name']}' under parent suite {parent_id} in test plan {plan_id}...")
        created = self._call(RemoteCall.CREATE_SUITE, node.name, client.create_test_suite, plan_id, body)
        suite_id = _require_id(created, "test suite", node.name)

        descriptor = RemoteDescriptor(
            id=suite_id,
            name=created.get("name") or body["name"],
            url=_link(created, "self") or f"{client.project_url}/_testPlans/execute?planId={plan_id}&suiteId={suite_id}",
            api_url=created.get("url")
        )
        logger.info(f"Created test suite '{descriptor.name}' with ID {suite_id}")
        return descriptor

    # ------------------------------------------------------------------
    # Test cases
    # ------------------------------------------------------------------

    def build_test_case_patch(self, context: RemoteContext, node: InputNode) -> List[Dict[str, Any]]:
        """Build the JSON Patch document for a Test Case work item."""
        patch_document = [
            add_operation("System.Title", node.name or "Untitled Test Case"),
            # Default Area/Iteration Paths to project name if not specified in fields
            add_operation("System.AreaPath", _field_value(node.fields, "AreaPath", "area") or context.project),
            add_operation("System.IterationPath", _field_value(node.fields, "IterationPath", "iteration") or context.project),
        ]
        if node.body:
            patch_document.append(add_operation("System.Description", node.body))
        if node.priority:
            patch_document.append(add_operation("Microsoft.VSTS.Common.Priority", str(node.priority)))
        patch_document.append(add_operation("Microsoft.VSTS.TCM.Steps", encode_steps(node.steps)))
        return append_additional_fields(patch_document, node.fields, TEST_CASE_HANDLED_FIELDS)

    def create_test_case(
        self,
        context: RemoteContext,
        parent_id: Optional[int],
        node: InputNode,
        plan_id: int
    ) -> RemoteDescriptor:
        """
        Create a Test Case work item and register it in suite ``parent_id``.

        Two steps, not atomic: (a) create the work item, (b) add it to the
        suite and create its test points. If (b) fails the work item stays
        in Azure DevOps; the raised error has ``outcome`` set to
        CREATED_BUT_UNLINKED and ``orphan`` describing the item.
        """
        if parent_id is None:
            raise StructuralError(f"Test case '{node.name}' requires a suite id", node.name)

        client = self.client_factory(context)
        logger.info(f"Creating test case '{node.name}' for test suite {parent_id}...")

        # Step 1: Create the Test Case as a Work Item
        patch_document = self.build_test_case_patch(context, node)
        created = self._call(RemoteCall.CREATE_WORK_ITEM, node.name, client.create_work_item, "Test Case", patch_document)
        descriptor = self._work_item_descriptor(client, created, node)
        logger.info(f"Created test case work item '{descriptor.name}' with ID {descriptor.id}")

        # Step 2: Add the work item to the suite and create its test points
        try:
            self._call(RemoteCall.ADD_TO_SUITE, node.name, client.add_test_case_to_suite, plan_id, parent_id, descriptor.id)
            self._call(RemoteCall.CREATE_TEST_POINTS, node.name, client.create_test_points, plan_id, parent_id, descriptor.id)
        except WriteBackError as e:
            e.outcome = CreationStatus.CREATED_BUT_UNLINKED
            e.orphan = descriptor
            logger.error(
                f"Test case work item {descriptor.id} was created but not registered in suite {parent_id}; "
                f"it remains in project {context.project}"
            )
            raise

        logger.info(f"Added test case work item ID {descriptor.id} to test suite {parent_id} and created test points")
        return descriptor

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def build_work_item_patch(self, context: RemoteContext, node: InputNode) -> List[Dict[str, Any]]:
        """Build the JSON Patch document for a generic work item."""
        if context.team:
            default_area = f"{context.project}\\{context.team}"
        else:
            default_area = context.project

        patch_document = [
            add_operation("System.Title", node.name),
            add_operation("System.TeamProject", context.project),
            add_operation("System.AreaPath", _field_value(node.fields, "AreaPath", "area") or default_area),
        ]
        iteration = _field_value(node.fields, "IterationPath", "iteration")
        if iteration:
            patch_document.append(add_operation("System.IterationPath", iteration))
        if node.body:
            patch_document.append(add_operation("System.Description", node.body))
        if node.acceptance_criteria:
            patch_document.append(add_operation("Microsoft.VSTS.Common.AcceptanceCriteria", node.acceptance_criteria))
        return append_additional_fields(patch_document, node.fields, WORK_ITEM_HANDLED_FIELDS)

    def create_work_item(
        self,
        context: RemoteContext,
        parent_id: Optional[int],
        node: InputNode,
        parent_api_url: Optional[str] = None
    ) -> RemoteDescriptor:
        """
        Create a work item and, when ``parent_id`` is given, link it to its parent.

        The relation targets ``parent_api_url`` (the parent's own REST url as
        returned on creation) and falls back to a url built from ``parent_id``.

        The link is a second call; if it fails the work item stays unlinked in
        Azure DevOps and the raised error reports it as CREATED_BUT_UNLINKED.
        """
        client = self.client_factory(context)
        logger.info(f"Creating {node.work_item_type} '{node.name}' (parent={parent_id})...")

        patch_document = self.build_work_item_patch(context, node)
        created = self._call(
            RemoteCall.CREATE_WORK_ITEM, node.name, client.create_work_item, node.work_item_type, patch_document
        )
        descriptor = self._work_item_descriptor(client, created, node)
        logger.info(f"Created {node.work_item_type} '{descriptor.name}' with ID {descriptor.id}")

        if parent_id is not None:
            link_document = [{
                "op": "add",
                "path": "/relations/-",
                "value": {
                    "rel": PARENT_LINK_TYPE,
                    "url": parent_api_url or client.work_item_api_url(parent_id)
                }
            }]
            try:
                self._call(RemoteCall.LINK_PARENT, node.name, client.update_work_item, descriptor.id, link_document)
            except WriteBackError as e:
                e.outcome = CreationStatus.CREATED_BUT_UNLINKED
                e.orphan = descriptor
                logger.error(f"Work item {descriptor.id} was created but not linked to parent {parent_id}")
                raise
            logger.info(f"Linked work item {descriptor.id} to parent {parent_id}")

        return descriptor

    def create(
        self,
        context: RemoteContext,
        parent_id: Optional[int],
        node: InputNode,
        plan_id: Optional[int] = None,
        parent_api_url: Optional[str] = None
    ) -> RemoteDescriptor:
        """Dispatch to the creator matching ``node.kind``."""
        if node.kind == NodeKind.PLAN:
            return self.create_plan(context, parent_id, node)
        if node.kind == NodeKind.WORK_ITEM:
            return self.create_work_item(context, parent_id, node, parent_api_url)
        if plan_id is None:
            raise StructuralError(f"{node.kind.value} '{node.name}' can only be created inside a test plan", node.name)
        if node.kind == NodeKind.SUITE:
            return self.create_suite(context, parent_id, node, plan_id)
        return self.create_test_case(context, parent_id, node, plan_id)

    def _work_item_descriptor(self, client: AdoClient, created: Dict[str, Any], node: InputNode) -> RemoteDescriptor:
        work_item_id = _require_id(created, "work item", node.name)
        fields = created.get("fields") or {}
        return RemoteDescriptor(
            id=work_item_id,
            name=fields.get("System.Title") or node.name,
            url=_link(created, "html") or f"{client.project_url}/_workitems/edit/{work_item_id}",
            api_url=created.get("url") or client.work_item_api_url(work_item_id)
        )


def _require_id(created: Dict[str, Any], what: str, node_name: str) -> int:
    created_id = created.get("id") if isinstance(created, dict) else None
    if created_id is None:
        raise StructuralError(f"Azure DevOps did not return an id for {what} '{node_name}'", node_name)
    return int(created_id)


def _link(created: Dict[str, Any], rel: str) -> Optional[str]:
    return ((created.get("_links") or {}).get(rel) or {}).get("href")


def _field_value(fields: Mapping[str, Any], *names: str) -> Optional[str]:
    """Case-insensitive lookup of the first non-empty field among ``names``."""
    lowered = {key.lower(): value for key, value in fields.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None and value != "":
            return str(value)
    return None
