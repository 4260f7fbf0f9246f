"""
Hierarchy orchestrator: materializes an InputNode tree in Azure DevOps.

Nodes are processed top-down and strictly in input order. A node's remote id
is always known before any call that uses it as a parent, and the returned
ResultNode tree mirrors the input tree 1:1. The first failure aborts the run;
nothing created before it is rolled back.
"""
from typing import List, Optional
import logging
import threading

from models.enums import NodeKind
from models.nodes import InputNode, RemoteContext, RemoteDescriptor, ResultNode
from services.context_resolver import ContextResolver
from services.errors import RunCancelledError, StructuralError, WriteBackError
from services.resource_creator import ResourceCreator

logger = logging.getLogger(__name__)


class HierarchyOrchestrator:
    """Runs one or more creation passes against a single resolved context."""

    def __init__(
        self,
        resolver: ContextResolver,
        creator: Optional[ResourceCreator] = None,
        cancel_event: Optional[threading.Event] = None
    ):
        """
        Initialize orchestrator.

        Args:
            resolver: Produces the RemoteContext (called once per run)
            creator: Per-kind remote creator (default: ResourceCreator sharing ``cancel_event``)
            cancel_event: When set, the run stops before its next remote call
        """
        self.resolver = resolver
        self.cancel_event = cancel_event
        self.creator = creator or ResourceCreator(cancel_event=cancel_event)
        self._created: List[RemoteDescriptor] = []

    def create_test_plan(self, plan: InputNode) -> ResultNode:
        """
        Create a test plan with its suites and test cases.

        Raises:
            ConfigurationError: Before any remote call, if context is unavailable
            RemoteCallError: If a call fails (earlier creations are left in place)
            StructuralError: If Azure DevOps omits a resource needed to continue
            RunCancelledError: If the run was cancelled
        """
        if plan.kind != NodeKind.PLAN:
            raise StructuralError(f"Expected a test plan at the root, got {plan.kind.value} '{plan.name}'", plan.name)
        return self.run(plan)

    def create_work_items(self, roots: List[InputNode]) -> List[ResultNode]:
        """
        Create several work item trees in order, resolving context once.

        Fails fast: the first failure aborts the remaining roots.
        """
        for root in roots:
            if root.kind != NodeKind.WORK_ITEM:
                raise StructuralError(f"Expected work items at the root, got {root.kind.value} '{root.name}'", root.name)

        self._created = []
        context = self.resolver.resolve()
        results = []
        for root in roots:
            results.append(self._guarded(context, root))
        logger.info(f"Created {len(results)} work item tree(s) with {sum(r.count() for r in results)} item(s)")
        return results

    def run(self, root: InputNode) -> ResultNode:
        """Create ``root`` and its whole subtree."""
        self._created = []
        context = self.resolver.resolve()
        result = self._guarded(context, root)
        logger.info(f"Created {root.kind.value} '{result.name}' with {result.count()} node(s) in total")
        return result

    def _guarded(self, context: RemoteContext, root: InputNode) -> ResultNode:
        try:
            if root.kind == NodeKind.PLAN:
                return self._create_plan(context, root)
            if root.kind == NodeKind.WORK_ITEM:
                return self._create_work_item(context, None, root)
            raise StructuralError(
                f"{root.kind.value} '{root.name}' cannot be created without an enclosing test plan", root.name
            )
        except WriteBackError as e:
            created = list(self._created)
            if e.orphan is not None:
                created.append(e.orphan)
            e.created = created
            e.artifacts_may_exist = bool(created)
            logger.error(
                f"Run aborted: {e.message} "
                f"({len(created)} item(s) already exist in project {context.project})"
            )
            raise

    def _check_cancelled(self, node: InputNode) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RunCancelledError(f"Run cancelled before creating {node.kind.value} '{node.name}'")

    def _record(self, descriptor: RemoteDescriptor) -> None:
        self._created.append(descriptor)

    def _create_plan(self, context: RemoteContext, plan: InputNode) -> ResultNode:
        self._check_cancelled(plan)
        descriptor = self.creator.create(context, None, plan)
        self._record(descriptor)

        # Top-level suites go under the plan's implicit root suite, not the plan id
        if plan.children and descriptor.root_suite_id is None:
            raise StructuralError(
                f"Cannot create {len(plan.children)} top-level suite(s) for test plan '{descriptor.name}' "
                f"(ID {descriptor.id}): the root suite ID is missing from the plan creation response.",
                plan.name
            )

        result = _result_from(plan, descriptor)
        for suite in plan.children:
            result.children.append(self._create_suite(context, descriptor.id, descriptor.root_suite_id, suite))
        return result

    def _create_suite(self, context: RemoteContext, plan_id: int, parent_id: int, suite: InputNode) -> ResultNode:
        self._check_cancelled(suite)
        descriptor = self.creator.create(context, parent_id, suite, plan_id=plan_id)
        self._record(descriptor)

        result = _result_from(suite, descriptor)
        for child in suite.children:
            if child.kind == NodeKind.SUITE:
                result.children.append(self._create_suite(context, plan_id, descriptor.id, child))
            else:
                result.children.append(self._create_test_case(context, plan_id, descriptor.id, child))
        return result

    def _create_test_case(self, context: RemoteContext, plan_id: int, suite_id: int, case: InputNode) -> ResultNode:
        self._check_cancelled(case)
        # Complete only once suite membership and test points are registered
        descriptor = self.creator.create(context, suite_id, case, plan_id=plan_id)
        self._record(descriptor)
        return _result_from(case, descriptor)

    def _create_work_item(
        self, context: RemoteContext, parent: Optional[RemoteDescriptor], item: InputNode
    ) -> ResultNode:
        self._check_cancelled(item)
        descriptor = self.creator.create(
            context,
            parent.id if parent else None,
            item,
            parent_api_url=parent.api_url if parent else None
        )
        self._record(descriptor)

        result = _result_from(item, descriptor)
        for child in item.children:
            result.children.append(self._create_work_item(context, descriptor, child))
        return result


def _result_from(node: InputNode, descriptor: RemoteDescriptor) -> ResultNode:
    return ResultNode(
        kind=node.kind,
        id=descriptor.id,
        name=descriptor.name,
        url=descriptor.url,
        work_item_type=node.work_item_type if node.kind == NodeKind.WORK_ITEM else None
    )
