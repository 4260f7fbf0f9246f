"""
Unit tests for hierarchy orchestration (ordering, fail-fast, cancellation).

The orchestrator runs against a real ResourceCreator whose REST client is a
Mock, so the tests see the exact sequence of Azure DevOps calls.
"""
import os
import sys
import threading

# Add parent directory to path to import modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest
from unittest.mock import Mock

from models.enums import CreationStatus, NodeKind, RemoteCall
from models.nodes import InputNode, RemoteContext, TestStep
from services.ado_client import AdoClient
from services.errors import ConfigurationError, RemoteCallError, RunCancelledError, StructuralError
from services.hierarchy_orchestrator import HierarchyOrchestrator
from services.resource_creator import ResourceCreator

PROJECT_URL = "https://dev.azure.com/contoso/Web Shop"

REST_CALLS = {
    "create_test_plan",
    "create_test_suite",
    "create_work_item",
    "update_work_item",
    "add_test_case_to_suite",
    "create_test_points",
}


def _context():
    return RemoteContext(organization="contoso", project="Web Shop", access_token="token")


def _resolver(context=None):
    resolver = Mock()
    resolver.resolve.return_value = context or _context()
    return resolver


def _work_item_response(work_item_id, title):
    return {
        "id": work_item_id,
        "fields": {"System.Title": title},
        "url": f"{PROJECT_URL}/_apis/wit/workItems/{work_item_id}"
    }


def _client():
    client = Mock(spec=AdoClient)
    client.project_url = PROJECT_URL
    client.work_item_api_url.side_effect = lambda work_item_id: f"{PROJECT_URL}/_apis/wit/workItems/{work_item_id}"
    client.add_test_case_to_suite.return_value = {}
    client.create_test_points.return_value = {}
    client.update_work_item.return_value = {}
    return client


def _orchestrator(client, resolver=None, cancel_event=None):
    creator = ResourceCreator(client_factory=lambda context: client, cancel_event=cancel_event)
    return HierarchyOrchestrator(resolver or _resolver(), creator=creator, cancel_event=cancel_event)


def _rest_calls(client):
    return [(name, args) for name, args, kwargs in client.mock_calls if name in REST_CALLS]


def _nested_plan():
    return InputNode.plan("Checkout", [
        InputNode.suite("Root Suite", [
            InputNode.suite("Suite A", [
                InputNode.case("Case A1", steps=[TestStep(action="Pay by card", expected_result="Order placed")])
            ]),
            InputNode.suite("Suite B", [
                InputNode.case("Case B1")
            ]),
        ])
    ])


def _suite_response(suite_id, name):
    return {"id": suite_id, "name": name}


def test_nested_plan_issues_calls_top_down_in_order():
    """Test the full call sequence for a plan with nested suites and cases."""
    client = _client()
    client.create_test_plan.return_value = {"id": 1, "name": "Checkout", "rootSuite": {"id": 2}}
    client.create_test_suite.side_effect = [
        _suite_response(10, "Root Suite"),
        _suite_response(11, "Suite A"),
        _suite_response(12, "Suite B"),
    ]
    client.create_work_item.side_effect = [
        _work_item_response(100, "Case A1"),
        _work_item_response(101, "Case B1"),
    ]

    result = _orchestrator(client).create_test_plan(_nested_plan())

    calls = _rest_calls(client)
    assert [name for name, args in calls] == [
        "create_test_plan",
        "create_test_suite",
        "create_test_suite",
        "create_work_item",
        "add_test_case_to_suite",
        "create_test_points",
        "create_test_suite",
        "create_work_item",
        "add_test_case_to_suite",
        "create_test_points",
    ]
    # Top-level suite goes under the root suite, nested suites under their parent
    suite_parents = [args[1]["parentSuite"]["id"] for name, args in calls if name == "create_test_suite"]
    assert suite_parents == [2, 10, 10]
    assert client.add_test_case_to_suite.call_args_list[0][0] == (1, 11, 100)
    assert client.add_test_case_to_suite.call_args_list[1][0] == (1, 12, 101)
    assert client.create_test_points.call_args_list[1][0] == (1, 12, 101)

    assert result.kind == NodeKind.PLAN
    assert result.id == 1
    assert result.count() == 6
    root_suite = result.children[0]
    assert root_suite.id == 10
    assert [child.name for child in root_suite.children] == ["Suite A", "Suite B"]
    assert root_suite.children[0].children[0].id == 100
    assert root_suite.children[0].children[0].kind == NodeKind.CASE
    assert root_suite.children[1].children[0].id == 101
    print("✅ Nested plan creation order test PASSED")


def test_result_tree_mirrors_input_tree():
    """Test that N input nodes produce N result nodes in the same shape."""
    plan = InputNode.plan("Catalog", [
        InputNode.suite("Search", [InputNode.case("By name"), InputNode.case("By SKU")]),
        InputNode.suite("Browse", [InputNode.suite("Filters", [InputNode.case("By price")])]),
    ])
    client = _client()
    client.create_test_plan.return_value = {"id": 1, "rootSuite": {"id": 2}}
    client.create_test_suite.side_effect = [_suite_response(i, f"s{i}") for i in (10, 11, 12)]
    client.create_work_item.side_effect = [_work_item_response(i, f"c{i}") for i in (100, 101, 102)]

    result = _orchestrator(client).create_test_plan(plan)

    def shape(node):
        return (node.kind, [shape(child) for child in node.children])

    assert result.count() == plan.count() == 7
    assert shape(result) == shape(plan)
    assert all(child.status == CreationStatus.CREATED for child in result.children)


def test_nested_suite_failure_stops_run_and_reports_created():
    """Test fail-fast: a failing second nested suite ends the run."""
    client = _client()
    client.create_test_plan.return_value = {"id": 1, "name": "Checkout", "rootSuite": {"id": 2}}
    client.create_test_suite.side_effect = [
        _suite_response(10, "Root Suite"),
        _suite_response(11, "Suite A"),
        RemoteCallError("Internal error", status_code=500, remote_message="Internal error"),
    ]
    client.create_work_item.side_effect = [_work_item_response(100, "Case A1")]

    with pytest.raises(RemoteCallError) as exc_info:
        _orchestrator(client).create_test_plan(_nested_plan())

    error = exc_info.value
    assert error.node_name == "Suite B"
    assert error.call == RemoteCall.CREATE_SUITE
    assert "Suite B" in error.message
    assert error.artifacts_may_exist is True
    assert [descriptor.id for descriptor in error.created] == [1, 10, 11, 100]
    # Case B1 was never attempted
    assert client.create_work_item.call_count == 1
    print("✅ Fail-fast nested suite test PASSED")


def test_missing_root_suite_is_structural_error_before_child_calls():
    """Test that no suite is created when the plan response has no root suite."""
    client = _client()
    client.create_test_plan.return_value = {"id": 1, "name": "Checkout"}

    with pytest.raises(StructuralError) as exc_info:
        _orchestrator(client).create_test_plan(_nested_plan())

    client.create_test_suite.assert_not_called()
    assert "root suite" in exc_info.value.message
    assert exc_info.value.artifacts_may_exist is True
    assert [descriptor.id for descriptor in exc_info.value.created] == [1]


def test_plan_without_suites_does_not_need_root_suite():
    client = _client()
    client.create_test_plan.return_value = {"id": 1, "name": "Empty plan"}

    result = _orchestrator(client).create_test_plan(InputNode.plan("Empty plan"))

    assert result.id == 1
    assert result.children == []


def test_configuration_error_issues_no_calls():
    """Test that context resolution failure happens before any remote call."""
    client = _client()
    resolver = Mock()
    resolver.resolve.side_effect = ConfigurationError("Could not retrieve access token.")

    with pytest.raises(ConfigurationError) as exc_info:
        _orchestrator(client, resolver=resolver).create_test_plan(_nested_plan())

    assert _rest_calls(client) == []
    assert exc_info.value.artifacts_may_exist is False


def test_first_call_failure_has_no_artifacts():
    client = _client()
    client.create_test_plan.side_effect = RemoteCallError("denied", status_code=401, remote_message="denied")

    with pytest.raises(RemoteCallError) as exc_info:
        _orchestrator(client).create_test_plan(_nested_plan())

    assert exc_info.value.artifacts_may_exist is False
    assert exc_info.value.created == []
    assert "Authentication failed" in exc_info.value.message


def test_unlinked_test_case_is_listed_as_created():
    """Test that an orphaned work item is included in the created list."""
    client = _client()
    client.create_test_plan.return_value = {"id": 1, "rootSuite": {"id": 2}}
    client.create_test_suite.side_effect = [_suite_response(10, "Root Suite"), _suite_response(11, "Suite A")]
    client.create_work_item.side_effect = [_work_item_response(100, "Case A1")]
    client.add_test_case_to_suite.side_effect = RemoteCallError("boom", status_code=500, remote_message="boom")

    with pytest.raises(RemoteCallError) as exc_info:
        _orchestrator(client).create_test_plan(_nested_plan())

    error = exc_info.value
    assert error.outcome == CreationStatus.CREATED_BUT_UNLINKED
    assert [descriptor.id for descriptor in error.created] == [1, 10, 11, 100]


def test_cancellation_stops_before_next_call():
    """Test that a cancel request stops the run without undoing earlier calls."""
    client = _client()
    cancel_event = threading.Event()
    client.create_test_plan.return_value = {"id": 1, "rootSuite": {"id": 2}}

    def create_suite(plan_id, body):
        if body["name"] == "Suite A":
            cancel_event.set()
        return _suite_response(10 if body["name"] == "Root Suite" else 11, body["name"])

    client.create_test_suite.side_effect = create_suite

    with pytest.raises(RunCancelledError) as exc_info:
        _orchestrator(client, cancel_event=cancel_event).create_test_plan(_nested_plan())

    client.create_work_item.assert_not_called()
    assert client.create_test_suite.call_count == 2
    assert [descriptor.id for descriptor in exc_info.value.created] == [1, 10, 11]
    assert exc_info.value.artifacts_may_exist is True


def test_work_item_tree_links_children_to_parents():
    """Test parent-before-child creation and relation targets."""
    epic = InputNode.work_item("Epic", "Payments", children=[
        InputNode.work_item("Feature", "Card vault", children=[
            InputNode.work_item("User Story", "Save card"),
            InputNode.work_item("User Story", "Delete card"),
        ])
    ])
    client = _client()
    client.create_work_item.side_effect = [
        _work_item_response(1, "Payments"),
        _work_item_response(2, "Card vault"),
        _work_item_response(3, "Save card"),
        _work_item_response(4, "Delete card"),
    ]

    results = _orchestrator(client).create_work_items([epic])

    calls = _rest_calls(client)
    assert [name for name, args in calls] == [
        "create_work_item",
        "create_work_item",
        "update_work_item",
        "create_work_item",
        "update_work_item",
        "create_work_item",
        "update_work_item",
    ]
    assert [args[0] for name, args in calls if name == "create_work_item"] == [
        "Epic", "Feature", "User Story", "User Story"
    ]
    links = [(args[0], args[1][0]["value"]["url"]) for name, args in calls if name == "update_work_item"]
    assert links == [
        (2, f"{PROJECT_URL}/_apis/wit/workItems/1"),
        (3, f"{PROJECT_URL}/_apis/wit/workItems/2"),
        (4, f"{PROJECT_URL}/_apis/wit/workItems/2"),
    ]

    assert len(results) == 1
    assert results[0].work_item_type == "Epic"
    assert results[0].count() == 4
    assert [child.id for child in results[0].children[0].children] == [3, 4]


def test_work_item_links_use_url_returned_for_parent():
    """Test that children link to the REST url Azure DevOps returned for their parent."""
    client = _client()
    epic_url = "https://dev.azure.com/contoso/8d1c7a2e/_apis/wit/workItems/1"
    client.create_work_item.side_effect = [
        {"id": 1, "fields": {"System.Title": "Payments"}, "url": epic_url},
        _work_item_response(2, "Save card"),
    ]

    _orchestrator(client).create_work_items([
        InputNode.work_item("Epic", "Payments", children=[InputNode.work_item("User Story", "Save card")])
    ])

    client.update_work_item.assert_called_once()
    assert client.update_work_item.call_args[0][1][0]["value"]["url"] == epic_url


def test_work_item_forest_resolves_context_once():
    client = _client()
    client.create_work_item.side_effect = [_work_item_response(1, "A"), _work_item_response(2, "B")]
    resolver = _resolver()

    results = _orchestrator(client, resolver=resolver).create_work_items([
        InputNode.work_item("Bug", "A"),
        InputNode.work_item("Bug", "B"),
    ])

    resolver.resolve.assert_called_once()
    assert [result.id for result in results] == [1, 2]
    client.update_work_item.assert_not_called()


def test_create_test_plan_requires_plan_root():
    client = _client()

    with pytest.raises(StructuralError):
        _orchestrator(client).create_test_plan(InputNode.suite("Lonely suite"))

    assert _rest_calls(client) == []


def test_suite_root_cannot_run_on_its_own():
    client = _client()

    with pytest.raises(StructuralError):
        _orchestrator(client).run(InputNode.suite("Lonely suite"))

    assert _rest_calls(client) == []
