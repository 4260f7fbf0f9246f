"""
Parsers turning assistant output into InputNode trees.

Test plans arrive either as JSON ({"testPlan": {...}}), possibly wrapped in a
```json fenced block or surrounded by prose, or as indented text lines
("Test Plan:", "Test Suite:", "Test Case:"). Work item plans arrive as JSON
({"workItems": [...]}).
"""
from typing import Any, Dict, List, Optional
import json
import logging
import re

from pydantic import ValidationError

from models.enums import NodeKind
from models.nodes import InputNode, TestStep
from services.errors import PlanParseError

logger = logging.getLogger(__name__)

HIGH_LEVEL_PLAN_MARKER = "##HIGHLEVELTESTPLAN##"

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*\n([\s\S]*?)\n```")
_SUITE_LINE_RE = re.compile(r"^\s*Test Suite:")
_CASE_LINE_RE = re.compile(r"^\s*Test Case:")


def _extract_json_text(content: str) -> str:
    """Pull the JSON object out of a fenced block or surrounding prose."""
    match = _CODE_BLOCK_RE.search(content)
    json_content = match.group(1) if match else content
    start = json_content.find("{")
    end = json_content.rfind("}")
    if start != -1 and end > start:
        json_content = json_content[start:end + 1]
    return json_content


def _load_json(content: str) -> Optional[Any]:
    try:
        return json.loads(_extract_json_text(content))
    except (json.JSONDecodeError, ValueError):
        return None


# ----------------------------------------------------------------------
# Test plans
# ----------------------------------------------------------------------

def parse_test_plan(content: str) -> InputNode:
    """
    Parse assistant output into a test plan tree.

    Args:
        content: Raw assistant response

    Returns:
        InputNode of kind PLAN

    Raises:
        PlanParseError: If no test plan can be recognized
    """
    if not content or not content.strip():
        raise PlanParseError("No test plan content received")

    if "{" in content and "}" in content:
        parsed = _load_json(content)
        if isinstance(parsed, dict) and isinstance(parsed.get("testPlan"), dict):
            logger.info("Parsed JSON test plan")
            return plan_from_dict(parsed["testPlan"])
        logger.warning("Content looked like JSON but held no testPlan object, falling back to text parsing")

    return _parse_test_plan_text(content)


def plan_from_dict(data: Dict[str, Any]) -> InputNode:
    """Build a plan tree from a {name, description, testSuites} dictionary."""
    if not isinstance(data, dict):
        raise PlanParseError("Invalid test plan: expected an object")

    suites = data.get("testSuites")
    if not isinstance(suites, list):
        logger.warning("Test plan has no test suites or it's not an array, using an empty list")
        suites = []

    try:
        return InputNode(
            kind=NodeKind.PLAN,
            name=_text(data.get("name")) or "Unnamed Test Plan",
            body=_text(data.get("description")) or None,
            children=[_suite_from_dict(suite, index) for index, suite in enumerate(suites)]
        )
    except ValidationError as e:
        raise PlanParseError(f"Invalid test plan structure: {str(e)}")


def _suite_from_dict(suite: Any, index: int) -> InputNode:
    if not isinstance(suite, dict):
        logger.warning(f"Test suite at position {index + 1} is not an object, creating an empty suite")
        suite = {}

    cases = suite.get("testCases") if isinstance(suite.get("testCases"), list) else []
    nested = suite.get("testSuites") if isinstance(suite.get("testSuites"), list) else []

    # Test cases first, then nested suites
    children = [_case_from_dict(case, case_index) for case_index, case in enumerate(cases)]
    children.extend(_suite_from_dict(child, child_index) for child_index, child in enumerate(nested))
    return InputNode(
        kind=NodeKind.SUITE,
        name=_text(suite.get("name")) or f"Suite {index + 1}",
        children=children
    )


def _case_from_dict(case: Any, index: int) -> InputNode:
    if not isinstance(case, dict):
        case = {}

    steps_data = case.get("steps")
    if not isinstance(steps_data, list):
        steps_data = []
    steps = [_step_from_value(step, step_index) for step_index, step in enumerate(steps_data)]

    additional = case.get("additionalFields")
    return InputNode(
        kind=NodeKind.CASE,
        name=_text(case.get("name") or case.get("title")) or f"Test Case {index + 1}",
        body=_text(case.get("description")) or None,
        steps=steps,
        priority=_priority(case.get("priority")),
        fields=dict(additional) if isinstance(additional, dict) else {}
    )


def _step_from_value(step: Any, index: int) -> TestStep:
    # Missing or empty actions become "Step n"
    default_action = f"Step {index + 1}"
    if isinstance(step, str):
        return TestStep(action=step.strip() or default_action)
    if not isinstance(step, dict):
        logger.warning(f"Step at index {index} is not an object, creating default")
        return TestStep(action=default_action)
    return TestStep(
        action=_text(step.get("action")) or default_action,
        expected_result=_text(step.get("expectedResult") or step.get("expected_result"))
    )


def _parse_test_plan_text(content: str) -> InputNode:
    """Parse the line-oriented "Test Plan: / Test Suite: / Test Case:" format."""
    lines = content.replace(HIGH_LEVEL_PLAN_MARKER, "").strip().split("\n")

    plan_name: Optional[str] = None
    suites: List[Dict[str, Any]] = []

    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("Test Plan:"):
            plan_name = line[len("Test Plan:"):].strip()
            suites = []
        elif _SUITE_LINE_RE.match(raw_line):
            if plan_name is None:
                raise PlanParseError("Test Suite found before Test Plan")
            suites.append({"name": _SUITE_LINE_RE.sub("", raw_line).strip(), "cases": []})
        elif _CASE_LINE_RE.match(raw_line):
            if not suites:
                raise PlanParseError("Test Case found before Test Suite")
            suites[-1]["cases"].append(_CASE_LINE_RE.sub("", raw_line).strip())
        else:
            logger.debug(f"Unrecognized line format: {line}")

    if plan_name is None:
        raise PlanParseError("No valid Test Plan found in content")

    plan = InputNode.plan(
        plan_name or "Unnamed Test Plan",
        [
            InputNode.suite(
                suite["name"] or f"Suite {index + 1}",
                [InputNode.case(name or f"Test Case {case_index + 1}") for case_index, name in enumerate(suite["cases"])]
            )
            for index, suite in enumerate(suites)
        ]
    )
    logger.info(
        f"Parsed text test plan with {len(plan.children)} test suites and "
        f"{sum(len(suite.children) for suite in plan.children)} test cases"
    )
    return plan


# ----------------------------------------------------------------------
# Work items
# ----------------------------------------------------------------------

def _normalize_key(key: str) -> str:
    return re.sub(r"[\s._-]", "", key.lower())


def parse_work_item_plan(content: str) -> List[InputNode]:
    """
    Parse assistant output into work item trees.

    Args:
        content: Raw assistant response holding {"workItems": [...]}

    Returns:
        List of InputNode roots of kind WORK_ITEM (may be empty)

    Raises:
        PlanParseError: If the JSON is invalid or has no workItems array
    """
    if not content or not content.strip():
        raise PlanParseError("No work item plan content received")

    parsed = _load_json(content)
    if not isinstance(parsed, dict) or not isinstance(parsed.get("workItems"), list):
        raise PlanParseError("Invalid work item plan: expected a JSON object with a workItems array")

    return work_items_from_list(parsed["workItems"])


def work_items_from_list(items: List[Any]) -> List[InputNode]:
    """Build work item trees from a list of work item dictionaries."""
    try:
        return [_work_item_from_dict(item, index) for index, item in enumerate(items)]
    except ValidationError as e:
        raise PlanParseError(f"Invalid work item structure: {str(e)}")


def _work_item_from_dict(item: Any, index: int) -> InputNode:
    if not isinstance(item, dict):
        raise PlanParseError(f"Work item at position {index + 1} is not an object")

    work_item_type = _text(item.get("type"))
    if not work_item_type:
        raise PlanParseError(f"Work item '{_text(item.get('title'))}' at position {index + 1} has no type")

    additional_data = item.get("additionalFields")
    additional = dict(additional_data) if isinstance(additional_data, dict) else {}
    acceptance_criteria = _text(item.get("acceptanceCriteria")) or None
    # Acceptance criteria may also arrive as an additional field under any spelling
    for key in list(additional.keys()):
        if _normalize_key(key) == "acceptancecriteria":
            value = additional.pop(key)
            if acceptance_criteria is None:
                acceptance_criteria = _text(value) or None

    children = item.get("children") if isinstance(item.get("children"), list) else []
    return InputNode(
        kind=NodeKind.WORK_ITEM,
        work_item_type=work_item_type,
        name=_text(item.get("title")),
        body=_text(item.get("description")) or None,
        acceptance_criteria=acceptance_criteria,
        fields=additional,
        children=[_work_item_from_dict(child, child_index) for child_index, child in enumerate(children)]
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _priority(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None
