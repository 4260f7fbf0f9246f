"""
Wire encoders for Azure DevOps work item payloads.

Pure functions: test step scripts for the Microsoft.VSTS.TCM.Steps field and
friendly-name to reference-name mapping for patch documents.
"""
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from models.nodes import TestStep


PLACEHOLDER_STEP_ACTION = "No steps defined."

# Friendly field name (lowercase) -> Azure DevOps reference name
FIELD_REFERENCE_NAMES: Mapping[str, str] = MappingProxyType({
    "priority": "Microsoft.VSTS.Common.Priority",
    "description": "System.Description",
    "title": "System.Title",
    "status": "System.State",
    "state": "System.State",
    "assignedto": "System.AssignedTo",
    "area": "System.AreaPath",
    "areapath": "System.AreaPath",
    "iteration": "System.IterationPath",
    "iterationpath": "System.IterationPath",
    "steps": "Microsoft.VSTS.TCM.Steps",
    "reprosteps": "Microsoft.VSTS.TCM.ReproSteps",
    "severity": "Microsoft.VSTS.Common.Severity",
    "risk": "Microsoft.VSTS.Common.Risk",
    "acceptancecriteria": "Microsoft.VSTS.Common.AcceptanceCriteria",
    "tags": "System.Tags",
    "storypoints": "Microsoft.VSTS.Scheduling.StoryPoints",
    "effort": "Microsoft.VSTS.Scheduling.Effort",
    "remainingwork": "Microsoft.VSTS.Scheduling.RemainingWork",
    "originalestimate": "Microsoft.VSTS.Scheduling.OriginalEstimate",
    "businessvalue": "Microsoft.VSTS.Common.BusinessValue",
    "valuearea": "Microsoft.VSTS.Common.ValueArea",
})

_MARKUP_ESCAPES = {
    ord("&"): "&amp;",
    ord("<"): "&lt;",
    ord(">"): "&gt;",
    ord('"'): "&quot;",
    ord("'"): "&#039;",
}


def escape_markup(text: Optional[str]) -> str:
    """Escape &, <, >, \" and ' for embedding in HTML/XML."""
    if not isinstance(text, str):
        return ""
    return text.translate(_MARKUP_ESCAPES)


def _parameterized_string(text: str) -> str:
    # Step text is rich text (HTML) stored inside the XML container
    html = f"<P>{escape_markup(text)}</P>"
    return f'<parameterizedString isformatted="true">{escape_markup(html)}</parameterizedString>'


def encode_steps(steps: Optional[Iterable[TestStep]]) -> str:
    """
    Convert test steps into the XML document stored in Microsoft.VSTS.TCM.Steps.

    Steps are numbered 1..N in input order and the container declares the
    step count in its ``last`` attribute. An empty or missing list yields a
    single placeholder step, since test cases must have at least one step.

    Args:
        steps: Ordered test steps

    Returns:
        Serialized step script
    """
    step_list: List[TestStep] = list(steps or [])
    if not step_list:
        return (
            '<steps id="0" last="1">'
            '<step id="1" type="ActionStep">'
            f'{_parameterized_string(PLACEHOLDER_STEP_ACTION)}'
            '<parameterizedString isformatted="true"></parameterizedString>'
            '<description/>'
            '</step>'
            '</steps>'
        )

    parts = [f'<steps id="0" last="{len(step_list)}">']
    for index, step in enumerate(step_list, start=1):
        parts.append(
            f'<step id="{index}" type="ActionStep">'
            f'{_parameterized_string(step.action or "")}'
            f'{_parameterized_string(step.expected_result or "")}'
            '<description/>'
            '</step>'
        )
    parts.append("</steps>")
    return "".join(parts)


def encode_field_name(friendly_name: str) -> str:
    """
    Map a friendly field name to its Azure DevOps reference name.

    Lookup is case-insensitive; unknown names (including reference names)
    are returned unchanged, so the mapping is idempotent.
    """
    return FIELD_REFERENCE_NAMES.get(friendly_name.lower(), friendly_name)


def add_operation(field_ref: str, value: Any) -> Dict[str, Any]:
    """Build one JSON Patch 'add' operation for a field."""
    return {"op": "add", "path": f"/fields/{field_ref}", "value": value}


def append_additional_fields(
    patch_document: List[Dict[str, Any]],
    fields: Mapping[str, Any],
    handled_fields: Iterable[str]
) -> List[Dict[str, Any]]:
    """
    Append generic fields to a patch document.

    Skips empty values, names in ``handled_fields`` (compared lowercase)
    and fields whose mapped path is already present in the document.
    Values are submitted as strings.

    Args:
        patch_document: Patch operations built so far (modified in place)
        fields: Friendly or reference field names to values
        handled_fields: Lowercase names already set explicitly by the caller

    Returns:
        The same patch document
    """
    handled = {name.lower() for name in handled_fields}
    for key, value in fields.items():
        if value is None or value == "" or key.lower() in handled:
            continue
        path = f"/fields/{encode_field_name(key)}"
        if any(op.get("path") == path for op in patch_document):
            continue
        patch_document.append({"op": "add", "path": path, "value": str(value)})
    return patch_document
