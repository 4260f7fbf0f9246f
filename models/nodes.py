"""
Pydantic models for the hierarchical write-back engine.

InputNode trees describe what should exist in Azure DevOps; ResultNode trees
mirror them 1:1 with the identifiers Azure DevOps assigned.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models.enums import ALLOWED_CHILD_KINDS, CreationStatus, NodeKind


class TestStep(BaseModel):
    """A single action / expected-result pair of a test case."""

    __test__ = False  # not a pytest test class

    action: str = Field(default="", description="Action the tester performs")
    expected_result: str = Field(default="", description="Result the tester should observe")


class InputNode(BaseModel):
    """A logical entity to create, owning its children by value."""

    kind: NodeKind = Field(..., description="plan | suite | case | work_item")
    name: str = Field(default="", description="Display name (title for work items)")
    body: Optional[str] = Field(None, description="Free-text description")
    fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional fields keyed by friendly or reference name, in submission order"
    )
    children: List["InputNode"] = Field(default_factory=list, description="Ordered child nodes")
    steps: List[TestStep] = Field(default_factory=list, description="Test steps (case nodes only)")
    priority: Optional[int] = Field(None, description="Priority (case nodes only)")
    work_item_type: Optional[str] = Field(None, description="Work item type name (work_item nodes only)")
    acceptance_criteria: Optional[str] = Field(None, description="Acceptance criteria (work_item nodes only)")

    @model_validator(mode="after")
    def check_structure(self) -> "InputNode":
        """Reject child kinds the remote hierarchy cannot hold."""
        allowed = ALLOWED_CHILD_KINDS[self.kind]
        for index, child in enumerate(self.children):
            if child.kind not in allowed:
                raise ValueError(
                    f"{self.kind.value} '{self.name}' cannot contain a {child.kind.value} "
                    f"(child {index + 1}: '{child.name}')"
                )
        if self.kind == NodeKind.WORK_ITEM and not (self.work_item_type or "").strip():
            raise ValueError(f"work item '{self.name}' is missing work_item_type")
        return self

    @classmethod
    def plan(cls, name: str, suites: Optional[List["InputNode"]] = None, body: Optional[str] = None) -> "InputNode":
        return cls(kind=NodeKind.PLAN, name=name, body=body, children=suites or [])

    @classmethod
    def suite(cls, name: str, children: Optional[List["InputNode"]] = None) -> "InputNode":
        return cls(kind=NodeKind.SUITE, name=name, children=children or [])

    @classmethod
    def case(
        cls,
        name: str,
        steps: Optional[List[TestStep]] = None,
        body: Optional[str] = None,
        priority: Optional[int] = None,
        fields: Optional[Dict[str, Any]] = None
    ) -> "InputNode":
        return cls(
            kind=NodeKind.CASE,
            name=name,
            body=body,
            steps=steps or [],
            priority=priority,
            fields=fields or {}
        )

    @classmethod
    def work_item(
        cls,
        work_item_type: str,
        title: str,
        body: Optional[str] = None,
        children: Optional[List["InputNode"]] = None,
        fields: Optional[Dict[str, Any]] = None,
        acceptance_criteria: Optional[str] = None
    ) -> "InputNode":
        return cls(
            kind=NodeKind.WORK_ITEM,
            work_item_type=work_item_type,
            name=title,
            body=body,
            children=children or [],
            fields=fields or {},
            acceptance_criteria=acceptance_criteria
        )

    def count(self) -> int:
        """Number of nodes in this subtree, including self."""
        return 1 + sum(child.count() for child in self.children)


class RemoteContext(BaseModel):
    """Organization, project and credential for one orchestration run."""

    organization: str
    project: str
    access_token: str = Field(..., repr=False)
    team: Optional[str] = None
    base_url: str = "https://dev.azure.com"
    api_version: str = "7.0"
    timeout: int = 90

    model_config = ConfigDict(frozen=True)

    @property
    def project_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.organization}/{self.project}"


class RemoteDescriptor(BaseModel):
    """Normalized response of a single create call."""

    id: int
    name: str
    url: str = Field(..., description="Browser URL of the created resource")
    api_url: Optional[str] = Field(None, description="REST URL of the created resource")
    root_suite_id: Optional[int] = Field(None, description="Implicit root suite id (plans only)")


class ResultNode(BaseModel):
    """Mirror of an InputNode carrying remote identity."""

    kind: NodeKind
    id: int
    name: str
    url: str
    work_item_type: Optional[str] = None
    status: CreationStatus = CreationStatus.CREATED
    children: List["ResultNode"] = Field(default_factory=list)

    def count(self) -> int:
        """Number of nodes in this subtree, including self."""
        return 1 + sum(child.count() for child in self.children)


InputNode.model_rebuild()
ResultNode.model_rebuild()
