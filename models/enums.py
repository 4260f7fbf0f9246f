"""
Kind and status enums for the write-back engine.
"""
from enum import Enum


class NodeKind(str, Enum):
    """Entity kinds that can appear in an input tree."""
    
    PLAN = "plan"
    SUITE = "suite"
    CASE = "case"
    WORK_ITEM = "work_item"


class CreationStatus(str, Enum):
    """Outcome of creating a single tracked item."""
    
    CREATED = "created"
    CREATED_BUT_UNLINKED = "created_but_unlinked"


class RemoteCall(str, Enum):
    """Remote call kinds issued against Azure DevOps."""
    
    CREATE_PLAN = "create_plan"
    CREATE_SUITE = "create_suite"
    CREATE_WORK_ITEM = "create_work_item"
    ADD_TO_SUITE = "add_to_suite"
    CREATE_TEST_POINTS = "create_test_points"
    LINK_PARENT = "link_parent"


# Child kinds each node kind may own
ALLOWED_CHILD_KINDS = {
    NodeKind.PLAN: {NodeKind.SUITE},
    NodeKind.SUITE: {NodeKind.SUITE, NodeKind.CASE},
    NodeKind.CASE: set(),
    NodeKind.WORK_ITEM: {NodeKind.WORK_ITEM},
}
