"""Core data contracts for the docflow workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import DEFAULT_CATEGORY, DEFAULT_TASK_TYPE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class NodeType(str, Enum):
    START = "start"
    TASK = "task"
    DECISION = "decision"
    END = "end"


class WorkflowStatus(str, Enum):
    ACTIVE = "Active"
    WAITING = "Waiting"
    PAUSED = "Paused"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.CANCELLED, WorkflowStatus.FAILED}
)
# Instances in these states still hold on to their definition.
RUNNING_STATUSES = frozenset(
    {WorkflowStatus.ACTIVE, WorkflowStatus.WAITING, WorkflowStatus.PAUSED}
)


class TaskStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PENDING


class Priority(str, Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    URGENT = "Urgent"

    @property
    def rank(self) -> int:
        """Numeric weight, higher is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.NORMAL: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class PermissionType(str, Enum):
    VIEW = "View"
    EDIT = "Edit"
    DELETE = "Delete"
    EXECUTE = "Execute"
    CANCEL = "Cancel"
    REASSIGN = "Reassign"
    ADMIN = "Admin"


# ---------------------------------------------------------------------------
# Graph model


class StartNodeConfig(BaseModel):
    type: Literal["start"] = "start"


class TaskNodeConfig(BaseModel):
    """Settings for the task a ``task`` node materializes."""

    type: Literal["task"] = "task"
    task_type: str = DEFAULT_TASK_TYPE
    assignee: Optional[str] = Field(
        default=None, description="User that overrides the instance assignee"
    )
    assignee_role: Optional[str] = Field(
        default=None,
        description=(
            "Role whose members may complete the task; without an explicit "
            "assignee it replaces the instance assignee"
        ),
    )
    due_in_hours: Optional[float] = Field(default=None, gt=0)


class DecisionNodeConfig(BaseModel):
    type: Literal["decision"] = "decision"
    default_target: Optional[str] = Field(
        default=None, description="Node taken when no outgoing condition matches"
    )


class EndNodeConfig(BaseModel):
    type: Literal["end"] = "end"
    outcome: Optional[str] = None


NodeConfig = Annotated[
    Union[StartNodeConfig, TaskNodeConfig, DecisionNodeConfig, EndNodeConfig],
    Field(discriminator="type"),
]


class WorkflowNode(BaseModel):
    """A typed step in a definition graph."""

    id: str = Field(min_length=1)
    name: str
    type: NodeType
    description: Optional[str] = None
    config: NodeConfig

    @model_validator(mode="before")
    @classmethod
    def _tag_config(cls, data: Any) -> Any:
        # Payloads carry the node type once; the config union is keyed on it.
        if isinstance(data, dict):
            data = dict(data)
            node_type = data.get("type")
            if isinstance(node_type, NodeType):
                node_type = node_type.value
            config = data.get("config")
            if config is None:
                data["config"] = {"type": node_type}
            elif isinstance(config, dict) and "type" not in config:
                data["config"] = {**config, "type": node_type}
        return data

    @model_validator(mode="after")
    def _check_config_type(self) -> "WorkflowNode":
        if self.config.type != self.type.value:
            raise ValueError(
                f"node {self.id!r} has type {self.type.value!r} "
                f"but a {self.config.type!r} configuration"
            )
        return self


class WorkflowConnection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_node_id: str = Field(alias="sourceNodeId")
    target_node_id: str = Field(alias="targetNodeId")
    condition: Optional[str] = None


class WorkflowGraph(BaseModel):
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: List[WorkflowConnection] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_node_ids(self) -> "WorkflowGraph":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"duplicate node id {node.id!r}")
            seen.add(node.id)
        return self

    def node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_of_type(self, node_type: NodeType) -> List[WorkflowNode]:
        return [node for node in self.nodes if node.type is node_type]

    def outgoing(self, node_id: str) -> List[WorkflowConnection]:
        """Connections leaving ``node_id`` in declaration order."""
        return [c for c in self.connections if c.source_node_id == node_id]

    def incoming(self, node_id: str) -> List[WorkflowConnection]:
        return [c for c in self.connections if c.target_node_id == node_id]


# ---------------------------------------------------------------------------
# Persisted entities


class WorkflowDefinition(BaseModel):
    """A versioned, tenant-owned process graph."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    name: str
    description: Optional[str] = None
    version: int = 1
    graph: WorkflowGraph = Field(default_factory=WorkflowGraph)
    category: str = DEFAULT_CATEGORY
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_by: str
    updated_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkflowInstance(BaseModel):
    """One execution of a definition against a document.

    ``graph`` is a snapshot of the definition graph at ``definition_version``;
    traversal never consults the live definition. ``revision`` is the
    optimistic concurrency counter maintained by the repository.
    """

    id: str = Field(default_factory=new_id)
    definition_id: str
    definition_version: int
    tenant_id: str
    graph: WorkflowGraph
    document_id: Optional[str] = None
    current_state: str
    context: Dict[str, Any] = Field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    started_by: str
    assigned_to: Optional[str] = None
    priority: Priority = Priority.NORMAL
    due_date: Optional[datetime] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    revision: int = 0


class WorkflowTask(BaseModel):
    id: str = Field(default_factory=new_id)
    instance_id: str
    tenant_id: str
    node_id: str
    name: str
    description: Optional[str] = None
    task_type: str = DEFAULT_TASK_TYPE
    assigned_to: Optional[str] = None
    assigned_role: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.NORMAL
    due_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completion_notes: Optional[str] = None
    completion_action: Optional[str] = None
    task_data: Dict[str, Any] = Field(default_factory=dict)
    overdue_recorded_at: Optional[datetime] = None


class WorkflowHistoryEntry(BaseModel):
    """Immutable audit record of one state-changing event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    instance_id: str
    action: str
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    actor: str
    timestamp: datetime = Field(default_factory=utcnow)
    comments: Optional[str] = None
    action_data: Dict[str, Any] = Field(default_factory=dict)


class ReservedPermissionRules(BaseModel):
    """Grant payload kept for future policy rules.

    Stored verbatim; the permission evaluator does not read it.
    """

    actions: List[str] = Field(default_factory=list)
    conditions: Optional[Dict[str, Any]] = None


class WorkflowPermission(BaseModel):
    id: str = Field(default_factory=new_id)
    definition_id: str
    user_id: Optional[str] = None
    role: Optional[str] = None
    permission_type: PermissionType
    reserved: ReservedPermissionRules = Field(default_factory=ReservedPermissionRules)
    expires_at: Optional[datetime] = None
    granted_by: str
    created_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True

    @model_validator(mode="after")
    def _has_subject(self) -> "WorkflowPermission":
        if self.user_id is None and self.role is None:
            raise ValueError("either user_id or role must be specified")
        return self

    def is_effective(self, now: datetime) -> bool:
        return self.is_active and (self.expires_at is None or self.expires_at > now)


# ---------------------------------------------------------------------------
# Validation results


class ValidationIssue(BaseModel):
    code: str
    message: str
    node_id: Optional[str] = None


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Requests


class CreateDefinitionRequest(BaseModel):
    name: str
    description: Optional[str] = None
    graph: WorkflowGraph
    category: str = DEFAULT_CATEGORY
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True


class UpdateDefinitionRequest(CreateDefinitionRequest):
    pass


class CreateInstanceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: Optional[str] = Field(default=None, alias="documentId")
    context: Dict[str, Any] = Field(default_factory=dict)
    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")
    priority: Priority = Priority.NORMAL
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")


class CompleteTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    comments: Optional[str] = None
    task_data: Dict[str, Any] = Field(default_factory=dict, alias="taskData")


class ReassignTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assigned_to: str = Field(alias="assignedTo")
    reason: Optional[str] = None


class InstanceDetails(BaseModel):
    """An instance together with its tasks and timeline."""

    instance: WorkflowInstance
    tasks: List[WorkflowTask] = Field(default_factory=list)
    history: List[WorkflowHistoryEntry] = Field(default_factory=list)
