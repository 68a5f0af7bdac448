"""docflow: Document workflow orchestration with tasks, permissions and audit history."""

from .analytics import AnalyticsService, DefinitionPerformance, WorkflowAnalytics
from .config import DocflowConfig, load_config
from .contracts import (
    CompleteTaskRequest,
    CreateDefinitionRequest,
    CreateInstanceRequest,
    InstanceDetails,
    NodeType,
    PermissionType,
    Priority,
    ReassignTaskRequest,
    TaskStatus,
    UpdateDefinitionRequest,
    ValidationResult,
    WorkflowDefinition,
    WorkflowGraph,
    WorkflowInstance,
    WorkflowStatus,
    WorkflowTask,
)
from .definitions import DefinitionService
from .engine import ExecutionEngine, SweepReport
from .graph import parse_graph, validate_graph
from .outcomes import Outcome, OutcomeKind
from .persistence import get_repository

__version__ = "0.1.0"
__all__ = [
    "AnalyticsService",
    "CompleteTaskRequest",
    "CreateDefinitionRequest",
    "CreateInstanceRequest",
    "DefinitionPerformance",
    "DefinitionService",
    "DocflowConfig",
    "ExecutionEngine",
    "InstanceDetails",
    "NodeType",
    "Outcome",
    "OutcomeKind",
    "PermissionType",
    "Priority",
    "ReassignTaskRequest",
    "SweepReport",
    "TaskStatus",
    "UpdateDefinitionRequest",
    "ValidationResult",
    "WorkflowAnalytics",
    "WorkflowDefinition",
    "WorkflowGraph",
    "WorkflowInstance",
    "WorkflowStatus",
    "WorkflowTask",
    "get_repository",
    "load_config",
    "parse_graph",
    "validate_graph",
]
