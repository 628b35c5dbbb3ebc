"""Core modules for the automation engine."""

from automations.core.catalog import (
    CancelToken,
    InputMode,
    NodeCatalog,
    NodeContext,
    NodeType,
    NodeTypeDescriptor,
    PortSpec,
    RequiredInputs,
)
from automations.core.engine import AutomationRunner, RunResult
from automations.core.exceptions import (
    AutomationError,
    ExecutionError,
    InvalidTargetError,
    MissingTargetPortError,
    NoOriginNodeError,
    NoProgressError,
    UnknownNodeTypeError,
)
from automations.core.graph_schema import AutomationGraph, GraphEdge, GraphNode
from automations.core.nodes import default_catalog

__all__ = [
    "AutomationError",
    "AutomationGraph",
    "AutomationRunner",
    "CancelToken",
    "ExecutionError",
    "GraphEdge",
    "GraphNode",
    "InputMode",
    "InvalidTargetError",
    "MissingTargetPortError",
    "NoOriginNodeError",
    "NoProgressError",
    "NodeCatalog",
    "NodeContext",
    "NodeType",
    "NodeTypeDescriptor",
    "PortSpec",
    "RequiredInputs",
    "RunResult",
    "UnknownNodeTypeError",
    "default_catalog",
]
