"""Failure taxonomy for automation runs.

Every failure is fatal to the whole run. Nothing is retried and side effects
of nodes that already ran are not compensated.
"""

from __future__ import annotations


class AutomationError(Exception):
    """Base error surfaced to the caller of a run.

    Carries a human-readable message and an optional underlying cause.
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.result = None  # RunResult of the failed run, attached by the runner
        if cause is not None:
            self.__cause__ = cause


class NoOriginNodeError(AutomationError):
    """Graph has no node with zero incoming edges."""

    pass


class MultipleOriginsError(AutomationError):
    """More than one origin node while the origin policy requires exactly one."""

    def __init__(self, origins: list[str]):
        super().__init__(
            f"Graph has {len(origins)} origin nodes ({', '.join(origins)}); "
            "exactly one is required by the 'single' origin policy"
        )
        self.origins = origins


class NoProgressError(AutomationError):
    """Pending nodes remain but none of them is ready to run."""

    def __init__(self, pending: list[str]):
        super().__init__(f"No action performed in step; stuck nodes: {', '.join(pending)}")
        self.pending = pending


class CyclicGraphError(AutomationError):
    """Optional pre-run check found a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(f"Cycle detected: {' -> '.join(cycle + cycle[:1])}")
        self.cycle = cycle


class UnknownNodeTypeError(AutomationError):
    """A node references a type tag absent from the catalog."""

    def __init__(self, type_tag: str | None):
        super().__init__(f"Unknown node type: {type_tag!r}")
        self.type_tag = type_tag


class InvalidTargetError(AutomationError):
    """An edge or run request references a node id absent from the graph."""

    def __init__(self, node_id: str, edge_id: str | None = None):
        where = f" (edge {edge_id})" if edge_id else ""
        super().__init__(f"Invalid target: node '{node_id}' is not in the graph{where}")
        self.node_id = node_id
        self.edge_id = edge_id


class MissingTargetPortError(AutomationError):
    """An edge into a named-input node does not say which port it feeds."""

    def __init__(self, source: str, target: str):
        super().__init__(
            f"Edge '{source}' -> '{target}' has no target port, "
            f"but '{target}' requires named inputs"
        )
        self.source = source
        self.target = target


class ExecutionError(AutomationError):
    """A node's executor rejected its input or an external call failed."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        node_id: str | None = None,
    ):
        super().__init__(message, cause)
        self.node_id = node_id


class RunCancelledError(AutomationError):
    """The run's cancel token was triggered."""

    pass
