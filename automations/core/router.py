"""Output routing.

After a node produces its output, the router pushes it along every outgoing
edge into the target's pending entry. Each edge is its own commit: a failure on
one edge leaves the deliveries already made by earlier edges in place.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from automations.core.catalog import NodeCatalog, NodeTypeDescriptor
from automations.core.exceptions import ExecutionError, InvalidTargetError
from automations.core.graph_schema import AutomationGraph, GraphEdge, GraphNode
from automations.core.scheduler import PendingSet

logger = logging.getLogger(__name__)


class OutputRouter:
    """Fan a node's output out into downstream pending entries."""

    def __init__(self, graph: AutomationGraph, catalog: NodeCatalog, pending: PendingSet):
        self.graph = graph
        self.catalog = catalog
        self.pending = pending
        self._nodes = {n.id: n for n in graph.nodes}

    def select_value(self, descriptor: NodeTypeDescriptor, edge: GraphEdge, output: Any) -> Any:
        """Pick the part of ``output`` that travels along ``edge``.

        Multi-output nodes produce a mapping keyed by output port and the edge's
        source port selects the field. Single-output nodes, and edges without a
        source port, pass the output through unchanged.
        """
        if not descriptor.multi_output or edge.source_port is None:
            return output
        if not isinstance(output, Mapping) or edge.source_port not in output:
            raise ExecutionError(
                f"Node '{edge.source}' produced no value for output port '{edge.source_port}'",
                node_id=edge.source,
            )
        return output[edge.source_port]

    def route(self, source: GraphNode, output: Any) -> None:
        """Deliver ``output`` along every outgoing edge of ``source``.

        Raises:
            InvalidTargetError: An edge points at a node absent from the graph
            UnknownNodeTypeError: A target node's type is not in the catalog
            MissingTargetPortError: An edge into a named-input node has no port
            ExecutionError: A multi-output node lacks the selected field
        """
        source_descriptor = self.catalog.describe(source.type)
        for edge in self.graph.outgoing(source.id):
            target = self._nodes.get(edge.target)
            if target is None:
                raise InvalidTargetError(edge.target, edge.id)
            target_descriptor = self.catalog.describe(target.type)
            value = self.select_value(source_descriptor, edge, output)

            entry = self.pending.deliver(
                target.id,
                target.type,
                target_descriptor.required,
                value,
                edge.target_port,
                source.id,
            )
            logger.debug(
                f"Routed {source.id}:{edge.source_port or '*'} -> "
                f"{target.id}:{edge.target_port or '*'} (ready={entry.is_ready()})"
            )
