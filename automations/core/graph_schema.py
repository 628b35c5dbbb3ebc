"""Automation graph schema definitions using Pydantic models.

An automation is a directed graph of typed nodes connected by edges that carry
data from an output port of one node to an input port of another. Per-node
configuration lives in the graph's ``state`` map, keyed by node id.

Only duplicate node ids are rejected when the model is built. Dangling edges,
unknown node types and missing ports are run-time failures; ``validate_graph``
reports them up front for editors and the CLI.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field, model_validator

from automations.core.catalog import InputMode
from automations.core.exceptions import UnknownNodeTypeError

if TYPE_CHECKING:
    from automations.core.catalog import NodeCatalog


class GraphNode(BaseModel):
    """A single typed operation instance"""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str | None = None  # Type tag in the node catalog
    label: str | None = None
    config: Any = None  # Fallback when the graph state has no entry for this node


class GraphEdge(BaseModel):
    """Directed data dependency between two nodes"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    source: str
    target: str
    source_port: str | None = Field(default=None, alias="sourceHandle")
    target_port: str | None = Field(default=None, alias="targetHandle")


class AutomationGraph(BaseModel):
    """Complete automation definition in the shape the engine accepts"""

    model_config = ConfigDict(extra="ignore")

    id: str = "automation"
    name: str = "Untitled automation"
    nodes: list[GraphNode]
    edges: list[GraphEdge] = Field(default_factory=list)
    state: dict[str, Any] = Field(default_factory=dict)  # node id -> per-node config

    @model_validator(mode="after")
    def check_unique_node_ids(self) -> AutomationGraph:
        """Node ids key all run state, so duplicates would corrupt a run."""
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node ID: '{node.id}'")
            seen.add(node.id)
        return self

    # ========== Lookups ==========

    def node(self, node_id: str) -> GraphNode | None:
        return self._node_index().get(node_id)

    def _node_index(self) -> dict[str, GraphNode]:
        return {n.id: n for n in self.nodes}

    def config_for(self, node_id: str) -> Any:
        """Per-node config: the state entry if present, else the node's own config."""
        if node_id in self.state:
            return self.state[node_id]
        node = self.node(node_id)
        return node.config if node else None

    def outgoing(self, node_id: str) -> list[GraphEdge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> list[GraphEdge]:
        return [e for e in self.edges if e.target == node_id]

    def find_origins(self) -> list[str]:
        """Ids of nodes with zero incoming edges, in node order."""
        targets = {e.target for e in self.edges}
        return [n.id for n in self.nodes if n.id not in targets]

    # ========== Analysis ==========

    def _to_networkx(self) -> nx.DiGraph:
        """Convert to NetworkX DiGraph for analysis"""
        G = nx.DiGraph()
        for node in self.nodes:
            G.add_node(node.id)
        for edge in self.edges:
            G.add_edge(edge.source, edge.target)
        return G

    def find_cycle(self) -> list[str] | None:
        """Return the node ids of one cycle, or None if the graph is acyclic."""
        try:
            cycle = nx.find_cycle(self._to_networkx())
        except nx.NetworkXNoCycle:
            return None
        return [edge[0] for edge in cycle]

    def validate_graph(self, catalog: NodeCatalog | None = None) -> list[str]:
        """
        Validate graph structure without running it.
        Returns list of validation errors.

        With a catalog, node types and port names are checked too.
        """
        errors = []
        node_ids = {n.id for n in self.nodes}

        seen_edge_ids = set()
        for edge in self.edges:
            if edge.id is not None:
                if edge.id in seen_edge_ids:
                    errors.append(f"Duplicate edge ID: '{edge.id}'")
                seen_edge_ids.add(edge.id)
            if edge.source not in node_ids:
                errors.append(f"Edge {edge.source} -> {edge.target}: source '{edge.source}' not found")
            if edge.target not in node_ids:
                errors.append(f"Edge {edge.source} -> {edge.target}: target '{edge.target}' not found")

        origins = self.find_origins()
        if not origins:
            errors.append("No origin node found (every node has incoming edges)")
        elif len(origins) > 1:
            errors.append(f"Multiple origin nodes: {', '.join(origins)}")

        cycle = self.find_cycle()
        if cycle:
            errors.append(f"Cycle detected: {' -> '.join(cycle + cycle[:1])}")

        for config_id in self.state:
            if config_id not in node_ids:
                errors.append(f"Configuration for unknown node '{config_id}'")

        if catalog is not None:
            errors.extend(self._validate_against_catalog(catalog))

        return errors

    def _validate_against_catalog(self, catalog: NodeCatalog) -> list[str]:
        errors = []
        descriptors = {}
        for node in self.nodes:
            try:
                descriptors[node.id] = catalog.describe(node.type)
            except UnknownNodeTypeError:
                errors.append(f"Node '{node.id}': unknown node type '{node.type}'")

        for edge in self.edges:
            label = f"Edge {edge.source} -> {edge.target}"
            source = descriptors.get(edge.source)
            target = descriptors.get(edge.target)
            if source is not None:
                if source.multi_output and edge.source_port is None:
                    errors.append(
                        f"{label}: '{edge.source}' has several outputs, a source port is required"
                    )
                elif source.multi_output and edge.source_port not in source.outputs:
                    errors.append(
                        f"{label}: '{edge.source}' has no output port '{edge.source_port}'"
                    )
                elif not source.outputs:
                    errors.append(f"{label}: '{edge.source}' has no outputs")
            if target is not None and target.required.mode == InputMode.NAMED:
                if edge.target_port is None:
                    errors.append(f"{label}: target port required by '{edge.target}'")
                elif edge.target_port not in target.inputs:
                    errors.append(f"{label}: '{edge.target}' has no input port '{edge.target_port}'")

        for node in self.nodes:
            descriptor = descriptors.get(node.id)
            if descriptor is None or descriptor.required.mode != InputMode.NAMED:
                continue
            fed = {e.target_port for e in self.incoming(node.id)}
            missing = [name for name in descriptor.required.names if name not in fed]
            if missing and self.incoming(node.id):
                errors.append(
                    f"Node '{node.id}': required input(s) never fed: {', '.join(missing)}"
                )
        return errors
