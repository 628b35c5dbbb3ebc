"""Terminal rendering for automations, catalogs and run results.

SECURITY: node ids, labels and outputs come from user documents and are
escaped before they reach Rich markup.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from automations.core.catalog import NodeCatalog
from automations.core.engine import RunResult
from automations.core.exceptions import UnknownNodeTypeError
from automations.core.graph_schema import AutomationGraph, GraphEdge, GraphNode


class TerminalGraphRenderer:
    """
    Renders automation graphs as a Rich tree rooted at the origin node(s).

    Nodes reachable along several paths are repeated under each parent;
    cycles are cut and marked.
    """

    # Category symbols and colors
    CATEGORY_STYLES = {
        "activate": ("[>]", "green"),
        "source": ("[S]", "cyan"),
        "transform": ("[T]", "magenta"),
        "terminate": ("[X]", "yellow"),
    }

    STATUS_MARKS = {
        "completed": ("green", " ✓"),
        "failed": ("red bold", " ✗"),
        "running": ("blue bold", " ⟳"),
    }

    def __init__(self, catalog: NodeCatalog, console: Console | None = None):
        self.catalog = catalog
        self.console = console or Console()

    def _build_edge_map(self, graph: AutomationGraph) -> dict[str, list[GraphEdge]]:
        """Outgoing edges by source node id, so each node is visited in O(out-degree)."""
        edge_map: dict[str, list[GraphEdge]] = {n.id: [] for n in graph.nodes}
        for edge in graph.edges:
            if edge.source in edge_map:
                edge_map[edge.source].append(edge)
        return edge_map

    def _style(self, node: GraphNode) -> tuple[str, str]:
        try:
            category = self.catalog.describe(node.type).category
        except UnknownNodeTypeError:
            return ("[?]", "red")
        return self.CATEGORY_STYLES.get(category, ("[ ]", "white"))

    def render_as_tree(
        self,
        graph: AutomationGraph,
        statuses: dict[str, str] | None = None,
        max_depth: int = 50,
    ) -> Tree:
        """
        Render the automation as a Rich Tree (hierarchical view).

        Args:
            graph: The automation to render
            statuses: Optional dict of node_id -> status string
            max_depth: Maximum tree depth to prevent exponential blow-up
        """
        tree = Tree(f"[bold]{escape(graph.name)}[/] ({escape(graph.id)})")
        node_map = {n.id: n for n in graph.nodes}
        edge_map = self._build_edge_map(graph)

        origins = graph.find_origins()
        if not origins:
            tree.add("[red]Error: no origin node (every node has incoming edges)[/]")
            return tree

        for origin in origins:
            self._add_node_to_tree(
                tree, node_map[origin], None, statuses, node_map, edge_map, set(), 0, max_depth
            )
        return tree

    def _add_node_to_tree(
        self,
        parent: Tree,
        node: GraphNode,
        via: GraphEdge | None,
        statuses: dict[str, str] | None,
        node_map: dict[str, GraphNode],
        edge_map: dict[str, list[GraphEdge]],
        visited: set[str],
        depth: int,
        max_depth: int,
    ) -> None:
        if depth >= max_depth:
            parent.add("[dim]... (max depth reached)[/]")
            return

        port_label = ""
        if via is not None and (via.source_port or via.target_port):
            port_label = f"[dim]({escape(via.source_port or '*')} → {escape(via.target_port or '*')})[/] "

        safe_id = escape(node.id)
        if node.id in visited:
            parent.add(f"{port_label}[dim]↩ {safe_id} (cycle)[/]")
            return
        visited = visited | {node.id}

        symbol, color = self._style(node)
        status = statuses.get(node.id) if statuses else None
        if status in self.STATUS_MARKS:
            color, mark = self.STATUS_MARKS[status]
        else:
            mark = ""
        label = escape(node.label or node.id)
        branch = parent.add(
            f"{port_label}[{color}]{symbol} {label}{mark}[/] [dim]{escape(node.type or '?')}[/]"
        )

        for edge in edge_map.get(node.id, []):
            child = node_map.get(edge.target)
            if child is None:
                branch.add(f"[red]✗ missing node {escape(edge.target)}[/]")
                continue
            self._add_node_to_tree(
                branch, child, edge, statuses, node_map, edge_map, visited, depth + 1, max_depth
            )


class CatalogTableRenderer:
    """Renders the node catalog as a table."""

    def render(self, catalog: NodeCatalog) -> Table:
        table = Table(title="Available Node Types")
        table.add_column("Type", style="cyan", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Inputs", style="green")
        table.add_column("Outputs", style="magenta")
        table.add_column("Requires", style="yellow")

        for descriptor in catalog:
            table.add_row(
                descriptor.type_tag,
                descriptor.title,
                ", ".join(descriptor.inputs) or "-",
                ", ".join(descriptor.outputs) or "-",
                str(descriptor.required),
            )
        return table


class RunResultRenderer:
    """Renders the invocations of a run as a table."""

    @staticmethod
    def _truncate(value: Any, width: int = 50) -> str:
        text = escape(value if isinstance(value, str) else repr(value))
        return text if len(text) <= width else text[: width - 3] + "..."

    def render(self, result: RunResult) -> Table:
        table = Table(title=f"Run: {escape(result.run_id[:8])}... ({result.state.value})")
        table.add_column("#", justify="right")
        table.add_column("Node", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Output", max_width=50)
        table.add_column("Time", justify="right")

        for i, invocation in enumerate(result.invocations, start=1):
            table.add_row(
                str(i),
                escape(invocation.node_id),
                escape(invocation.type_tag),
                self._truncate(invocation.output),
                f"{invocation.duration * 1000:.1f}ms",
            )
        return table
