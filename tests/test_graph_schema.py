"""Tests for the automation graph model and static validation."""

import pytest
from pydantic import ValidationError

from automations.core.graph_schema import AutomationGraph, GraphEdge, GraphNode
from automations.core.nodes import default_catalog


class TestGraphModel:
    """Tests for building graphs."""

    def test_duplicate_node_ids_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate node ID"):
            AutomationGraph(nodes=[GraphNode(id="a"), GraphNode(id="a")])

    def test_edge_handle_aliases(self):
        edge = GraphEdge.model_validate(
            {"source": "a", "target": "b", "sourceHandle": "out", "targetHandle": "in"}
        )
        assert edge.source_port == "out"
        assert edge.target_port == "in"

    def test_edge_field_names(self):
        edge = GraphEdge(source="a", target="b", source_port="out")
        assert edge.source_port == "out"
        assert edge.target_port is None

    def test_dangling_edges_allowed_at_build_time(self):
        graph = AutomationGraph(nodes=[GraphNode(id="a")], edges=[GraphEdge(source="a", target="b")])
        assert graph.outgoing("a")[0].target == "b"

    def test_config_prefers_state(self):
        graph = AutomationGraph(
            nodes=[GraphNode(id="a", config={"from": "node"}), GraphNode(id="b", config={"from": "node"})],
            state={"a": {"from": "state"}},
        )
        assert graph.config_for("a") == {"from": "state"}
        assert graph.config_for("b") == {"from": "node"}
        assert graph.config_for("missing") is None


class TestGraphQueries:
    """Tests for origin discovery and analysis helpers."""

    def test_find_origins_in_node_order(self, graph_builder):
        graph = graph_builder({"b": "none", "a": "none", "c": "single"}, [("a", "c")])
        assert graph.find_origins() == ["b", "a"]

    def test_no_origins_in_closed_cycle(self, graph_builder):
        graph = graph_builder({"a": "single", "b": "single"}, [("a", "b"), ("b", "a")])
        assert graph.find_origins() == []

    def test_find_cycle(self, graph_builder):
        acyclic = graph_builder({"a": "single", "b": "single"}, [("a", "b")])
        cyclic = graph_builder(
            {"o": "single", "a": "single", "b": "single"},
            [("o", "a"), ("a", "b"), ("b", "a")],
        )
        assert acyclic.find_cycle() is None
        assert set(cyclic.find_cycle()) == {"a", "b"}



class TestValidateGraph:
    """Tests for AutomationGraph.validate_graph."""

    def test_valid_graph(self, booking_document):
        from automations.core.serialisation import parse_document

        graph = parse_document(booking_document)
        assert graph.validate_graph(default_catalog()) == []

    def test_structural_errors(self, graph_builder):
        graph = graph_builder(
            {"a": "single", "b": "single"},
            [("a", "b"), ("b", "a"), ("a", "ghost")],
            state={"phantom": {}},
        )
        errors = graph.validate_graph()
        assert any("target 'ghost' not found" in e for e in errors)
        assert any("No origin node" in e for e in errors)
        assert any("Cycle detected" in e for e in errors)
        assert any("unknown node 'phantom'" in e for e in errors)

    def test_multiple_origins(self, graph_builder):
        graph = graph_builder({"a": "none", "b": "none"}, [])
        assert graph.validate_graph() == ["Multiple origin nodes: a, b"]

    def test_duplicate_edge_ids(self):
        graph = AutomationGraph(
            nodes=[GraphNode(id="a"), GraphNode(id="b")],
            edges=[GraphEdge(id="e", source="a", target="b"), GraphEdge(id="e", source="a", target="b")],
        )
        assert "Duplicate edge ID: 'e'" in graph.validate_graph()

    def test_catalog_checks(self, test_catalog, graph_builder):
        graph = graph_builder(
            {"o": "single", "u": "user", "d": "pair", "m": "mystery"},
            [("o", "u"), ("u", "d"), ("o", "d", None, "z"), ("o", "m")],
        )
        errors = graph.validate_graph(test_catalog)
        assert "Node 'm': unknown node type 'mystery'" in errors
        assert any("a source port is required" in e for e in errors)
        assert any("target port required by 'd'" in e for e in errors)
        assert any("has no input port 'z'" in e for e in errors)
        assert any("never fed: x, y" in e for e in errors)

    def test_unknown_source_port(self, test_catalog, graph_builder):
        graph = graph_builder({"u": "user", "b": "single"}, [("u", "b", "phone", None)])
        assert graph.validate_graph(test_catalog) == ["Edge u -> b: 'u' has no output port 'phone'"]
