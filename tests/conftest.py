# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the automations test suite.

This module provides foundational fixtures used across all test modules:
- A recording node type whose behaviour is set per test
- Catalogs of recording node types covering every required-input mode
- In-memory services seeded with users
- Graph builders and a synchronous run helper

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
    All fixtures in this file are automatically available in test modules.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from automations.core.catalog import (
    NodeCatalog,
    NodeContext,
    NodeType,
    NodeTypeDescriptor,
    PortSpec,
    RequiredInputs,
    ports,
)
from automations.core.config import EngineConfig
from automations.core.engine import AutomationRunner, RunResult
from automations.core.graph_schema import AutomationGraph, GraphEdge, GraphNode
from automations.core.nodes import default_catalog
from automations.core.services import (
    InMemoryEventStore,
    InMemoryUserDirectory,
    NodeServices,
    OutboxMailer,
    User,
)


# =============================================================================
# Recording Node Types
# =============================================================================


class RecordingNode(NodeType):
    """Node type that records every call into a shared list.

    Output is, in order of precedence: ``behaviour(inputs, config)`` if given,
    the node's config if it is not None, otherwise
    ``{"node": node_id, "received": inputs}``.
    """

    def __init__(
        self,
        type_tag: str,
        required: RequiredInputs,
        calls: list[tuple[str, Any]],
        inputs: tuple[str, ...] = ("in",),
        outputs: tuple[str, ...] = ("out",),
        behaviour: Callable[[Any, Any], Any] | None = None,
        delay: float = 0.0,
    ):
        self._descriptor = NodeTypeDescriptor(
            type_tag=type_tag,
            title=f"Test: {type_tag}",
            inputs=ports(*(PortSpec(name) for name in inputs)),
            outputs=ports(*(PortSpec(name) for name in outputs)),
            required=required,
        )
        self.calls = calls
        self.behaviour = behaviour
        self.delay = delay

    def describe(self) -> NodeTypeDescriptor:
        return self._descriptor

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        self.calls.append((context.node_id, inputs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.behaviour is not None:
            return self.behaviour(inputs, config)
        if config is not None:
            return config
        return {"node": context.node_id, "received": inputs}


@pytest.fixture
def calls() -> list[tuple[str, Any]]:
    """Shared (node_id, inputs) log of executor calls, in call order."""
    return []


@pytest.fixture
def make_node_type(calls) -> Callable[..., RecordingNode]:
    """Factory for recording node types sharing the ``calls`` log.

    Example:
        def test_something(make_node_type):
            flaky = make_node_type("flaky", RequiredInputs.single(),
                                   behaviour=lambda i, c: 1 / 0)
    """

    def factory(type_tag: str, required: RequiredInputs, **kwargs: Any) -> RecordingNode:
        return RecordingNode(type_tag, required, calls, **kwargs)

    return factory


@pytest.fixture
def test_catalog(make_node_type) -> NodeCatalog:
    """Catalog covering each required-input mode.

    - single: single input, single output
    - none: no required input, single output
    - pair: named inputs x and y
    - user: no required input, outputs full_user and email
    """
    return NodeCatalog(
        [
            make_node_type("single", RequiredInputs.single()),
            make_node_type("none", RequiredInputs.none(), inputs=()),
            make_node_type("pair", RequiredInputs.named("x", "y"), inputs=("x", "y")),
            make_node_type(
                "user",
                RequiredInputs.none(),
                inputs=(),
                outputs=("full_user", "email"),
                behaviour=lambda inputs, config: {
                    "full_user": {"username": "ada", "email": "ada@example.com"},
                    "email": "ada@example.com",
                },
            ),
        ]
    )


# =============================================================================
# Graph Fixtures
# =============================================================================


def build_graph(
    nodes: dict[str, str],
    edges: list[tuple],
    state: dict[str, Any] | None = None,
) -> AutomationGraph:
    """Build a graph from {node_id: type_tag} and edge tuples.

    Edge tuples are (source, target) or (source, target, source_port, target_port).
    """
    graph_edges = []
    for edge in edges:
        source, target, *port_pair = edge
        source_port, target_port = port_pair if port_pair else (None, None)
        graph_edges.append(
            GraphEdge(source=source, target=target, source_port=source_port, target_port=target_port)
        )
    return AutomationGraph(
        id="test-graph",
        nodes=[GraphNode(id=node_id, type=tag) for node_id, tag in nodes.items()],
        edges=graph_edges,
        state=state or {},
    )


@pytest.fixture
def graph_builder() -> Callable[..., AutomationGraph]:
    return build_graph


@pytest.fixture
def run_graph(test_catalog) -> Callable[..., RunResult]:
    """Run a graph synchronously against ``test_catalog``.

    Example:
        def test_chain(run_graph, graph_builder):
            result = run_graph(graph_builder({"a": "single"}, []))
    """

    def runner(
        graph: AutomationGraph,
        config: EngineConfig | None = None,
        catalog: NodeCatalog | None = None,
        **kwargs: Any,
    ) -> RunResult:
        engine = AutomationRunner(catalog or test_catalog, config=config)
        return asyncio.run(engine.run(graph, **kwargs))

    return runner


# =============================================================================
# Built-in Node Fixtures
# =============================================================================


@pytest.fixture
def services() -> NodeServices:
    """In-memory services with two known users."""
    return NodeServices(
        users=InMemoryUserDirectory(
            [
                User(username="ada", email="ada@example.com", name="Ada Lovelace"),
                User(username="grace", email="grace@example.com", name="Grace Hopper"),
            ]
        ),
        mailer=OutboxMailer(),
        events=InMemoryEventStore(),
    )


@pytest.fixture
def builtin_runner(services) -> AutomationRunner:
    """Runner over the default catalog and the in-memory services."""
    return AutomationRunner(default_catalog(), services=services)


@pytest.fixture
def booking_document() -> dict[str, Any]:
    """Stored editor document: form submission fanning out to email and event creation."""
    return {
        "_meta": {"editorVersion": 0},
        "nodes": [
            {"id": "form", "type": "form-submit", "position": {"x": 0, "y": 0}, "data": {}},
            {"id": "who", "type": "string-format", "position": {"x": 1, "y": 0}, "data": {}},
            {"id": "subject", "type": "string-format", "position": {"x": 1, "y": 1}, "data": {}},
            {"id": "body", "type": "markdown-format", "position": {"x": 1, "y": 2}, "data": {}},
            {"id": "shape", "type": "transform", "position": {"x": 1, "y": 3}, "data": {}},
            {"id": "lookup", "type": "find-user-dynamic", "position": {"x": 2, "y": 0}, "data": {}},
            {"id": "mail", "type": "email", "position": {"x": 3, "y": 0}, "data": {}},
            {"id": "event", "type": "create-event", "position": {"x": 3, "y": 1}, "data": {}},
        ],
        "edges": [
            {"id": "e1", "source": "form", "target": "who", "sourceHandle": "a", "targetHandle": "raw-data", "label": ""},
            {"id": "e2", "source": "form", "target": "subject", "sourceHandle": "a", "targetHandle": "raw-data", "label": ""},
            {"id": "e3", "source": "form", "target": "body", "sourceHandle": "a", "targetHandle": "raw-data", "label": ""},
            {"id": "e4", "source": "form", "target": "shape", "sourceHandle": "a", "targetHandle": "a", "label": ""},
            {"id": "e5", "source": "who", "target": "lookup", "sourceHandle": "formatted", "targetHandle": "username", "label": ""},
            {"id": "e6", "source": "subject", "target": "mail", "sourceHandle": "formatted", "targetHandle": "subject", "label": ""},
            {"id": "e7", "source": "body", "target": "mail", "sourceHandle": "formatted", "targetHandle": "body", "label": ""},
            {"id": "e8", "source": "shape", "target": "event", "sourceHandle": "raw-output", "targetHandle": "data", "label": ""},
            {"id": "e9", "source": "lookup", "target": "mail", "sourceHandle": "email-address", "targetHandle": "email", "label": ""},
        ],
        "viewport": {"x": 0, "y": 0, "zoom": 1},
        "state": {
            "form": {"formID": "booking"},
            "who": {"format": "$.detail.user"},
            "subject": {"format": 'Your booking has been submitted $.detail.start|format("YYYY-MM-dd HH:mm")'},
            "body": {"format": "Thanks for your submission! $.detail.name"},
            "shape": {
                "mapping": {
                    "name": "$.detail.name",
                    "start": "$.detail.start",
                    "end": "$.detail.end",
                    "venue": "$.detail.venue",
                    "attendance": 0,
                }
            },
        },
    }


@pytest.fixture
def booking_trigger() -> dict[str, Any]:
    """Form submission the booking automation is triggered with."""
    return {
        "detail": {
            "user": "ada",
            "name": "Board_game night",
            "start": "2024-05-01T18:30:00",
            "end": "2024-05-01T22:00:00",
            "venue": "Main hall",
        }
    }


@pytest.fixture
def booking_file(tmp_path: Path, booking_document) -> Path:
    """Booking document written to a JSON file."""
    path = tmp_path / "booking.json"
    path.write_text(json.dumps(booking_document))
    return path
