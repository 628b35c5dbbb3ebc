"""Persisted automation documents.

The graph editor stores automations as JSON documents that carry layout data
(positions, viewport) next to the graph itself and a ``_meta.editorVersion``
schema version. Documents are migrated to the current version and converted to
an ``AutomationGraph`` before they reach the engine, which only accepts the
current shape.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from automations.core.graph_schema import AutomationGraph, GraphEdge, GraphNode

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 0


class DocumentError(Exception):
    """Stored automation document could not be read or migrated."""

    pass


class Position(BaseModel):
    x: float
    y: float


class Viewport(BaseModel):
    x: float = 0
    y: float = 0
    zoom: float = 1


class DocumentMeta(BaseModel):
    editorVersion: int


class StoredNode(BaseModel):
    """Node as saved by the editor (layout fields are kept but unused)"""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str | None = None
    position: Position | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    width: float | None = None
    height: float | None = None


class StoredEdge(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    source: str
    target: str
    sourceHandle: str | None = None
    targetHandle: str | None = None
    label: str = ""


class StoredAutomation(BaseModel):
    """Current (version 0) editor document"""

    model_config = ConfigDict(populate_by_name=True)

    meta: DocumentMeta = Field(alias="_meta")
    id: str = "automation"
    name: str = "Untitled automation"
    nodes: list[StoredNode]
    edges: list[StoredEdge] = Field(default_factory=list)
    viewport: Viewport | None = None
    state: dict[str, Any] = Field(default_factory=dict)

    def to_graph(self) -> AutomationGraph:
        """Convert to the engine's graph model, dropping layout data."""
        return AutomationGraph(
            id=self.id,
            name=self.name,
            nodes=[GraphNode(id=n.id, type=n.type) for n in self.nodes],
            edges=[
                GraphEdge(
                    id=e.id,
                    source=e.source,
                    target=e.target,
                    source_port=e.sourceHandle,
                    target_port=e.targetHandle,
                )
                for e in self.edges
            ],
            state=self.state,
        )


def schema_version(document: dict[str, Any]) -> int:
    try:
        return int(document["_meta"]["editorVersion"])
    except (KeyError, TypeError, ValueError) as e:
        raise DocumentError("Document has no valid _meta.editorVersion") from e


def migrate_to_latest(document: dict[str, Any]) -> dict[str, Any]:
    """Bring a stored document of any known version to the current version.

    Raises:
        DocumentError: Unknown (e.g. newer) schema version
    """
    version = schema_version(document)
    if version == CURRENT_SCHEMA_VERSION:
        return document
    raise DocumentError(
        f"Unsupported editor version {version} (current is {CURRENT_SCHEMA_VERSION})"
    )


def parse_document(document: dict[str, Any]) -> AutomationGraph:
    """Migrate and validate a stored document, returning the engine graph."""
    if not isinstance(document, dict):
        raise DocumentError(f"Expected a mapping, got {type(document).__name__}")
    migrated = migrate_to_latest(document)
    try:
        stored = StoredAutomation.model_validate(migrated)
        return stored.to_graph()
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(x) for x in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise DocumentError(f"Invalid automation document: {details}") from e


def load_automation(path: Path | str) -> AutomationGraph:
    """Load a stored automation from a ``.json`` or ``.yaml``/``.yml`` file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DocumentError(f"Cannot read {path}: {e}") from e

    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            document = yaml.safe_load(text)
        else:
            document = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise DocumentError(f"Cannot parse {path}: {e}") from e

    graph = parse_document(document)
    logger.debug(f"Loaded automation '{graph.id}' from {path}")
    return graph
