"""Node type catalog.

Each node type declares its input and output ports, the policy that decides
when a pending node is ready (its required-input mode) and an async executor.
Catalogs are built explicitly and passed to the runner, so independent
catalogs (for example in tests) can coexist.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import jsonschema
from pydantic import TypeAdapter, ValidationError

from automations.core.exceptions import ExecutionError, RunCancelledError, UnknownNodeTypeError

if TYPE_CHECKING:
    from automations.core.services import NodeServices

logger = logging.getLogger(__name__)


class InputMode(str, Enum):
    """When a pending node becomes ready"""

    NONE = "none"  # Always ready once pending
    SINGLE = "single"  # Ready once any predecessor delivered a value
    NAMED = "named"  # Ready once every required port has a value


@dataclass(frozen=True)
class RequiredInputs:
    """Required-input policy of a node type."""

    mode: InputMode
    names: tuple[str, ...] = ()

    @classmethod
    def none(cls) -> RequiredInputs:
        return cls(InputMode.NONE)

    @classmethod
    def single(cls) -> RequiredInputs:
        return cls(InputMode.SINGLE)

    @classmethod
    def named(cls, *names: str) -> RequiredInputs:
        if not names:
            raise ValueError("Named required inputs need at least one port name")
        return cls(InputMode.NAMED, tuple(names))

    def __str__(self) -> str:
        if self.mode == InputMode.NAMED:
            return f"named({', '.join(self.names)})"
        return self.mode.value


@dataclass(frozen=True)
class PortSpec:
    """A named input or output slot with the shape of value it carries."""

    name: str
    schema: TypeAdapter = field(default_factory=lambda: TypeAdapter(Any))
    display: str | None = None

    def validate(self, value: Any) -> Any:
        return self.schema.validate_python(value)


def ports(*specs: PortSpec) -> Mapping[str, PortSpec]:
    """Build a read-only, ordered port mapping."""
    return MappingProxyType({spec.name: spec for spec in specs})


@dataclass(frozen=True)
class NodeTypeDescriptor:
    """Static description of a node type, defined once per type tag."""

    type_tag: str
    title: str
    inputs: Mapping[str, PortSpec]
    outputs: Mapping[str, PortSpec]
    required: RequiredInputs
    description: str = ""
    category: str = "transform"  # activate / source / transform / terminate
    config_schema: dict | None = None

    @property
    def multi_output(self) -> bool:
        return len(self.outputs) > 1


class CancelToken:
    """Cooperative cancellation flag shared by the run loop and executors."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(f"Run cancelled: {self.reason or 'no reason given'}")


@dataclass
class NodeContext:
    """Per-invocation context handed to executors."""

    run_id: str
    node_id: str
    services: NodeServices
    cancel_token: CancelToken


class NodeType(ABC):
    """Capability set every node type implements.

    Subclasses provide ``describe()`` and ``execute()``. ``validate_inputs`` and
    ``validate_config`` are helpers executors call before doing any work.
    """

    @abstractmethod
    def describe(self) -> NodeTypeDescriptor:
        """Return the static descriptor of this node type."""

    @abstractmethod
    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        """Run the node and return its output value."""

    @property
    def type_tag(self) -> str:
        return self.describe().type_tag

    def validate_inputs(self, inputs: Any, node_id: str | None = None) -> Any:
        """Validate collected input data against the declared input ports.

        For named-input nodes every declared port present in ``inputs`` is
        validated. A single-input node with exactly one declared port has the
        delivered value validated against that port.
        """
        descriptor = self.describe()
        try:
            if descriptor.required.mode == InputMode.NAMED:
                if not isinstance(inputs, Mapping):
                    raise ExecutionError(
                        f"{descriptor.type_tag}: expected named inputs, got {type(inputs).__name__}",
                        node_id=node_id,
                    )
                return {
                    name: descriptor.inputs[name].validate(value) if name in descriptor.inputs else value
                    for name, value in inputs.items()
                }
            if descriptor.required.mode == InputMode.SINGLE and len(descriptor.inputs) == 1:
                (spec,) = descriptor.inputs.values()
                return spec.validate(inputs)
            return inputs
        except ValidationError as e:
            raise ExecutionError(
                f"{descriptor.type_tag}: input failed validation: {e.errors()[0]['msg']}",
                cause=e,
                node_id=node_id,
            ) from e

    def validate_config(self, config: Any, node_id: str | None = None) -> Any:
        """Validate per-node config against the descriptor's JSON Schema, if any."""
        descriptor = self.describe()
        if descriptor.config_schema is None:
            return config
        try:
            jsonschema.validate(instance=config, schema=descriptor.config_schema)
        except jsonschema.ValidationError as e:
            raise ExecutionError(
                f"{descriptor.type_tag}: invalid node configuration: {e.message}",
                cause=e,
                node_id=node_id,
            ) from e
        return config


class NodeCatalog:
    """Read-only registry mapping type tags to node types.

    Populated once at construction; lookups are exact string matches.
    """

    def __init__(self, node_types: Iterable[NodeType]):
        registry: dict[str, NodeType] = {}
        for node_type in node_types:
            tag = node_type.describe().type_tag
            if tag in registry:
                raise ValueError(f"Duplicate node type tag: '{tag}'")
            registry[tag] = node_type
        self._registry = MappingProxyType(registry)
        logger.debug(f"Catalog initialised with {len(registry)} node types")

    def lookup(self, type_tag: str | None) -> NodeType:
        """Return the node type for ``type_tag``.

        Raises:
            UnknownNodeTypeError: If the tag is not registered.
        """
        if type_tag is None or type_tag not in self._registry:
            raise UnknownNodeTypeError(type_tag)
        return self._registry[type_tag]

    def describe(self, type_tag: str | None) -> NodeTypeDescriptor:
        return self.lookup(type_tag).describe()

    def __contains__(self, type_tag: object) -> bool:
        return type_tag in self._registry

    def __iter__(self) -> Iterator[NodeTypeDescriptor]:
        return (node_type.describe() for node_type in self._registry.values())

    def __len__(self) -> int:
        return len(self._registry)
