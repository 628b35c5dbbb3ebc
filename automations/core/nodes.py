"""Built-in node types and the default catalog.

Categories follow the editor palette:
- activate: starts an automation (form submission)
- source: produces data without input (fixed user lookup)
- transform: reshapes data (formatting, user lookup by input, mapping)
- terminate: performs the final side effect (email, event creation)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter, ValidationError

from automations.core import templating
from automations.core.catalog import (
    NodeCatalog,
    NodeContext,
    NodeType,
    NodeTypeDescriptor,
    PortSpec,
    RequiredInputs,
    ports,
)
from automations.core.exceptions import ExecutionError
from automations.core.services import EmailMessage, EventDraft, User

logger = logging.getLogger(__name__)

_ANY = TypeAdapter(Any)
_STR = TypeAdapter(str)

_FORMAT_CONFIG = {
    "type": "object",
    "properties": {"format": {"type": "string"}},
    "required": ["format"],
}


class FormSubmitNode(NodeType):
    """Activate: emits the submitted form data the run was triggered with."""

    def describe(self) -> NodeTypeDescriptor:
        return NodeTypeDescriptor(
            type_tag="form-submit",
            title="Activate: Form Submission",
            inputs=ports(),
            outputs=ports(PortSpec("a", _ANY)),
            required=RequiredInputs.single(),
            category="activate",
            description=(
                "Launch this automation when a form is submitted, this will output the "
                "data submitted as part of that form"
            ),
            config_schema={
                "type": ["object", "null"],
                "properties": {"formID": {"type": "string"}},
            },
        )

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        self.validate_config(config, context.node_id)
        return inputs


class _UserLookup(NodeType):
    """Shared lookup for the two find-user variants."""

    async def _find(self, username: str, context: NodeContext) -> dict[str, Any]:
        user: User | None = await context.services.users.find_by_username(username)
        if user is None:
            raise ExecutionError(f"No user found with username '{username}'", node_id=context.node_id)
        return {"user-object": user.model_dump(), "email-address": user.email}


_USER_OUTPUTS = ports(
    PortSpec("user-object", _ANY, "Full User"),
    PortSpec("email-address", _ANY, "Email"),
)


class FindUserNode(_UserLookup):
    def describe(self) -> NodeTypeDescriptor:
        return NodeTypeDescriptor(
            type_tag="find-user",
            title="Source: Find User by Username",
            inputs=ports(),
            outputs=_USER_OUTPUTS,
            required=RequiredInputs.none(),
            category="source",
            description=(
                "Looks up a single, fixed user and returns their properties if one is found. "
                'To look up a user from an input, see "Transform: Find User by Username"'
            ),
            config_schema={
                "type": "object",
                "properties": {"user": {"type": "string", "minLength": 1}},
                "required": ["user"],
            },
        )

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        self.validate_config(config, context.node_id)
        return await self._find(config["user"], context)


class FindUserDynamicNode(_UserLookup):
    def describe(self) -> NodeTypeDescriptor:
        return NodeTypeDescriptor(
            type_tag="find-user-dynamic",
            title="Transform: Find User by Username",
            inputs=ports(PortSpec("username", _STR, "Username")),
            outputs=_USER_OUTPUTS,
            required=RequiredInputs.named("username"),
            category="transform",
            description=(
                "Looks up a user by username and returns their properties if one is found. "
                'For a fixed user, see "Source: Find User by Username"'
            ),
        )

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        data = self.validate_inputs(inputs, context.node_id)
        return await self._find(data["username"].strip(), context)


class StringFormatNode(NodeType):
    """Produce a string by substituting in values from another object."""

    type_tag_value = "string-format"
    title = "Transform: String Format"

    def describe(self) -> NodeTypeDescriptor:
        return NodeTypeDescriptor(
            type_tag=self.type_tag_value,
            title=self.title,
            inputs=ports(PortSpec("raw-data", _ANY)),
            outputs=ports(PortSpec("formatted", _STR)),
            required=RequiredInputs.named("raw-data"),
            category="transform",
            description="Produce a string by substituting in values from another object",
            config_schema=_FORMAT_CONFIG,
        )

    def escape(self, text: str) -> str:
        return text

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        self.validate_config(config, context.node_id)
        data = self.validate_inputs(inputs, context.node_id)
        return templating.render(config["format"], data["raw-data"], escape=self.escape)


class MarkdownFormatNode(StringFormatNode):
    """String format whose substituted values are Markdown-escaped."""

    type_tag_value = "markdown-format"
    title = "Transform: Markdown Format"

    def escape(self, text: str) -> str:
        return templating.escape_markdown(text)


class TransformNode(NodeType):
    """Build a new object from the input using a declarative field mapping.

    Each mapping value is either a ``$.path`` expression resolved against the
    input or a literal copied as-is. No user code is executed.
    """

    def describe(self) -> NodeTypeDescriptor:
        return NodeTypeDescriptor(
            type_tag="transform",
            title="Transform: Map Fields",
            inputs=ports(PortSpec("a", _ANY)),
            outputs=ports(PortSpec("raw-output", _ANY)),
            required=RequiredInputs.named("a"),
            category="transform",
            description="Reshape the input object into another format with a field mapping",
            config_schema={
                "type": "object",
                "properties": {"mapping": {"type": "object"}},
                "required": ["mapping"],
            },
        )

    def _resolve(self, spec: Any, data: Any) -> Any:
        if isinstance(spec, str) and spec.startswith("$"):
            return templating.lookup(data, spec)
        if isinstance(spec, Mapping):
            return {key: self._resolve(value, data) for key, value in spec.items()}
        if isinstance(spec, list):
            return [self._resolve(item, data) for item in spec]
        return spec

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        self.validate_config(config, context.node_id)
        data = self.validate_inputs(inputs, context.node_id)
        return self._resolve(config["mapping"], data["a"])


class EmailNode(NodeType):
    """Terminate: queue an email for the next mail cycle."""

    def describe(self) -> NodeTypeDescriptor:
        return NodeTypeDescriptor(
            type_tag="email",
            title="Terminate: Email",
            inputs=ports(
                PortSpec("email", _STR, "Address"),
                PortSpec("subject", _STR, "Subject"),
                PortSpec("body", _STR, "Body"),
            ),
            outputs=ports(),
            required=RequiredInputs.named("email", "subject", "body"),
            category="terminate",
            description="Sends an email to a given email address. Inputs: email address, subject, body.",
        )

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        data = self.validate_inputs(inputs, context.node_id)
        message = EmailMessage(to=data["email"], subject=data["subject"], body=data["body"])
        await context.services.mailer.send(message)
        return message.model_dump()


class CreateEventNode(NodeType):
    """Terminate: create an event from the incoming properties."""

    _draft = TypeAdapter(EventDraft)

    def describe(self) -> NodeTypeDescriptor:
        return NodeTypeDescriptor(
            type_tag="create-event",
            title="Terminate: Create Event",
            inputs=ports(PortSpec("data", self._draft)),
            outputs=ports(),
            required=RequiredInputs.named("data"),
            category="terminate",
            description="Creates an event in the system with the provided properties.",
        )

    async def execute(self, inputs: Any, config: Any, context: NodeContext) -> Any:
        data = self.validate_inputs(inputs, context.node_id)
        draft: EventDraft = data["data"]
        try:
            record = await context.services.events.create(draft)
        except ValidationError as e:
            raise ExecutionError(
                f"Event store rejected the event: {e}", cause=e, node_id=context.node_id
            ) from e
        return record.model_dump(mode="json")


BUILTIN_NODE_TYPES: tuple[type[NodeType], ...] = (
    FormSubmitNode,
    FindUserNode,
    FindUserDynamicNode,
    StringFormatNode,
    MarkdownFormatNode,
    TransformNode,
    EmailNode,
    CreateEventNode,
)


def default_catalog() -> NodeCatalog:
    """Catalog of every built-in node type."""
    return NodeCatalog(node_type() for node_type in BUILTIN_NODE_TYPES)
