"""Tests for the built-in node types.

Each node type is executed directly with a NodeContext, and the booking
automation is run end to end through the engine.
"""

import asyncio

import pytest

from automations.core.catalog import CancelToken, NodeContext
from automations.core.exceptions import ExecutionError
from automations.core.nodes import (
    CreateEventNode,
    EmailNode,
    FindUserDynamicNode,
    FindUserNode,
    FormSubmitNode,
    MarkdownFormatNode,
    StringFormatNode,
    TransformNode,
)
from automations.core.serialisation import parse_document


@pytest.fixture
def context(services):
    return NodeContext(
        run_id="run-1",
        node_id="node-1",
        services=services,
        cancel_token=CancelToken(),
    )


def execute(node_type, inputs, config, context):
    return asyncio.run(node_type.execute(inputs, config, context))


class TestFormSubmit:
    def test_emits_trigger(self, context):
        assert execute(FormSubmitNode(), {"detail": 1}, {"formID": "f"}, context) == {"detail": 1}

    def test_config_optional(self, context):
        assert execute(FormSubmitNode(), {}, None, context) == {}


class TestFindUser:
    """Tests for both user lookup variants."""

    def test_fixed_user(self, context):
        output = execute(FindUserNode(), None, {"user": "grace"}, context)
        assert output["email-address"] == "grace@example.com"
        assert output["user-object"]["name"] == "Grace Hopper"

    def test_fixed_user_requires_config(self, context):
        with pytest.raises(ExecutionError, match="invalid node configuration"):
            execute(FindUserNode(), None, {}, context)

    def test_dynamic_user_strips_whitespace(self, context):
        output = execute(FindUserDynamicNode(), {"username": "  ada\n"}, None, context)
        assert output["email-address"] == "ada@example.com"

    def test_unknown_user(self, context):
        with pytest.raises(ExecutionError, match="No user found with username 'nobody'") as exc_info:
            execute(FindUserDynamicNode(), {"username": "nobody"}, None, context)
        assert exc_info.value.node_id == "node-1"

    def test_username_must_be_string(self, context):
        with pytest.raises(ExecutionError, match="input failed validation"):
            execute(FindUserDynamicNode(), {"username": 42}, None, context)


class TestFormatting:
    """Tests for string and markdown formatting."""

    def test_string_format(self, context):
        output = execute(
            StringFormatNode(),
            {"raw-data": {"detail": {"user": "ada"}}},
            {"format": "user=$.detail.user"},
            context,
        )
        assert output == "user=ada"

    def test_markdown_format_escapes_values(self, context):
        output = execute(
            MarkdownFormatNode(),
            {"raw-data": {"title": "50% off_today"}},
            {"format": "**$.title**"},
            context,
        )
        assert output == r"**50% off\_today**"

    def test_format_requires_config(self, context):
        with pytest.raises(ExecutionError):
            execute(StringFormatNode(), {"raw-data": {}}, None, context)

    def test_type_tags(self):
        assert StringFormatNode().type_tag == "string-format"
        assert MarkdownFormatNode().type_tag == "markdown-format"


class TestTransform:
    def test_mapping(self, context):
        output = execute(
            TransformNode(),
            {"a": {"detail": {"name": "Party", "tags": ["x", "y"]}}},
            {"mapping": {"title": "$.detail.name", "first_tag": "$.detail.tags[0]", "fixed": 3,
                         "nested": {"all": ["$.detail.name", "lit"]}}},
            context,
        )
        assert output == {
            "title": "Party",
            "first_tag": "x",
            "fixed": 3,
            "nested": {"all": ["Party", "lit"]},
        }

    def test_missing_path_maps_to_none(self, context):
        output = execute(TransformNode(), {"a": {}}, {"mapping": {"v": "$.nope"}}, context)
        assert output == {"v": None}


class TestTerminators:
    """Tests for email and event creation."""

    def test_email_is_queued(self, context, services):
        output = execute(
            EmailNode(),
            {"email": "ada@example.com", "subject": "Hi", "body": "Body"},
            None,
            context,
        )
        assert output["to"] == "ada@example.com"
        assert [m.subject for m in services.mailer.outbox] == ["Hi"]

    def test_event_is_created(self, context, services):
        draft = {
            "name": "Night",
            "start": "2024-05-01T18:30:00",
            "end": "2024-05-01T22:00:00",
            "venue": "Hall",
        }
        output = execute(CreateEventNode(), {"data": draft}, None, context)
        assert output["id"] == services.events.events[0].id
        assert output["start"] == "2024-05-01T18:30:00"

    def test_event_end_before_start(self, context, services):
        draft = {"name": "Back", "start": "2024-05-02T00:00:00", "end": "2024-05-01T00:00:00", "venue": "Hall"}
        with pytest.raises(ExecutionError):
            execute(CreateEventNode(), {"data": draft}, None, context)
        assert services.events.events == []


class TestBookingAutomation:
    """The booking document run end to end."""

    def test_booking_run(self, builtin_runner, services, booking_document, booking_trigger):
        graph = parse_document(booking_document)
        result = asyncio.run(builtin_runner.run(graph, trigger=booking_trigger))

        assert result.succeeded
        assert result.order == ["form", "who", "subject", "body", "shape", "lookup", "mail", "event"]

        (message,) = services.mailer.outbox
        assert message.to == "ada@example.com"
        assert message.subject == "Your booking has been submitted 2024-05-01 18:30"
        assert message.body == r"Thanks for your submission! Board\_game night"

        (event,) = services.events.events
        assert event.name == "Board_game night"
        assert event.venue == "Main hall"
        assert event.attendance == 0

    def test_rerun_repeats_side_effects(self, builtin_runner, services, booking_document, booking_trigger):
        graph = parse_document(booking_document)
        asyncio.run(builtin_runner.run(graph, trigger=booking_trigger))
        asyncio.run(builtin_runner.run(graph, trigger=booking_trigger))

        assert len(services.mailer.outbox) == 2
        assert len(services.events.events) == 2
        assert services.events.events[0].id != services.events.events[1].id

    def test_unknown_user_stops_run(self, builtin_runner, services, booking_document, booking_trigger):
        booking_trigger["detail"]["user"] = "mallory"
        graph = parse_document(booking_document)

        with pytest.raises(ExecutionError, match="mallory") as exc_info:
            asyncio.run(builtin_runner.run(graph, trigger=booking_trigger))

        assert exc_info.value.node_id == "lookup"
        assert services.mailer.outbox == []
        assert "mail" not in exc_info.value.result.order
