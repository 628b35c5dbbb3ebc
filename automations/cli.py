"""CLI entry point for the automation engine.

Commands:
- automations run: Run a stored automation with in-memory services
- automations validate: Check an automation against the node catalog
- automations visualize: Show an automation as a tree
- automations nodes: List available node types
- automations version: Show version information
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import pydantic
import yaml
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from automations.cli_ui.graph_renderer import (
    CatalogTableRenderer,
    RunResultRenderer,
    TerminalGraphRenderer,
)
from automations.core.config import ConfigError, EngineConfig, load_engine_config
from automations.core.engine import AutomationRunner
from automations.core.exceptions import AutomationError
from automations.core.graph_schema import AutomationGraph
from automations.core.nodes import default_catalog
from automations.core.serialisation import DocumentError, load_automation
from automations.core.services import (
    InMemoryEventStore,
    InMemoryUserDirectory,
    NodeServices,
    OutboxMailer,
    User,
)

console = Console()


def _load_graph(automation_file: str) -> AutomationGraph:
    """Load an automation or exit with a readable error."""
    try:
        return load_automation(automation_file)
    except DocumentError as e:
        console.print(f"[red]Error loading automation:[/red] {escape(str(e))}")
        sys.exit(1)


def _load_users(users_file: str | None) -> InMemoryUserDirectory:
    """Load the demo user directory from a YAML list of users."""
    directory = InMemoryUserDirectory()
    if users_file is None:
        return directory

    try:
        with open(users_file) as f:
            data = yaml.safe_load(f) or []
        if isinstance(data, dict):
            data = data.get("users", [])
        for item in data:
            directory.add(User.model_validate(item))
    except yaml.YAMLError as e:
        console.print(f"[red]Error parsing users file '{escape(users_file)}':[/red] {e}")
        sys.exit(1)
    except pydantic.ValidationError as e:
        console.print("[red]Invalid user record:[/red]")
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            console.print(f"  - {loc}: {err['msg']}")
        sys.exit(1)
    return directory


def _parse_trigger(trigger: str | None) -> Any:
    if trigger is None:
        return None
    if trigger.startswith("@"):
        try:
            trigger = Path(trigger[1:]).read_text(encoding="utf-8")
        except OSError as e:
            console.print(f"[red]Cannot read trigger file:[/red] {escape(str(e))}")
            sys.exit(1)
    try:
        return json.loads(trigger)
    except json.JSONDecodeError as e:
        console.print(f"[red]Trigger is not valid JSON:[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """Automations - run user-authored automation graphs.

    Execution order is resolved from data availability: a node runs as soon
    as every input it requires has arrived.
    """
    pass


@main.command()
@click.argument("automation_file", type=click.Path(exists=True))
@click.option("--config", "config_file", type=click.Path(), help="Engine config YAML")
@click.option("--trigger", help="Trigger payload as JSON, or @file.json")
@click.option("--users", "users_file", type=click.Path(exists=True), help="Users YAML for lookups")
@click.option(
    "--origin-policy",
    type=click.Choice(["single", "first", "all"]),
    help="How to treat graphs with several origin nodes",
)
@click.option("--max-parallel", type=int, help="Run up to N ready nodes concurrently")
@click.option("--timeout", "node_timeout", type=float, help="Per-node timeout in seconds")
@click.option("--verbose", "-v", is_flag=True, help="Show engine trace logging")
def run(
    automation_file: str,
    config_file: str | None,
    trigger: str | None,
    users_file: str | None,
    origin_policy: str | None,
    max_parallel: int | None,
    node_timeout: float | None,
    verbose: bool,
) -> None:
    """Run an automation with in-memory services."""
    try:
        config = load_engine_config(config_file)
        overrides = {
            key: value
            for key, value in {
                "origin_policy": origin_policy,
                "max_parallel": max_parallel,
                "node_timeout": node_timeout,
                "log_level": "DEBUG" if verbose else None,
            }.items()
            if value is not None
        }
        config = EngineConfig.model_validate({**config.model_dump(), **overrides})
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    except pydantic.ValidationError as e:
        console.print("[red]Invalid option:[/red]")
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            console.print(f"  - {loc}: {err['msg']}")
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level, format="%(levelname)s %(name)s: %(message)s", force=True
    )

    graph = _load_graph(automation_file)
    payload = _parse_trigger(trigger)
    mailer = OutboxMailer()
    events = InMemoryEventStore()
    services = NodeServices(users=_load_users(users_file), mailer=mailer, events=events)
    runner = AutomationRunner(default_catalog(), config=config, services=services)
    tree_renderer = TerminalGraphRenderer(default_catalog(), console)
    statuses: dict[str, str] = {}

    def track(node_id: str, status: str, output: Any) -> None:
        statuses[node_id] = status

    try:
        result = asyncio.run(runner.run(graph, trigger=payload, status_callback=track))
    except AutomationError as e:
        console.print(tree_renderer.render_as_tree(graph, statuses))
        if e.result is not None and e.result.invocations:
            console.print(RunResultRenderer().render(e.result))
        console.print(Panel(f"[red]{escape(str(e))}[/red]", title="Automation failed"))
        sys.exit(1)

    console.print(tree_renderer.render_as_tree(graph, statuses))
    console.print(RunResultRenderer().render(result))
    for message in mailer.outbox:
        console.print(f"[blue]✉ {escape(message.to)}[/blue]: {escape(message.subject)}")
    for event in events.events:
        console.print(f"[blue]★ event {escape(event.id)}[/blue]: {escape(event.name)}")
    console.print(Panel("[green]Automation completed successfully[/green]", title="Status"))


@main.command()
@click.argument("automation_file", type=click.Path(exists=True))
def validate(automation_file: str) -> None:
    """Check an automation's structure against the node catalog."""
    graph = _load_graph(automation_file)
    errors = graph.validate_graph(default_catalog())
    if errors:
        console.print("[red]Validation errors:[/red]")
        for error in errors:
            console.print(f"  - {escape(error)}")
        sys.exit(1)

    console.print("[green]Automation validation passed[/green]")
    console.print(f"  Nodes: {len(graph.nodes)}")
    console.print(f"  Edges: {len(graph.edges)}")


@main.command()
@click.argument("automation_file", type=click.Path(exists=True))
def visualize(automation_file: str) -> None:
    """Show an automation as a tree from its origin node."""
    graph = _load_graph(automation_file)
    renderer = TerminalGraphRenderer(default_catalog(), console)
    console.print(renderer.render_as_tree(graph))

    console.print()
    console.print(f"[bold]Nodes:[/] {len(graph.nodes)}")
    console.print(f"[bold]Edges:[/] {len(graph.edges)}")
    origins = graph.find_origins()
    console.print(f"[bold]Origin:[/] {', '.join(escape(o) for o in origins) or '(none)'}")


@main.command()
def nodes() -> None:
    """List available node types."""
    console.print(CatalogTableRenderer().render(default_catalog()))


@main.command()
def version() -> None:
    """Show version information."""
    from automations import __version__

    console.print(f"Automations v{__version__}")
    console.print("Automation graph execution engine")


if __name__ == "__main__":
    main()
