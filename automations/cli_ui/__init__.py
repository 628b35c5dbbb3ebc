"""Terminal UI helpers for the automations CLI.

Components:
- TerminalGraphRenderer: tree view of an automation from its origin node(s)
- CatalogTableRenderer: table of available node types
- RunResultRenderer: table of node invocations after a run
"""

from automations.cli_ui.graph_renderer import (
    CatalogTableRenderer,
    RunResultRenderer,
    TerminalGraphRenderer,
)

__all__ = ["CatalogTableRenderer", "RunResultRenderer", "TerminalGraphRenderer"]
