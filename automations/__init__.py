"""Automations - graph execution engine for user-authored automation flows.

Runs a directed graph of typed nodes, resolving execution order from data
availability rather than a precomputed topological order.
"""

__version__ = "0.1.0"
