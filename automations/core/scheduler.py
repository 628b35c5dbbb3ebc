"""Pending-set bookkeeping for the worklist scheduler.

A ``PendingEntry`` tracks how much input a not-yet-run node has received. The
run loop repeatedly rescans the ``PendingSet`` for an entry whose readiness
predicate holds, instead of computing an execution order up front.

Tie-break: when several entries are ready, the one created first wins (stable
insertion order). Overwriting a single-input entry does not move it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from automations.core.catalog import InputMode, RequiredInputs
from automations.core.exceptions import MissingTargetPortError

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle of a single run"""

    NOT_STARTED = "not_started"
    SEEDED = "seeded"  # Origin entries created
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NodeStatus(str, Enum):
    """Status reported for individual nodes"""

    PENDING = "pending"  # Entry exists, inputs incomplete
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PendingEntry:
    """Input accumulated for one node that has not run yet.

    ``collected`` holds the single most recent value for single-input nodes
    and a port -> value dict for named-input nodes; it is unused for nodes
    that require no input.
    """

    node_id: str
    type_tag: str | None
    required: RequiredInputs
    collected: Any = None
    delivered: bool = False  # Single mode: holds a value other than None

    def __post_init__(self) -> None:
        if self.required.mode == InputMode.NAMED and self.collected is None:
            self.collected = {}

    def is_ready(self) -> bool:
        mode = self.required.mode
        if mode == InputMode.NONE:
            return True
        if mode == InputMode.SINGLE:
            return self.delivered
        return all(name in self.collected for name in self.required.names)

    def missing_ports(self) -> list[str]:
        if self.required.mode != InputMode.NAMED:
            return []
        return [name for name in self.required.names if name not in self.collected]

    def merged_with(self, value: Any, port: str | None, source: str) -> tuple[Any, bool]:
        """Compute the collected data after accepting ``value``.

        Pure: the entry is untouched so a failing merge leaves no trace. A
        single-input node receiving None is left (or put back) not ready.

        Raises:
            MissingTargetPortError: A named-input node received a value without a port.
        """
        mode = self.required.mode
        if mode == InputMode.NONE:
            return self.collected, self.delivered
        if mode == InputMode.SINGLE:
            return value, value is not None
        if port is None:
            raise MissingTargetPortError(source, self.node_id)
        return {**self.collected, port: value}, True


@dataclass
class PendingSet:
    """Insertion-ordered map of node id -> PendingEntry.

    A node's entry leaves the waiting map when the node starts running and is
    held aside until it finishes. Values delivered to a running node by other
    nodes start a fresh waiting entry, so the node runs again afterwards; a
    node's own output routed back into itself is dropped with its entry.
    """

    _entries: dict[str, PendingEntry] = field(default_factory=dict)
    _running: dict[str, PendingEntry] = field(default_factory=dict)

    def get(self, node_id: str) -> PendingEntry | None:
        return self._entries.get(node_id)

    def ensure(self, node_id: str, type_tag: str | None, required: RequiredInputs) -> PendingEntry:
        """Return the waiting entry for ``node_id``, creating an empty one on first use."""
        entry = self._entries.get(node_id)
        if entry is None:
            entry = PendingEntry(node_id=node_id, type_tag=type_tag, required=required)
            self._entries[node_id] = entry
            logger.debug(f"Pending entry created for {node_id} ({required})")
        return entry

    def seed(
        self,
        node_id: str,
        type_tag: str | None,
        required: RequiredInputs,
        payload: Any = None,
    ) -> PendingEntry:
        """Create the entry for an origin node.

        Single-input origins are seeded with ``payload`` (an empty dict when no
        trigger data is given) and count as delivered. Named-input origins take
        their ports from a mapping payload.
        """
        entry = self.ensure(node_id, type_tag, required)
        if required.mode == InputMode.SINGLE:
            entry.collected = {} if payload is None else payload
            entry.delivered = True
        elif required.mode == InputMode.NAMED and isinstance(payload, dict):
            entry.collected = dict(payload)
        return entry

    def deliver(
        self,
        node_id: str,
        type_tag: str | None,
        required: RequiredInputs,
        value: Any,
        port: str | None,
        source: str,
    ) -> PendingEntry:
        """Merge one routed value into the target's waiting entry as a single commit.

        The merge is computed before the entry is created or touched, so a
        failure leaves the pending set exactly as it was.
        """
        if source == node_id and node_id in self._running:
            logger.debug(f"Dropped {node_id}'s output routed back into itself")
            return self._running[node_id]
        existing = self._entries.get(node_id)
        probe = existing or PendingEntry(node_id=node_id, type_tag=type_tag, required=required)
        collected, delivered = probe.merged_with(value, port, source)
        entry = self.ensure(node_id, type_tag, required)
        entry.collected = collected
        entry.delivered = delivered
        return entry

    def _runnable(self, entry: PendingEntry) -> bool:
        return entry.is_ready() and entry.node_id not in self._running

    def select_ready(self) -> PendingEntry | None:
        """First ready waiting entry in creation order, or None.

        A node that is still running is not selected again until it finishes.
        """
        return next((e for e in self._entries.values() if self._runnable(e)), None)

    def ready_entries(self, limit: int | None = None) -> list[PendingEntry]:
        ready = [e for e in self._entries.values() if self._runnable(e)]
        return ready if limit is None else ready[:limit]

    def start(self, node_id: str) -> PendingEntry:
        """Move a waiting entry aside while its node runs."""
        entry = self._entries.pop(node_id)
        self._running[node_id] = entry
        return entry

    def remove(self, node_id: str) -> PendingEntry:
        """Delete the entry of a node that finished running."""
        entry = self._running.pop(node_id, None)
        if entry is None:
            raise KeyError(f"No running entry for node '{node_id}'")
        return entry

    @property
    def node_ids(self) -> list[str]:
        """Ids of the waiting entries."""
        return list(self._entries)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._entries or node_id in self._running

    def __len__(self) -> int:
        return len(self._entries) + len(self._running)
