"""Automation graph execution engine.

This module implements the worklist run loop:
- Seeds a pending entry for the origin node(s)
- Repeatedly selects the first ready pending entry (creation order)
- Runs its executor, routes the output downstream, deletes the entry
- Succeeds when nothing is pending, fails with NoProgressError when entries
  remain but none is ready (cycles, unsatisfiable named inputs)

Every run gets its own RunContext; nothing is carried between runs, so the
same graph can be run any number of times. Runs are not idempotent: nodes with
external side effects repeat them on every run.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from automations.core.catalog import CancelToken, NodeCatalog, NodeContext
from automations.core.config import EngineConfig
from automations.core.exceptions import (
    AutomationError,
    CyclicGraphError,
    ExecutionError,
    InvalidTargetError,
    MultipleOriginsError,
    NoOriginNodeError,
    NoProgressError,
    RunCancelledError,
)
from automations.core.graph_schema import AutomationGraph
from automations.core.router import OutputRouter
from automations.core.scheduler import NodeStatus, PendingEntry, PendingSet, RunState
from automations.core.services import NodeServices

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, str, Any], None]


@dataclass
class NodeInvocation:
    """Record of one executor call."""

    node_id: str
    type_tag: str
    inputs: Any
    config: Any
    output: Any
    duration: float


@dataclass
class RunResult:
    """Outcome of a run, in execution order."""

    run_id: str
    state: RunState
    invocations: list[NodeInvocation] = field(default_factory=list)

    @property
    def order(self) -> list[str]:
        return [inv.node_id for inv in self.invocations]

    @property
    def outputs(self) -> dict[str, Any]:
        return {inv.node_id: inv.output for inv in self.invocations}

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.SUCCEEDED


@dataclass
class RunContext:
    """State owned by exactly one run."""

    run_id: str
    graph: AutomationGraph
    cancel_token: CancelToken
    pending: PendingSet = field(default_factory=PendingSet)
    state: RunState = RunState.NOT_STARTED
    invocations: list[NodeInvocation] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    status_callback: StatusCallback | None = None
    router: OutputRouter | None = None

    def result(self) -> RunResult:
        return RunResult(self.run_id, self.state, list(self.invocations))


class AutomationRunner:
    """
    Runs automation graphs against a node catalog.

    Key Features:
    - Execution order follows data availability, re-evaluated every iteration
    - Deterministic tie-break: earliest-created ready entry runs first
    - Optional bounded concurrency for independent ready nodes
    - Cooperative cancellation and per-node timeouts
    """

    def __init__(
        self,
        catalog: NodeCatalog,
        config: EngineConfig | None = None,
        services: NodeServices | None = None,
    ):
        self.catalog = catalog
        self.config = config or EngineConfig()
        self.services = services or NodeServices()

    # ========== Public API ==========

    async def run(
        self,
        graph: AutomationGraph,
        trigger: Any = None,
        cancel_token: CancelToken | None = None,
        status_callback: StatusCallback | None = None,
    ) -> RunResult:
        """
        Run ``graph`` to completion.

        Args:
            graph: The automation to run
            trigger: Data the origin node is seeded with (e.g. a submitted form)
            cancel_token: Token checked between iterations and passed to executors
            status_callback: Called as (node_id, status, output) on node transitions

        Returns:
            RunResult with the invocations in execution order

        Raises:
            AutomationError: Any failure; the partial RunResult is attached as ``.result``
        """
        ctx = RunContext(
            run_id=str(uuid.uuid4()),
            graph=graph,
            cancel_token=cancel_token or CancelToken(),
            status_callback=status_callback,
        )
        ctx.router = OutputRouter(graph, self.catalog, ctx.pending)
        logger.info(f"Run {ctx.run_id} started for automation '{graph.id}'")

        try:
            self._preflight(graph)
            self._seed(ctx, trigger)
            ctx.state = RunState.RUNNING
            if self.config.max_parallel == 1:
                await self._run_sequential(ctx)
            else:
                await self._run_concurrent(ctx)
        except AutomationError as e:
            ctx.state = RunState.CANCELLED if isinstance(e, RunCancelledError) else RunState.FAILED
            e.result = ctx.result()
            logger.error(f"Run {ctx.run_id} {ctx.state.value}: {e}")
            raise

        ctx.state = RunState.SUCCEEDED
        logger.info(f"Run {ctx.run_id} completed ({len(ctx.invocations)} nodes executed)")
        return ctx.result()

    # ========== Setup ==========

    def _preflight(self, graph: AutomationGraph) -> None:
        """Checks that must pass before any node has a chance to run."""
        if self.config.check_cycles:
            cycle = graph.find_cycle()
            if cycle:
                raise CyclicGraphError(cycle)
        # Resolve every type now so an unknown type aborts before side effects
        for node in graph.nodes:
            self.catalog.lookup(node.type)

    def discover_origins(self, graph: AutomationGraph) -> list[str]:
        """Origin node ids according to the configured origin policy."""
        origins = graph.find_origins()
        if not origins:
            raise NoOriginNodeError("Failed to find origin node")
        if len(origins) == 1 or self.config.origin_policy == "all":
            return origins
        if self.config.origin_policy == "first":
            logger.warning(
                f"Graph has {len(origins)} origin nodes; using '{origins[0]}' (origin_policy=first)"
            )
            return origins[:1]
        raise MultipleOriginsError(origins)

    def _seed(self, ctx: RunContext, trigger: Any) -> None:
        for origin_id in self.discover_origins(ctx.graph):
            node = ctx.graph.node(origin_id)
            descriptor = self.catalog.describe(node.type)
            ctx.pending.seed(node.id, node.type, descriptor.required, trigger)
            logger.debug(f"Seeded origin {node.id} ({node.type})")
        ctx.state = RunState.SEEDED

    # ========== Run Loops ==========

    async def _run_sequential(self, ctx: RunContext) -> None:
        while ctx.pending:
            ctx.cancel_token.raise_if_cancelled()
            entry = ctx.pending.select_ready()
            if entry is None:
                raise NoProgressError(ctx.pending.node_ids)
            ctx.pending.start(entry.node_id)
            await self._invoke(ctx, entry)

    async def _run_concurrent(self, ctx: RunContext) -> None:
        """Run up to ``max_parallel`` ready nodes at once.

        Entries handed to a task are moved out of the waiting set so they are
        not selected twice. All pending-set mutations happen under ``ctx.lock``.
        """
        tasks: dict[asyncio.Task, str] = {}
        try:
            while ctx.pending:
                ctx.cancel_token.raise_if_cancelled()
                async with ctx.lock:
                    free = self.config.max_parallel - len(tasks)
                    for entry in ctx.pending.ready_entries(free) if free > 0 else []:
                        ctx.pending.start(entry.node_id)
                        tasks[asyncio.create_task(self._invoke(ctx, entry))] = entry.node_id
                if not tasks:
                    raise NoProgressError(ctx.pending.node_ids)

                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    tasks.pop(task)
                    task.result()
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

    # ========== Executor Invocation ==========

    async def _invoke(self, ctx: RunContext, entry: PendingEntry) -> Any:
        """Run one ready node, route its output, then delete its entry."""
        node = ctx.graph.node(entry.node_id)
        if node is None:
            raise InvalidTargetError(entry.node_id)
        node_type = self.catalog.lookup(node.type)
        config = ctx.graph.config_for(node.id)
        inputs = entry.collected

        self._notify(ctx, node.id, NodeStatus.RUNNING, None)
        logger.debug(f"Executing {node.id} ({node.type}) with {inputs!r}")

        node_context = NodeContext(
            run_id=ctx.run_id,
            node_id=node.id,
            services=self.services,
            cancel_token=ctx.cancel_token,
        )
        started = time.monotonic()
        try:
            output = await self._await_executor(
                node_type.execute(inputs, config, node_context), ctx.cancel_token
            )
        except AutomationError as e:
            if isinstance(e, ExecutionError) and e.node_id is None:
                e.node_id = node.id
            self._notify(ctx, node.id, NodeStatus.FAILED, None)
            raise
        except TimeoutError as e:
            self._notify(ctx, node.id, NodeStatus.FAILED, None)
            raise ExecutionError(
                f"Node '{node.id}' timed out after {self.config.node_timeout}s",
                cause=e,
                node_id=node.id,
            ) from e
        except Exception as e:
            self._notify(ctx, node.id, NodeStatus.FAILED, None)
            raise ExecutionError(
                f"Node '{node.id}' ({node.type}) failed: {e}", cause=e, node_id=node.id
            ) from e

        duration = time.monotonic() - started
        ctx.invocations.append(
            NodeInvocation(node.id, node.type, inputs, config, output, duration)
        )
        logger.debug(f"{node.id} produced {output!r} in {duration:.3f}s")

        async with ctx.lock:
            ctx.router.route(node, output)
            ctx.pending.remove(node.id)

        self._notify(ctx, node.id, NodeStatus.COMPLETED, output)
        return output

    async def _await_executor(self, awaitable: Awaitable[Any], token: CancelToken) -> Any:
        """Await an executor, bounded by the node timeout and the cancel token."""
        exec_task = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {exec_task, cancel_wait},
                timeout=self.config.node_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            unfinished = [t for t in (exec_task, cancel_wait) if not t.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        if exec_task in done:
            return exec_task.result()
        token.raise_if_cancelled()
        raise TimeoutError(f"Executor did not finish within {self.config.node_timeout}s")

    def _notify(self, ctx: RunContext, node_id: str, status: NodeStatus, output: Any) -> None:
        if ctx.status_callback is None:
            return
        try:
            ctx.status_callback(node_id, status.value, output)
        except Exception as e:
            logger.warning(f"Status callback failed for {node_id}: {e}")
