"""Execution Engine.

Interprets a ``WorkflowGraph`` one node at a time:
- every transition is a paced continuation owned by ``RunScheduler``
- user-interaction nodes suspend their branch until ``continue_from_user_input``
- ``pause`` parks continuations, ``resume`` releases them, ``stop`` drops them
"""

from __future__ import annotations

import logging
import uuid

from execution.callbacks import EngineCallbacks
from execution.conditions import ConditionEvaluator
from execution.node_executor import DEFAULT_QUESTION, NodeExecutor, NodeOutcome
from execution.scheduler import GateDecision, RunScheduler
from observability.logger import Observability
from questions.generator import QuestionGenerator
from shared.models import ChatMessage, ExecutionContext
from shared.workflow_contracts import (
    GraphNode,
    IfNode,
    NodeConnection,
    NodeStatus,
    StartNode,
    UserInteractionNode,
    WorkflowGraph,
)

logger = logging.getLogger(__name__)

DEFAULT_PACING_SECONDS = 0.5

__all__ = [
    "DEFAULT_PACING_SECONDS",
    "DEFAULT_QUESTION",
    "ExecutionEngine",
    "WorkflowConfigurationError",
]


class WorkflowConfigurationError(ValueError):
    """Raised by ``start()`` when the graph cannot be run at all."""


class ExecutionEngine:
    """Engine to run a workflow graph with suspension, pause and stop."""

    def __init__(
        self,
        graph: WorkflowGraph,
        callbacks: EngineCallbacks | None = None,
        question_generator: QuestionGenerator | None = None,
        condition_evaluator: ConditionEvaluator | None = None,
        pacing_seconds: float = DEFAULT_PACING_SECONDS,
        observability: Observability | None = None,
    ):
        self.graph = graph
        self.callbacks = callbacks or EngineCallbacks()
        self.executor = NodeExecutor(
            graph,
            condition_evaluator or ConditionEvaluator(),
            question_generator,
            self.callbacks,
        )
        self.scheduler = RunScheduler(self.execute_node, self._gate, delay_seconds=pacing_seconds)
        self.observability = observability or Observability(graph_id=graph.id)
        self._obs = self.observability
        self._context = ExecutionContext()
        self._node_status: dict[str, NodeStatus] = {}
        self._waiting: dict[str, str] = {}

    # ─── Accessors ────────────────────────────────────────────────

    @property
    def context(self) -> ExecutionContext:
        return self._context.snapshot()

    @property
    def waiting_node_ids(self) -> list[str]:
        return list(self._waiting)

    @property
    def generation(self) -> int:
        return self.scheduler.generation

    @property
    def run_log(self) -> Observability:
        """Structured event log of the current (or last) run."""
        return self._obs

    def node_status(self, node_id: str) -> NodeStatus:
        return self._node_status.get(node_id, "idle")

    def pending_prompt(self, node_id: str) -> str | None:
        """Question shown for a suspended node, if it is waiting."""
        return self._waiting.get(node_id)

    # ─── Inbound API ──────────────────────────────────────────────

    async def start(self) -> None:
        """Begin a fresh run from the unique start node."""
        start_node = self._locate_start_node()

        self.scheduler.new_generation()
        self._context = ExecutionContext(status="running")
        self._node_status.clear()
        self._waiting.clear()
        self._obs = self.observability.for_run(f"run-{uuid.uuid4().hex[:12]}")
        self._obs.log_event(
            "run_started",
            {
                "generation": self.scheduler.generation,
                "start_node_id": start_node.id,
                "node_count": len(self.graph.nodes),
            },
        )

        await self.callbacks.context_updated(self._context.snapshot())
        self.scheduler.schedule(start_node.id)

    async def execute_node(self, node_id: str) -> None:
        """Run one node and schedule its successors. Never raises for node errors.

        A callback may stop or restart the run while this node is in flight;
        once the generation moves on, the node stops touching engine state.
        """
        node = self.graph.node_by_id(node_id)
        if node is None:
            logger.debug("Ignoring unknown node id '%s'", node_id)
            return

        generation = self.scheduler.generation
        context = self._context
        context.current_node_id = node.id
        await self._set_status(node.id, "running")
        if self._superseded(generation, node.id):
            return
        await self.callbacks.message(
            ChatMessage(role="assistant", content=f"Executing: {node.display_name}", node_id=node.id)
        )
        if self._superseded(generation, node.id):
            return
        self._obs.log_event("node_started", {"node_id": node.id, "node_type": node.type})

        try:
            with self._obs.measure("node_execution", {"node_id": node.id, "node_type": node.type}):
                outcome = await self.executor.execute(node, context)
        except Exception as exc:
            if not self._superseded(generation, node.id):
                await self._fail_node(node, exc, generation)
            return
        if self._superseded(generation, node.id):
            return

        if outcome.status == "waiting":
            await self._suspend(node, outcome.prompt, generation)
            return

        await self._set_status(node.id, "completed")
        if self._superseded(generation, node.id):
            return
        self._obs.log_event("node_finished", {"node_id": node.id, "node_type": node.type})
        await self.callbacks.context_updated(context.snapshot())
        if self._superseded(generation, node.id):
            return

        if outcome.status == "terminal":
            await self._finish_branch(node, generation, announce=False)
            return
        await self._advance(node, outcome, generation)

    async def continue_from_user_input(self, node_id: str, response: str) -> bool:
        """Resume the branch suspended at ``node_id`` with the user's answer."""
        if self._context.status in ("error", "idle"):
            logger.warning("Run is %s; ignoring response for node '%s'", self._context.status, node_id)
            return False
        if node_id not in self._waiting:
            logger.warning("Node '%s' is not waiting for input; ignoring response", node_id)
            return False

        node = self.graph.node_by_id(node_id)
        del self._waiting[node_id]
        if node is None:
            return False

        generation = self.scheduler.generation
        context = self._context
        context.add_to_knowledge_base(node.id, "user-input", response, f"User response: {response}")
        context.variables[f"{node.id}_response"] = response
        if isinstance(node, UserInteractionNode) and node.data.save_response_as:
            context.variables[node.data.save_response_as.strip()] = response
        context.add_to_history(node.id, node.type, "Received user input", "success", response)

        await self._set_status(node.id, "completed")
        if self._superseded(generation, node.id):
            return True
        self._obs.log_event("node_finished", {"node_id": node.id, "node_type": node.type, "resumed": True})
        await self.callbacks.context_updated(context.snapshot())
        if self._superseded(generation, node.id):
            return True
        # Resumed branches fan out to every outgoing connection, like any completed node.
        await self._advance(node, NodeOutcome(), generation)
        return True

    async def pause(self) -> None:
        if self._context.status != "running":
            logger.info("Pause ignored; run is %s", self._context.status)
            return
        self._context.status = "paused"
        self._obs.log_event("run_paused", {"generation": self.scheduler.generation})
        await self.callbacks.context_updated(self._context.snapshot())

    async def resume(self) -> list[str]:
        """Return to ``running`` and re-schedule parked continuations."""
        if self._context.status != "paused":
            logger.info("Resume ignored; run is %s", self._context.status)
            return []
        self._context.status = "running"
        released = self.scheduler.release_parked()
        self._obs.log_event("run_resumed", {"released": released})
        await self.callbacks.context_updated(self._context.snapshot())
        return released

    async def stop(self) -> None:
        self.scheduler.new_generation()
        self._waiting.clear()
        self._context.status = "idle"
        self._obs.log_event("run_stopped", {"generation": self.scheduler.generation})
        await self.callbacks.context_updated(self._context.snapshot())

    async def wait_until_idle(self) -> None:
        await self.scheduler.wait_until_idle()

    # ─── Internals ────────────────────────────────────────────────

    def _locate_start_node(self) -> StartNode:
        start_nodes = self.graph.start_nodes()
        if not start_nodes:
            raise WorkflowConfigurationError("No start node found")
        if len(start_nodes) > 1:
            ids = ", ".join(node.id for node in start_nodes)
            raise WorkflowConfigurationError(f"Workflow has more than one start node: {ids}")
        return start_nodes[0]

    def _gate(self, node_id: str) -> GateDecision:
        status = self._context.status
        if status == "paused":
            return "park"
        if status in ("error", "idle"):
            return "drop"
        return "run"

    def _superseded(self, generation: int, node_id: str) -> bool:
        if generation == self.scheduler.generation:
            return False
        logger.debug("Run restarted or stopped while '%s' was in flight; abandoning it", node_id)
        return True

    async def _set_status(self, node_id: str, status: NodeStatus) -> None:
        self._node_status[node_id] = status
        await self.callbacks.node_status_changed(node_id, status)

    async def _suspend(self, node: GraphNode, prompt: str, generation: int) -> None:
        self._waiting[node.id] = prompt
        await self._set_status(node.id, "waiting")
        if self._superseded(generation, node.id):
            return
        self._obs.log_event("run_waiting", {"node_id": node.id, "prompt": prompt})
        await self.callbacks.context_updated(self._context.snapshot())
        if self._superseded(generation, node.id):
            return
        await self.callbacks.wait_for_user(node.id, prompt)

    async def _fail_node(self, node: GraphNode, exc: Exception, generation: int) -> None:
        error = str(exc) or exc.__class__.__name__
        logger.error("Node '%s' (%s) failed: %s", node.id, node.type, error)
        self._context.add_to_history(node.id, node.type, "Error during execution", "error", error=error)
        self._context.status = "error"
        self._context.error = error
        await self._set_status(node.id, "error")
        if self._superseded(generation, node.id):
            return
        self._obs.log_event("node_failed", {"node_id": node.id, "node_type": node.type, "error": error}, level="ERROR")
        await self.callbacks.context_updated(self._context.snapshot())
        if self._superseded(generation, node.id):
            return
        await self.callbacks.message(
            ChatMessage(role="system", content=f"Workflow halted at {node.display_name}: {error}", node_id=node.id)
        )

    async def _advance(self, node: GraphNode, outcome: NodeOutcome, generation: int) -> None:
        connections = self.graph.outgoing(node.id)
        if not connections:
            await self._finish_branch(node, generation)
            return

        if isinstance(node, IfNode):
            targets = [self._select_branch(node, connections, bool(outcome.branch)).target_node_id]
        else:
            targets = [connection.target_node_id for connection in connections]

        scheduled = 0
        for target_id in targets:
            if self.graph.node_by_id(target_id) is None:
                logger.debug("Connection from '%s' points at unknown node '%s'", node.id, target_id)
                continue
            if self.scheduler.schedule(target_id, generation) is not None:
                scheduled += 1

        if not scheduled:
            await self._finish_branch(node, generation)

    def _select_branch(self, node: IfNode, connections: list[NodeConnection], result: bool) -> NodeConnection:
        handle = "true" if result else "false"
        for connection in connections:
            if connection.source_handle == handle:
                return connection
        logger.warning(
            "If node '%s' has no '%s' connection; following '%s'",
            node.id,
            handle,
            connections[0].id,
        )
        return connections[0]

    async def _finish_branch(self, node: GraphNode, generation: int, announce: bool = True) -> None:
        if self._superseded(generation, node.id) or self._context.status in ("error", "idle"):
            return
        if self._waiting or self.scheduler.parked or self.scheduler.has_other_pending():
            logger.debug("Branch ended at '%s'; run still has outstanding work", node.id)
            return

        self._context.status = "completed"
        self._obs.log_event("run_completed", {"last_node_id": node.id, "history": len(self._context.history)})
        await self.callbacks.context_updated(self._context.snapshot())
        if announce and not self._superseded(generation, node.id):
            await self.callbacks.message(
                ChatMessage(role="system", content="Workflow execution completed", node_id=node.id)
            )
