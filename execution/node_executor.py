"""Per-type node behaviour.

The executor mutates the run context (variables, knowledge base, history)
and emits chat messages; node status and successor scheduling belong to the
engine, which reads the returned ``NodeOutcome``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from execution.callbacks import EngineCallbacks
from execution.conditions import ConditionEvaluator
from questions.generator import QuestionGenerator
from shared.models import ChatMessage, ExecutionContext
from shared.workflow_contracts import (
    DataQueryNode,
    DecisionNode,
    EndNode,
    GraphNode,
    IfNode,
    MergeNode,
    ParallelNode,
    StartNode,
    ToolCallNode,
    UserInteractionNode,
    WorkflowGraph,
)

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION = "Ask the user for input"
DEFAULT_QUESTION = "Please provide your input."
KNOWLEDGE_WINDOW = 5


@dataclass
class NodeOutcome:
    status: Literal["completed", "waiting", "terminal"] = "completed"
    branch: bool | None = None  # if nodes only
    prompt: str = ""  # user-interaction only


def store_variable(
    context: ExecutionContext,
    node_id: str,
    suffix: str,
    value: Any,
    alias: str | None = None,
) -> None:
    """Write ``{node_id}_{suffix}`` and, when configured, the node's alias."""
    context.variables[f"{node_id}_{suffix}"] = value
    if alias and alias.strip():
        context.variables[alias.strip()] = value


class NodeExecutor:
    """Runs one node against the shared execution context."""

    def __init__(
        self,
        graph: WorkflowGraph,
        condition_evaluator: ConditionEvaluator,
        question_generator: QuestionGenerator | None,
        callbacks: EngineCallbacks,
    ):
        self.graph = graph
        self.condition_evaluator = condition_evaluator
        self.question_generator = question_generator
        self.callbacks = callbacks

    async def execute(self, node: GraphNode, context: ExecutionContext) -> NodeOutcome:
        if isinstance(node, StartNode):
            context.variables["startTime"] = datetime.now(timezone.utc).isoformat()
            context.add_to_history(node.id, node.type, "Started workflow", "success")
            return NodeOutcome()

        if isinstance(node, UserInteractionNode):
            return await self._ask_user(node, context)

        if isinstance(node, ToolCallNode):
            tool_name = node.data.tool_name or "unknown"
            parameters = json.dumps(node.data.parameters, ensure_ascii=False) if node.data.parameters else "default"
            tool_result = f"🔧 Executed tool: **{tool_name}** with parameters: {parameters}"
            store_variable(context, node.id, "result", tool_result, alias=node.data.save_result_as)
            context.add_to_knowledge_base(node.id, "tool-result", tool_result, tool_result)
            context.add_to_history(node.id, node.type, "Tool execution", "success", tool_result)
            await self._say(node.id, tool_result)
            return NodeOutcome()

        if isinstance(node, IfNode):
            evaluation = await self.condition_evaluator.evaluate(node, self.graph, context.variables)
            store_variable(context, node.id, "result", evaluation.result)
            context.add_to_history(node.id, node.type, evaluation.reasoning, "success", evaluation.result)
            await self._say(
                node.id,
                f"🔍 **Condition Check**: {evaluation.reasoning}",
                metadata={"mode": evaluation.mode, "result": evaluation.result},
            )
            return NodeOutcome(branch=evaluation.result)

        if isinstance(node, DecisionNode):
            responses = ", ".join(
                f'{key}: "{value}"' for key, value in context.variables.items() if "_response" in key
            )
            recommendation = node.data.decision_prompt or "Analyzing situation..."
            decision = f"Based on: {responses or 'initial context'}, I recommend: {recommendation}"
            store_variable(context, node.id, "decision", decision, alias=node.data.save_decision_as)
            context.add_to_knowledge_base(node.id, "decision", decision, decision)
            context.add_to_history(node.id, node.type, "Made decision", "success", decision)
            await self._say(node.id, f"🤖 **AI Decision**: {decision}")
            return NodeOutcome()

        if isinstance(node, DataQueryNode):
            collection = node.data.collection or "database"
            query = node.data.query or "all records"
            query_result = f"📊 Queried {collection} for: {query}"
            store_variable(context, node.id, "result", query_result, alias=node.data.save_result_as)
            context.add_to_knowledge_base(node.id, "query-result", query_result, query_result)
            context.add_to_history(node.id, node.type, "Queried data", "success", query_result)
            await self._say(node.id, query_result)
            return NodeOutcome()

        if isinstance(node, EndNode):
            context.add_to_history(node.id, node.type, "Completed workflow", "success", node.data.summary)
            await self._say(node.id, "Workflow completed successfully", role="system")
            return NodeOutcome(status="terminal")

        if isinstance(node, (ParallelNode, MergeNode)):
            # No join semantics: fan-out and re-entry follow the generic successor rule.
            context.add_to_history(node.id, node.type, "Executed node", "success")
            return NodeOutcome()

        logger.warning("No behaviour for node '%s' of type '%s'", node.id, getattr(node, "type", "?"))
        context.add_to_history(node.id, node.type, "Executed node", "success")
        return NodeOutcome()

    async def _ask_user(self, node: UserInteractionNode, context: ExecutionContext) -> NodeOutcome:
        instruction = node.data.prompt or DEFAULT_INSTRUCTION
        variables_text = context.variables_text()
        knowledge_text = "\n".join(context.recent_summaries(KNOWLEDGE_WINDOW))
        logger.debug(
            "User interaction '%s': instruction=%r variables=%d knowledge=%d",
            node.id,
            instruction,
            len(context.variables),
            len(context.knowledge_base),
        )

        question = await self._generate_question(instruction, variables_text, knowledge_text)
        await self._say(node.id, question, metadata={"awaiting_input": True})
        return NodeOutcome(status="waiting", prompt=question)

    async def _generate_question(self, instruction: str, context_text: str, knowledge_text: str) -> str:
        if self.question_generator is None:
            return DEFAULT_QUESTION
        try:
            return await self.question_generator.generate_question(instruction, context_text, knowledge_text)
        except Exception as exc:
            logger.warning("Failed to generate question, using default prompt: %s", exc)
            return DEFAULT_QUESTION

    async def _say(
        self,
        node_id: str,
        content: str,
        role: Literal["assistant", "system"] = "assistant",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.callbacks.message(
            ChatMessage(role=role, content=content, node_id=node_id, metadata=metadata or {})
        )
