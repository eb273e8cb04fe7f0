"""Graph contracts for emergency-response workflows.

A workflow is a directed graph of typed nodes supplied once by an external
editor. The engine only reads it: every model here is frozen.

Wire format uses the editor's camelCase keys (``sourceNodeId``,
``evaluationPrompt``...); Python attributes are snake_case.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel


NodeType = Literal[
    "start",
    "if",
    "user-interaction",
    "tool-call",
    "data-query",
    "decision",
    "parallel",
    "merge",
    "end",
]
NodeStatus = Literal["idle", "running", "completed", "error", "waiting"]

_CONTRACT_CONFIG = {
    "frozen": True,
    "populate_by_name": True,
    "alias_generator": to_camel,
}


class Position(BaseModel):
    """Canvas position; carried through but never used by the engine."""

    model_config = _CONTRACT_CONFIG

    x: float = 0.0
    y: float = 0.0


# ─── Per-type configuration payloads ──────────────────────────

class StartData(BaseModel):
    model_config = _CONTRACT_CONFIG

    initial_context: str = Field(default="")
    trigger_conditions: list[str] = Field(default_factory=list)


class IfData(BaseModel):
    model_config = _CONTRACT_CONFIG

    condition: str = Field(default="", description="Simple-text condition, e.g. 'contains fire' or '${var}'")
    evaluation_prompt: str | None = Field(default=None, description="Natural-language criterion (AI mode)")
    true_output_id: str | None = Field(default=None)
    false_output_id: str | None = Field(default=None)


class UserInteractionData(BaseModel):
    model_config = _CONTRACT_CONFIG

    prompt: str = Field(default="", description="Instruction used to generate the question")
    expected_response_type: Literal["text", "confirmation", "choice", "data"] | None = Field(default=None)
    choices: list[str] = Field(default_factory=list)
    timeout: float | None = Field(default=None, description="Timeout in seconds (informational)")
    save_response_as: str | None = Field(default=None)


class ToolCallData(BaseModel):
    model_config = _CONTRACT_CONFIG

    tool_name: str = Field(default="")
    tool_description: str = Field(default="")
    parameters: dict[str, Any] = Field(default_factory=dict)
    save_result_as: str | None = Field(default=None)
    retry_on_failure: bool = Field(default=False)
    max_retries: int | None = Field(default=None, ge=0)


class DataQueryData(BaseModel):
    model_config = _CONTRACT_CONFIG

    query_type: Literal["firebase", "knowledge-base", "simulation"] = Field(default="firebase")
    collection: str | None = Field(default=None)
    query: str = Field(default="")
    filters: dict[str, Any] = Field(default_factory=dict)
    save_result_as: str | None = Field(default=None)


class DecisionData(BaseModel):
    model_config = _CONTRACT_CONFIG

    decision_prompt: str = Field(default="")
    options: list[str] = Field(default_factory=list)
    context: str | None = Field(default=None)
    save_decision_as: str | None = Field(default=None)


class ParallelData(BaseModel):
    model_config = _CONTRACT_CONFIG

    branches: list[str] = Field(default_factory=list)
    wait_for_all: bool | None = Field(default=None)


class MergeData(BaseModel):
    model_config = _CONTRACT_CONFIG

    merge_strategy: Literal["wait-all", "first-complete", "any-success"] = Field(default="wait-all")
    combine_results: bool | None = Field(default=None)


class EndData(BaseModel):
    model_config = _CONTRACT_CONFIG

    summary: str | None = Field(default=None)
    output_variables: list[str] = Field(default_factory=list)


# ─── Nodes ─────────────────────────────────────────────────────

class BaseNode(BaseModel):
    """Fields shared by every node variant."""

    model_config = _CONTRACT_CONFIG

    id: str
    label: str = Field(default="")
    description: str | None = Field(default=None)
    status: NodeStatus = Field(default="idle")
    position: Position = Field(default_factory=Position)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.label or self.id


class StartNode(BaseNode):
    type: Literal["start"] = "start"
    data: StartData = Field(default_factory=StartData)


class IfNode(BaseNode):
    type: Literal["if"] = "if"
    data: IfData = Field(default_factory=IfData)


class UserInteractionNode(BaseNode):
    type: Literal["user-interaction"] = "user-interaction"
    data: UserInteractionData = Field(default_factory=UserInteractionData)


class ToolCallNode(BaseNode):
    type: Literal["tool-call"] = "tool-call"
    data: ToolCallData = Field(default_factory=ToolCallData)


class DataQueryNode(BaseNode):
    type: Literal["data-query"] = "data-query"
    data: DataQueryData = Field(default_factory=DataQueryData)


class DecisionNode(BaseNode):
    type: Literal["decision"] = "decision"
    data: DecisionData = Field(default_factory=DecisionData)


class ParallelNode(BaseNode):
    type: Literal["parallel"] = "parallel"
    data: ParallelData = Field(default_factory=ParallelData)


class MergeNode(BaseNode):
    type: Literal["merge"] = "merge"
    data: MergeData = Field(default_factory=MergeData)


class EndNode(BaseNode):
    type: Literal["end"] = "end"
    data: EndData = Field(default_factory=EndData)


GraphNode = Annotated[
    Union[
        StartNode,
        IfNode,
        UserInteractionNode,
        ToolCallNode,
        DataQueryNode,
        DecisionNode,
        ParallelNode,
        MergeNode,
        EndNode,
    ],
    Field(discriminator="type"),
]


class NodeConnection(BaseModel):
    """Directed edge; ``source_handle`` tags the true/false branch of an if node."""

    model_config = _CONTRACT_CONFIG

    id: str
    source_node_id: str
    target_node_id: str
    source_handle: str | None = Field(default=None)
    target_handle: str | None = Field(default=None)
    label: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)


class GraphMetadata(BaseModel):
    model_config = _CONTRACT_CONFIG

    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    modified: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = Field(default="1.0.0")
    author: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)


class WorkflowGraph(BaseModel):
    """Whole workflow document as saved by the editor."""

    model_config = _CONTRACT_CONFIG

    id: str = Field(default="default-graph")
    name: str = Field(default="Emergency Response Workflow")
    description: str = Field(default="")
    nodes: list[GraphNode] = Field(default_factory=list)
    connections: list[NodeConnection] = Field(default_factory=list)
    metadata: GraphMetadata = Field(default_factory=GraphMetadata)

    @model_validator(mode="after")
    def validate_graph(self) -> "WorkflowGraph":
        node_ids = [node.id.strip() for node in self.nodes]
        if any(not node_id for node_id in node_ids):
            raise ValueError("Workflow nodes must use non-empty ids")
        if len(set(node_ids)) != len(node_ids):
            raise ValueError("Workflow node ids must be unique")
        return self

    def node_by_id(self, node_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def start_nodes(self) -> list[StartNode]:
        return [node for node in self.nodes if isinstance(node, StartNode)]

    def outgoing(self, node_id: str) -> list[NodeConnection]:
        return [conn for conn in self.connections if conn.source_node_id == node_id]

    def incoming(self, node_id: str) -> list[NodeConnection]:
        return [conn for conn in self.connections if conn.target_node_id == node_id]
