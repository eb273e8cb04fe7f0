"""
Shared Pydantic models for the run-scoped state of a workflow execution.

The graph itself lives in ``shared.workflow_contracts`` and is frozen; the
models here are the mutable audit trail the engine accumulates during a run.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from shared.workflow_contracts import NodeType


RunStatus = Literal["idle", "running", "paused", "completed", "error"]
KnowledgeType = Literal["tool-result", "query-result", "decision", "user-input"]
HistoryStatus = Literal["success", "error", "skipped"]
MessageRole = Literal["user", "assistant", "system"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:14]}"


# ─── Audit trail ───────────────────────────────────────────────

class KnowledgeEntry(BaseModel):
    """Timestamped fact produced by a node, consumed by later prompts."""
    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: _short_id("kb"))
    timestamp: datetime = Field(default_factory=_utcnow)
    node_id: str
    type: KnowledgeType
    content: Any = None
    summary: str = Field(default="")
    tags: list[str] = Field(default_factory=list)


class ExecutionHistoryEntry(BaseModel):
    """Audit record of one node execution outcome."""
    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: _short_id("hist"))
    timestamp: datetime = Field(default_factory=_utcnow)
    node_id: str
    node_type: NodeType
    action: str
    status: HistoryStatus
    output: Any = None
    error: str | None = None


class ExecutionContext(BaseModel):
    """Mutable run-scoped store. Replaced wholesale by every ``start()``."""

    variables: dict[str, Any] = Field(default_factory=dict)
    knowledge_base: list[KnowledgeEntry] = Field(default_factory=list)
    history: list[ExecutionHistoryEntry] = Field(default_factory=list)
    status: RunStatus = Field(default="idle")
    start_time: datetime = Field(default_factory=_utcnow)
    current_node_id: str | None = Field(default=None)
    error: str | None = Field(default=None)

    def add_to_history(
        self,
        node_id: str,
        node_type: NodeType,
        action: str,
        status: HistoryStatus,
        output: Any = None,
        error: str | None = None,
    ) -> ExecutionHistoryEntry:
        entry = ExecutionHistoryEntry(
            node_id=node_id,
            node_type=node_type,
            action=action,
            status=status,
            output=output,
            error=error,
        )
        self.history.append(entry)
        return entry

    def add_to_knowledge_base(
        self,
        node_id: str,
        entry_type: KnowledgeType,
        content: Any,
        summary: str,
    ) -> KnowledgeEntry:
        entry = KnowledgeEntry(node_id=node_id, type=entry_type, content=content, summary=summary)
        self.knowledge_base.append(entry)
        return entry

    def recent_summaries(self, limit: int = 5) -> list[str]:
        """Summaries of the last ``limit`` knowledge entries, oldest first."""
        if limit <= 0:
            return []
        return [entry.summary for entry in self.knowledge_base[-limit:]]

    def variables_text(self) -> str:
        """Render variables as ``key: value`` lines for prompt construction."""
        return "\n".join(f"{key}: {value}" for key, value in self.variables.items())

    def snapshot(self) -> "ExecutionContext":
        """Deep copy handed to observers so they never alias engine state."""
        return self.model_copy(deep=True)


# ─── Chat surface ──────────────────────────────────────────────

class ChatMessage(BaseModel):
    """Timestamped, role-tagged message for the chat panel."""
    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: _short_id("msg"))
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    node_id: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ─── Question generation ───────────────────────────────────────

class QuestionRequest(BaseModel):
    """Payload of the question-generation service (camelCase on the wire)."""
    model_config = {"frozen": True, "populate_by_name": True, "alias_generator": to_camel}

    instruction: str = Field(..., description="What the user-interaction node wants to ask")
    context: str = Field(default="", description="Serialized variable snapshot")
    knowledge_base: str = Field(default="", description="Recent knowledge summaries, one per line")


class QuestionResponse(BaseModel):
    model_config = {"frozen": True}

    question: str


# ─── Model Layer (Policy) ──────────────────────────────────────

class ModelPolicy(BaseModel):
    """Configuration for Model Layer execution."""
    model_config = {"frozen": True}
    model_name: str
    temperature: float = 0.0
    timeout_seconds: float = 30.0
    max_retries: int = 3
    json_mode: bool = True
