"""Collaborator callbacks injected into the execution engine.

Each callback may be a plain function or a coroutine function. A failing
callback is logged and never interrupts the run.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from shared.models import ChatMessage, ExecutionContext
from shared.workflow_contracts import NodeStatus

logger = logging.getLogger(__name__)

NodeStatusCallback = Callable[[str, NodeStatus], Any]
ContextCallback = Callable[[ExecutionContext], Any]
MessageCallback = Callable[[ChatMessage], Any]
WaitForUserCallback = Callable[[str, str], Any]


@dataclass
class EngineCallbacks:
    on_node_status_change: NodeStatusCallback | None = None
    on_context_update: ContextCallback | None = None
    on_message: MessageCallback | None = None
    on_wait_for_user: WaitForUserCallback | None = None

    async def node_status_changed(self, node_id: str, status: NodeStatus) -> None:
        await _invoke("on_node_status_change", self.on_node_status_change, node_id, status)

    async def context_updated(self, context: ExecutionContext) -> None:
        await _invoke("on_context_update", self.on_context_update, context)

    async def message(self, message: ChatMessage) -> None:
        await _invoke("on_message", self.on_message, message)

    async def wait_for_user(self, node_id: str, prompt: str) -> None:
        await _invoke("on_wait_for_user", self.on_wait_for_user, node_id, prompt)


async def _invoke(name: str, callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        maybe_result = callback(*args)
        if inspect.isawaitable(maybe_result):
            await maybe_result
    except Exception as exc:
        logger.warning("Engine callback '%s' failed: %s", name, exc)
