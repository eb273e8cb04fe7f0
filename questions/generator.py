"""
Question generation for user-interaction nodes.

Responsibility:
- Turn a node instruction plus run context into one natural question
- Talk either to the model layer directly or to the HTTP question service

Generators raise on failure; the engine substitutes its default prompt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from models.selector import ModelSelector
from shared.models import ModelPolicy, QuestionRequest

logger = logging.getLogger(__name__)

QUESTION_ENDPOINT = "/api/generate-question"


class QuestionGenerationError(RuntimeError):
    """Raised when a generator cannot produce a usable question."""


class QuestionGenerator(Protocol):
    async def generate_question(self, instruction: str, context: str, knowledge_base: str) -> str: ...


def build_question_prompt(instruction: str, context: str, knowledge_base: str) -> str:
    """Prompt sent to the model for a single user-facing question."""
    return (
        "You are an emergency response AI assistant conducting a workflow. "
        "You need to ask the user a question.\n\n"
        f"INSTRUCTION: {instruction}\n\n"
        "CURRENT WORKFLOW CONTEXT:\n"
        f"{context or 'No context available yet'}\n\n"
        "RECENT WORKFLOW ACTIONS:\n"
        f"{knowledge_base or 'No recent actions'}\n\n"
        "Based on the instruction and available context, generate a clear, natural question "
        "to ask the user. Use any relevant context from the workflow to make the question more "
        "specific and helpful. Output ONLY the question itself, nothing else."
    )


class ModelQuestionGenerator:
    """Generates questions through the Model Layer."""

    def __init__(self, model_selector: ModelSelector, model_name: str = "gpt-4o-mini"):
        self.model_selector = model_selector
        self.policy = ModelPolicy(
            model_name=model_name,
            temperature=0.7,
            timeout_seconds=30.0,
            max_retries=2,
            json_mode=False,
        )

    async def generate_question(self, instruction: str, context: str, knowledge_base: str) -> str:
        messages = [{"role": "user", "content": build_question_prompt(instruction, context, knowledge_base)}]
        # ModelSelector is synchronous (pooled httpx.Client).
        response = await asyncio.to_thread(self.model_selector.generate, messages, self.policy)
        question = str(response or "").strip()
        if not question:
            raise QuestionGenerationError("Model returned an empty question")
        return question


class HttpQuestionGenerator:
    """Client for the question-generation service (``api.question_server``)."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_seconds)

    async def generate_question(self, instruction: str, context: str, knowledge_base: str) -> str:
        request = QuestionRequest(instruction=instruction, context=context, knowledge_base=knowledge_base)
        response = await self._client.post(QUESTION_ENDPOINT, json=request.model_dump(by_alias=True))
        response.raise_for_status()

        data = response.json()
        question = str(data.get("question", "")).strip() if isinstance(data, dict) else ""
        if not question:
            raise QuestionGenerationError(f"Question service returned no question: {data!r}")
        logger.debug("Question service answered: %s", question)
        return question

    async def aclose(self) -> None:
        await self._client.aclose()
