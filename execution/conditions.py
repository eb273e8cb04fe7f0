"""Branch-condition evaluation for ``if`` nodes.

Three mutually exclusive modes, in strict precedence:

- ai-prompt: the node has a non-blank ``evaluationPrompt``; delegated to a
  pluggable ``PromptStrategy`` (keyword heuristic by default).
- simple-text: the node has a non-blank ``condition``; ``${var}`` lookups,
  ``equals``/``contains``/``greater than``/``less than`` prefixes, or plain
  case-insensitive equality.
- auto: truthiness of the upstream value.

Evaluation never raises for malformed conditions; it resolves to ``False``
with a reasoning string that says why.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Protocol

from models.selector import ModelSelector
from shared.models import ModelPolicy
from shared.workflow_contracts import IfNode, WorkflowGraph

logger = logging.getLogger(__name__)

EvaluationMode = Literal["ai-prompt", "simple-text", "auto"]

POSITIVE_WORDS: tuple[str, ...] = (
    "yes", "yeah", "sure", "absolutely", "definitely", "correct", "right", "agree",
    "true", "good", "great", "awesome", "cool", "amazing", "love", "like",
)
NEGATIVE_WORDS: tuple[str, ...] = (
    "no", "nope", "never", "not", "wrong", "disagree", "false", "bad", "terrible",
    "hate", "dislike",
)

# Upstream variables checked, in order, when resolving an if node's input.
INPUT_SUFFIXES: tuple[str, ...] = ("_response", "_decision", "_result")

_VARIABLE_PATTERN = re.compile(r"\$\{([^}]+)\}")
_LEADING_NUMBER = re.compile(r"\s*[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")


@dataclass(frozen=True)
class ConditionResult:
    result: bool
    reasoning: str
    mode: EvaluationMode
    input_value: Any = None


class PromptStrategy(Protocol):
    """Evaluates free text against a natural-language criterion."""

    async def evaluate(self, input_value: Any, prompt: str) -> ConditionResult: ...


def _verdict(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _display(value: Any) -> str:
    """Render a value for reasoning text: ``null``, ``true``/``false``, ``5`` not ``5.0``."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_text(value: Any) -> str:
    """Lower-cased text of a value; falsy values read as empty."""
    return str(value or "").lower()


def parse_leading_float(text: str) -> float | None:
    """Parse the numeric prefix of ``text`` ("7 units" -> 7.0); None if there is none."""
    match = _LEADING_NUMBER.match(str(text))
    if match is None:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


class KeywordPromptStrategy:
    """Keyword-list sentiment heuristic standing in for a model judgement."""

    def __init__(
        self,
        positive_words: tuple[str, ...] = POSITIVE_WORDS,
        negative_words: tuple[str, ...] = NEGATIVE_WORDS,
        min_substantive_length: int = 10,
    ):
        self.positive_words = positive_words
        self.negative_words = negative_words
        self.min_substantive_length = min_substantive_length

    async def evaluate(self, input_value: Any, prompt: str) -> ConditionResult:
        return self.evaluate_sync(input_value, prompt)

    def evaluate_sync(self, input_value: Any, prompt: str) -> ConditionResult:
        input_text = _as_text(input_value)
        prompt_lower = prompt.lower()

        has_positive = any(word in input_text for word in self.positive_words)
        has_negative = any(word in input_text for word in self.negative_words)
        wants_positive = "true if" in prompt_lower or "when" in prompt_lower or "false if" not in prompt_lower

        if not has_positive and not has_negative:
            result = len(input_text) > self.min_substantive_length
        elif wants_positive:
            result = has_positive and not has_negative
        else:
            result = has_negative and not has_positive

        return ConditionResult(
            result=result,
            reasoning=f'[AI Mode] "{_display(input_value)}" evaluated against "{prompt}" → {_verdict(result)}',
            mode="ai-prompt",
            input_value=input_value,
        )


class ModelPromptStrategy:
    """Asks the model layer for a JSON verdict; falls back to keywords on any failure."""

    SYSTEM_PROMPT = (
        "You evaluate a branch condition inside an emergency response workflow. "
        "Decide whether the INPUT satisfies the CRITERION. "
        'Reply with a JSON object: {"result": true|false, "reasoning": "<one short sentence>"}.'
    )

    def __init__(
        self,
        model_selector: ModelSelector,
        model_name: str = "gpt-4o-mini",
        fallback: KeywordPromptStrategy | None = None,
    ):
        self.model_selector = model_selector
        self.fallback = fallback or KeywordPromptStrategy()
        self.policy = ModelPolicy(
            model_name=model_name,
            temperature=0.0,
            timeout_seconds=20.0,
            max_retries=1,
            json_mode=True,
        )

    async def evaluate(self, input_value: Any, prompt: str) -> ConditionResult:
        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": f"CRITERION: {prompt}\nINPUT: {input_value}"},
        ]
        try:
            verdict = await asyncio.to_thread(self.model_selector.generate, messages, self.policy)
            if not isinstance(verdict, dict) or not isinstance(verdict.get("result"), bool):
                raise ValueError(f"Unexpected verdict payload: {verdict!r}")
        except Exception as exc:
            logger.warning("Model condition evaluation failed, using keyword heuristic: %s", exc)
            return await self.fallback.evaluate(input_value, prompt)

        result = verdict["result"]
        explanation = str(verdict.get("reasoning", "")).strip()
        reasoning = f'[AI Mode] "{_display(input_value)}" evaluated against "{prompt}" → {_verdict(result)}'
        if explanation:
            reasoning = f"{reasoning} ({explanation})"
        return ConditionResult(result=result, reasoning=reasoning, mode="ai-prompt", input_value=input_value)


class ConditionEvaluator:
    """Resolves an if node's branch decision."""

    def __init__(self, prompt_strategy: PromptStrategy | None = None):
        self.prompt_strategy = prompt_strategy or KeywordPromptStrategy()

    async def evaluate(
        self,
        node: IfNode,
        graph: WorkflowGraph,
        variables: Mapping[str, Any],
    ) -> ConditionResult:
        input_value = self.resolve_input(node.id, graph, variables)
        evaluation_prompt = node.data.evaluation_prompt or ""
        condition = node.data.condition or ""

        if evaluation_prompt.strip():
            return await self.prompt_strategy.evaluate(input_value, evaluation_prompt)
        if condition.strip():
            return self.evaluate_text(condition, input_value, variables)
        return self.evaluate_auto(input_value)

    def resolve_input(self, node_id: str, graph: WorkflowGraph, variables: Mapping[str, Any]) -> Any:
        """Value contributed by the source of the first connection into ``node_id``."""
        incoming = graph.incoming(node_id)
        if not incoming:
            return None
        source_id = incoming[0].source_node_id
        for suffix in INPUT_SUFFIXES:
            value = variables.get(f"{source_id}{suffix}")
            if value is not None:
                return value
        return None

    def evaluate_text(self, condition: str, input_value: Any, variables: Mapping[str, Any]) -> ConditionResult:
        input_text = _as_text(input_value)
        condition_lower = condition.lower().strip()

        if "${" in condition and "}" in condition:
            match = _VARIABLE_PATTERN.search(condition)
            if match is None:
                return ConditionResult(
                    result=False,
                    reasoning="[Variable Mode] Invalid variable syntax → FALSE",
                    mode="simple-text",
                    input_value=input_value,
                )
            name = match.group(1).strip()
            value = variables.get(name)
            result = bool(value)
            return ConditionResult(
                result=result,
                reasoning=f'[Variable Mode] {name} = "{_display(value)}" → {_verdict(result)}',
                mode="simple-text",
                input_value=input_value,
            )

        if condition_lower.startswith("equals "):
            target = condition_lower[len("equals "):].strip()
            result = input_text == target
            reasoning = f'[Text Mode] "{_display(input_value)}" equals "{target}" → {_verdict(result)}'
        elif condition_lower.startswith("contains "):
            target = condition_lower[len("contains "):].strip()
            result = target in input_text
            reasoning = f'[Text Mode] "{_display(input_value)}" contains "{target}" → {_verdict(result)}'
        elif condition_lower.startswith("greater than "):
            threshold = parse_leading_float(condition_lower[len("greater than "):].strip())
            number = parse_leading_float(input_text)
            result = number is not None and threshold is not None and number > threshold
            reasoning = f"[Numeric Mode] {_display(input_value)} > {_display(threshold)} → {_verdict(result)}"
        elif condition_lower.startswith("less than "):
            threshold = parse_leading_float(condition_lower[len("less than "):].strip())
            number = parse_leading_float(input_text)
            result = number is not None and threshold is not None and number < threshold
            reasoning = f"[Numeric Mode] {_display(input_value)} < {_display(threshold)} → {_verdict(result)}"
        else:
            result = input_text == condition_lower
            reasoning = f'[Text Mode] "{_display(input_value)}" equals "{condition}" → {_verdict(result)}'

        return ConditionResult(result=result, reasoning=reasoning, mode="simple-text", input_value=input_value)

    def evaluate_auto(self, input_value: Any) -> ConditionResult:
        result = bool(input_value)
        label = "TRUE (truthy)" if result else "FALSE (falsy)"
        return ConditionResult(
            result=result,
            reasoning=f'[Auto Mode] Input: "{_display(input_value)}" → {label}',
            mode="auto",
            input_value=input_value,
        )
