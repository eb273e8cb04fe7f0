"""
Model Layer — provider-neutral chat generation.

Used by question generation and by the model-backed condition strategy.
``generate`` retries under a ``ModelPolicy`` and re-raises the final error;
callers decide what to fall back to.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from observability.logger import Observability
from shared.models import ModelPolicy

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com"
ANTHROPIC_VERSION = "2023-06-01"
PROVIDERS = ("ollama", "openai_compatible", "anthropic")
JSON_ONLY_INSTRUCTION = "Return ONLY a valid JSON object."


@dataclass
class ProviderRequest:
    path: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


def detect_provider(base_url: str) -> str:
    """Guess the wire protocol from the endpoint URL."""
    url = base_url.strip().lower()
    if "anthropic.com" in url:
        return "anthropic"
    if "openai.com" in url or url.endswith("/v1"):
        return "openai_compatible"
    return "ollama"


def strip_code_fence(text: str) -> str:
    body = text.strip()
    if not body.startswith("```"):
        return body
    lines = body.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines)


class ModelSelector:
    """Sends chat messages to the configured provider under a ``ModelPolicy``."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL):
        endpoint = (os.getenv("MODEL_BASE_URL", "").strip() or base_url).rstrip("/")
        requested = os.getenv("MODEL_PROVIDER", "auto").strip().lower()
        self.provider = requested if requested in PROVIDERS else detect_provider(endpoint)
        # Request paths carry their own /v1 prefix.
        self.base_url = endpoint.removesuffix("/v1")
        self.api_key = self._resolve_api_key()

        default_headers: dict[str, str] = {}
        if self.provider == "openai_compatible" and self.api_key:
            default_headers["Authorization"] = f"Bearer {self.api_key}"
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=60.0,
            headers=default_headers,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    def _resolve_api_key(self) -> str:
        explicit = os.getenv("MODEL_API_KEY", "").strip()
        if explicit:
            return explicit
        provider_env = {"anthropic": "ANTHROPIC_API_KEY", "openai_compatible": "OPENAI_API_KEY"}.get(self.provider)
        return os.getenv(provider_env, "").strip() if provider_env else ""

    def generate(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        run_id: str | None = None,
    ) -> dict[str, Any] | str:
        """Parsed dict when ``policy.json_mode`` is set, raw text otherwise."""
        obs = Observability(run_id)
        request = self._build_request(messages, policy)
        attempts = max(1, policy.max_retries)
        failure: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with obs.measure(
                    "model_call",
                    {"model": policy.model_name, "provider": self.provider, "attempt": attempt},
                ):
                    text = self._send(request, policy)
                return self._parse_json(text) if policy.json_mode else text
            except Exception as exc:
                failure = exc
                logger.warning("Model call %d/%d to %s failed: %s", attempt, attempts, self.provider, exc)

        obs.log_event(
            "model_failure",
            {"model": policy.model_name, "provider": self.provider, "error": str(failure)},
            level="ERROR",
        )
        raise failure or RuntimeError("Model call failed without an error")

    def _build_request(self, messages: list[dict], policy: ModelPolicy) -> ProviderRequest:
        if self.provider == "anthropic":
            return self._anthropic_request(messages, policy)

        payload: dict[str, Any] = {"model": policy.model_name, "messages": messages, "stream": False}
        if self.provider == "openai_compatible":
            payload["temperature"] = policy.temperature
            if policy.json_mode:
                payload["response_format"] = {"type": "json_object"}
            return ProviderRequest("/v1/chat/completions", payload)

        payload["options"] = {"temperature": policy.temperature, "num_predict": 512}
        if policy.json_mode:
            payload["format"] = "json"
        return ProviderRequest("/api/chat", payload)

    def _anthropic_request(self, messages: list[dict], policy: ModelPolicy) -> ProviderRequest:
        """System turns move to the top-level ``system`` field."""
        if not self.api_key:
            raise RuntimeError("ANTHROPIC_API_KEY (or MODEL_API_KEY) must be set for the anthropic provider")

        system_parts: list[str] = []
        turns: list[dict[str, str]] = []
        for message in messages:
            role = str(message.get("role", "user")).strip().lower()
            content = str(message.get("content", "")).strip()
            if not content:
                continue
            if role == "system":
                system_parts.append(content)
            else:
                turns.append({"role": role if role in ("user", "assistant") else "user", "content": content})
        if policy.json_mode:
            system_parts.append(JSON_ONLY_INSTRUCTION)

        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": turns or [{"role": "user", "content": "Hello"}],
            "temperature": policy.temperature,
            "max_tokens": 512,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": os.getenv("ANTHROPIC_VERSION", ANTHROPIC_VERSION),
        }
        return ProviderRequest("/v1/messages", payload, headers)

    def _send(self, request: ProviderRequest, policy: ModelPolicy) -> str:
        response = self._client.post(
            request.path,
            json=request.payload,
            headers=request.headers or None,
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        return self._extract_text(response.json())

    def _extract_text(self, body: dict[str, Any]) -> str:
        if self.provider == "anthropic":
            texts = [
                str(block.get("text", "")).strip()
                for block in body.get("content") or []
                if isinstance(block, dict) and block.get("type") == "text"
            ]
            texts = [text for text in texts if text]
            if not texts:
                raise ValueError("Anthropic response has no text blocks")
            return "\n".join(texts)
        if self.provider == "openai_compatible":
            choices = body.get("choices") or []
            if not choices:
                raise ValueError("OpenAI-compatible response has no choices")
            return str((choices[0].get("message") or {}).get("content", ""))
        return str((body.get("message") or {}).get("content", ""))

    def _parse_json(self, text: str) -> dict[str, Any]:
        try:
            parsed = json.loads(strip_code_fence(text))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Model returned invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("Model JSON response must be an object")
        return parsed

    def close(self) -> None:
        self._client.close()
