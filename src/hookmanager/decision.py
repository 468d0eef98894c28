"""AI-assisted decisions for prompt hooks.

A decision backend turns a prompt into an ``ok``/``reason`` verdict. The
HTTP backends talk to the Anthropic Messages API or an OpenAI-compatible
Chat Completions API through httpx. ``FailOpenDecisionBackend`` wraps any
backend so that outages, timeouts and missing configuration always yield
an allowing decision with the failure recorded as the reason.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from hookmanager.exceptions import (
    DecisionAuthenticationError,
    DecisionBackendError,
    DecisionRateLimitError,
    DecisionRequestError,
)

logger = logging.getLogger(__name__)

ARGUMENTS_PLACEHOLDER = "$ARGUMENTS"
DEFAULT_MODEL = "haiku"
DEFAULT_SYSTEM_PROMPT = (
    "You are a decision assistant. Evaluate the given context and respond with a "
    'JSON decision containing "ok" (boolean) and optionally "reason" (string).'
)

# Short model names accepted in hook definitions
MODEL_ALIASES: dict[str, dict[str, str]] = {
    "anthropic": {
        "haiku": "claude-3-5-haiku-latest",
        "sonnet": "claude-3-5-sonnet-latest",
        "opus": "claude-3-opus-latest",
    },
    "openai": {
        "haiku": "gpt-4o-mini",
        "sonnet": "gpt-4o",
        "opus": "gpt-4o",
    },
}


@dataclass
class Decision:
    """Verdict from a decision backend."""

    ok: bool
    reason: str = ""
    failed_open: bool = False

    @classmethod
    def fallback(cls, reason: str) -> "Decision":
        """Allowing decision used when the backend could not answer."""
        return cls(ok=True, reason=reason, failed_open=True)


class DecisionBackend(Protocol):
    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> Decision:
        ...


def build_prompt(template: str, payload: dict[str, Any]) -> str:
    """Substitute the event context into a prompt template.

    The first ``$ARGUMENTS`` token is replaced with the JSON context;
    without one, the context is appended.
    """
    payload_json = json.dumps(payload, indent=2, default=str)
    if ARGUMENTS_PLACEHOLDER in template:
        return template.replace(ARGUMENTS_PLACEHOLDER, payload_json, 1)
    return f"{template}\n\nContext:\n{payload_json}"


def parse_decision(text: str) -> Decision:
    """Parse model output into a decision.

    Looks for a JSON object first (optionally inside a markdown code block),
    then falls back to keyword detection.
    """
    response = text.strip()

    if response.startswith("```"):
        lines = []
        in_block = False
        for line in response.split("\n"):
            if line.startswith("```"):
                in_block = not in_block
                continue
            if in_block:
                lines.append(line)
        response = "\n".join(lines)

    start = response.find("{")
    end = response.rfind("}") + 1
    if start >= 0 and end > start:
        try:
            data = json.loads(response[start:end])
        except json.JSONDecodeError as e:
            logger.debug(f"Decision output is not valid JSON: {e}")
        else:
            if isinstance(data, dict):
                ok = data.get("ok", True)
                return Decision(
                    ok=ok if isinstance(ok, bool) else str(ok).lower() != "false",
                    reason=str(data.get("reason") or data.get("message") or ""),
                )

    lowered = response.lower()
    if any(word in lowered for word in ("false", "deny", "block")):
        return Decision(ok=False, reason=response[:200])
    return Decision(ok=True, reason=response[:200] or "Allowed by default")


class HttpDecisionBackend:
    """Shared request/response handling for the HTTP providers."""

    provider = "http"
    default_base_url = ""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout_ms: int = 30000,
        max_tokens: int = 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the backend.

        Args:
            api_key: Provider API key
            base_url: Override for the provider endpoint
            timeout_ms: HTTP timeout for one completion
            max_tokens: Completion token limit
            transport: Custom httpx transport (mainly for tests)
        """
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout_ms = timeout_ms
        self.max_tokens = max_tokens
        self._transport = transport

    def resolve_model(self, model: str | None) -> str:
        name = model or DEFAULT_MODEL
        return MODEL_ALIASES.get(self.provider, {}).get(name, name)

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> Decision:
        if not self.api_key:
            raise DecisionAuthenticationError("API key is not configured", provider=self.provider)

        path, headers, body = self._build_request(
            prompt, self.resolve_model(model), system_prompt or DEFAULT_SYSTEM_PROMPT
        )
        data = await self._post(path, headers, body)
        return parse_decision(self._extract_text(data))

    async def _post(self, path: str, headers: dict[str, str], body: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_ms / 1000,
                transport=self._transport,
            ) as client:
                response = await client.post(path, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise DecisionBackendError(
                f"Request timed out after {self.timeout_ms}ms", provider=self.provider
            ) from e
        except httpx.HTTPError as e:
            raise DecisionBackendError(f"Request failed: {e}", provider=self.provider) from e

        self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as e:
            raise DecisionRequestError(
                "Response is not valid JSON", provider=self.provider, status_code=response.status_code
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        message = f"{self.provider} returned HTTP {status}: {response.text[:200]}"
        if status in (401, 403):
            raise DecisionAuthenticationError(message, provider=self.provider, status_code=status)
        if status == 429:
            raise DecisionRateLimitError(message, provider=self.provider, status_code=status)
        if status < 500:
            raise DecisionRequestError(message, provider=self.provider, status_code=status)
        raise DecisionBackendError(message, provider=self.provider, status_code=status)

    def _build_request(
        self, prompt: str, model: str, system_prompt: str
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def _extract_text(self, data: dict[str, Any]) -> str:
        raise NotImplementedError


class AnthropicDecisionBackend(HttpDecisionBackend):
    """Decisions via the Anthropic Messages API."""

    provider = "anthropic"
    default_base_url = "https://api.anthropic.com"
    api_version = "2023-06-01"

    def _build_request(self, prompt, model, system_prompt):
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        body = {
            "model": model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
        }
        return "/v1/messages", headers, body

    def _extract_text(self, data):
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise DecisionRequestError("Response has no content blocks", provider=self.provider)
        return "\n".join(b.get("text", "") for b in blocks if b.get("type") == "text")


class OpenAIDecisionBackend(HttpDecisionBackend):
    """Decisions via an OpenAI-compatible Chat Completions API."""

    provider = "openai"
    default_base_url = "https://api.openai.com"

    def _build_request(self, prompt, model, system_prompt):
        headers = {
            "authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
        }
        body = {
            "model": model,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
        }
        return "/v1/chat/completions", headers, body

    def _extract_text(self, data):
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise DecisionRequestError("Response has no message content", provider=self.provider) from e


class FailOpenDecisionBackend:
    """Wraps a backend so that it never raises.

    Missing configuration, backend errors and timeouts all produce
    ``Decision.fallback`` with the failure as the reason.
    """

    def __init__(self, backend: DecisionBackend | None, timeout_ms: int | None = None):
        self.backend = backend
        self.timeout_ms = timeout_ms

    @property
    def configured(self) -> bool:
        return self.backend is not None

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        system_prompt: str | None = None,
        timeout_ms: int | None = None,
    ) -> Decision:
        """Ask the wrapped backend, allowing by default on any failure.

        Args:
            prompt: Fully rendered prompt
            model: Model name or alias
            system_prompt: Optional system prompt override
            timeout_ms: Caller's deadline; the shorter of this and the
                adapter's own timeout applies

        Returns:
            The backend's decision, or a fail-open fallback
        """
        if self.backend is None:
            logger.warning("Decision backend not configured, allowing by default")
            return Decision.fallback("Decision backend not configured")

        limits = [t for t in (self.timeout_ms, timeout_ms) if t]
        deadline_ms = min(limits) if limits else None

        try:
            call = self.backend.complete(prompt, model, system_prompt)
            if deadline_ms:
                return await asyncio.wait_for(call, timeout=deadline_ms / 1000)
            return await call
        except asyncio.TimeoutError:
            logger.warning(f"Decision backend timed out after {deadline_ms}ms, allowing by default")
            return Decision.fallback(f"Prompt handler failed: timed out after {deadline_ms}ms")
        except Exception as e:
            logger.warning(f"Decision backend failed, allowing by default: {e}")
            return Decision.fallback(f"Prompt handler failed: {str(e)[:100]}")


_BACKENDS: dict[str, type[HttpDecisionBackend]] = {
    "anthropic": AnthropicDecisionBackend,
    "openai": OpenAIDecisionBackend,
}

_API_KEY_ENV = {
    "anthropic": ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
}


def create_decision_backend(
    provider: str = "anthropic",
    api_key: str | None = None,
    base_url: str | None = None,
    timeout_ms: int = 30000,
    max_tokens: int = 1024,
) -> HttpDecisionBackend | None:
    """Build an HTTP backend, or None when no API key can be found."""
    backend_cls = _BACKENDS.get(provider)
    if backend_cls is None:
        raise ValueError(f"Unknown decision provider: {provider}")

    if not api_key:
        api_key = next(
            (os.environ[name] for name in _API_KEY_ENV[provider] if os.environ.get(name)),
            None,
        )
    if not api_key:
        logger.debug(f"No API key for {provider}, prompt hooks will fail open")
        return None

    return backend_cls(
        api_key=api_key,
        base_url=base_url,
        timeout_ms=timeout_ms,
        max_tokens=max_tokens,
    )
