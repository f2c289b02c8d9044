"""
Inference Client — the vendor-neutral text-completion dependency.

Behavioral Contract:
- Given a structured prompt, return text within a timeout, or raise InferenceError
- Never returns partial or empty output as success
- Callers own the fallback; this layer only reports failure
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from scaffold_kernel.errors import InferenceError

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_INVALID_ESCAPE = re.compile(r'\\(?!["\\/bfnrtu])')


class CompletionClient(Protocol):
    """Protocol for text completion — pluggable backend."""

    async def complete(
        self,
        system: str,
        user: str,
        *,
        json_mode: bool = False,
        timeout: float,
        temperature: float = 0.4,
        max_tokens: Optional[int] = None,
    ) -> str: ...


async def guarded_complete(client: CompletionClient, system: str, user: str, **kwargs) -> str:
    """
    Call any CompletionClient, reporting every failure as InferenceError.

    Backends are pluggable and may raise whatever their transport raises.
    Cancellation is not a failure and propagates untouched.
    """
    try:
        return await client.complete(system, user, **kwargs)
    except InferenceError:
        raise
    except Exception as exc:
        logger.warning("Completion backend raised %s: %s", type(exc).__name__, exc)
        raise InferenceError(f"completion failed: {type(exc).__name__}") from exc


def parse_json_payload(raw_text: str) -> dict:
    """
    Parse a JSON object out of model output.

    Tolerates markdown fences and stray backslashes. Raises InferenceError
    if nothing usable remains.
    """
    if not raw_text or not raw_text.strip():
        raise InferenceError("empty completion")
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError:
        match = _FENCED_JSON.search(raw_text)
        if match:
            raw_text = match.group(1)
        raw_text = _INVALID_ESCAPE.sub(r"\\\\", raw_text)
        try:
            data = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            raise InferenceError(f"unparseable completion: {exc}") from exc
    if not isinstance(data, dict):
        raise InferenceError("completion is not a JSON object")
    return data


class OpenAICompletionClient:
    """Chat-completions backed client with a hard per-call timeout."""

    def __init__(
        self,
        api_key: str,
        model: str,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key)

    async def complete(
        self,
        system: str,
        user: str,
        *,
        json_mode: bool = False,
        timeout: float,
        temperature: float = 0.4,
        max_tokens: Optional[int] = None,
    ) -> str:
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**kwargs),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise InferenceError(f"completion timed out after {timeout}s") from exc
        except OpenAIError as exc:
            raise InferenceError(f"completion failed: {type(exc).__name__}") from exc
        except Exception as exc:
            logger.warning("Unexpected completion error: %s", type(exc).__name__)
            raise InferenceError(f"completion failed: {type(exc).__name__}") from exc

        try:
            content = response.choices[0].message.content if response.choices else None
        except (AttributeError, IndexError, TypeError) as exc:
            raise InferenceError("malformed completion response") from exc
        if not content or not content.strip():
            raise InferenceError("empty completion")
        return content.strip()


class UnavailableCompletionClient:
    """
    Stand-in when no API key is configured. Every call fails, so every
    component runs on its deterministic default.
    """

    async def complete(
        self,
        system: str,
        user: str,
        *,
        json_mode: bool = False,
        timeout: float,
        temperature: float = 0.4,
        max_tokens: Optional[int] = None,
    ) -> str:
        raise InferenceError("no inference backend configured")


def build_completion_client(api_key: Optional[str], model: str) -> CompletionClient:
    if not api_key:
        logger.warning("OPENAI_API_KEY not set; running on deterministic fallbacks")
        return UnavailableCompletionClient()
    return OpenAICompletionClient(api_key=api_key, model=model)
