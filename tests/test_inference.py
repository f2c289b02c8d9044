"""Tests for the inference client layer."""

import asyncio
from types import SimpleNamespace

import pytest

from scaffold_kernel.errors import InferenceError
from scaffold_kernel.inference.client import (
    OpenAICompletionClient,
    UnavailableCompletionClient,
    build_completion_client,
    guarded_complete,
    parse_json_payload,
)

from fakes import ScriptedClient


def _make_openai(create):
    """OpenAICompletionClient over a stand-in SDK object exposing chat.completions.create."""
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return OpenAICompletionClient(api_key="unused", model="test-model", client=sdk)


def _reply(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestGuardedComplete:
    @pytest.mark.asyncio
    async def test_passes_text_through(self):
        text = await guarded_complete(ScriptedClient("hello"), "sys", "user", timeout=1.0)
        assert text == "hello"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ConnectionError("socket reset"),
        RuntimeError("backend crashed"),
        KeyError("choices"),
    ])
    async def test_any_backend_error_becomes_inference_error(self, error):
        with pytest.raises(InferenceError):
            await guarded_complete(ScriptedClient(error), "sys", "user", timeout=1.0)

    @pytest.mark.asyncio
    async def test_inference_error_is_kept(self):
        with pytest.raises(InferenceError, match="dependency down"):
            await guarded_complete(
                ScriptedClient(InferenceError("dependency down")), "sys", "user", timeout=1.0
            )

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        class CancelledClient:
            async def complete(self, system, user, **kwargs):
                raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await guarded_complete(CancelledClient(), "sys", "user", timeout=1.0)


class TestOpenAICompletionClient:
    @pytest.mark.asyncio
    async def test_returns_stripped_content(self):
        async def create(**kwargs):
            assert kwargs["response_format"] == {"type": "json_object"}
            return _reply('  {"ok": true}\n')

        client = _make_openai(create)
        assert await client.complete("s", "u", json_mode=True, timeout=1.0) == '{"ok": true}'

    @pytest.mark.asyncio
    async def test_transport_error_becomes_inference_error(self):
        async def create(**kwargs):
            raise ConnectionError("socket reset")

        with pytest.raises(InferenceError):
            await _make_openai(create).complete("s", "u", timeout=1.0)

    @pytest.mark.asyncio
    async def test_timeout_becomes_inference_error(self):
        async def create(**kwargs):
            await asyncio.sleep(1.0)

        with pytest.raises(InferenceError, match="timed out"):
            await _make_openai(create).complete("s", "u", timeout=0.01)

    @pytest.mark.asyncio
    async def test_empty_content_is_a_failure(self):
        async def create(**kwargs):
            return _reply("   ")

        with pytest.raises(InferenceError):
            await _make_openai(create).complete("s", "u", timeout=1.0)


class TestHelpers:
    def test_fenced_json_is_parsed(self):
        assert parse_json_payload('```json\n{"a": 1}\n```') == {"a": 1}

    def test_non_object_is_rejected(self):
        with pytest.raises(InferenceError):
            parse_json_payload("[1, 2]")

    @pytest.mark.asyncio
    async def test_no_api_key_means_unavailable_backend(self):
        client = build_completion_client(None, "test-model")
        assert isinstance(client, UnavailableCompletionClient)
        with pytest.raises(InferenceError):
            await client.complete("s", "u", timeout=1.0)
