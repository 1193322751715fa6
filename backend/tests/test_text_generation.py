from __future__ import annotations

import types

import pytest

from receipt_intake.core.errors import GenerationError, InvalidStructuredResponse
from receipt_intake.services.text_generation import GenerativeTextClient, parse_json_payload, strip_code_fences


class DummyCompletions:
    def __init__(self, content, usage=True):
        self.content = content
        self.usage = usage
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        usage = types.SimpleNamespace(prompt_tokens=12, completion_tokens=8, total_tokens=20) if self.usage else None
        message = types.SimpleNamespace(content=self.content)
        return types.SimpleNamespace(
            choices=[types.SimpleNamespace(message=message)],
            usage=usage,
            model="gpt-test",
        )


class DummyOpenAI:
    def __init__(self, content, usage=True):
        self.chat = types.SimpleNamespace(completions=DummyCompletions(content, usage))

    async def close(self):
        pass


def test_strip_code_fences_variants():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'
    assert strip_code_fences("") == ""


def test_parse_json_payload_invalid():
    with pytest.raises(InvalidStructuredResponse):
        parse_json_payload("Sorry, I cannot help with that")


@pytest.mark.asyncio
async def test_generate_returns_text_and_usage(caplog):
    dummy = DummyOpenAI("hello")
    client = GenerativeTextClient(model="gpt-test", client=dummy)
    with caplog.at_level("INFO"):
        result = await client.generate("prompt", temperature=0.1, max_tokens=64)
    assert result.text == "hello"
    assert result.usage.total_tokens == 20
    call = dummy.chat.completions.calls[0]
    assert call["model"] == "gpt-test"
    assert call["max_tokens"] == 64
    assert call["messages"] == [{"role": "user", "content": "prompt"}]
    assert "total_tokens=20" in caplog.text


@pytest.mark.asyncio
async def test_generate_json_strips_fences():
    client = GenerativeTextClient(client=DummyOpenAI('```json\n{"items": []}\n```'))
    assert await client.generate_json("p") == {"items": []}


@pytest.mark.asyncio
async def test_empty_content_is_an_error():
    client = GenerativeTextClient(client=DummyOpenAI("   ", usage=False))
    with pytest.raises(GenerationError):
        await client.generate("p")


@pytest.mark.asyncio
async def test_missing_api_key_fails_at_first_use(monkeypatch):
    from receipt_intake.core import config as cfg

    monkeypatch.setattr(cfg.settings, "OPENAI_API_KEY", None)
    client = GenerativeTextClient()
    with pytest.raises(GenerationError):
        await client.generate("p")
