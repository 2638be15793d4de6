"""Tests for the chat-completions wrapper."""

from types import SimpleNamespace

import pytest
from openai import OpenAIError

from photo_enrichment.ai.llm import LlmClient, LlmError, pick_model


class FakeCompletions:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.exc:
            raise self.exc
        return self.response


def fake_openai(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def response(text, model="gpt-4o-mini"):
    usage = SimpleNamespace(model_dump=lambda: {"total_tokens": 42})
    choice = SimpleNamespace(message=SimpleNamespace(content=text))
    return SimpleNamespace(choices=[choice], usage=usage, model=model)


class TestBuildMessages:
    def test_text_only(self):
        messages = LlmClient.build_messages("sys", "hello")
        assert messages == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hello"}]

    def test_image_payload(self):
        messages = LlmClient.build_messages("sys", "look", b"\x89PNG", "image/png", detail="low")
        content = messages[1]["content"]
        assert content[0] == {"type": "text", "text": "look"}
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
        assert content[1]["image_url"]["detail"] == "low"


class TestComplete:
    @pytest.mark.asyncio
    async def test_json_mode_and_reply(self):
        completions = FakeCompletions(response('{"ok": true}'))
        client = LlmClient(client=fake_openai(completions), default_model="gpt-4o-mini")
        reply = await client.complete("sys", "user", max_tokens=64)

        assert reply.text == '{"ok": true}'
        assert reply.usage == {"total_tokens": 42}
        assert completions.kwargs["model"] == "gpt-4o-mini"
        assert completions.kwargs["response_format"] == {"type": "json_object"}
        assert completions.kwargs["max_tokens"] == 64

    @pytest.mark.asyncio
    async def test_free_text_mode(self):
        completions = FakeCompletions(response("plain"))
        await LlmClient(client=fake_openai(completions)).complete("sys", "user", json_mode=False)
        assert "response_format" not in completions.kwargs

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self):
        client = LlmClient(client=fake_openai(FakeCompletions(exc=OpenAIError("rate limited"))))
        with pytest.raises(LlmError, match="rate limited"):
            await client.complete("sys", "user")

    @pytest.mark.asyncio
    async def test_no_choices(self):
        empty = SimpleNamespace(choices=[], usage=None, model="gpt-4o")
        client = LlmClient(client=fake_openai(FakeCompletions(empty)))
        with pytest.raises(LlmError):
            await client.complete("sys", "user")


class TestPickModel:
    def test_order(self):
        assert pick_model({"foodModel": "a", "defaultModel": "b"}, "foodModel", "c") == "a"
        assert pick_model({"defaultModel": "b"}, "foodModel", "c") == "b"
        assert pick_model(None, "foodModel", "c") == "c"
