# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest
from openai import OpenAIError

from config import AppConfig
from context.conversation import ConversationContext
from orchestrator.errors import CapabilityUnavailableError, ResponderError
from responder.openai_responder import OpenAIResponder, build_llm_client
from responder.prompts import SYSTEM_PROMPT_V1, prompt_hash, system_prompt


class FakeCompletions:
    def __init__(self, content: str | None = "It is noon.", *, error: Exception | None = None,
                 delay_s: float = 0.0) -> None:
        self.content = content
        self.error = error
        self.delay_s = delay_s
        self.requests: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _responder(completions: FakeCompletions, **kwargs: Any) -> OpenAIResponder:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIResponder(client=client, model="gpt-test", **kwargs)


def test_reply_text_is_trimmed() -> None:
    completions = FakeCompletions("  It is noon.  ")
    reply = asyncio.run(_responder(completions).respond("what time is it", None))

    assert reply.text == "It is noon."
    assert completions.requests[0]["model"] == "gpt-test"


def test_messages_are_system_history_then_user() -> None:
    ctx = ConversationContext()
    ctx.add_user_turn("my name is Sam", 1)
    ctx.add_assistant_turn("Nice to meet you, Sam.", 1)

    completions = FakeCompletions()
    asyncio.run(_responder(completions).respond("what is my name", ctx))

    messages = completions.requests[0]["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[0]["content"] == SYSTEM_PROMPT_V1
    assert messages[-1] == {"role": "user", "content": "what is my name"}


def test_transport_error_becomes_responder_error() -> None:
    completions = FakeCompletions(error=OpenAIError("connection reset"))

    with pytest.raises(ResponderError) as info:
        asyncio.run(_responder(completions).respond("hello", None))

    assert "connection reset" in info.value.reason


def test_timeout_becomes_responder_error() -> None:
    completions = FakeCompletions(delay_s=1.0)

    with pytest.raises(ResponderError) as info:
        asyncio.run(_responder(completions, timeout_s=0.01).respond("hello", None))

    assert info.value.reason.startswith("timeout")


@pytest.mark.parametrize("content", [None, "", "   "])
def test_empty_reply_is_an_error(content: str | None) -> None:
    with pytest.raises(ResponderError) as info:
        asyncio.run(_responder(FakeCompletions(content)).respond("hello", None))

    assert info.value.reason == "empty response"


def test_request_log_carries_prompt_fingerprint(captured_logs: list[str]) -> None:
    asyncio.run(_responder(FakeCompletions()).respond("hello", None))

    fingerprint = prompt_hash(system_prompt("v1"))
    assert len(fingerprint) == 8
    assert any("responder_request" in line and fingerprint in line for line in captured_logs)


def test_unknown_prompt_version_is_rejected() -> None:
    with pytest.raises(KeyError):
        system_prompt("v0")


def _config(monkeypatch: pytest.MonkeyPatch, **env: str) -> AppConfig:
    for name in ("LLM_PROVIDER", "OPENAI_API_KEY", "GROQ_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return AppConfig.load_from_env()


def test_llm_client_requires_a_key(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(CapabilityUnavailableError):
        build_llm_client(_config(monkeypatch))

    with pytest.raises(CapabilityUnavailableError):
        build_llm_client(_config(monkeypatch, LLM_PROVIDER="groq", OPENAI_API_KEY="sk-test"))


def test_groq_client_uses_compatible_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    client = build_llm_client(_config(monkeypatch, LLM_PROVIDER="groq", GROQ_API_KEY="gsk-test"))
    assert "api.groq.com" in str(client.base_url)
