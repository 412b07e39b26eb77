"""
OpenAI-compatible AI responder.

Design notes:
- One non-streaming chat completion per respond() call.
- Works against OpenAI or Groq (OpenAI-compatible endpoint); the client
  is built once per process by build_llm_client().
- The call is bounded by a wall-clock timeout; the responder owns it.
- Adapter does NOT:
    - Retry
    - Chunk text for synthesis
    - Keep conversation history (the context is passed in)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from config import AppConfig
from observability.logger import log_event
from orchestrator.errors import CapabilityUnavailableError, ResponderError
from responder.base import AIResponder, AssistantReply
from responder.prompts import prompt_hash, system_prompt
from constants import RESPONDER_TIMEOUT_S_DEFAULT, SYSTEM_PROMPT_VERSION


class OpenAIResponder(AIResponder):
    """Chat-completions responder with a versioned voice system prompt."""

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        provider: str = "openai",
        timeout_s: float = RESPONDER_TIMEOUT_S_DEFAULT,
        prompt_version: str = SYSTEM_PROMPT_VERSION,
    ) -> None:
        self._client = client
        self._model = model
        self._provider = provider
        self._timeout_s = timeout_s
        self._prompt_version = prompt_version
        self._system_prompt = system_prompt(prompt_version)
        self._prompt_hash = prompt_hash(self._system_prompt)

    async def respond(self, user_text: str, conversation_context: Any) -> AssistantReply:
        messages = self._build_messages(user_text, conversation_context)

        log_event({
            "ts_ms": self._now_ms(),
            "event_type": "responder_request",
            "provider": self._provider,
            "model": self._model,
            "prompt_version": self._prompt_version,
            "prompt_hash": self._prompt_hash,
            "message_count": len(messages),
            "user_chars": len(user_text),
        })

        t0 = time.monotonic_ns()
        try:
            completion = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model,
                    messages=messages,
                ),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise ResponderError(f"timeout after {self._timeout_s}s") from exc
        except OpenAIError as exc:
            raise ResponderError(f"{type(exc).__name__}: {exc}") from exc

        text = self._extract_text(completion)
        if not text:
            raise ResponderError("empty response")

        log_event({
            "ts_ms": self._now_ms(),
            "event_type": "responder_reply",
            "provider": self._provider,
            "prompt_hash": self._prompt_hash,
            "reply_chars": len(text),
            "latency_ms": (time.monotonic_ns() - t0) // 1_000_000,
        })

        return AssistantReply(text=text)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_messages(self, user_text: str, conversation_context: Any) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = [
            {"role": "system", "content": self._system_prompt},
        ]
        if conversation_context is not None:
            messages.extend(conversation_context.serialize())
        messages.append({"role": "user", "content": user_text})
        return messages

    @staticmethod
    def _extract_text(completion: Any) -> str:
        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError):
            return ""
        return (content or "").strip()

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)


def build_llm_client(config: AppConfig) -> AsyncOpenAI:
    """Build an LLM client with the provider selected by environment variables."""
    if config.llm_provider.lower() == "groq":
        if not config.groq_api_key:
            raise CapabilityUnavailableError("GROQ_API_KEY not set")
        return AsyncOpenAI(
            api_key=config.groq_api_key,
            base_url="https://api.groq.com/openai/v1",
        )

    if not config.openai_api_key:
        raise CapabilityUnavailableError("OPENAI_API_KEY not set")
    return AsyncOpenAI(api_key=config.openai_api_key)
