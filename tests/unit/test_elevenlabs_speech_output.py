# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from types import SimpleNamespace
from typing import Any, AsyncIterator, Callable

import numpy as np
import pytest
from elevenlabs.core import ApiError

from orchestrator.errors import CapabilityUnavailableError, SynthesisProviderError
from synthesis.elevenlabs import ElevenLabsSpeechOutput


class FakePlayer:
    def __init__(self) -> None:
        self.played: list[np.ndarray] = []
        self.halts = 0
        self.on_finished: Callable[[], None] | None = None

    def play(self, samples: np.ndarray, *, on_finished: Callable[[], None],
             on_error: Callable[[str], None]) -> None:  # pylint: disable=unused-argument
        self.played.append(samples)
        self.on_finished = on_finished

    def halt(self) -> None:
        self.halts += 1


def _client(*chunks: bytes, error: Exception | None = None, delay_s: float = 0.0) -> Any:
    requests: list[dict[str, Any]] = []

    async def convert(**kwargs: Any) -> AsyncIterator[bytes]:
        requests.append(kwargs)
        if delay_s:
            await asyncio.sleep(delay_s)
        if error is not None:
            raise error
        for chunk in chunks:
            yield chunk

    return SimpleNamespace(text_to_speech=SimpleNamespace(convert=convert), requests=requests)


def _output(client: Any, player: FakePlayer, **kwargs: Any) -> ElevenLabsSpeechOutput:
    return ElevenLabsSpeechOutput(api_key=None, client=client, player=player, **kwargs)


async def _begin(output: ElevenLabsSpeechOutput) -> list[str]:
    events: list[str] = []
    await output.begin(
        "Hello there.",
        on_complete=lambda: events.append("complete"),
        on_error=events.append,
    )
    return events


def test_audio_is_played_and_completion_is_the_players() -> None:
    async def scenario() -> None:
        client = _client(b"\x01\x00", b"\x02\x00\x03\x00")
        player = FakePlayer()
        output = _output(client, player, voice_id="voice-1")

        events = await _begin(output)

        assert events == []
        assert player.played[0].tolist() == [1, 2, 3]
        assert client.requests[0]["voice_id"] == "voice-1"
        assert client.requests[0]["output_format"] == "pcm_16000"

        player.on_finished()
        assert events == ["complete"]

        output.halt()
        assert player.halts == 1

    asyncio.run(scenario())


@pytest.mark.parametrize(
    ("client", "reason"),
    [
        (_client(error=ApiError(status_code=401, body="unauthorized")), "http_status"),
        (_client(error=ConnectionError("reset")), "network"),
        (_client(), "empty_audio"),
        (_client(b"\x01\x00\x02"), "malformed_payload"),
    ],
)
def test_failures_are_provider_errors(client: Any, reason: str) -> None:
    player = FakePlayer()

    with pytest.raises(SynthesisProviderError) as info:
        asyncio.run(_begin(_output(client, player)))

    assert info.value.reason == reason
    assert player.played == []


def test_slow_provider_times_out_as_network() -> None:
    with pytest.raises(SynthesisProviderError) as info:
        asyncio.run(_begin(_output(_client(b"\x00\x00", delay_s=1.0), FakePlayer(), timeout_s=0.01)))

    assert info.value.reason == "network"
    assert "timeout" in info.value.detail


def test_missing_key_is_unavailable() -> None:
    with pytest.raises(CapabilityUnavailableError):
        ElevenLabsSpeechOutput(api_key=None, player=FakePlayer())
