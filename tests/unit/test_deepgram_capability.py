# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import contextlib
import importlib
import json
from typing import Any, AsyncIterator

import pytest
from websockets.exceptions import ConnectionClosedOK

from fakes import FakeSoundDevice
from orchestrator.errors import CapabilityUnavailableError


class FakeSocket:
    """Deepgram Flux socket: messages are queued by the test; None closes."""

    def __init__(self, *, on_close_stream: list[dict[str, Any] | None] | None = None) -> None:
        self.sent: list[Any] = []
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self._on_close_stream = on_close_stream or []

    def push(self, **message: Any) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def close(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, message: Any) -> None:
        self.sent.append(message)
        if isinstance(message, str) and json.loads(message).get("type") == "CloseStream":
            for reply in self._on_close_stream:
                if reply is None:
                    self.close()
                else:
                    self.push(**reply)

    async def recv(self) -> str:
        message = await self._incoming.get()
        if message is None:
            raise ConnectionClosedOK(None, None)
        return message


def _turn(event: str, transcript: str = "") -> dict[str, Any]:
    return {"type": "TurnInfo", "event": event, "transcript": transcript}


def _load(monkeypatch: pytest.MonkeyPatch, socket: FakeSocket | Exception) -> tuple[Any, list[tuple[str, dict[str, Any]]]]:
    deepgram = importlib.import_module("recognition.deepgram")
    monkeypatch.setattr(deepgram, "_POLL_S", 0.01)
    connections: list[tuple[str, dict[str, Any]]] = []

    @contextlib.asynccontextmanager
    async def fake_connect(url: str, **kwargs: Any) -> AsyncIterator[FakeSocket]:
        connections.append((url, kwargs))
        if isinstance(socket, Exception):
            raise socket
        yield socket

    monkeypatch.setattr(deepgram, "connect", fake_connect)
    return deepgram, connections


def _wire(capability: Any) -> list[tuple[str, ...]]:
    events: list[tuple[str, ...]] = []
    capability.on_start = lambda: events.append(("start",))
    capability.on_result = lambda results: events.extend(
        ("final" if r.is_final else "interim", r.transcript) for r in results
    )
    capability.on_error = lambda code: events.append(("error", code))
    capability.on_end = lambda: events.append(("end",))
    return events


async def _until(events: list[tuple[str, ...]], marker: tuple[str, ...]) -> None:
    async def _poll() -> None:
        while marker not in events:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=2.0)


def test_missing_api_key_is_unavailable(sound_device: FakeSoundDevice) -> None:  # pylint: disable=unused-argument
    deepgram = importlib.import_module("recognition.deepgram")
    with pytest.raises(CapabilityUnavailableError):
        deepgram.DeepgramSpeechCapability(api_key=None)


def test_updates_are_interims_and_first_final_ends_single_utterance(
    sound_device: FakeSoundDevice,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, connections = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key", continuous=False)
        events = _wire(capability)

        socket.push(**_turn("StartOfTurn"))
        socket.push(**_turn("Update", "turn on"))
        socket.push(**_turn("EndOfTurn", " turn on the lights "))
        socket.push(**_turn("EndOfTurn", "never delivered"))

        capability.start()
        await _until(events, ("end",))

        assert events == [
            ("start",),
            ("interim", "turn on"),
            ("final", "turn on the lights"),
            ("end",),
        ]

        url, kwargs = connections[0]
        assert url.startswith("wss://api.deepgram.com/v2/listen?")
        assert "model=flux-general-en" in url
        assert "encoding=linear16" in url
        assert "sample_rate=16000" in url
        assert kwargs["additional_headers"] == {"Authorization": "Token dg-key"}

        mic = sound_device.streams[0]
        assert mic.started
        assert mic.closed

    asyncio.run(scenario())


def test_final_only_session_skips_interims(
    sound_device: FakeSoundDevice,  # pylint: disable=unused-argument
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, _ = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(
            api_key="dg-key",
            continuous=True,
            interim_results=False,
        )
        events = _wire(capability)

        socket.push(**_turn("Update", "hey"))
        socket.push(**_turn("EndOfTurn", "hey jarvis"))
        socket.push(**_turn("EndOfTurn", "what time is it"))
        socket.close()

        capability.start()
        await _until(events, ("end",))

        assert events == [
            ("start",),
            ("final", "hey jarvis"),
            ("final", "what time is it"),
            ("end",),
        ]

    asyncio.run(scenario())


def test_captured_frames_are_streamed(
    sound_device: FakeSoundDevice,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, _ = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        events = _wire(capability)

        capability.start()
        await _until(events, ("start",))

        frame = b"\x01\x00" * 320
        sound_device.streams[0].feed(frame)
        for _ in range(20):
            if frame in socket.sent:
                break
            await asyncio.sleep(0.005)
        assert frame in socket.sent

        capability.abort()
        await _until(events, ("end",))

    asyncio.run(scenario())


def test_silence_ends_with_no_speech(
    sound_device: FakeSoundDevice,  # pylint: disable=unused-argument
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, _ = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key", no_speech_timeout_s=0.03)
        events = _wire(capability)

        capability.start()
        await _until(events, ("end",))

        assert events == [("start",), ("error", "no-speech"), ("end",)]

    asyncio.run(scenario())


def test_error_message_maps_to_network(
    sound_device: FakeSoundDevice,  # pylint: disable=unused-argument
    monkeypatch: pytest.MonkeyPatch,
    captured_logs: list[str],
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, _ = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        events = _wire(capability)

        socket.push(type="Error", code="INVALID_AUDIO", description="bad frame")
        capability.start()
        await _until(events, ("end",))

        assert events == [("start",), ("error", "network"), ("end",)]

    asyncio.run(scenario())
    assert any("deepgram_error_message" in line for line in captured_logs)


def test_connection_failure_maps_to_network(
    sound_device: FakeSoundDevice,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        deepgram, _ = _load(monkeypatch, OSError("connection refused"))
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        events = _wire(capability)

        capability.start()
        await _until(events, ("end",))

        assert events == [("error", "network"), ("end",)]
        assert sound_device.streams[0].closed

    asyncio.run(scenario())


def test_microphone_open_failure_is_classified(
    sound_device: FakeSoundDevice,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, connections = _load(monkeypatch, socket)
        sound_device.open_error = "Device unavailable"

        refused = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        refused_events = _wire(refused)
        refused.start()
        await _until(refused_events, ("end",))

        sound_device.has_input_device = False
        missing = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        missing_events = _wire(missing)
        missing.start()
        await _until(missing_events, ("end",))

        assert refused_events == [("error", "not-allowed"), ("end",)]
        assert missing_events == [("error", "audio-capture"), ("end",)]
        assert connections == []

    asyncio.run(scenario())


def test_stop_drains_trailing_finals_before_ending(
    sound_device: FakeSoundDevice,  # pylint: disable=unused-argument
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket(on_close_stream=[_turn("EndOfTurn", "trailing words"), None])
        deepgram, _ = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        events = _wire(capability)

        socket.push(**_turn("StartOfTurn"))
        capability.start()
        await _until(events, ("start",))

        capability.stop()
        await _until(events, ("end",))

        assert json.dumps({"type": "CloseStream"}) in socket.sent
        assert events == [("start",), ("final", "trailing words"), ("end",)]

    asyncio.run(scenario())


def test_abort_before_capture_runs_still_ends(
    sound_device: FakeSoundDevice,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, connections = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        events = _wire(capability)

        capability.start()
        capability.abort()
        await _until(events, ("end",))

        assert events == [("error", "aborted"), ("end",)]
        assert connections == []
        assert sound_device.streams == []

        # Startable again once ended
        capability.start()
        await _until(events, ("start",))
        capability.abort()
        await asyncio.wait_for(_ended_twice(events), timeout=2.0)

    asyncio.run(scenario())


async def _ended_twice(events: list[tuple[str, ...]]) -> None:
    while events.count(("end",)) < 2:
        await asyncio.sleep(0.005)


def test_abort_reports_aborted(
    sound_device: FakeSoundDevice,  # pylint: disable=unused-argument
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def scenario() -> None:
        socket = FakeSocket()
        deepgram, _ = _load(monkeypatch, socket)
        capability = deepgram.DeepgramSpeechCapability(api_key="dg-key")
        events = _wire(capability)

        capability.start()
        await _until(events, ("start",))
        with pytest.raises(RuntimeError):
            capability.start()

        capability.abort()
        await _until(events, ("end",))

        assert events == [("start",), ("error", "aborted"), ("end",)]

    asyncio.run(scenario())


def test_permission_check_uses_the_input_device(sound_device: FakeSoundDevice) -> None:
    deepgram = importlib.import_module("recognition.deepgram")
    capability = deepgram.DeepgramSpeechCapability(api_key="dg-key")

    assert asyncio.run(capability.request_permission()) is True
    sound_device.has_input_device = False
    assert asyncio.run(capability.request_permission()) is False
