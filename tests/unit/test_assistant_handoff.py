# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Sequence

from audio.microphone import Microphone
from fakes import (
    DENIED,
    FakeOutput,
    FakeResponder,
    ScriptedFactory,
    Step,
    listening_forever,
    settle,
    utterance,
)
from orchestrator.controller import VoiceLoopController
from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.phase import LoopPhase
from orchestrator.events import LoopEvent, LoopEventType, PhaseChanged, WakeWordFailed
from recognition.session import Recognizer
from recognition.wake_word import WakeWordDetector
from session.assistant import VoiceAssistant
from synthesis.chain import SynthesisChain


def _assistant(
    *scripts: Sequence[Step],
    wake_word: bool = True,
) -> tuple[VoiceAssistant, ScriptedFactory, Microphone]:
    factory = ScriptedFactory(*scripts)
    microphone = Microphone()
    recognizer = Recognizer(factory, microphone=microphone)

    controller = VoiceLoopController(
        recognizer=recognizer,
        responder=FakeResponder("It is sunny."),
        synthesis=SynthesisChain(FakeOutput("primary")),
    )
    detector = (
        WakeWordDetector(recognizer, phrase="jarvis", restart_delay_ms=0)
        if wake_word else None
    )
    assistant = VoiceAssistant(controller=controller, microphone=microphone, detector=detector)
    return assistant, factory, microphone


def test_wake_hands_off_to_loop_and_back() -> None:
    async def scenario() -> None:
        assistant, factory, microphone = _assistant(
            utterance("hey jarvis"),
            utterance("what is the weather"),
        )
        controller = assistant.controller
        detector = assistant.detector
        assert detector is not None

        assistant.start()
        await settle(120)

        assert controller.active
        assert controller.state.completed_turns == 1
        assert not detector.active
        assert factory.created[0].continuous is True
        assert factory.created[1].continuous is False

        assistant.stop_loop()
        await controller.wait_stopped()
        await settle()

        assert controller.phase is LoopPhase.STOPPED
        assert detector.active
        assert factory.created[-1].continuous is True
        assert assistant.snapshot()["wake_word_listening"] is True

        await assistant.shutdown()
        assert not detector.active
        assert not microphone.is_held
        assert not assistant.running

    asyncio.run(scenario())


def test_manual_activation_preempts_wake_listening() -> None:
    async def scenario() -> None:
        assistant, factory, _ = _assistant(listening_forever(), listening_forever())
        assistant.start()
        await settle()
        wake_capability = factory.created[0]

        assistant.activate_loop()
        await settle()

        assert wake_capability.abort_calls == 1
        assert assistant.controller.active
        assert assistant.controller.phase is LoopPhase.LISTENING
        assert not assistant.detector.active

        await assistant.shutdown()

    asyncio.run(scenario())


def test_permission_denied_in_loop_leaves_assistant_dormant(captured_logs: list[str]) -> None:
    async def scenario() -> None:
        assistant, factory, _ = _assistant(utterance("jarvis"), DENIED)
        assistant.start()
        await settle(80)

        controller = assistant.controller
        assert controller.phase is LoopPhase.STOPPED
        assert controller.last_fatal is ErrorKind.PERMISSION_DENIED
        assert not assistant.detector.active
        assert len(factory.created) == 2

        await assistant.shutdown()

    asyncio.run(scenario())
    assert any("assistant_dormant" in line for line in captured_logs)


def test_without_a_detector_the_loop_starts_directly() -> None:
    async def scenario() -> None:
        assistant, factory, _ = _assistant(listening_forever(), wake_word=False)
        assistant.start()

        assert assistant.controller.active
        assert assistant.snapshot()["wake_word_enabled"] is False
        await settle()
        assert factory.created[0].continuous is False

        await assistant.shutdown()
        assert assistant.controller.phase is LoopPhase.STOPPED

    asyncio.run(scenario())


def test_wake_word_failure_is_published_to_subscribers() -> None:
    async def scenario() -> None:
        assistant, factory, _ = _assistant(DENIED, listening_forever())
        events: list[LoopEvent] = []
        unsubscribe = assistant.subscribe(events.append)

        assistant.start()
        await settle(40)

        failures = [e for e in events if isinstance(e, WakeWordFailed)]
        assert [(e.event_type, e.kind) for e in failures] == [
            (LoopEventType.WAKE_WORD_FAILED, ErrorKind.PERMISSION_DENIED),
        ]
        assert failures[0].message.startswith("PERMISSION_DENIED")
        assert not assistant.detector.active
        assert not assistant.controller.active
        assert assistant.snapshot()["wake_word_error"] == failures[0].message

        # Starting again re-arms the detector and clears the error
        assistant.start()
        await settle()
        assert assistant.detector.active
        assert assistant.snapshot()["wake_word_error"] is None
        assert len(factory.created) == 2

        unsubscribe()
        await assistant.shutdown()

    asyncio.run(scenario())


def test_assistant_subscribers_also_receive_loop_events() -> None:
    async def scenario() -> None:
        assistant, _, _ = _assistant(listening_forever(), wake_word=False)
        events: list[LoopEvent] = []
        assistant.subscribe(events.append)

        assistant.start()
        await settle()
        await assistant.shutdown()

        phases = [e.phase for e in events if isinstance(e, PhaseChanged)]
        assert phases[0] is LoopPhase.LISTENING
        assert phases[-1] is LoopPhase.STOPPED

    asyncio.run(scenario())
