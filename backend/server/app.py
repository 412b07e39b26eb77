"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Build the voice assistant once per process (lifespan)
- Register routes
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from audio.microphone import Microphone
from config import AppConfig
from context.conversation import ConversationContext, ConversationRecorder
from observability import logger
from observability.logger import log_event
from orchestrator.controller import VoiceLoopController
from recognition.base import CapabilityFactory, SpeechCapability
from recognition.deepgram import DeepgramSpeechCapability
from recognition.session import Recognizer
from recognition.wake_word import WakeWordDetector
from responder.openai_responder import OpenAIResponder, build_llm_client
from session.assistant import VoiceAssistant
from synthesis.chain import SynthesisChain
from synthesis.elevenlabs import ElevenLabsSpeechOutput
from synthesis.offline import OfflineSpeechOutput

from server.routes import register_routes


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the assistant on startup; stop it cleanly on shutdown."""
    assistant = build_assistant(app.state.config)
    app.state.assistant = assistant
    assistant.start()
    try:
        yield
    finally:
        await assistant.shutdown()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = AppConfig.load_from_env()
    logger.configure(json_lines=config.enable_json_logs, level=config.log_level)

    app = FastAPI(title="Voice Loop API", lifespan=lifespan)

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # local control surface
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_capability_factory(config: AppConfig) -> CapabilityFactory | None:
    """Speech-to-text capability factory, or None if not configured."""
    if not config.deepgram_api_key:
        return None

    def _factory() -> SpeechCapability:
        return DeepgramSpeechCapability(
            api_key=config.deepgram_api_key,
            model=config.deepgram_model,
            language=config.recognition_language,
        )

    return _factory


def build_synthesis(config: AppConfig) -> SynthesisChain:
    """ElevenLabs primary with offline fallback; offline only without a key."""
    offline = OfflineSpeechOutput(rate=config.offline_voice_rate)

    if not config.elevenlabs_api_key:
        log_event({
            "ts_ms": int(time.time() * 1000),
            "event_type": "synthesis_primary_unconfigured",
            "level": "WARNING",
            "detail": "ELEVENLABS_API_KEY not set; offline output only",
        })
        return SynthesisChain(primary=offline)

    primary = ElevenLabsSpeechOutput(
        api_key=config.elevenlabs_api_key,
        voice_id=config.elevenlabs_voice_id,
        model_id=config.elevenlabs_model_id,
    )
    return SynthesisChain(primary=primary, fallback=offline)


def build_assistant(config: AppConfig) -> VoiceAssistant:
    """
    Wire the full assistant from configuration.

    Raises CapabilityUnavailableError when speech-to-text or the
    responder is not configured (startup-fatal).
    """
    microphone = Microphone()
    recognizer = Recognizer(
        build_capability_factory(config),
        microphone=microphone,
        language=config.recognition_language,
    )

    context = ConversationContext()
    responder = OpenAIResponder(
        client=build_llm_client(config),
        model=config.llm_model,
        provider=config.llm_provider,
        timeout_s=config.responder_timeout_s,
    )

    controller = VoiceLoopController(
        recognizer=recognizer,
        responder=responder,
        synthesis=build_synthesis(config),
        conversation_context=context,
        stop_phrase=config.stop_phrase,
    )
    controller.subscribe(ConversationRecorder(context))

    detector = None
    if config.wake_word_enabled:
        detector = WakeWordDetector(recognizer, phrase=config.wake_phrase)

    log_event({
        "ts_ms": int(time.time() * 1000),
        "event_type": "assistant_built",
        "env": config.env,
        "loop_id": controller.loop_id,
        "llm_provider": config.llm_provider,
        "llm_model": config.llm_model,
        "wake_word_enabled": config.wake_word_enabled,
    })

    return VoiceAssistant(
        controller=controller,
        microphone=microphone,
        detector=detector,
    )
