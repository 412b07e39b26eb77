"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No loop logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) == "1"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the assistant bootstrap (server.app).
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # AI responder
    # ------------------------------------------------------------------

    llm_provider: str
    llm_model: str
    openai_api_key: str | None
    groq_api_key: str | None
    responder_timeout_s: float

    # ------------------------------------------------------------------
    # Speech recognition
    # ------------------------------------------------------------------

    deepgram_api_key: str | None
    deepgram_model: str
    recognition_language: str

    # ------------------------------------------------------------------
    # Speech synthesis
    # ------------------------------------------------------------------

    elevenlabs_api_key: str | None
    elevenlabs_voice_id: str
    elevenlabs_model_id: str
    offline_voice_rate: int | None

    # ------------------------------------------------------------------
    # Wake word / voice commands
    # ------------------------------------------------------------------

    wake_phrase: str
    stop_phrase: str
    wake_word_enabled: bool

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing API keys are not an error here; the component that
        needs a key refuses to build without it.
        """
        rate = os.environ.get("OFFLINE_VOICE_RATE")

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=_env_flag("ENABLE_JSON_LOGS", "1"),

            llm_provider=os.environ.get("LLM_PROVIDER", "openai"),
            llm_model=os.environ.get("LLM_MODEL", "gpt-4o-mini"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),
            responder_timeout_s=_env_float("RESPONDER_TIMEOUT_S", 30.0),

            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", "flux-general-en"),
            recognition_language=os.environ.get("RECOGNITION_LANGUAGE", "en-US"),

            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            elevenlabs_voice_id=os.environ.get("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM"),
            elevenlabs_model_id=os.environ.get("ELEVENLABS_MODEL_ID", "eleven_turbo_v2"),
            offline_voice_rate=int(rate) if rate else None,

            wake_phrase=os.environ.get("WAKE_PHRASE", "jarvis"),
            stop_phrase=os.environ.get("STOP_PHRASE", "jarvis stop"),
            wake_word_enabled=_env_flag("WAKE_WORD_ENABLED", "1"),
        )
