"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_PERSONA_PROMPT = (
    "You are a warm, emotionally expressive, and engaging AI companion named Echo. "
    "You speak to the user like a close friend you genuinely care about. "
    "You have a playful, empathetic personality and talk naturally about your simulated feelings and moods. "
    "Keep replies conversational and easy to listen to: they will be spoken aloud, "
    "so avoid markdown, long lists and code. Ask follow-up questions that show interest "
    "in the user's life, and match their emotional tone."
)


class CaptureSettings(BaseModel):
    """Timing and threshold constants for microphone endpointing."""

    volume_threshold: float = Field(default=0.015, gt=0)
    volume_check_interval: float = Field(default=0.1, gt=0)
    silence_duration: float = Field(default=1.0, gt=0)
    min_speech_length: int = Field(default=2, ge=1)
    restart_delay: float = Field(default=0.2, ge=0)
    reconnection_interval: float = Field(default=0.5, ge=0)
    max_retry_count: int = Field(default=5, ge=1)
    fft_size: int = Field(default=256, ge=16)
    sample_rate: int = Field(default=16000)
    # Volume-only listening while the assistant speaks
    barge_in_volume_threshold: float = Field(default=0.05, gt=0)
    barge_in_min_ticks: int = Field(default=3, ge=1)


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    model_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1"),
        validation_alias=AliasChoices("MODEL_BASE_URL", "model_base_url"),
    )
    model: str = Field(
        default="gpt-4",
        validation_alias=AliasChoices("MODEL", "CHAT_MODEL", "model"),
    )
    temperature: float = Field(
        default=0.8,
        ge=0,
        le=2,
        validation_alias=AliasChoices("MODEL_TEMPERATURE", "temperature"),
    )
    presence_penalty: float = Field(
        default=0.6,
        ge=-2,
        le=2,
        validation_alias=AliasChoices("MODEL_PRESENCE_PENALTY", "presence_penalty"),
    )
    frequency_penalty: float = Field(
        default=0.5,
        ge=-2,
        le=2,
        validation_alias=AliasChoices("MODEL_FREQUENCY_PENALTY", "frequency_penalty"),
    )
    persona_prompt: str = Field(
        default=DEFAULT_PERSONA_PROMPT,
        validation_alias=AliasChoices("PERSONA_PROMPT", "system_prompt"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("MODEL_TIMEOUT", "timeout"),
        ge=1,
    )

    tts_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://localhost:3001/tts"),
        validation_alias=AliasChoices("TTS_URL", "tts_url"),
    )
    tts_timeout: float = Field(
        default=30.0,
        ge=1,
        validation_alias=AliasChoices("TTS_TIMEOUT", "tts_timeout"),
    )
    playback_sample_rate: int = Field(
        default=44100,
        validation_alias=AliasChoices("PLAYBACK_SAMPLE_RATE", "playback_sample_rate"),
    )

    # Language is fixed for the lifetime of a session
    language: str = Field(
        default="en-US",
        validation_alias=AliasChoices("SPEECH_LANGUAGE", "language"),
    )
    deepgram_api_key: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("DEEPGRAM_API_KEY")
    )
    deepgram_model: str = Field(
        default="flux-general-en",
        validation_alias=AliasChoices("DEEPGRAM_MODEL", "deepgram_model"),
    )
    deepgram_eot_threshold: float = Field(
        default=0.7,
        ge=0.5,
        le=0.9,
        validation_alias=AliasChoices("DEEPGRAM_EOT_THRESHOLD"),
    )
    deepgram_eot_timeout_ms: int = Field(
        default=5000,
        ge=500,
        validation_alias=AliasChoices("DEEPGRAM_EOT_TIMEOUT_MS"),
    )

    capture: CaptureSettings = Field(default_factory=CaptureSettings)

    input_device: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("INPUT_DEVICE", "input_device"),
    )
    output_device: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OUTPUT_DEVICE", "output_device"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["CaptureSettings", "Settings", "get_settings"]
