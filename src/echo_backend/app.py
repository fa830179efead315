"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .audio.devices import SounddeviceCapturer, SounddevicePlayer
from .chat_stream import ChatStreamClient
from .config import get_settings
from .conversation import ConversationOrchestrator
from .routers.voice_assistant import router as voice_router
from .services.stt.deepgram_recognizer import DeepgramRecognizer
from .services.tts import ResponseStreamSegmenter, SpeechSynthesisClient
from .services.voice_session import VoiceConnectionManager


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("echo_backend").setLevel(log_level)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(log_level)

    # httpx logs every request at INFO; only show it when debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    else:
        logging.getLogger("httpx").setLevel(log_level)
        logging.getLogger("httpcore").setLevel(log_level)


def create_app() -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = get_settings()
    capture = settings.capture

    chat_client = ChatStreamClient(settings)
    synthesizer = SpeechSynthesisClient(settings)
    manager = VoiceConnectionManager()

    api_key = (
        settings.deepgram_api_key.get_secret_value()
        if settings.deepgram_api_key
        else ""
    )
    recognizer = DeepgramRecognizer(
        api_key,
        model=settings.deepgram_model,
        sample_rate=capture.sample_rate,
        eot_threshold=settings.deepgram_eot_threshold,
        eot_timeout_ms=settings.deepgram_eot_timeout_ms,
    )
    capturer = SounddeviceCapturer(
        sample_rate=capture.sample_rate,
        window_size=capture.fft_size,
        device=settings.input_device,
    )
    player = SounddevicePlayer(
        sample_rate=settings.playback_sample_rate,
        device=settings.output_device,
    )

    orchestrator = ConversationOrchestrator(
        recognizer=recognizer,
        capturer=capturer,
        player=player,
        segmenter=ResponseStreamSegmenter(chat_client),
        synthesizer=synthesizer,
        capture_settings=capture,
        language=settings.language,
        on_turn_rendered=manager.on_turn_rendered,
        on_turn_discarded=manager.on_turn_discarded,
        on_error=manager.on_error,
        on_state_change=manager.on_state_change,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            # Add timeout to prevent hanging on a wedged audio device
            try:
                await asyncio.wait_for(orchestrator.stop_session(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Voice session shutdown timed out after 10s")
            except Exception as exc:
                logging.warning("Error during voice session shutdown: %s", exc)
            await chat_client.aclose()
            await synthesizer.aclose()
            await SpeechSynthesisClient.close_http_client()

    app = FastAPI(
        title="Echo Voice Backend",
        version="0.1.0",
        description="Spoken conversation loop over a streaming language model.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.conversation_orchestrator = orchestrator
    app.state.voice_connection_manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(voice_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | None]:
        return {
            "status": "ok",
            "model": settings.model,
            "session_state": orchestrator.state.value,
        }

    return app


__all__ = ["create_app"]
