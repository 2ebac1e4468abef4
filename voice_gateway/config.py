"""
Centralized configuration with environment variable overrides.

Secrets, endpoints, timeouts, and dedupe windows are all configurable here.
Nothing is hardcoded in the session, tool, or transport logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from voice_gateway.logging_context import install_conversation_filter

load_dotenv()

logger = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when required credentials or services are unavailable at boot."""


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in ("1", "true", "yes", "on")


def _split_csv(env_var: str, default: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in os.getenv(env_var, default).split(",") if part.strip())


@dataclass(frozen=True)
class ServerConfig:
    """HTTP/WebSocket listener settings."""

    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = _safe_int("PORT", "8080")
    allowed_origins: tuple[str, ...] = _split_csv("ALLOWED_ORIGINS", "*")


@dataclass(frozen=True)
class ModelConfig:
    """Generative language model settings."""

    llm_model: str = os.getenv("LLM_MODEL", "gemini-2.5-flash")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.7")
    llm_timeout_sec: float = _safe_float("LLM_TIMEOUT_SECONDS", "30.0")
    project_id: str = os.getenv("GOOGLE_PROJECT_ID", "")
    location: str = os.getenv("GOOGLE_LOCATION", "us-central1")


@dataclass(frozen=True)
class SpeechConfig:
    """Streaming speech-to-text settings."""

    sample_rate_hertz: int = _safe_int("STT_SAMPLE_RATE", "24000")
    stt_model: str = os.getenv("STT_MODEL", "telephony")
    default_language: str = os.getenv("STT_DEFAULT_LANGUAGE", "es-ES")


@dataclass(frozen=True)
class SecurityConfig:
    """Shared secrets and token checks for inbound traffic."""

    booking_webhook_secret: str = os.getenv("BOOKING_WEBHOOK_SECRET", "")
    supervisor_secret: str = os.getenv("SUPERVISOR_SECRET", "")
    app_check_enforced: bool = _safe_bool("APP_CHECK_ENFORCED", "true")


@dataclass(frozen=True)
class WebhookConfig:
    """Outbound webhook endpoints and their timeout."""

    supervision_url: str = os.getenv("SUPERVISION_WEBHOOK_URL", "")
    transcript_report_url: str = os.getenv("TRANSCRIPT_REPORT_URL", "")
    timeout_sec: float = _safe_float("WEBHOOK_TIMEOUT_SECONDS", "10.0")


@dataclass(frozen=True)
class StoreConfig:
    """Document store backend and collection names."""

    backend: str = os.getenv("STORE_BACKEND", "firestore")
    bots_collection: str = os.getenv("BOTS_COLLECTION", "InteracBotGPT")
    conversations_collection: str = os.getenv("CONVERSATIONS_COLLECTION", "conversations")
    tool_executions_collection: str = os.getenv("TOOL_EXECUTIONS_COLLECTION", "toolExecutions")
    pending_bookings_collection: str = os.getenv("PENDING_BOOKINGS_COLLECTION", "pendingBookings")


@dataclass(frozen=True)
class DedupeConfig:
    """Windows used to decide whether two booking events are the same one."""

    booking_start_window_sec: float = _safe_float("BOOKING_START_WINDOW_SECONDS", "300")
    booking_announce_window_sec: float = _safe_float("BOOKING_ANNOUNCE_WINDOW_SECONDS", "10")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    server: ServerConfig = field(default_factory=ServerConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    dedupe: DedupeConfig = field(default_factory=DedupeConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    service_name: str = os.getenv("SERVICE_NAME", "voice-gateway")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not 0.0 <= config.model.llm_temperature <= 2.0:
        raise ValueError(
            f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {config.model.llm_temperature}"
        )
    if config.model.llm_timeout_sec <= 0:
        raise ValueError(
            f"LLM_TIMEOUT_SECONDS must be > 0, got {config.model.llm_timeout_sec}"
        )
    if config.webhooks.timeout_sec <= 0:
        raise ValueError(
            f"WEBHOOK_TIMEOUT_SECONDS must be > 0, got {config.webhooks.timeout_sec}"
        )
    if not 1 <= config.server.port <= 65535:
        raise ValueError(f"PORT must be between 1 and 65535, got {config.server.port}")
    if config.speech.sample_rate_hertz < 8000:
        raise ValueError(
            f"STT_SAMPLE_RATE must be >= 8000, got {config.speech.sample_rate_hertz}"
        )
    if config.store.backend not in ("firestore", "memory"):
        raise ValueError(
            f"STORE_BACKEND must be 'firestore' or 'memory', got {config.store.backend!r}"
        )

    for window_name, window_value in [
        ("BOOKING_START_WINDOW_SECONDS", config.dedupe.booking_start_window_sec),
        ("BOOKING_ANNOUNCE_WINDOW_SECONDS", config.dedupe.booking_announce_window_sec),
    ]:
        if window_value < 0:
            raise ValueError(f"{window_name} must be >= 0, got {window_value}")


def require_credentials(config: AppConfig) -> None:
    """Fail fast when a secret needed to serve traffic is missing.

    Raises:
        StartupError: Listing every missing environment variable.
    """
    missing = [
        name
        for name, value in [
            ("BOOKING_WEBHOOK_SECRET", config.security.booking_webhook_secret),
            ("SUPERVISOR_SECRET", config.security.supervisor_secret),
        ]
        if not value
    ]
    if config.store.backend == "firestore" and not config.model.project_id:
        missing.append("GOOGLE_PROJECT_ID")
    if missing:
        raise StartupError(f"Missing required configuration: {', '.join(missing)}")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] [%(conversation_id)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_conversation_filter()
    logger.info("Configuration loaded for '%s'", config.service_name)
    return config


# Singleton instance
settings = load_config()
