"""
Process-wide service construction.

Everything a connection or HTTP handler needs is built once here and
shared. Any failure is turned into ``StartupError`` so the entry point can
exit before serving a single request.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from voice_gateway.config import AppConfig, StartupError, require_credentials
from voice_gateway.conversation.connection_registry import ConnectionRegistry
from voice_gateway.services.auth import TokenVerifier
from voice_gateway.services.llm import LanguageModel
from voice_gateway.services.store import DocumentStore, InMemoryDocumentStore
from voice_gateway.services.transcription import TranscriptCallback, TranscriptionSession
from voice_gateway.services.webhooks import WebhookPoster
from voice_gateway.tools.registry import ToolRegistry, build_default_registry

logger = logging.getLogger(__name__)

TranscriberFactory = Callable[[TranscriptCallback], TranscriptionSession]


@dataclass
class GatewayServices:
    """Shared collaborators injected into every connection."""
    config: AppConfig
    store: DocumentStore
    model: LanguageModel
    webhooks: WebhookPoster
    transcriber_factory: TranscriberFactory
    verifier: Optional[TokenVerifier] = None
    tools: ToolRegistry = field(default_factory=build_default_registry)
    registry: ConnectionRegistry = field(default_factory=ConnectionRegistry)


def build_services(config: AppConfig) -> GatewayServices:
    """Initialize credentials and external clients.

    Raises:
        StartupError: If configuration is incomplete or a client fails to start.
    """
    require_credentials(config)
    try:
        import firebase_admin
        from google.cloud import speech

        from voice_gateway.services.auth import AppCheckVerifier
        from voice_gateway.services.llm import GeminiLanguageModel
        from voice_gateway.services.store import FirestoreDocumentStore
        from voice_gateway.services.transcription import GoogleSpeechSession

        needs_firebase = config.store.backend == "firestore" or config.security.app_check_enforced
        if needs_firebase:
            try:
                firebase_admin.get_app()
            except ValueError:
                options = {"projectId": config.model.project_id} if config.model.project_id else None
                firebase_admin.initialize_app(options=options)
                logger.info("Firebase Admin SDK initialized")

        store: DocumentStore
        if config.store.backend == "firestore":
            store = FirestoreDocumentStore()
        else:
            logger.warning("Using in-memory document store; data is lost on restart")
            store = InMemoryDocumentStore()

        speech_client = speech.SpeechAsyncClient()
        model = GeminiLanguageModel(config.model)
        logger.info("Speech and language model clients initialized")
    except StartupError:
        raise
    except Exception as exc:
        raise StartupError(f"Service initialization failed: {exc}") from exc

    return GatewayServices(
        config=config,
        store=store,
        model=model,
        webhooks=WebhookPoster(config.webhooks.timeout_sec),
        transcriber_factory=lambda callback: GoogleSpeechSession(
            config.speech, callback, client=speech_client
        ),
        verifier=AppCheckVerifier() if config.security.app_check_enforced else None,
    )
