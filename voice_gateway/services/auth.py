"""Client attestation checks run during the conversation handshake."""

import asyncio
import logging
from typing import Protocol

import jwt
from firebase_admin import app_check

logger = logging.getLogger(__name__)


class TokenVerificationError(Exception):
    """Raised when a client attestation token is missing or rejected."""


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> None: ...


class AppCheckVerifier:
    """Verifies Firebase App Check tokens sent with ``start_conversation``."""

    async def verify(self, token: str) -> None:
        if not token:
            raise TokenVerificationError("App Check token missing")
        try:
            await asyncio.to_thread(app_check.verify_token, token)
        except (ValueError, jwt.PyJWTError) as exc:
            logger.info("App Check token rejected: %s", exc)
            raise TokenVerificationError("App Check token rejected") from exc
