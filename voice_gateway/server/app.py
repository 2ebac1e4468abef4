"""
FastAPI application: WebSocket gateway plus the out-of-band HTTP endpoints.

Endpoints
---------
  WS   /realtime-ws                  Browser audio/text session
  POST /webhook/booking-completed    Signed scheduling webhook
  POST /inject-correction            Supervisor correction for a live session
  GET  /ping                         Liveness
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import BackgroundTasks, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from voice_gateway.config import AppConfig, settings
from voice_gateway.conversation.client_channel import ClientDisconnected
from voice_gateway.schemas.booking_schema import BookingEvent, extract_conversation_id
from voice_gateway.schemas.messages import CorrectionRequest
from voice_gateway.server.bootstrap import GatewayServices, build_services
from voice_gateway.server.connection import ConnectionHandler
from voice_gateway.server.security import secrets_match, verify_signature

log = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-cal-signature-256", "x-webhook-signature")
SUPERVISOR_HEADER = "x-supervisor-secret"
RESTART_CLOSE_CODE = 1012
ACCEPTED_TRIGGERS = (None, "BOOKING_CREATED")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def close_all_connections(app: FastAPI) -> None:
    """Close every open client socket with the service-restart code."""
    sockets: set[WebSocket] = app.state.sockets
    if sockets:
        log.info("Closing %d open WebSocket connection(s)", len(sockets))
    for ws in list(sockets):
        try:
            await ws.close(code=RESTART_CLOSE_CODE, reason="Server restarting")
        except RuntimeError:
            pass  # already closed
    sockets.clear()


def create_app(
    services: Optional[GatewayServices] = None, config: AppConfig = settings
) -> FastAPI:
    """Build the application. Services are created at startup unless injected."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(config)
        log.info("Voice gateway ready")
        yield
        await close_all_connections(app)
        await app.state.services.webhooks.aclose()
        log.info("Voice gateway stopped")

    app = FastAPI(title="Voice Gateway", lifespan=lifespan)
    app.state.services = services
    app.state.sockets = set()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.server.allowed_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping() -> str:
        return "pong"

    @app.websocket("/realtime-ws")
    async def realtime_ws(ws: WebSocket) -> None:
        await ws.accept()
        app.state.sockets.add(ws)

        async def transport(message: dict[str, Any]) -> None:
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                raise ClientDisconnected() from exc

        handler = ConnectionHandler(transport, app.state.services)
        log.info("Client connected")
        try:
            while True:
                frame = await ws.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                if frame.get("bytes") is not None:
                    handler.handle_binary(frame["bytes"])
                elif frame.get("text") is not None:
                    await handler.handle_text(frame["text"])
        except WebSocketDisconnect:
            pass
        finally:
            app.state.sockets.discard(ws)
            await handler.close()
            log.info("Client disconnected")

    @app.post("/webhook/booking-completed")
    async def booking_completed(request: Request, background: BackgroundTasks) -> JSONResponse:
        svc: GatewayServices = app.state.services
        raw = await request.body()
        signature = next(
            (request.headers[h] for h in SIGNATURE_HEADERS if request.headers.get(h)), None
        )
        if not signature:
            return _error(status.HTTP_400_BAD_REQUEST, "missing signature")
        if not verify_signature(raw, signature, svc.config.security.booking_webhook_secret):
            log.warning("Booking webhook signature mismatch")
            return _error(status.HTTP_401_UNAUTHORIZED, "invalid signature")

        try:
            body = json.loads(raw)
        except ValueError:
            return _error(status.HTTP_400_BAD_REQUEST, "invalid JSON")
        if not isinstance(body, dict):
            return _error(status.HTTP_400_BAD_REQUEST, "invalid payload")
        if body.get("triggerEvent") not in ACCEPTED_TRIGGERS:
            return JSONResponse({"status": "ignored"})

        conversation_id = extract_conversation_id(body)
        if not conversation_id:
            return _error(status.HTTP_400_BAD_REQUEST, "missing conversation id")

        event = BookingEvent.from_webhook(body)
        hooks = svc.registry.get(conversation_id)
        if hooks is not None:
            background.add_task(hooks.resume_with_booking, event)
            log.info("Booking %s routed to live conversation %s", event.booking_id, conversation_id)
            return JSONResponse({"status": "delivered"})

        try:
            await svc.store.set(
                svc.config.store.pending_bookings_collection,
                conversation_id,
                {"event": event.to_client(), "receivedAt": time.time()},
            )
        except Exception:
            log.exception("Could not store pending booking for %s", conversation_id)
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "could not store booking")
        log.info("Booking for %s stored as pending (no live session)", conversation_id)
        return JSONResponse({"status": "stored"})

    @app.post("/inject-correction")
    async def inject_correction(request: Request) -> JSONResponse:
        svc: GatewayServices = app.state.services
        if not secrets_match(
            request.headers.get(SUPERVISOR_HEADER), svc.config.security.supervisor_secret
        ):
            return _error(status.HTTP_401_UNAUTHORIZED, "unauthorized")
        try:
            correction = CorrectionRequest.model_validate(await request.json())
        except (ValueError, ValidationError):
            return _error(status.HTTP_400_BAD_REQUEST, "conversationId and correctionMessage required")

        hooks = svc.registry.get(correction.conversation_id)
        if hooks is None:
            return _error(status.HTTP_404_NOT_FOUND, "conversation not active")
        try:
            await hooks.apply_correction(correction.correction_message)
        except Exception:
            log.exception("Correction failed for %s", correction.conversation_id)
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "correction failed")
        return JSONResponse({"status": "applied"})

    return app
