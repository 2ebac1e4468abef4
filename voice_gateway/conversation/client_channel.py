"""Outbound message channel to the browser client."""

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Transport = Callable[[dict[str, Any]], Awaitable[None]]


class ClientDisconnected(Exception):
    """Raised by a transport when the client socket is gone."""


class ClientChannel:
    """Typed-message sender that goes quiet once the client disconnects."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def send(self, message_type: str, **fields: Any) -> None:
        if self._closed:
            return
        try:
            await self._transport({"type": message_type, **fields})
        except ClientDisconnected:
            logger.debug("Client gone; dropping '%s' and closing channel", message_type)
            self._closed = True

    async def error(self, message: str) -> None:
        await self.send("error", message=message)
