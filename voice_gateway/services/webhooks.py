"""
Outbound HTTP delivery for tool side effects and best-effort reports.

``post_json`` raises on failure and is used where the caller needs the
result (tool handlers). ``fire_and_forget`` schedules a background POST
whose failures are logged and never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class WebhookPoster:
    """Shared async HTTP client with a bounded timeout."""

    def __init__(self, timeout_sec: float, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self._background: set[asyncio.Task] = set()

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any:
        """POST a JSON payload and return the decoded body (or raw text)."""
        response = await self._client.post(url, json=payload)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return response.text

    def fire_and_forget(self, url: Optional[str], payload: dict[str, Any], label: str) -> None:
        if not url:
            logger.debug("No URL configured for %s; skipping", label)
            return
        task = asyncio.create_task(self._deliver(url, payload, label))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver(self, url: str, payload: dict[str, Any], label: str) -> None:
        try:
            await self.post_json(url, payload)
            logger.debug("Delivered %s", label)
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Failed to deliver %s to %s: %s", label, url, exc)

    async def drain(self) -> None:
        """Wait for background deliveries still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()
