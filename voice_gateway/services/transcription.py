"""
Streaming speech recognition session for one browser connection.

Audio chunks are queued and fed to Google Cloud Speech's bidirectional
``streaming_recognize`` call from a background task. Every non-empty
result is delivered to the ``on_transcript(text, is_final)`` callback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

from google.api_core import exceptions as google_exceptions
from google.cloud import speech

from voice_gateway.config import SpeechConfig

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[str, bool], Awaitable[None]]


class TranscriptionSession(Protocol):
    @property
    def active(self) -> bool: ...

    async def start(self, language_code: str) -> None: ...

    def write(self, chunk: bytes) -> None: ...

    async def stop(self) -> None: ...


class GoogleSpeechSession:
    """One restartable recognition stream bound to a transcript callback."""

    def __init__(
        self,
        config: SpeechConfig,
        on_transcript: TranscriptCallback,
        client: Optional[Any] = None,
    ) -> None:
        self._config = config
        self._on_transcript = on_transcript
        self._client = client or speech.SpeechAsyncClient()
        self._queue: Optional[asyncio.Queue[Optional[bytes]]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, language_code: str) -> None:
        """Start a stream, closing any stream already running."""
        await self.stop()
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run(language_code, self._queue))
        logger.info("Speech stream started (%s)", language_code)

    def write(self, chunk: bytes) -> None:
        if self._queue is not None and self.active:
            self._queue.put_nowait(chunk)

    async def stop(self) -> None:
        if self._queue is not None:
            self._queue.put_nowait(None)
        task, self._task, self._queue = self._task, None, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=2.0)
        except asyncio.TimeoutError:
            task.cancel()
        except Exception:
            logger.exception("Speech stream ended with an error")
        logger.info("Speech stream stopped")

    def _streaming_config(self, language_code: str) -> speech.StreamingRecognitionConfig:
        return speech.StreamingRecognitionConfig(
            config=speech.RecognitionConfig(
                encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
                sample_rate_hertz=self._config.sample_rate_hertz,
                language_code=language_code,
                model=self._config.stt_model,
                enable_automatic_punctuation=True,
            ),
            interim_results=True,
        )

    async def _requests(
        self, language_code: str, queue: asyncio.Queue[Optional[bytes]]
    ) -> AsyncIterator[speech.StreamingRecognizeRequest]:
        yield speech.StreamingRecognizeRequest(
            streaming_config=self._streaming_config(language_code)
        )
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            yield speech.StreamingRecognizeRequest(audio_content=chunk)

    async def _run(self, language_code: str, queue: asyncio.Queue[Optional[bytes]]) -> None:
        try:
            responses = await self._client.streaming_recognize(
                requests=self._requests(language_code, queue)
            )
            async for response in responses:
                if not response.results:
                    continue
                result = response.results[0]
                if not result.alternatives:
                    continue
                text = result.alternatives[0].transcript
                if text:
                    await self._on_transcript(text, bool(result.is_final))
        except google_exceptions.GoogleAPICallError as exc:
            logger.error("Speech stream error: %s", exc)
        except Exception:
            logger.exception("Speech stream failed")
