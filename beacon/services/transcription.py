import asyncio
import base64
import binascii
import json
import logging
from typing import Protocol
from urllib.parse import urlencode

import websockets

from beacon.config import (
    DEEPGRAM_API_KEY,
    DEEPGRAM_CLOSE_TIMEOUT_SECONDS,
    DEEPGRAM_LANGUAGE,
    DEEPGRAM_MODEL,
    DEEPGRAM_UTTERANCE_END_MS,
)
from beacon.exceptions import TranscriptionUnavailableError
from beacon.models.transcript import TranscriptEvent

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


class TranscriptionSource(Protocol):
    """Anything that turns audio into ordered ``TranscriptEvent``s on a queue."""

    async def start(self) -> None: ...

    async def send_audio(self, chunk: bytes) -> None: ...

    async def stop(self) -> None: ...


def decode_audio_chunk(audio_base64: str) -> bytes:
    try:
        return base64.b64decode(audio_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Audio chunk is not valid base64: {e}") from e


def parse_deepgram_message(raw: str | bytes) -> TranscriptEvent | None:
    """Map one Deepgram frame to a transcript event, or None for frames we ignore."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Deepgram sent a non-JSON frame")
        return None
    if not isinstance(data, dict):
        return None

    msg_type = data.get("type", "")
    if msg_type == "UtteranceEnd":
        return TranscriptEvent(kind="utterance_end")
    if msg_type != "Results":
        return None

    alternatives = (data.get("channel") or {}).get("alternatives") or []
    if not alternatives:
        return None
    best = alternatives[0] or {}
    words = best.get("words") or []
    speaker = words[0].get("speaker", 0) if words and isinstance(words[0], dict) else 0
    return TranscriptEvent(
        kind="result",
        speaker_id=int(speaker or 0),
        text=best.get("transcript") or "",
        is_final=bool(data.get("is_final", False)),
    )


class DeepgramTranscriptionSource:
    """Live diarized transcription over Deepgram's streaming WebSocket.

    Audio sent before the connection opens is buffered and flushed in order
    once it does. If the connection cannot be opened the buffer is dropped
    and further audio is discarded.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        api_key: str = DEEPGRAM_API_KEY,
        *,
        model: str = DEEPGRAM_MODEL,
        language: str = DEEPGRAM_LANGUAGE,
        utterance_end_ms: int = DEEPGRAM_UTTERANCE_END_MS,
        close_timeout: float = DEEPGRAM_CLOSE_TIMEOUT_SECONDS,
    ):
        self.queue = queue
        self.api_key = api_key
        self.model = model
        self.language = language
        self.utterance_end_ms = utterance_end_ms
        self.close_timeout = close_timeout
        self._ws = None
        self._listen_task: asyncio.Task | None = None
        self._pending: list[bytes] = []
        self._running = False
        self._failed = False

    @property
    def url(self) -> str:
        params = {
            "model": self.model,
            "language": self.language,
            "diarize": "true",
            "interim_results": "true",
            "utterance_end_ms": str(self.utterance_end_ms),
            "vad_events": "true",
            "punctuate": "true",
            "smart_format": "true",
        }
        return f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}"

    @property
    def failed(self) -> bool:
        return self._failed

    async def start(self) -> None:
        """Open the stream. Raises ``TranscriptionUnavailableError`` if it cannot."""
        self._running = True
        self._failed = False
        if not self.api_key:
            logger.warning("Transcription disabled: set DEEPGRAM_API_KEY for speech-to-text.")
            return
        logger.info("Starting Deepgram transcription (%s, %s)", self.model, self.language)
        try:
            self._ws = await websockets.connect(
                self.url,
                additional_headers={"Authorization": f"Token {self.api_key}"},
            )
        except Exception as e:
            logger.error("Deepgram connection failed: %s", e)
            self._ws = None
            self._failed = True
            self._pending.clear()
            raise TranscriptionUnavailableError() from e

        pending, self._pending = self._pending, []
        for chunk in pending:
            await self._ws.send(chunk)
        self._listen_task = asyncio.create_task(self._listen())

    async def send_audio(self, chunk: bytes) -> None:
        if not self._running or self._failed or not self.api_key:
            return
        if self._ws is None:
            self._pending.append(chunk)
            return
        try:
            await self._ws.send(chunk)
        except websockets.ConnectionClosed:
            logger.warning("Dropped audio chunk: Deepgram connection closed")

    async def stop(self) -> None:
        """Close the stream, waiting for the results Deepgram flushes on close."""
        self._running = False
        self._pending.clear()
        if self._ws is not None:
            try:
                await self._ws.send(json.dumps({"type": "CloseStream"}))
            except websockets.ConnectionClosed:
                pass
        if self._listen_task is not None:
            try:
                await asyncio.wait_for(self._listen_task, timeout=self.close_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Deepgram did not close within %.1fs; final results may be missing",
                    self.close_timeout,
                )
        self._listen_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _listen(self) -> None:
        if self._ws is None:
            return
        try:
            # Runs until the server closes the socket, which it does after CloseStream
            async for raw_message in self._ws:
                event = parse_deepgram_message(raw_message)
                if event is None:
                    continue
                if event.kind == "result" and event.text:
                    logger.info(
                        "Transcript (%s, speaker %d): %s",
                        "final" if event.is_final else "interim",
                        event.speaker_id,
                        event.text[:80],
                    )
                await self.queue.put(event)
        except websockets.ConnectionClosed:
            if self._running:
                logger.warning("Deepgram WebSocket connection closed")
        except Exception as e:
            logger.error("Deepgram listener error: %s", e)


class NullTranscriptionSource:
    """Accepts audio and produces nothing; used when no speech service is configured."""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    async def start(self) -> None:
        logger.info("Using null transcription source")

    async def send_audio(self, chunk: bytes) -> None:
        return None

    async def stop(self) -> None:
        return None


def create_transcription_source(queue: asyncio.Queue) -> TranscriptionSource:
    if DEEPGRAM_API_KEY:
        return DeepgramTranscriptionSource(queue)
    return NullTranscriptionSource(queue)
