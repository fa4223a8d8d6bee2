"""
Audio capture.

AudioCaptureTap reads one remote LiveKit audio track and pushes its frames into
AudioIngest. AudioIngest is a bounded queue drained by a single task that owns
the RollingAudioBuffer: it appends everything queued, then hands a snapshot to
the pipeline once the buffer is ready and the pipeline is idle.

Pushing never blocks the capture side; a full queue drops its oldest frame.
"""
from __future__ import annotations

import asyncio
from array import array
from typing import Any, Callable, Optional, Protocol, Sequence

from livekit import rtc

from logging_setup import get_logger, Component
from .audio import float_to_pcm16
from .buffer import RollingAudioBuffer

CAPTURE_SAMPLE_RATE = 16000


class PipelineSink(Protocol):
    @property
    def accepting(self) -> bool: ...

    def submit(self, pcm: array) -> bool: ...


class AudioIngest:
    """Bounded frame queue plus the drain task that feeds the rolling buffer."""

    def __init__(
        self,
        buffer: RollingAudioBuffer,
        pipeline: PipelineSink,
        *,
        max_queue: int = 256,
        on_drop: Optional[Callable[[], None]] = None,
        session_id: str = "unknown",
    ):
        self.buffer = buffer
        self._pipeline = pipeline
        self._queue: asyncio.Queue[array] = asyncio.Queue(maxsize=max_queue)
        self._on_drop = on_drop
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.flushes = 0
        self.logger = get_logger(Component.CAPTURE, session_id=session_id)

    def start(self) -> None:
        if self._task is None:
            self._closed = False
            self._task = asyncio.create_task(self._drain(), name="audio-ingest")

    def push_frame(self, samples: Sequence[float]) -> None:
        """Push a raw float frame (converted to PCM16 here)."""
        self.push_pcm16(float_to_pcm16(samples))

    def push_pcm16(self, chunk: array | memoryview | bytes) -> None:
        """Push an int16 frame; never blocks."""
        if self._closed:
            return
        if not isinstance(chunk, array):
            chunk = array("h", bytes(chunk))
        try:
            self._queue.put_nowait(chunk)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(chunk)
            if self._on_drop is not None:
                self._on_drop()
            self.logger.debug("Ingest queue full, dropped oldest frame")

    async def _drain(self) -> None:
        while True:
            chunk = await self._queue.get()
            self.buffer.append(chunk)
            while not self._queue.empty():
                self.buffer.append(self._queue.get_nowait())
            self.check_flush()

    def check_flush(self) -> bool:
        """
        Hand the buffer to the pipeline if it crossed the threshold.

        While the pipeline is busy the audio stays buffered for the next check.
        """
        if not self.buffer.ready or not self._pipeline.accepting:
            return False
        snapshot = self.buffer.flush()
        self._pipeline.submit(snapshot)
        self.flushes += 1
        self.logger.debug("Audio buffer flushed", samples=len(snapshot))
        return True

    async def aclose(self) -> None:
        self._closed = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self.buffer.clear()


class AudioCaptureTap:
    """Reads one subscribed remote audio track into an AudioIngest."""

    def __init__(
        self,
        track: Any,
        ingest: AudioIngest,
        *,
        participant_identity: str = "unknown",
        sample_rate: int = CAPTURE_SAMPLE_RATE,
        stream_factory: Callable[..., Any] = rtc.AudioStream,
    ):
        self.track = track
        self.participant_identity = participant_identity
        self._ingest = ingest
        self._sample_rate = sample_rate
        self._stream_factory = stream_factory
        self._stream: Optional[Any] = None
        self._task: Optional[asyncio.Task] = None
        self.logger = ingest.logger

    def start(self) -> None:
        self._stream = self._stream_factory(self.track, sample_rate=self._sample_rate, num_channels=1)
        self._task = asyncio.create_task(self._read(), name=f"capture-{self.participant_identity}")
        self.logger.info("Audio track processing started", participant_identity=self.participant_identity)

    async def _read(self) -> None:
        try:
            async for event in self._stream:
                self._ingest.push_pcm16(event.frame.data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(
                "Audio capture failed",
                participant_identity=self.participant_identity,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.aclose()
        self.logger.debug("Audio track processing stopped", participant_identity=self.participant_identity)
